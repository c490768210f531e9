"""
Click CLI launcher for the Task Tracker API.

Initializes the database, optionally imports project templates from YAML and
serves the FastAPI app with uvicorn.
"""

import logging
import socket
from pathlib import Path
from typing import Dict, Any, Optional

import click
import uvicorn
import yaml

from . import api
from .config import TrackerSettings, get_settings
from .database import TrackerDatabase
from .pipeline import MutationPipeline
from .templates import import_templates

logger = logging.getLogger(__name__)


def check_port_available(port: int, host: str = '127.0.0.1') -> bool:
    """Return True if nothing is listening on host:port."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
            return True
    except OSError:
        return False


def validate_templates_yaml(templates_path: str) -> Dict[str, Any]:
    """
    Load and sanity check a templates YAML file.

    Raises:
        click.ClickException: Missing file, invalid YAML or a non-mapping root
    """
    path = Path(templates_path)
    if not path.exists():
        raise click.ClickException(f"Templates file not found: {templates_path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise click.ClickException(f"Invalid YAML in {templates_path}: {e}")

    if not isinstance(data, dict):
        raise click.ClickException("Templates file must contain a YAML dictionary")
    return data


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        force=True
    )


def print_startup_banner(host: str, port: int, db_path: str) -> None:
    click.echo("Task Tracker API")
    click.echo(f"  Database:  {db_path}")
    click.echo(f"  REST API:  http://{host}:{port}/api")
    click.echo(f"  Health:    http://{host}:{port}/healthz")


@click.command()
@click.option('--host', default='127.0.0.1', show_default=True, help='Interface to bind')
@click.option('--port', default=8000, show_default=True, type=int, help='Port for the REST API')
@click.option('--db-path', default=None, help='SQLite database path (overrides DATABASE_PATH)')
@click.option('--templates', 'templates_path', default=None, type=click.Path(),
              help='YAML file of project templates to import at startup')
@click.option('--log-level', default=None,
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
              help='Logging level (overrides TRACKER_LOG_LEVEL)')
@click.option('--init-only', is_flag=True, help='Initialize the database and import templates, then exit')
def main(host: str, port: int, db_path: Optional[str], templates_path: Optional[str],
         log_level: Optional[str], init_only: bool):
    """Start the Task Tracker REST API."""
    env_settings = get_settings()
    settings = TrackerSettings(
        database_path=db_path or env_settings.database_path,
        enforce_status_membership=env_settings.enforce_status_membership,
        activity_max_limit=env_settings.activity_max_limit,
        log_level=(log_level or env_settings.log_level).upper(),
    )
    configure_logging(settings.log_level)

    templates_data = validate_templates_yaml(templates_path) if templates_path else None

    try:
        db = TrackerDatabase(settings.database_path)
    except Exception as e:
        raise click.ClickException(f"Failed to initialize database: {e}")

    if templates_data is not None:
        try:
            stats = import_templates(db, templates_data)
        except ValueError as e:
            db.close()
            raise click.ClickException(f"Template import failed: {e}")
        click.echo(
            f"Imported templates: {stats['templates_created']} created, "
            f"{stats['templates_updated']} updated"
        )
        for error in stats["errors"]:
            click.echo(f"  warning: {error}", err=True)

    if init_only:
        click.echo(f"Database initialized at {settings.database_path}")
        db.close()
        return

    if not check_port_available(port, host):
        db.close()
        raise click.ClickException(f"Port conflict: {host}:{port} is already in use")

    api.db_instance = db
    api.pipeline_instance = MutationPipeline(db, settings=settings)
    print_startup_banner(host, port, settings.database_path)

    try:
        uvicorn.run(api.app, host=host, port=port, log_level=settings.log_level.lower())
    finally:
        db.close()
        logger.info("Task Tracker API stopped")


if __name__ == '__main__':
    main()
