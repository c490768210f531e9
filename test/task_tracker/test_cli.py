"""
Test suite for the click launcher: option handling, template loading and
startup failures. uvicorn is mocked so no server is started.
"""

import socket
from pathlib import Path
from unittest.mock import patch

import click
import pytest
import yaml
from click.testing import CliRunner

from task_tracker import api
from task_tracker.cli import main, check_port_available, validate_templates_yaml
from task_tracker.database import TrackerDatabase

DEFAULT_TEMPLATES = Path(__file__).parent.parent.parent / "templates" / "default_templates.yaml"


@pytest.fixture(autouse=True)
def reset_api_globals():
    yield
    api.db_instance = None
    api.pipeline_instance = None


class TestPortManagement:

    def test_check_port_available_free_port(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(('127.0.0.1', 0))
            free_port = sock.getsockname()[1]
        assert check_port_available(free_port) is True

    def test_check_port_available_in_use(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(('127.0.0.1', 0))
            sock.listen(1)
            assert check_port_available(sock.getsockname()[1]) is False


class TestTemplatesValidation:

    def test_valid_file(self, tmp_path):
        path = tmp_path / "templates.yaml"
        data = {"templates": [{"name": "T", "statuses": ["A"]}]}
        path.write_text(yaml.dump(data))
        assert validate_templates_yaml(str(path)) == data

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "invalid.yaml"
        path.write_text("invalid: yaml: content: [unclosed")
        with pytest.raises(click.ClickException, match="Invalid YAML"):
            validate_templates_yaml(str(path))

    def test_not_a_dict(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text(yaml.dump(["not", "a", "dictionary"]))
        with pytest.raises(click.ClickException, match="must contain a YAML dictionary"):
            validate_templates_yaml(str(path))

    def test_missing_file(self):
        with pytest.raises(click.ClickException, match="Templates file not found"):
            validate_templates_yaml("/nonexistent/file.yaml")


class TestMain:

    @patch('task_tracker.cli.uvicorn.run')
    def test_default_launch(self, mock_run, db_path):
        runner = CliRunner()
        with patch('task_tracker.cli.check_port_available', return_value=True):
            result = runner.invoke(main, ['--db-path', db_path, '--port', '9100'])

        assert result.exit_code == 0, result.output
        mock_run.assert_called_once()
        args, kwargs = mock_run.call_args
        assert args[0] is api.app
        assert kwargs["port"] == 9100
        assert kwargs["host"] == "127.0.0.1"
        assert "Task Tracker API" in result.output

    @patch('task_tracker.cli.uvicorn.run')
    def test_launch_installs_pipeline(self, mock_run, db_path):
        captured = {}
        mock_run.side_effect = lambda *a, **kw: captured.update(
            db=api.db_instance, pipeline=api.pipeline_instance
        )

        with patch('task_tracker.cli.check_port_available', return_value=True):
            result = CliRunner().invoke(main, ['--db-path', db_path])

        assert result.exit_code == 0, result.output
        assert isinstance(captured["db"], TrackerDatabase)
        assert captured["pipeline"].db is captured["db"]

    def test_init_only_imports_templates(self, db_path):
        result = CliRunner().invoke(main, [
            '--db-path', db_path, '--templates', str(DEFAULT_TEMPLATES), '--init-only'
        ])

        assert result.exit_code == 0, result.output
        assert "2 created" in result.output
        db = TrackerDatabase(db_path)
        try:
            assert len(db.list_templates()) == 2
        finally:
            db.close()

    def test_invalid_log_level(self):
        result = CliRunner().invoke(main, ['--log-level', 'LOUD'])
        assert result.exit_code != 0

    @patch('task_tracker.cli.uvicorn.run')
    def test_port_conflict(self, mock_run, db_path):
        with patch('task_tracker.cli.check_port_available', return_value=False):
            result = CliRunner().invoke(main, ['--db-path', db_path])

        assert result.exit_code != 0
        assert "Port conflict" in result.output
        mock_run.assert_not_called()

    @patch('task_tracker.cli.TrackerDatabase')
    def test_database_initialization_failure(self, mock_db):
        mock_db.side_effect = RuntimeError("Database connection failed")

        result = CliRunner().invoke(main, ['--init-only'])

        assert result.exit_code != 0
        assert "Failed to initialize database" in result.output

    @patch('task_tracker.cli.import_templates')
    def test_template_errors_are_reported(self, mock_import, db_path, tmp_path):
        mock_import.return_value = {"templates_created": 0, "templates_updated": 0,
                                    "errors": ["Failed to import template 'X': bad"]}
        path = tmp_path / "t.yaml"
        path.write_text(yaml.dump({"templates": []}))

        result = CliRunner().invoke(main, ['--db-path', db_path, '--templates', str(path), '--init-only'])

        assert result.exit_code == 0
        assert "Failed to import template 'X'" in result.output
