"""
YAML Template Importer with UPSERT Logic

Loads project templates (kanban statuses, priorities, tags and sample tasks)
from YAML. Templates are keyed by name: re-importing a file updates existing
templates in place instead of duplicating them.
"""

import logging
from typing import Dict, Any, List

import yaml

from .database import TrackerDatabase

logger = logging.getLogger(__name__)

TEMPLATE_FIELDS = ("description", "icon", "color")
SAMPLE_TASK_FIELDS = ("title", "status", "priority", "tags")


def build_seed_config(template_data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate one template entry and return its seed configuration.

    Raises:
        ValueError: For malformed template data
    """
    statuses = template_data.get("statuses")
    if not isinstance(statuses, list) or not statuses:
        raise ValueError("'statuses' must be a non-empty list")
    if not all(isinstance(s, str) and s.strip() for s in statuses):
        raise ValueError("'statuses' entries must be non-empty strings")
    if len(set(statuses)) != len(statuses):
        raise ValueError("'statuses' entries must be distinct")

    priorities = template_data.get("priorities", [])
    tags = template_data.get("tags", [])
    for key, value in (("priorities", priorities), ("tags", tags)):
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ValueError(f"'{key}' must be a list of strings")

    sample_tasks = template_data.get("sample_tasks", [])
    if not isinstance(sample_tasks, list):
        raise ValueError("'sample_tasks' must be a list")

    tasks: List[Dict[str, Any]] = []
    for task_data in sample_tasks:
        if not isinstance(task_data, dict) or not task_data.get("title"):
            raise ValueError("Each sample task must be a mapping with a title")
        if task_data.get("status") is not None and task_data["status"] not in statuses:
            raise ValueError(
                f"Sample task '{task_data['title']}' uses status '{task_data['status']}' "
                f"which is not one of the template statuses"
            )
        tasks.append({k: task_data[k] for k in SAMPLE_TASK_FIELDS if k in task_data})

    return {
        "statuses": statuses,
        "priorities": priorities,
        "tags": tags,
        "sample_tasks": tasks,
    }


def import_templates(db: TrackerDatabase, yaml_data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Import templates from parsed YAML with UPSERT by template name.

    Args:
        db: TrackerDatabase instance
        yaml_data: Parsed YAML with a top-level 'templates' list

    Returns:
        Dict with import statistics; individual template failures are
        collected in 'errors' and do not stop the import

    Raises:
        ValueError: For a malformed top-level structure
    """
    stats = {
        "templates_created": 0,
        "templates_updated": 0,
        "errors": []
    }

    templates = yaml_data.get("templates", [])
    if not isinstance(templates, list):
        raise ValueError("YAML 'templates' must be a list")

    with db.transaction():
        for template_data in templates:
            name = template_data.get("name") if isinstance(template_data, dict) else None
            try:
                if not isinstance(name, str) or not name.strip():
                    raise ValueError("Template name is required")
                fields = {k: template_data.get(k) for k in TEMPLATE_FIELDS}
                fields["seed_config"] = build_seed_config(template_data)

                _, created = db.upsert_template(name.strip(), fields)
                if created:
                    stats["templates_created"] += 1
                else:
                    stats["templates_updated"] += 1

            except Exception as e:
                error_msg = f"Failed to import template '{name or 'unnamed'}': {str(e)}"
                logger.warning(error_msg)
                stats["errors"].append(error_msg)

    logger.info(
        f"Templates imported: {stats['templates_created']} created, "
        f"{stats['templates_updated']} updated, {len(stats['errors'])} errors"
    )
    return stats


def import_templates_from_file(db: TrackerDatabase, yaml_file_path: str) -> Dict[str, Any]:
    """
    Import templates from a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: For invalid YAML or a non-mapping root
    """
    try:
        with open(yaml_file_path, 'r', encoding='utf-8') as f:
            yaml_data = yaml.safe_load(f)
    except FileNotFoundError:
        raise FileNotFoundError(f"YAML file not found: {yaml_file_path}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML format: {str(e)}")

    if not isinstance(yaml_data, dict):
        raise ValueError("YAML file must contain a dictionary at root level")

    return import_templates(db, yaml_data)
