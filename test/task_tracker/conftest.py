"""
Shared fixtures for the task tracker test suite.

Every test gets its own temporary SQLite file so WAL state and activity logs
never leak between tests.
"""

import sys
import tempfile
from pathlib import Path

import pytest

project_root = Path(__file__).parent.parent.parent / "src"
sys.path.insert(0, str(project_root))

from task_tracker.config import TrackerSettings
from task_tracker.database import TrackerDatabase
from task_tracker.pipeline import Actor, MutationPipeline, Role


@pytest.fixture
def db_path():
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield str(Path(tmp_dir) / "tracker.db")


@pytest.fixture
def db(db_path):
    database = TrackerDatabase(db_path)
    yield database
    database.close()


@pytest.fixture
def settings(db_path):
    return TrackerSettings(database_path=db_path)


@pytest.fixture
def pipeline(db, settings):
    return MutationPipeline(db, settings=settings)


@pytest.fixture
def admin():
    return Actor("admin-1", Role.ADMIN)


@pytest.fixture
def member():
    return Actor("member-1", Role.MEMBER)


@pytest.fixture
def guest():
    return Actor("guest-1", Role.GUEST)


@pytest.fixture
def project(pipeline, member):
    """A live project with the default statuses."""
    return pipeline.create_project(member, "Website Redesign", client_name="Acme").entity


@pytest.fixture
def make_task(pipeline, member, project):
    """Factory for tasks in the default project."""
    def _make(title="Task", **kwargs):
        result = pipeline.create_task(member, project["id"], title, **kwargs)
        assert result.success, result.error
        return result.entity
    return _make
