"""
Test suite for TrackerDatabase: schema, transactions, conditional writes and
the activity log table.
"""

import sqlite3
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from task_tracker.database import TrackerDatabase, INITIAL_VERSION
from task_tracker.errors import AuditWriteFailure, ValidationError


def insert_project(db, name="Project"):
    return db.insert_record("project", {
        "name": name,
        "statuses": ["Todo", "Done"],
        "priorities": [],
        "tags": [],
    })


def insert_task(db, project_id, title="Task", status="Todo", order_index=1000):
    return db.insert_record("task", {
        "project_id": project_id,
        "title": title,
        "status": status,
        "tags": [],
        "order_index": order_index,
    })


class TestTrackerDatabaseInitialization:
    """Test database initialization and schema creation."""

    def test_database_initialization(self, db):
        """WAL mode and connection PRAGMAs are applied."""
        cursor = db._connection.cursor()
        cursor.execute("PRAGMA journal_mode")
        assert cursor.fetchone()[0].upper() == "WAL"

        cursor.execute("PRAGMA synchronous")
        assert cursor.fetchone()[0] == 1  # NORMAL

        cursor.execute("PRAGMA busy_timeout")
        assert cursor.fetchone()[0] == 5000

        cursor.execute("PRAGMA foreign_keys")
        assert cursor.fetchone()[0] == 1

    def test_schema_creation(self, db):
        cursor = db._connection.cursor()
        cursor.execute("""
            SELECT name FROM sqlite_master
            WHERE type='table' AND name NOT LIKE 'sqlite_%'
            ORDER BY name
        """)
        tables = [row[0] for row in cursor.fetchall()]
        assert tables == ["activity_log", "comments", "projects", "tasks", "templates", "users"]

        cursor.execute("SELECT name FROM sqlite_master WHERE type='index' AND name LIKE 'idx_%'")
        indexes = {row[0] for row in cursor.fetchall()}
        assert "idx_tasks_column_order" in indexes
        assert "idx_activity_entity_time" in indexes

    def test_reopen_existing_database(self, db_path):
        first = TrackerDatabase(db_path)
        project = insert_project(first)
        first.close()

        second = TrackerDatabase(db_path)
        try:
            assert second.get_record("project", project["id"])["name"] == "Project"
        finally:
            second.close()


class TestRecordOperations:
    """Generic insert/get and JSON column handling."""

    def test_insert_versioned_record_starts_at_initial_version(self, db):
        project = insert_project(db)

        assert project["version"] == INITIAL_VERSION == 1
        assert project["deleted_at"] is None
        assert project["created_at"] == project["updated_at"]
        assert len(project["id"]) == 32

    def test_json_columns_are_decoded(self, db):
        project = insert_project(db)
        assert project["statuses"] == ["Todo", "Done"]
        assert project["tags"] == []

    def test_unversioned_record_has_no_version(self, db):
        user = db.insert_record("user", {"username": "ann", "name": "Ann"})
        assert "version" not in user
        assert user["role"] == "MEMBER"
        assert user["disabled"] is False

    def test_set_user_disabled(self, db):
        ann = db.insert_record("user", {"username": "ann", "name": "Ann"})
        db.insert_record("user", {"username": "ben", "name": "Ben"})

        assert db.set_user_disabled(ann["id"], True) is True
        assert db.get_record("user", ann["id"])["disabled"] is True
        assert [u["username"] for u in db.list_users(assignable_only=True)] == ["ben"]
        assert len(db.list_users()) == 2

        db.set_user_disabled(ann["id"], False)
        assert len(db.list_users(assignable_only=True)) == 2
        assert db.set_user_disabled("missing", True) is False

    def test_unknown_entity_type(self, db):
        with pytest.raises(ValidationError, match="Unknown entity type"):
            db.get_record("epic", "x")

    def test_unknown_field_rejected(self, db):
        with pytest.raises(ValidationError, match="Unknown field"):
            db.insert_record("user", {"username": "ann", "name": "Ann", "password": "x"})

    def test_get_missing_record(self, db):
        assert db.get_record("task", "missing") is None

    def test_foreign_key_enforced(self, db):
        with pytest.raises(sqlite3.IntegrityError):
            insert_task(db, "no-such-project")


class TestConditionalWrites:
    """Compare-and-set and unconditional version bumps."""

    def test_compare_and_set_matching_version(self, db):
        project = insert_project(db)

        assert db.compare_and_set("project", project["id"], 1, {"name": "Renamed"}) is True

        updated = db.get_record("project", project["id"])
        assert updated["name"] == "Renamed"
        assert updated["version"] == 2
        assert updated["updated_at"] >= project["updated_at"]

    def test_compare_and_set_stale_version(self, db):
        project = insert_project(db)
        db.compare_and_set("project", project["id"], 1, {"name": "First"})

        assert db.compare_and_set("project", project["id"], 1, {"name": "Second"}) is False

        current = db.get_record("project", project["id"])
        assert current["name"] == "First"
        assert current["version"] == 2

    def test_compare_and_set_missing_record(self, db):
        assert db.compare_and_set("task", "missing", 1, {"title": "x"}) is False

    def test_bump_record_ignores_version(self, db):
        project = insert_project(db)
        task = insert_task(db, project["id"])
        db.bump_record("task", task["id"], {"order_index": 5000})
        db.bump_record("task", task["id"], {"order_index": 6000})

        current = db.get_record("task", task["id"])
        assert current["order_index"] == 6000
        assert current["version"] == 3

    def test_bump_record_skips_deleted_rows(self, db):
        project = insert_project(db)
        task = insert_task(db, project["id"])
        db.compare_and_set("task", task["id"], 1, {"deleted_at": db._get_current_time_str()})

        assert db.bump_record("task", task["id"], {"order_index": 9000}) is False
        current = db.get_record("task", task["id"])
        assert (current["order_index"], current["version"]) == (1000, 2)

    @pytest.mark.parametrize("field", ["id", "version", "created_at", "updated_at"])
    def test_protected_fields(self, db, field):
        project = insert_project(db)
        with pytest.raises(ValidationError, match="cannot be written"):
            db.compare_and_set("project", project["id"], 1, {field: "x"})

    def test_unversioned_tables_rejected(self, db):
        user = db.insert_record("user", {"username": "ann", "name": "Ann"})
        with pytest.raises(ValidationError, match="not versioned"):
            db.bump_record("user", user["id"], {"name": "Anne"})

    def test_concurrent_compare_and_set_single_winner(self, db):
        """Only one of many writers holding the same version succeeds."""
        project = insert_project(db)
        barrier = threading.Barrier(8)

        def write(i):
            barrier.wait()
            return db.compare_and_set("project", project["id"], 1, {"name": f"Writer {i}"})

        with ThreadPoolExecutor(max_workers=8) as executor:
            results = list(executor.map(write, range(8)))

        assert results.count(True) == 1
        assert db.get_record("project", project["id"])["version"] == 2


class TestTransactions:
    """Explicit, re-entrant transactions."""

    def test_commit(self, db):
        with db.transaction():
            project = insert_project(db)
        assert db.get_record("project", project["id"]) is not None
        assert db.in_transaction is False

    def test_rollback_on_exception(self, db):
        with pytest.raises(RuntimeError):
            with db.transaction():
                insert_project(db, "Doomed")
                raise RuntimeError("boom")

        assert db.count_records("project") == 0
        assert db.in_transaction is False

    def test_nested_transaction_joins_outer(self, db):
        with pytest.raises(RuntimeError):
            with db.transaction():
                insert_project(db, "Outer")
                with db.transaction():
                    assert db.in_transaction is True
                    insert_project(db, "Inner")
                raise RuntimeError("boom")

        assert db.count_records("project") == 0


class TestListingQueries:
    """Filtering, ordering and soft-delete visibility in list queries."""

    def test_list_tasks_order_and_soft_delete(self, db):
        project = insert_project(db)
        low = insert_task(db, project["id"], "low", order_index=1000)
        high = insert_task(db, project["id"], "high", order_index=3000)
        mid = insert_task(db, project["id"], "mid", order_index=2000)
        db.bump_record("task", mid["id"], {"deleted_at": db._get_current_time_str()})

        assert [t["id"] for t in db.list_tasks(project_id=project["id"])] == [low["id"], high["id"]]
        assert len(db.list_tasks(project_id=project["id"], include_deleted=True)) == 3

    def test_list_tasks_filters(self, db):
        project = insert_project(db)
        task = insert_task(db, project["id"], "due", status="Done")
        db.bump_record("task", task["id"], {"due_date": "2030-01-10", "assignee_id": "u1"})
        insert_task(db, project["id"], "other")

        assert [t["title"] for t in db.list_tasks(status="Done")] == ["due"]
        assert [t["title"] for t in db.list_tasks(assignee_id="u1")] == ["due"]
        assert [t["title"] for t in db.list_tasks(due_before="2030-01-10")] == ["due"]
        assert db.list_tasks(due_before="2030-01-09") == []

    def test_list_projects_task_count(self, db):
        project = insert_project(db)
        insert_task(db, project["id"])
        insert_task(db, project["id"])

        listed = db.list_projects()
        assert listed[0]["task_count"] == 2
        assert listed[0]["statuses"] == ["Todo", "Done"]

    def test_max_order_index(self, db):
        project = insert_project(db)
        assert db.max_order_index(project["id"], "Todo") is None
        insert_task(db, project["id"], order_index=7000)
        assert db.max_order_index(project["id"], "Todo") == 7000

    def test_upsert_template(self, db):
        template_id, created = db.upsert_template("Team", {"seed_config": {"statuses": ["A"]}})
        assert created is True

        same_id, created = db.upsert_template("Team", {"description": "Updated",
                                                        "seed_config": {"statuses": ["B"]}})
        assert created is False
        assert same_id == template_id
        template = db.get_record("template", template_id)
        assert template["description"] == "Updated"
        assert template["seed_config"] == {"statuses": ["B"]}


class TestActivityLogTable:
    """Append-only activity log storage."""

    def test_append_and_query(self, db):
        first = db.append_activity("u1", "task", "t1", "created", after={"title": "A"})
        second = db.append_activity("u1", "task", "t1", "updated", {"title": "A"}, {"title": "B"})

        entries = db.query_activity(entity_id="t1")
        assert [e["id"] for e in entries] == [second, first]
        assert entries[0]["before"] == {"title": "A"}
        assert entries[0]["after"] == {"title": "B"}

    def test_empty_snapshots_stored_as_null(self, db):
        db.append_activity("u1", "task", "t1", "deleted", before={}, after=None)

        entry = db.query_activity(entity_id="t1")[0]
        assert entry["before"] is None
        assert entry["after"] is None

    def test_unserializable_snapshot_raises_audit_failure(self, db):
        with pytest.raises(AuditWriteFailure):
            db.append_activity("u1", "task", "t1", "updated", after={"bad": object()})

    def test_invalid_action_raises_audit_failure(self, db):
        with pytest.raises(AuditWriteFailure):
            db.append_activity("u1", "task", "t1", "archived")

    def test_query_limit_and_type_filter(self, db):
        for i in range(5):
            db.append_activity("u1", "task", f"t{i}", "created")
        db.append_activity("u1", "project", "p1", "created")

        assert len(db.query_activity(limit=3)) == 3
        assert [e["entity_id"] for e in db.query_activity(entity_type="project")] == ["p1"]
