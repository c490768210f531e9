"""
Tests for the ActivityRecorder: best-effort writes, query ordering and limits.
"""

import logging
from unittest.mock import patch

import pytest

from task_tracker.activity import (
    ActivityAction, ActivityRecorder, DEFAULT_ACTIVITY_LIMIT, EntityType, diff_snapshots,
)
from task_tracker.errors import AuditWriteFailure, ValidationError


@pytest.fixture
def recorder(db):
    return ActivityRecorder(db)


class TestRecord:

    def test_record_returns_entry_id(self, recorder, db):
        entry_id = recorder.record("u1", EntityType.TASK, "t1", ActivityAction.CREATED, after={"title": "A"})

        assert isinstance(entry_id, int)
        entry = db.query_activity(entity_id="t1")[0]
        assert entry["id"] == entry_id
        assert entry["actor_id"] == "u1"
        assert entry["entity_type"] == "task"
        assert entry["action"] == "created"
        assert entry["after"] == {"title": "A"}
        assert entry["before"] is None

    def test_store_failure_is_swallowed_and_logged(self, recorder, db, caplog):
        with patch.object(db, "append_activity", side_effect=AuditWriteFailure("disk full")):
            with caplog.at_level(logging.ERROR, logger="task_tracker.activity"):
                assert recorder.record("u1", "task", "t1", "updated") is None

        assert "disk full" in caplog.text

    def test_unknown_action_is_swallowed(self, recorder, db):
        assert recorder.record("u1", "task", "t1", "archived") is None
        assert db.query_activity() == []


class TestQuery:

    def test_newest_first(self, recorder):
        ids = [recorder.record("u1", "task", "t1", "updated", after={"n": i}) for i in range(3)]

        entries = recorder.query(entity_id="t1")
        assert [e["id"] for e in entries] == list(reversed(ids))

    def test_default_limit(self, recorder, db):
        for i in range(DEFAULT_ACTIVITY_LIMIT + 5):
            db.append_activity("u1", "task", f"t{i}", "created")

        assert len(recorder.query()) == DEFAULT_ACTIVITY_LIMIT

    def test_limit_is_capped(self, recorder, db):
        for i in range(120):
            db.append_activity("u1", "task", f"t{i}", "created")

        assert len(recorder.query(limit=500)) == 100
        assert len(recorder.query(limit=10)) == 10

    @pytest.mark.parametrize("limit", [0, -5])
    def test_non_positive_limit_rejected(self, recorder, db, limit):
        db.append_activity("u1", "task", "t1", "created")
        with pytest.raises(ValidationError, match="limit must be a positive integer"):
            recorder.query(limit=limit)

    def test_configured_cap(self, db):
        recorder = ActivityRecorder(db, max_limit=5)
        for i in range(8):
            db.append_activity("u1", "task", f"t{i}", "created")

        assert len(recorder.query(limit=50)) == 5

    def test_filter_by_entity_type(self, recorder):
        recorder.record("u1", "task", "t1", "created")
        recorder.record("u1", "project", "p1", "created")

        assert [e["entity_id"] for e in recorder.query(entity_type="project")] == ["p1"]

    def test_unknown_entity_type(self, recorder):
        with pytest.raises(ValidationError, match="Unknown entity type"):
            recorder.query(entity_type="epic")


class TestDiffSnapshots:

    def test_only_changed_fields(self):
        before = {"title": "A", "status": "Todo", "priority": "LOW"}
        after = {"title": "B", "status": "Todo", "priority": "LOW"}

        assert diff_snapshots(before, after, ["title", "status"]) == ({"title": "A"}, {"title": "B"})

    def test_cleared_field(self):
        old, new = diff_snapshots({"due_date": "2030-01-01"}, {"due_date": None}, ["due_date"])
        assert old == {"due_date": "2030-01-01"}
        assert new == {"due_date": None}

    def test_no_changes(self):
        assert diff_snapshots({"a": 1}, {"a": 1}, ["a"]) == ({}, {})
