"""
Activity Recorder

Append-only audit trail for project, task, comment and user mutations.
Recording is best-effort: a failed append is logged and dropped, it never
fails or rolls back the mutation that triggered it.
"""

import logging
from enum import Enum
from typing import Optional, Dict, Any, List, Iterable, Tuple

from .database import TrackerDatabase
from .errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_ACTIVITY_LIMIT = 50
MAX_ACTIVITY_LIMIT = 100


class EntityType(str, Enum):
    PROJECT = "project"
    TASK = "task"
    COMMENT = "comment"
    USER = "user"


class ActivityAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    RESTORED = "restored"


def diff_snapshots(
    before: Dict[str, Any],
    after: Dict[str, Any],
    fields: Iterable[str]
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """
    Build before/after snapshots restricted to fields whose value changed.

    Args:
        before: Record state before the mutation
        after: Record state after the mutation
        fields: Candidate fields (usually the keys of the applied patch)

    Returns:
        Tuple of (before_snapshot, after_snapshot)
    """
    old_values = {}
    new_values = {}
    for name in fields:
        if before.get(name) != after.get(name):
            old_values[name] = before.get(name)
            new_values[name] = after.get(name)
    return old_values, new_values


class ActivityRecorder:
    """Writes and queries activity log entries."""

    def __init__(self, db: TrackerDatabase, max_limit: int = MAX_ACTIVITY_LIMIT):
        self.db = db
        self.max_limit = max_limit

    def record(
        self,
        actor_id: str,
        entity_type: str,
        entity_id: str,
        action: str,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None
    ) -> Optional[int]:
        """
        Append an activity entry with the current timestamp.

        Returns:
            The new entry id, or None if the append failed
        """
        try:
            entity_type = EntityType(entity_type).value
            action = ActivityAction(action).value
            return self.db.append_activity(actor_id, entity_type, entity_id, action, before, after)
        except Exception as e:
            # Audit completeness is not worth failing the user's write over
            logger.error(f"Activity log write dropped ({entity_type} {entity_id} {action}): {e}")
            return None

    def query(
        self,
        entity_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        Return entries newest first.

        The limit defaults to DEFAULT_ACTIVITY_LIMIT and is capped at max_limit
        whatever the caller asks for.

        Raises:
            ValidationError: For an unknown entity type or a limit below 1
        """
        if entity_type is not None:
            try:
                entity_type = EntityType(entity_type).value
            except ValueError:
                raise ValidationError(f"Unknown entity type: {entity_type}")

        if limit is None:
            limit = DEFAULT_ACTIVITY_LIMIT
        if limit < 1:
            raise ValidationError(f"limit must be a positive integer, got {limit}")
        limit = min(limit, self.max_limit)

        return self.db.query_activity(entity_id=entity_id, entity_type=entity_type, limit=limit)
