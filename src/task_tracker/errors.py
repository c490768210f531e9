"""
Error taxonomy for the task tracker core.

Version conflicts are deliberately absent: a stale write is an expected
outcome and is returned as a ``VersionConflict`` result (see versioning.py),
never raised.
"""

from typing import Optional


class TrackerError(Exception):
    """Base class for task tracker errors."""


class NotFoundError(TrackerError):
    """Entity does not exist or is not visible to the caller."""

    def __init__(self, entity_type: str, entity_id: str, reason: Optional[str] = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        message = reason or f"{entity_type.capitalize()} {entity_id} not found"
        super().__init__(message)


class ValidationError(TrackerError):
    """Malformed request, rejected before any guard check or write."""


class AuthorizationError(TrackerError):
    """Actor lacks the privilege for a restricted action."""

    def __init__(self, actor_id: str, action: str):
        self.actor_id = actor_id
        self.action = action
        super().__init__(f"Actor {actor_id} is not allowed to {action}")


class AuditWriteFailure(TrackerError):
    """Activity log append failed. Always absorbed by the ActivityRecorder."""
