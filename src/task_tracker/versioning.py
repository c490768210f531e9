"""
Version guard for optimistic concurrency control on projects and tasks.

Every mutable record carries an integer version that the store increments by
exactly 1 on each successful write. A client sends back the version it last
observed; a mismatch means someone else wrote in between and the write is
rejected with the current server state so the client can reload or merge.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any

from .errors import ValidationError

logger = logging.getLogger(__name__)

CONFLICT_KIND = "VersionConflict"


class GuardOutcome(str, Enum):
    """Result of comparing an expected version with the persisted one."""
    BYPASSED = "bypassed"   # no expected version supplied: last write wins
    PASSED = "passed"
    CONFLICT = "conflict"


@dataclass
class VersionConflict:
    """A rejected stale write, returned to the caller as data."""
    entity_type: str
    entity_id: str
    expected_version: int
    current_version: int
    current_data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_record(cls, entity_type: str, record: Dict[str, Any], expected_version: int) -> "VersionConflict":
        return cls(
            entity_type=entity_type,
            entity_id=record["id"],
            expected_version=expected_version,
            current_version=record["version"],
            current_data=dict(record),
        )

    @property
    def message(self) -> str:
        return (
            f"This {self.entity_type} was updated by someone else. "
            f"Please reload before saving."
        )

    def to_payload(self) -> Dict[str, Any]:
        """Wire form of the conflict (HTTP 409 body)."""
        return {
            "kind": CONFLICT_KIND,
            "error": "CONFLICT",
            "message": self.message,
            "currentVersion": self.current_version,
            "currentData": self.current_data,
        }


@dataclass
class GuardResult:
    outcome: GuardOutcome
    conflict: Optional[VersionConflict] = None

    @property
    def ok(self) -> bool:
        return self.outcome is not GuardOutcome.CONFLICT


def validate_expected_version(expected_version: Any) -> Optional[int]:
    """
    Validate a client-supplied expected version.

    Raises:
        ValidationError: If the value is present but not a non-negative integer
    """
    if expected_version is None:
        return None
    # bool is an int subclass; True must not pass as version 1
    if isinstance(expected_version, bool) or not isinstance(expected_version, int):
        raise ValidationError(f"expectedVersion must be an integer, got {expected_version!r}")
    if expected_version < 0:
        raise ValidationError(f"expectedVersion must be non-negative, got {expected_version}")
    return expected_version


def check_version(
    entity_type: str,
    current: Dict[str, Any],
    expected_version: Optional[int]
) -> GuardResult:
    """
    Compare the client's expected version with the persisted record.

    Pure read-then-compare; never writes. Callers run it inside the same
    transaction as the write that follows.

    Args:
        entity_type: "project" or "task"
        current: Persisted record as read in the current transaction
        expected_version: Version the client last observed, or None to skip

    Returns:
        GuardResult with BYPASSED, PASSED or CONFLICT (with the conflict payload)
    """
    expected_version = validate_expected_version(expected_version)

    if expected_version is None:
        logger.debug(f"Version guard bypassed for {entity_type} {current['id']} (last write wins)")
        return GuardResult(GuardOutcome.BYPASSED)

    if expected_version == current["version"]:
        return GuardResult(GuardOutcome.PASSED)

    conflict = VersionConflict.from_record(entity_type, current, expected_version)
    logger.warning(
        f"Version conflict on {entity_type} {current['id']}: "
        f"expected {expected_version}, current {current['version']}"
    )
    return GuardResult(GuardOutcome.CONFLICT, conflict)
