"""
Runtime configuration loaded from environment variables.

CLI options override these values for the launched server.
"""

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Mapping, Optional

DEFAULT_DATABASE_PATH = "task_tracker.db"
DEFAULT_ACTIVITY_MAX_LIMIT = 100


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class TrackerSettings:
    """Settings for the tracker database, pipeline and API."""

    database_path: str = DEFAULT_DATABASE_PATH
    # Task status membership in the owning project's statuses is not checked
    # unless this is switched on.
    enforce_status_membership: bool = False
    activity_max_limit: int = DEFAULT_ACTIVITY_MAX_LIMIT
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "TrackerSettings":
        env = os.environ if environ is None else environ
        try:
            max_limit = int(env.get("TRACKER_ACTIVITY_MAX_LIMIT", DEFAULT_ACTIVITY_MAX_LIMIT))
        except ValueError:
            raise ValueError(
                f"TRACKER_ACTIVITY_MAX_LIMIT must be an integer, got {env.get('TRACKER_ACTIVITY_MAX_LIMIT')!r}"
            )
        if max_limit < 1:
            raise ValueError("TRACKER_ACTIVITY_MAX_LIMIT must be at least 1")

        return cls(
            database_path=env.get("DATABASE_PATH", DEFAULT_DATABASE_PATH),
            enforce_status_membership=_parse_bool(env.get("TRACKER_ENFORCE_STATUS_MEMBERSHIP")),
            activity_max_limit=max_limit,
            log_level=env.get("TRACKER_LOG_LEVEL", "INFO").upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> TrackerSettings:
    """Return process-wide settings, read once from the environment."""
    return TrackerSettings.from_env()
