"""
Mutation Pipeline

Orchestrates guard-check -> field-merge -> persist -> log for projects and
tasks, plus creation of comments and users and column reorders. Conflicts and
missing records come back as MutationResult values; validation and
authorization failures are raised before any write.
"""

import logging
import random
import sqlite3
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Dict, Any, List, Callable, Sequence, Tuple

from .activity import ActivityRecorder, ActivityAction, EntityType, diff_snapshots
from .config import TrackerSettings
from .database import TrackerDatabase
from .errors import AuthorizationError, NotFoundError, ValidationError
from .ordering import OrderingEngine, ReorderResult
from .versioning import VersionConflict, check_version, validate_expected_version

logger = logging.getLogger(__name__)

DEFAULT_STATUSES = ["Backlog", "Ready", "In Progress", "Review", "Done"]
DEFAULT_PRIORITIES = ["Urgent", "High", "Medium", "Low"]
PROJECT_STATES = ("active", "archived", "completed")
TASK_PRIORITIES = ("URGENT", "HIGH", "MEDIUM", "LOW", "NONE")

MUTABLE_ENTITY_TYPES = (EntityType.PROJECT.value, EntityType.TASK.value)

# Guard-bypassing writes re-read and retry when a concurrent writer got in first
MAX_WRITE_ATTEMPTS = 3

COMMENT_SNAPSHOT_LENGTH = 100
SEED_DUE_DAYS = (3, 23)


class Role(str, Enum):
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"
    GUEST = "GUEST"


# Actions that need an elevated actor under the default authorization check
ELEVATED_ACTIONS = frozenset({"restore", "create_user", "disable_user", "include_deleted"})


@dataclass(frozen=True)
class Actor:
    """Caller identity, resolved upstream by the session layer."""
    actor_id: str
    role: Role = Role.MEMBER

    @property
    def is_elevated(self) -> bool:
        return self.role is Role.ADMIN


def default_authorization(actor: Actor, action: str) -> bool:
    if action in ELEVATED_ACTIONS:
        return actor.is_elevated
    return True


class MutationStatus(str, Enum):
    APPLIED = "applied"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"


@dataclass
class MutationResult:
    status: MutationStatus
    entity: Optional[Dict[str, Any]] = None
    conflict: Optional[VersionConflict] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status is MutationStatus.APPLIED

    @classmethod
    def applied(cls, entity: Dict[str, Any]) -> "MutationResult":
        return cls(MutationStatus.APPLIED, entity=entity)

    @classmethod
    def conflicted(cls, conflict: VersionConflict) -> "MutationResult":
        return cls(MutationStatus.CONFLICT, conflict=conflict, error=conflict.message)

    @classmethod
    def not_found(cls, error: NotFoundError) -> "MutationResult":
        return cls(MutationStatus.NOT_FOUND, error=str(error))


# Field normalizers

def _require_text(label: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label} is required")
    return value.strip()


def _optional_text(label: str, value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{label} must be a string")
    return value.strip() or None


def _string_list(label: str, value: Any) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) and v.strip() for v in value):
        raise ValidationError(f"{label} must be a list of non-empty strings")
    return [v.strip() for v in value]


def validate_statuses(value: Any) -> List[str]:
    """A project's kanban columns: at least one, all distinct."""
    statuses = _string_list("statuses", value)
    if not statuses:
        raise ValidationError("A project needs at least one status")
    if len(set(statuses)) != len(statuses):
        raise ValidationError("Project statuses must be distinct")
    return statuses


def _project_state(value: Any) -> str:
    if value not in PROJECT_STATES:
        raise ValidationError(f"status must be one of {', '.join(PROJECT_STATES)}")
    return value


def _priority(value: Any) -> str:
    if value is None:
        return "NONE"
    if not isinstance(value, str) or value.upper() not in TASK_PRIORITIES:
        raise ValidationError(f"priority must be one of {', '.join(TASK_PRIORITIES)}")
    return value.upper()


def normalize_due_date(value: Any) -> Optional[str]:
    """Due dates are stored as ISO dates (YYYY-MM-DD); empty clears."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10]).isoformat()
        except ValueError:
            pass
    raise ValidationError(f"dueDate must be an ISO date, got {value!r}")


def _order_index(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("orderIndex must be an integer")
    return value


PROJECT_NORMALIZERS: Dict[str, Callable[[Any], Any]] = {
    "name": lambda v: _require_text("name", v),
    "client_name": lambda v: _optional_text("clientName", v),
    "status": _project_state,
    "statuses": validate_statuses,
    "priorities": lambda v: _string_list("priorities", v),
    "tags": lambda v: _string_list("tags", v),
}

TASK_NORMALIZERS: Dict[str, Callable[[Any], Any]] = {
    "title": lambda v: _require_text("title", v),
    "description": lambda v: _optional_text("description", v),
    "status": lambda v: _require_text("status", v),
    "priority": _priority,
    "assignee_id": lambda v: _optional_text("assigneeId", v),
    "due_date": normalize_due_date,
    "tags": lambda v: _string_list("tags", v),
    "order_index": _order_index,
}


def normalize_patch(entity_type: str, patch: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate and normalize a partial update.

    Only keys present in the patch are returned; an explicit None is kept
    (it clears nullable fields) and is distinct from an absent key.

    Raises:
        ValidationError: Unknown fields, empty patch or invalid values
    """
    if not isinstance(patch, dict):
        raise ValidationError("Patch must be an object of field values")
    if not patch:
        raise ValidationError("Patch has no fields to update")

    normalizers = PROJECT_NORMALIZERS if entity_type == EntityType.PROJECT.value else TASK_NORMALIZERS
    unknown = set(patch) - set(normalizers)
    if unknown:
        raise ValidationError(f"Unknown or read-only field(s): {', '.join(sorted(unknown))}")
    return {name: normalizers[name](value) for name, value in patch.items()}


class MutationPipeline:
    """
    Single entry point for every state change on tracker records.

    Args:
        db: Record store
        recorder: Activity recorder (defaults to one on the same store)
        ordering: Ordering engine (defaults to one on the same store)
        settings: Tracker settings
        authorize: Authorization check (actor, action) -> allowed
    """

    def __init__(
        self,
        db: TrackerDatabase,
        recorder: Optional[ActivityRecorder] = None,
        ordering: Optional[OrderingEngine] = None,
        settings: Optional[TrackerSettings] = None,
        authorize: Optional[Callable[[Actor, str], bool]] = None
    ):
        self.db = db
        self.settings = settings or TrackerSettings()
        self.recorder = recorder or ActivityRecorder(db, max_limit=self.settings.activity_max_limit)
        self.ordering = ordering or OrderingEngine(
            db, enforce_status_membership=self.settings.enforce_status_membership
        )
        self._authorize = authorize or default_authorization

    # Helpers

    def _require(self, actor: Actor, action: str) -> None:
        if not self._authorize(actor, action):
            logger.warning(f"Actor {actor.actor_id} ({actor.role.value}) denied: {action}")
            raise AuthorizationError(actor.actor_id, action)

    def _mutable_type(self, entity_type: Any) -> str:
        try:
            value = EntityType(entity_type).value
        except ValueError:
            raise ValidationError(f"Unknown entity type: {entity_type}")
        if value not in MUTABLE_ENTITY_TYPES:
            raise ValidationError(f"{value} records are not versioned")
        return value

    def _load_live(self, entity_type: str, entity_id: str) -> Dict[str, Any]:
        record = self.db.get_record(entity_type, entity_id)
        if record is None or record.get("deleted_at") is not None:
            raise NotFoundError(entity_type, entity_id)
        return record

    def _check_task_status(self, project: Dict[str, Any], status: str) -> None:
        """Status membership is only enforced when configured to be."""
        if self.settings.enforce_status_membership and status not in project["statuses"]:
            raise ValidationError(
                f"Status '{status}' is not one of the project's statuses: {', '.join(project['statuses'])}"
            )

    def _guarded_write(
        self,
        entity_type: str,
        entity_id: str,
        expected_version: Optional[int],
        build_changes: Callable[[Dict[str, Any]], Dict[str, Any]],
        require_deleted: bool = False
    ) -> Tuple[Dict[str, Any], Optional[Dict[str, Any]], Optional[VersionConflict]]:
        """
        Read, guard and conditionally write one record in a single transaction.

        Returns:
            Tuple of (record_before, record_after, conflict); exactly one of
            record_after and conflict is set

        Raises:
            NotFoundError: Missing record, or wrong deletion state
        """
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            with self.db.transaction():
                current = self.db.get_record(entity_type, entity_id)
                if current is None:
                    raise NotFoundError(entity_type, entity_id)
                if require_deleted and current["deleted_at"] is None:
                    raise NotFoundError(
                        entity_type, entity_id, f"{entity_type.capitalize()} {entity_id} is not deleted"
                    )
                if not require_deleted and current["deleted_at"] is not None:
                    raise NotFoundError(entity_type, entity_id)

                changes = build_changes(current)

                guard = check_version(entity_type, current, expected_version)
                if not guard.ok:
                    return current, None, guard.conflict

                if self.db.compare_and_set(entity_type, entity_id, current["version"], changes):
                    return current, self.db.get_record(entity_type, entity_id), None

                latest = self.db.get_record(entity_type, entity_id)
                if latest is None:
                    raise NotFoundError(entity_type, entity_id)

            if expected_version is not None:
                return current, None, VersionConflict.from_record(entity_type, latest, expected_version)
            logger.info(f"Concurrent write on {entity_type} {entity_id}, retrying (attempt {attempt})")

        raise RuntimeError(
            f"Could not write {entity_type} {entity_id} after {MAX_WRITE_ATTEMPTS} attempts"
        )

    # Mutations on versioned records

    def update(
        self,
        entity_type: str,
        entity_id: str,
        patch: Dict[str, Any],
        actor: Actor,
        expected_version: Optional[int] = None
    ) -> MutationResult:
        """
        Apply a partial update under the version guard.

        Args:
            entity_type: "project" or "task"
            entity_id: Record id
            patch: Fields to change; absent fields are left untouched
            actor: Caller identity
            expected_version: Version the caller last observed. None skips the
                guard (last write wins).

        Returns:
            MutationResult: APPLIED with the updated record, CONFLICT with the
            current server state, or NOT_FOUND
        """
        entity_type = self._mutable_type(entity_type)
        expected_version = validate_expected_version(expected_version)
        changes = normalize_patch(entity_type, patch)

        def build_changes(current: Dict[str, Any]) -> Dict[str, Any]:
            if entity_type == EntityType.TASK.value and "status" in changes:
                project = self.db.get_record("project", current["project_id"])
                if project is not None:
                    self._check_task_status(project, changes["status"])
            return changes

        try:
            current, updated, conflict = self._guarded_write(
                entity_type, entity_id, expected_version, build_changes
            )
        except NotFoundError as e:
            return MutationResult.not_found(e)

        if conflict is not None:
            return MutationResult.conflicted(conflict)

        before, after = diff_snapshots(current, updated, changes)
        self.recorder.record(actor.actor_id, entity_type, entity_id, ActivityAction.UPDATED, before, after)
        logger.info(
            f"{entity_type.capitalize()} {entity_id} updated by {actor.actor_id} "
            f"(v{current['version']} -> v{updated['version']}, fields: {', '.join(sorted(changes))})"
        )
        return MutationResult.applied(updated)

    def update_project(self, project_id: str, patch: Dict[str, Any], actor: Actor,
                       expected_version: Optional[int] = None) -> MutationResult:
        return self.update(EntityType.PROJECT.value, project_id, patch, actor, expected_version)

    def update_task(self, task_id: str, patch: Dict[str, Any], actor: Actor,
                    expected_version: Optional[int] = None) -> MutationResult:
        return self.update(EntityType.TASK.value, task_id, patch, actor, expected_version)

    def soft_delete(
        self,
        entity_type: str,
        entity_id: str,
        actor: Actor,
        expected_version: Optional[int] = None
    ) -> MutationResult:
        """Mark a record deleted. Counts as a mutation: the version is bumped."""
        entity_type = self._mutable_type(entity_type)
        expected_version = validate_expected_version(expected_version)
        deleted_at = self.db._get_current_time_str()

        try:
            current, updated, conflict = self._guarded_write(
                entity_type, entity_id, expected_version, lambda current: {"deleted_at": deleted_at}
            )
        except NotFoundError as e:
            return MutationResult.not_found(e)

        if conflict is not None:
            return MutationResult.conflicted(conflict)

        before, after = diff_snapshots(current, updated, ["deleted_at"])
        self.recorder.record(actor.actor_id, entity_type, entity_id, ActivityAction.DELETED, before, after)
        logger.info(f"{entity_type.capitalize()} {entity_id} soft-deleted by {actor.actor_id}")
        return MutationResult.applied(updated)

    def restore(self, entity_type: str, entity_id: str, actor: Actor) -> MutationResult:
        """
        Clear deleted_at on a soft-deleted record.

        Raises:
            AuthorizationError: Actor is not elevated (checked before any read)
        """
        entity_type = self._mutable_type(entity_type)
        self._require(actor, "restore")

        try:
            current, updated, conflict = self._guarded_write(
                entity_type, entity_id, None, lambda current: {"deleted_at": None}, require_deleted=True
            )
        except NotFoundError as e:
            return MutationResult.not_found(e)

        before, after = diff_snapshots(current, updated, ["deleted_at"])
        self.recorder.record(actor.actor_id, entity_type, entity_id, ActivityAction.RESTORED, before, after)
        logger.info(f"{entity_type.capitalize()} {entity_id} restored by {actor.actor_id}")
        return MutationResult.applied(updated)

    # Creation

    def create_project(
        self,
        actor: Actor,
        name: Any,
        client_name: Any = None,
        template_id: Optional[str] = None,
        statuses: Optional[Sequence[str]] = None,
        priorities: Optional[Sequence[str]] = None,
        tags: Optional[Sequence[str]] = None
    ) -> MutationResult:
        """
        Create a project, optionally from a template.

        Explicit statuses/priorities/tags win over the template's, which win
        over the defaults. A template's sample tasks are created in the same
        transaction as the project. Sample tasks whose status is not one of
        the project's columns land in the first column.

        Raises:
            ValidationError: Missing name, bad statuses or unknown template
        """
        name = _require_text("Project name", name)
        client_name = _optional_text("clientName", client_name)

        seed_config: Dict[str, Any] = {}
        if template_id:
            template = self.db.get_record("template", template_id)
            if template is None:
                raise ValidationError(f"Template {template_id} not found")
            seed_config = template["seed_config"] or {}

        statuses = validate_statuses(
            statuses if statuses is not None else seed_config.get("statuses") or DEFAULT_STATUSES
        )
        priorities = _string_list(
            "priorities",
            priorities if priorities is not None else seed_config.get("priorities") or DEFAULT_PRIORITIES
        )
        tags = _string_list("tags", tags if tags is not None else seed_config.get("tags"))

        with self.db.transaction():
            project = self.db.insert_record("project", {
                "name": name,
                "client_name": client_name,
                "template_id": template_id or None,
                "statuses": statuses,
                "priorities": priorities,
                "tags": tags,
            })
            seeded = self._seed_tasks(project, seed_config.get("sample_tasks") or [])

        self.recorder.record(
            actor.actor_id, EntityType.PROJECT.value, project["id"], ActivityAction.CREATED,
            after={"name": project["name"], "client_name": project["client_name"]}
        )
        logger.info(
            f"Project {project['id']} '{name}' created by {actor.actor_id}"
            + (f" from template {template_id} with {seeded} seed tasks" if template_id else "")
        )
        return MutationResult.applied(project)

    def _seed_tasks(self, project: Dict[str, Any], sample_tasks: List[Dict[str, Any]]) -> int:
        """Create a template's sample tasks, assigned round-robin to active members."""
        if not sample_tasks:
            return 0

        users = self.db.list_users(assignable_only=True)
        today = datetime.now(timezone.utc).date()

        for i, sample in enumerate(sample_tasks):
            if not isinstance(sample, dict):
                raise ValidationError(f"Template sample task #{i + 1} must be a mapping")
            status = _optional_text("status", sample.get("status"))
            if status not in project["statuses"]:
                # Explicit statuses can drop the template column a sample task lives in
                status = project["statuses"][0]
            assignee = users[i % len(users)]["id"] if users else None

            self.db.insert_record("task", {
                "project_id": project["id"],
                "title": _require_text(f"Template sample task #{i + 1} title", sample.get("title")),
                "status": status,
                "priority": _priority(sample.get("priority")),
                "tags": _string_list("tags", sample.get("tags")),
                "assignee_id": assignee,
                "due_date": (today + timedelta(days=random.randint(*SEED_DUE_DAYS))).isoformat(),
                "order_index": self.ordering.next_index(project["id"], status),
            })
        return len(sample_tasks)

    def create_task(
        self,
        actor: Actor,
        project_id: Optional[str],
        title: Any,
        description: Any = None,
        status: Any = None,
        priority: Any = None,
        assignee_id: Any = None,
        due_date: Any = None,
        tags: Any = None
    ) -> MutationResult:
        """
        Create a task at the bottom of its column.

        The status defaults to the project's first column.

        Returns:
            MutationResult: APPLIED with the task, or NOT_FOUND for a missing
            or deleted project
        """
        if not project_id or not isinstance(title, str) or not title.strip():
            raise ValidationError("Project ID and title are required")
        fields = {
            "title": title.strip(),
            "description": _optional_text("description", description),
            "priority": _priority(priority),
            "assignee_id": _optional_text("assigneeId", assignee_id),
            "due_date": normalize_due_date(due_date),
            "tags": _string_list("tags", tags),
        }
        status = _optional_text("status", status)

        try:
            with self.db.transaction():
                project = self._load_live(EntityType.PROJECT.value, project_id)
                status = status or project["statuses"][0]
                self._check_task_status(project, status)
                task = self.db.insert_record("task", dict(
                    fields,
                    project_id=project_id,
                    status=status,
                    order_index=self.ordering.next_index(project_id, status),
                ))
        except NotFoundError as e:
            return MutationResult.not_found(e)

        self.recorder.record(
            actor.actor_id, EntityType.TASK.value, task["id"], ActivityAction.CREATED,
            after={"title": task["title"], "status": task["status"], "priority": task["priority"]}
        )
        logger.info(f"Task {task['id']} created in '{status}' of project {project_id} by {actor.actor_id}")
        return MutationResult.applied(task)

    def add_comment(self, actor: Actor, task_id: Optional[str], body: Any) -> MutationResult:
        """Attach a comment to a live task."""
        if not task_id or not isinstance(body, str) or not body.strip():
            raise ValidationError("Task ID and comment body are required")
        body = body.strip()

        try:
            with self.db.transaction():
                self._load_live(EntityType.TASK.value, task_id)
                comment = self.db.insert_record("comment", {
                    "task_id": task_id,
                    "author_id": actor.actor_id,
                    "body": body,
                })
        except NotFoundError as e:
            return MutationResult.not_found(e)

        self.recorder.record(
            actor.actor_id, EntityType.COMMENT.value, comment["id"], ActivityAction.CREATED,
            after={"task_id": task_id, "body": body[:COMMENT_SNAPSHOT_LENGTH]}
        )
        return MutationResult.applied(comment)

    def create_user(self, actor: Actor, username: Any, name: Any, role: Any = Role.MEMBER.value) -> MutationResult:
        """
        Create a team member record (no credentials; those live with the auth layer).

        Raises:
            AuthorizationError: Actor is not elevated
            ValidationError: Missing fields, bad role or duplicate username
        """
        self._require(actor, "create_user")
        username = _require_text("username", username)
        name = _require_text("name", name)
        try:
            role = Role(role).value
        except ValueError:
            raise ValidationError(f"role must be one of {', '.join(r.value for r in Role)}")

        try:
            user = self.db.insert_record("user", {"username": username, "name": name, "role": role})
        except sqlite3.IntegrityError:
            raise ValidationError(f"Username '{username}' is already taken")

        self.recorder.record(
            actor.actor_id, EntityType.USER.value, user["id"], ActivityAction.CREATED,
            after={"username": username, "name": name, "role": role}
        )
        return MutationResult.applied(user)

    def set_user_disabled(self, actor: Actor, user_id: Optional[str], disabled: bool) -> MutationResult:
        """
        Disable or re-enable a team member. Disabled users are skipped when
        template sample tasks are assigned.

        Raises:
            AuthorizationError: Actor is not elevated (checked before any read)
            ValidationError: Missing user id
        """
        self._require(actor, "disable_user")
        if not user_id:
            raise ValidationError("User ID and action are required")

        if not self.db.set_user_disabled(user_id, disabled):
            return MutationResult.not_found(NotFoundError(EntityType.USER.value, user_id))

        action = "disable" if disabled else "enable"
        self.recorder.record(
            actor.actor_id, EntityType.USER.value, user_id, ActivityAction.UPDATED, after={"action": action}
        )
        logger.info(f"User {user_id} {action}d by {actor.actor_id}")
        return MutationResult.applied(self.db.get_record(EntityType.USER.value, user_id))

    # Column ordering

    def reorder_column(
        self,
        actor: Actor,
        project_id: str,
        status: str,
        ordered_task_ids: Sequence[str],
        moved_task_id: str,
        from_status: Optional[str] = None,
        atomic: bool = False
    ) -> ReorderResult:
        """
        Rewrite a column after a drag-and-drop. No version guard, no per-task audit.

        Raises:
            NotFoundError: Project missing or deleted
            ValidationError: Malformed order
        """
        self._load_live(EntityType.PROJECT.value, project_id)
        logger.info(f"Column reorder on project {project_id} by {actor.actor_id}")
        return self.ordering.reorder(project_id, status, ordered_task_ids, moved_task_id,
                                     from_status=from_status, atomic=atomic)

    def move_task(self, actor: Actor, project_id: str, task_id: str, to_status: str,
                  drop_index: int, atomic: bool = False) -> ReorderResult:
        self._load_live(EntityType.PROJECT.value, project_id)
        logger.info(f"Task {task_id} moved to '{to_status}' at {drop_index} by {actor.actor_id}")
        return self.ordering.move_task(project_id, task_id, to_status, drop_index, atomic=atomic)

    def apply_bulk_order(self, actor: Actor, items: Sequence[Dict[str, Any]], atomic: bool = False) -> ReorderResult:
        logger.info(f"Bulk order of {len(items)} task(s) by {actor.actor_id}")
        return self.ordering.apply_bulk_order(items, atomic=atomic)

    # Reads

    def get(self, entity_type: str, entity_id: str) -> Optional[Dict[str, Any]]:
        """Direct lookup by id; soft-deleted records are still returned."""
        return self.db.get_record(entity_type, entity_id)

    def get_project_detail(self, project_id: str) -> Optional[Dict[str, Any]]:
        project = self.db.get_record(EntityType.PROJECT.value, project_id)
        if project is None:
            return None
        return dict(project, tasks=self.db.list_tasks(project_id=project_id))

    def get_task_detail(self, task_id: str) -> Optional[Dict[str, Any]]:
        task = self.db.get_record(EntityType.TASK.value, task_id)
        if task is None:
            return None
        project = self.db.get_record(EntityType.PROJECT.value, task["project_id"])
        return dict(
            task,
            project={"id": project["id"], "name": project["name"], "statuses": project["statuses"]}
            if project else None,
            comments=self.db.list_comments(task_id),
        )

    def list_projects(self, actor: Actor, include_deleted: bool = False) -> List[Dict[str, Any]]:
        """Live projects; deleted ones too only for elevated actors."""
        include_deleted = include_deleted and self._authorize(actor, "include_deleted")
        return self.db.list_projects(include_deleted=include_deleted)

    def list_tasks(
        self,
        project_id: Optional[str] = None,
        assignee_id: Optional[str] = None,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        due_before: Any = None
    ) -> List[Dict[str, Any]]:
        return self.db.list_tasks(
            project_id=project_id,
            assignee_id=assignee_id,
            status=status,
            priority=_priority(priority) if priority is not None else None,
            due_before=normalize_due_date(due_before),
        )

    def list_users(self) -> List[Dict[str, Any]]:
        return self.db.list_users()

    def list_templates(self) -> List[Dict[str, Any]]:
        return self.db.list_templates()

    def activity(self, entity_id: Optional[str] = None, entity_type: Optional[str] = None,
                 limit: Optional[int] = None) -> List[Dict[str, Any]]:
        return self.recorder.query(entity_id=entity_id, entity_type=entity_type, limit=limit)
