"""
Ordering Engine for kanban columns.

Tasks are ordered inside a (project, status) column by an integer
order_index. Appends go to max + GAP. Any reorder rewrites the whole
destination column as (position + 1) * GAP, which keeps indices collision
free and never runs out of room between neighbours.

Bulk reorders are a trusted server-side override: no per-task version guard
and no per-task activity entries (one drag gesture would otherwise flood the
audit log). Each row write bumps the task version.
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Sequence

from .database import TrackerDatabase
from .errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

GAP = 1000


def next_order_index(max_existing: Optional[int]) -> int:
    """Index for a task appended to a column whose largest index is max_existing."""
    return (max_existing or 0) + GAP


def positional_indices(ordered_task_ids: Sequence[str]) -> List[int]:
    """Fresh indices for a column in its new top-to-bottom order."""
    return [(position + 1) * GAP for position in range(len(ordered_task_ids))]


def build_column_order(column_task_ids: Sequence[str], moved_task_id: str, drop_index: int) -> List[str]:
    """
    Build the destination column order after a drop.

    Removes the moved task if it is already in the column, then splices it in
    at drop_index (clamped to the column bounds).
    """
    ordered = [task_id for task_id in column_task_ids if task_id != moved_task_id]
    drop_index = max(0, min(drop_index, len(ordered)))
    ordered.insert(drop_index, moved_task_id)
    return ordered


@dataclass
class ReorderResult:
    """Outcome of a bulk reorder. Failed rows are not rolled back unless atomic."""
    project_id: Optional[str]
    status: Optional[str]
    moved_task_id: Optional[str] = None
    moved_across_columns: bool = False
    updated: List[Dict[str, Any]] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "project_id": self.project_id,
            "status": self.status,
            "moved_task_id": self.moved_task_id,
            "moved_across_columns": self.moved_across_columns,
            "updated": len(self.updated),
            "items": self.updated,
            "failed": self.failed,
        }


class OrderingEngine:
    """Assigns and recomputes order_index values for column ordering."""

    def __init__(self, db: TrackerDatabase, enforce_status_membership: bool = False):
        self.db = db
        self.enforce_status_membership = enforce_status_membership

    def column_task_ids(self, project_id: str, status: str) -> List[str]:
        return [task["id"] for task in self.db.column_tasks(project_id, status)]

    def next_index(self, project_id: str, status: str) -> int:
        """order_index for a new task appended at the bottom of a column."""
        return next_order_index(self.db.max_order_index(project_id, status))

    def _check_status(self, project_id: str, status: str) -> None:
        if not isinstance(status, str) or not status.strip():
            raise ValidationError("Destination status is required")
        if not self.enforce_status_membership:
            return
        project = self.db.get_record("project", project_id)
        if project is None or project["deleted_at"] is not None:
            raise NotFoundError("project", project_id)
        if status not in project["statuses"]:
            raise ValidationError(f"Status '{status}' is not one of the project's statuses")

    def reorder(
        self,
        project_id: str,
        status: str,
        ordered_task_ids: Sequence[str],
        moved_task_id: str,
        from_status: Optional[str] = None,
        atomic: bool = False
    ) -> ReorderResult:
        """
        Rewrite a column to the given top-to-bottom order.

        Every task in ordered_task_ids is written with
        order_index = (position + 1) * GAP and status = status, and its
        version is incremented. No version guard applies.

        Args:
            project_id: Owning project of the column
            status: Destination column
            ordered_task_ids: Full desired order of the column after the move
            moved_task_id: Task the user dragged; must be in ordered_task_ids
            from_status: Column the task was dragged from, if known
            atomic: Run the whole batch in one transaction and roll back on
                any failure. Without it each row is written independently and
                failures are reported in the result.

        Raises:
            ValidationError: Duplicate ids, moved task missing from the order,
                or a task that belongs to another project
            NotFoundError: In atomic mode, when a listed task does not exist
        """
        ordered = list(ordered_task_ids)
        if not ordered:
            raise ValidationError("orderedTaskIds must not be empty")
        if len(set(ordered)) != len(ordered):
            raise ValidationError("orderedTaskIds contains duplicate task ids")
        if moved_task_id not in ordered:
            raise ValidationError(f"Moved task {moved_task_id} is not in orderedTaskIds")
        self._check_status(project_id, status)

        for task_id in ordered:
            task = self.db.get_record("task", task_id)
            if task is not None and task["project_id"] != project_id:
                raise ValidationError(f"Task {task_id} does not belong to project {project_id}")

        result = ReorderResult(
            project_id=project_id,
            status=status,
            moved_task_id=moved_task_id,
            moved_across_columns=from_status is not None and from_status != status,
        )
        items = [
            {"id": task_id, "status": status, "order_index": order_index}
            for task_id, order_index in zip(ordered, positional_indices(ordered))
        ]

        if atomic:
            with self.db.transaction():
                self._write_items(items, result, raise_on_failure=True)
        else:
            self._write_items(items, result, raise_on_failure=False)

        logger.info(
            f"Reordered column '{status}' of project {project_id}: "
            f"{len(result.updated)} updated, {len(result.failed)} failed"
            + (f" (moved {moved_task_id} from '{from_status}')" if result.moved_across_columns else "")
        )
        return result

    def move_task(
        self,
        project_id: str,
        task_id: str,
        to_status: str,
        drop_index: int,
        atomic: bool = False
    ) -> ReorderResult:
        """Drop a task into a column at drop_index, building the column order server-side."""
        task = self.db.get_record("task", task_id)
        if task is None or task["deleted_at"] is not None or task["project_id"] != project_id:
            raise NotFoundError("task", task_id)

        ordered = build_column_order(self.column_task_ids(project_id, to_status), task_id, drop_index)
        return self.reorder(project_id, to_status, ordered, task_id,
                            from_status=task["status"], atomic=atomic)

    def apply_bulk_order(self, items: Sequence[Dict[str, Any]], atomic: bool = False) -> ReorderResult:
        """
        Persist client-computed {id, status, order_index} items as given.

        Same trust policy as reorder(): no guard, no activity, version +1.
        """
        normalized = []
        seen = set()
        for item in items:
            task_id = item.get("id")
            status = item.get("status")
            order_index = item.get("order_index")
            if not isinstance(task_id, str) or not task_id:
                raise ValidationError("Each bulk order item needs an id")
            if task_id in seen:
                raise ValidationError(f"Task {task_id} appears more than once")
            if not isinstance(status, str) or not status.strip():
                raise ValidationError(f"Task {task_id}: status is required")
            if isinstance(order_index, bool) or not isinstance(order_index, int):
                raise ValidationError(f"Task {task_id}: orderIndex must be an integer")
            seen.add(task_id)
            normalized.append({"id": task_id, "status": status, "order_index": order_index})
        if not normalized:
            raise ValidationError("items must not be empty")

        result = ReorderResult(project_id=None, status=None)
        if atomic:
            with self.db.transaction():
                self._write_items(normalized, result, raise_on_failure=True)
        else:
            self._write_items(normalized, result, raise_on_failure=False)

        logger.info(f"Applied bulk order: {len(result.updated)} updated, {len(result.failed)} failed")
        return result

    def _write_items(self, items: List[Dict[str, Any]], result: ReorderResult, raise_on_failure: bool) -> None:
        for item in items:
            task_id = item["id"]
            changes = {"status": item["status"], "order_index": item["order_index"]}
            try:
                written = self.db.bump_record("task", task_id, changes)
            except sqlite3.Error as e:
                if raise_on_failure:
                    raise
                logger.error(f"Reorder write failed for task {task_id}: {e}")
                result.failed.append({"id": task_id, "error": str(e)})
                continue

            if not written:
                if raise_on_failure:
                    raise NotFoundError("task", task_id)
                result.failed.append({"id": task_id, "error": f"Task {task_id} not found"})
                continue

            task = self.db.get_record("task", task_id)
            result.updated.append({
                "id": task_id,
                "status": task["status"],
                "order_index": task["order_index"],
                "version": task["version"],
            })
