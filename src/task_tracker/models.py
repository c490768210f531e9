"""
Pydantic models for Task Tracker API request/response validation.

Request bodies use camelCase on the wire and snake_case in Python. Patch
models forbid unknown fields and are dumped with exclude_unset so an absent
field stays absent while an explicit null clears the value.
"""

from typing import Optional, List, Dict, Any, Literal
from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator


class WireModel(BaseModel):
    """Base for request bodies: accepts camelCase aliases or field names."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")


def _validate_tags(v):
    if v is not None:
        for tag in v:
            if not isinstance(tag, str) or not tag.strip():
                raise ValueError("All tags must be non-empty strings")
    return v


class ProjectFields(WireModel):
    """Partial project patch."""

    name: Optional[str] = Field(None, max_length=200)
    client_name: Optional[str] = Field(None, alias="clientName", max_length=200)
    status: Optional[str] = Field(None, description="active, archived or completed")
    statuses: Optional[List[str]] = Field(None, description="Ordered kanban columns")
    priorities: Optional[List[str]] = None
    tags: Optional[List[str]] = None

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v):
        """Validate tags are non-empty strings."""
        return _validate_tags(v)


class TaskFields(WireModel):
    """Partial task patch."""

    title: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = Field(None, description="URGENT, HIGH, MEDIUM, LOW or NONE")
    assignee_id: Optional[str] = Field(None, alias="assigneeId")
    due_date: Optional[str] = Field(None, alias="dueDate", description="ISO date")
    tags: Optional[List[str]] = None
    order_index: Optional[int] = Field(None, alias="orderIndex")

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v):
        """Validate tags are non-empty strings."""
        return _validate_tags(v)


class ProjectUpdateRequest(WireModel):
    """PATCH /api/projects/{id} body."""

    expected_version: Optional[StrictInt] = Field(
        None, alias="expectedVersion", description="Version last observed; omit for last-write-wins"
    )
    patch: ProjectFields = Field(alias="fields")


class TaskUpdateRequest(WireModel):
    """PATCH /api/tasks/{id} body."""

    expected_version: Optional[StrictInt] = Field(
        None, alias="expectedVersion", description="Version last observed; omit for last-write-wins"
    )
    patch: TaskFields = Field(alias="fields")


class ProjectCreateRequest(WireModel):
    """POST /api/projects body. Presence of name is checked by the pipeline (400)."""

    name: Optional[str] = Field(None, max_length=200)
    client_name: Optional[str] = Field(None, alias="clientName", max_length=200)
    template_id: Optional[str] = Field(None, alias="templateId")
    statuses: Optional[List[str]] = None
    priorities: Optional[List[str]] = None
    tags: Optional[List[str]] = None


class TaskCreateRequest(WireModel):
    """POST /api/tasks body."""

    project_id: Optional[str] = Field(None, alias="projectId")
    title: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    assignee_id: Optional[str] = Field(None, alias="assigneeId")
    due_date: Optional[str] = Field(None, alias="dueDate")
    tags: Optional[List[str]] = None

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v):
        """Validate tags are non-empty strings."""
        return _validate_tags(v)


class CommentCreateRequest(WireModel):
    """POST /api/comments body."""

    task_id: Optional[str] = Field(None, alias="taskId")
    body: Optional[str] = None


class UserCreateRequest(WireModel):
    """POST /api/users body."""

    username: Optional[str] = Field(None, max_length=100)
    name: Optional[str] = Field(None, max_length=200)
    role: str = Field("MEMBER", description="ADMIN, MEMBER or GUEST")


class UserActionRequest(WireModel):
    """PATCH /api/users body: an admin action on one account."""

    user_id: Optional[str] = Field(None, alias="userId")
    action: Literal["disable", "enable"]


class ColumnReorderRequest(WireModel):
    """POST /api/projects/{id}/reorder body: full column order after a drop."""

    status: str = Field(min_length=1)
    ordered_task_ids: List[str] = Field(alias="orderedTaskIds")
    moved_task_id: str = Field(alias="movedTaskId", min_length=1)
    from_status: Optional[str] = Field(None, alias="fromStatus")
    atomic: bool = False


class BulkReorderItem(WireModel):
    id: str = Field(min_length=1)
    status: str = Field(min_length=1)
    order_index: int = Field(alias="orderIndex")


class BulkReorderRequest(WireModel):
    """PATCH /api/tasks/bulk-reorder body."""

    items: List[BulkReorderItem]
    atomic: bool = False


class ConflictResponse(BaseModel):
    """HTTP 409 body for a stale write."""

    kind: str = "VersionConflict"
    error: str = "CONFLICT"
    message: str
    currentVersion: int
    currentData: Dict[str, Any]


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str
    database_connected: bool
    timestamp: str

