"""
FastAPI Backend for the Task Tracker

Thin REST surface over the mutation pipeline: projects, tasks, comments,
users, templates and the activity feed. Caller identity arrives already
resolved on the X-Actor-Id / X-Actor-Role headers.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .database import TrackerDatabase
from .errors import AuthorizationError, NotFoundError, ValidationError
from .models import (
    BulkReorderRequest, ColumnReorderRequest, CommentCreateRequest, ConflictResponse, HealthResponse,
    ProjectCreateRequest, ProjectUpdateRequest, TaskCreateRequest, TaskUpdateRequest,
    UserActionRequest, UserCreateRequest,
)
from .ordering import ReorderResult
from .pipeline import Actor, MutationPipeline, MutationResult, MutationStatus, Role

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Global instances for dependency injection; the CLI or tests may set them
# before startup
db_instance: Optional[TrackerDatabase] = None
pipeline_instance: Optional[MutationPipeline] = None


def get_database() -> TrackerDatabase:
    """
    FastAPI dependency to provide database instance.

    Raises:
        HTTPException: If database is not available
    """
    if db_instance is None:
        raise HTTPException(status_code=503, detail="Database not available")
    return db_instance


def get_pipeline() -> MutationPipeline:
    if pipeline_instance is None:
        raise HTTPException(status_code=503, detail="Database not available")
    return pipeline_instance


def get_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None)
) -> Actor:
    """Resolve the caller from identity headers set by the session layer."""
    if not x_actor_id or not x_actor_id.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        role = Role((x_actor_role or Role.MEMBER.value).strip().upper())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown role: {x_actor_role}")
    return Actor(actor_id=x_actor_id.strip(), role=role)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    FastAPI lifespan context manager for startup/shutdown operations.

    Reuses a database already installed by the launcher, otherwise opens the
    one named by DATABASE_PATH.
    """
    global db_instance, pipeline_instance

    settings = get_settings()
    owns_database = db_instance is None
    try:
        if owns_database:
            db_instance = TrackerDatabase(settings.database_path)
            logger.info(f"Database initialized: {settings.database_path}")
        if pipeline_instance is None:
            pipeline_instance = MutationPipeline(db_instance, settings=settings)
        logger.info("Task Tracker API starting up...")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    yield

    if owns_database and db_instance:
        db_instance.close()
        db_instance = None
        pipeline_instance = None
        logger.info("Database connection closed")


app = FastAPI(
    title="Task Tracker API",
    description="Projects, kanban tasks and activity feed with optimistic concurrency",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error mapping

@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(AuthorizationError)
async def authorization_error_handler(request: Request, exc: AuthorizationError):
    return JSONResponse(status_code=403, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_error_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def mutation_response(result: MutationResult, status_code: int = 200) -> JSONResponse:
    """Map a pipeline result to HTTP: entity, 409 conflict payload or 404."""
    if result.status is MutationStatus.CONFLICT:
        return JSONResponse(status_code=409, content=result.conflict.to_payload())
    if result.status is MutationStatus.NOT_FOUND:
        raise HTTPException(status_code=404, detail=result.error)
    return JSONResponse(status_code=status_code, content=result.entity)


def reorder_response(result: ReorderResult) -> JSONResponse:
    # 207: some rows were written, some were not
    return JSONResponse(status_code=200 if result.success else 207, content=result.to_dict())


@app.get("/healthz", response_model=HealthResponse)
async def health_check(db: TrackerDatabase = Depends(get_database)):
    """Service status for load balancers and monitoring."""
    database_connected = True
    try:
        db.count_records("project")
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        database_connected = False

    return HealthResponse(
        status="healthy" if database_connected else "degraded",
        database_connected=database_connected,
        timestamp=datetime.now(timezone.utc).isoformat()
    )


# Projects

@app.get("/api/projects")
async def list_projects_endpoint(
    include_deleted: bool = Query(False, alias="includeDeleted"),
    actor: Actor = Depends(get_actor),
    pipeline: MutationPipeline = Depends(get_pipeline)
):
    """List projects, most recently updated first. includeDeleted is admin-only."""
    projects = pipeline.list_projects(actor, include_deleted=include_deleted)
    logger.info(f"REST API: Retrieved {len(projects)} projects")
    return projects


@app.post("/api/projects", status_code=201)
async def create_project_endpoint(
    request: ProjectCreateRequest,
    actor: Actor = Depends(get_actor),
    pipeline: MutationPipeline = Depends(get_pipeline)
):
    result = pipeline.create_project(
        actor,
        name=request.name,
        client_name=request.client_name,
        template_id=request.template_id,
        statuses=request.statuses,
        priorities=request.priorities,
        tags=request.tags,
    )
    return mutation_response(result, status_code=201)


@app.get("/api/projects/{project_id}")
async def get_project_endpoint(
    project_id: str,
    actor: Actor = Depends(get_actor),
    pipeline: MutationPipeline = Depends(get_pipeline)
):
    """Project with its live tasks in column order."""
    project = pipeline.get_project_detail(project_id)
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


@app.patch("/api/projects/{project_id}", responses={409: {"model": ConflictResponse}})
async def update_project_endpoint(
    project_id: str,
    request: ProjectUpdateRequest,
    actor: Actor = Depends(get_actor),
    pipeline: MutationPipeline = Depends(get_pipeline)
):
    """
    Partial update under the version guard.

    Returns the updated project, or 409 with the current server state when
    expectedVersion is stale.
    """
    result = pipeline.update_project(
        project_id, request.patch.model_dump(exclude_unset=True), actor, request.expected_version
    )
    return mutation_response(result)


@app.delete("/api/projects/{project_id}", responses={409: {"model": ConflictResponse}})
async def delete_project_endpoint(
    project_id: str,
    restore: bool = False,
    expected_version: Optional[int] = Query(None, alias="expectedVersion"),
    actor: Actor = Depends(get_actor),
    pipeline: MutationPipeline = Depends(get_pipeline)
):
    """Soft-delete a project, or restore it with ?restore=true (admin only)."""
    if restore:
        return mutation_response(pipeline.restore("project", project_id, actor))
    return mutation_response(pipeline.soft_delete("project", project_id, actor, expected_version))


@app.post("/api/projects/{project_id}/reorder")
async def reorder_column_endpoint(
    project_id: str,
    request: ColumnReorderRequest,
    actor: Actor = Depends(get_actor),
    pipeline: MutationPipeline = Depends(get_pipeline)
):
    """Persist a column's full order after a drag-and-drop."""
    result = pipeline.reorder_column(
        actor,
        project_id,
        request.status,
        request.ordered_task_ids,
        request.moved_task_id,
        from_status=request.from_status,
        atomic=request.atomic,
    )
    return reorder_response(result)


# Tasks

@app.get("/api/tasks")
async def list_tasks_endpoint(
    project_id: Optional[str] = Query(None, alias="projectId"),
    assignee_id: Optional[str] = Query(None, alias="assigneeId"),
    status: Optional[str] = None,
    priority: Optional[str] = None,
    due_before: Optional[str] = Query(None, alias="dueBefore"),
    my_tasks: bool = Query(False, alias="myTasks"),
    actor: Actor = Depends(get_actor),
    pipeline: MutationPipeline = Depends(get_pipeline)
):
    """Live tasks matching the filters; myTasks=true restricts to the caller."""
    if my_tasks:
        assignee_id = actor.actor_id
    return pipeline.list_tasks(
        project_id=project_id,
        assignee_id=assignee_id,
        status=status,
        priority=priority,
        due_before=due_before,
    )


@app.post("/api/tasks", status_code=201)
async def create_task_endpoint(
    request: TaskCreateRequest,
    actor: Actor = Depends(get_actor),
    pipeline: MutationPipeline = Depends(get_pipeline)
):
    result = pipeline.create_task(
        actor,
        project_id=request.project_id,
        title=request.title,
        description=request.description,
        status=request.status,
        priority=request.priority,
        assignee_id=request.assignee_id,
        due_date=request.due_date,
        tags=request.tags,
    )
    return mutation_response(result, status_code=201)


# Declared before /api/tasks/{task_id} so the literal path wins
@app.patch("/api/tasks/bulk-reorder")
async def bulk_reorder_endpoint(
    request: BulkReorderRequest,
    actor: Actor = Depends(get_actor),
    pipeline: MutationPipeline = Depends(get_pipeline)
):
    """Persist client-computed {id, status, orderIndex} items. No version guard."""
    items = [item.model_dump() for item in request.items]
    return reorder_response(pipeline.apply_bulk_order(actor, items, atomic=request.atomic))


@app.get("/api/tasks/{task_id}")
async def get_task_endpoint(
    task_id: str,
    actor: Actor = Depends(get_actor),
    pipeline: MutationPipeline = Depends(get_pipeline)
):
    """Task with its project summary and comments, newest first."""
    task = pipeline.get_task_detail(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


@app.patch("/api/tasks/{task_id}", responses={409: {"model": ConflictResponse}})
async def update_task_endpoint(
    task_id: str,
    request: TaskUpdateRequest,
    actor: Actor = Depends(get_actor),
    pipeline: MutationPipeline = Depends(get_pipeline)
):
    result = pipeline.update_task(
        task_id, request.patch.model_dump(exclude_unset=True), actor, request.expected_version
    )
    return mutation_response(result)


@app.delete("/api/tasks/{task_id}", responses={409: {"model": ConflictResponse}})
async def delete_task_endpoint(
    task_id: str,
    restore: bool = False,
    expected_version: Optional[int] = Query(None, alias="expectedVersion"),
    actor: Actor = Depends(get_actor),
    pipeline: MutationPipeline = Depends(get_pipeline)
):
    """Soft-delete a task, or restore it with ?restore=true (admin only)."""
    if restore:
        return mutation_response(pipeline.restore("task", task_id, actor))
    return mutation_response(pipeline.soft_delete("task", task_id, actor, expected_version))


# Comments, users, templates

@app.post("/api/comments", status_code=201)
async def create_comment_endpoint(
    request: CommentCreateRequest,
    actor: Actor = Depends(get_actor),
    pipeline: MutationPipeline = Depends(get_pipeline)
):
    return mutation_response(pipeline.add_comment(actor, request.task_id, request.body), status_code=201)


@app.get("/api/users")
async def list_users_endpoint(
    actor: Actor = Depends(get_actor),
    pipeline: MutationPipeline = Depends(get_pipeline)
):
    return pipeline.list_users()


@app.post("/api/users", status_code=201)
async def create_user_endpoint(
    request: UserCreateRequest,
    actor: Actor = Depends(get_actor),
    pipeline: MutationPipeline = Depends(get_pipeline)
):
    result = pipeline.create_user(actor, request.username, request.name, request.role)
    return mutation_response(result, status_code=201)


@app.patch("/api/users")
async def user_action_endpoint(
    request: UserActionRequest,
    actor: Actor = Depends(get_actor),
    pipeline: MutationPipeline = Depends(get_pipeline)
):
    """Disable or enable a user (admin only)."""
    result = pipeline.set_user_disabled(actor, request.user_id, request.action == "disable")
    return mutation_response(result)


@app.get("/api/templates")
async def list_templates_endpoint(
    actor: Actor = Depends(get_actor),
    pipeline: MutationPipeline = Depends(get_pipeline)
):
    return pipeline.list_templates()


# Activity feed

@app.get("/api/activity")
async def list_activity_endpoint(
    entity_id: Optional[str] = Query(None, alias="entityId"),
    entity_type: Optional[str] = Query(None, alias="entityType"),
    limit: Optional[int] = None,
    actor: Actor = Depends(get_actor),
    pipeline: MutationPipeline = Depends(get_pipeline)
):
    """Activity entries newest first; limit defaults to 50, capped at 100."""
    return pipeline.activity(entity_id=entity_id, entity_type=entity_type, limit=limit)
