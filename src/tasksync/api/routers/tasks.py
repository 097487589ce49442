"""Task CRUD endpoints.

Endpoints
---------
GET     /api/tasks                  all tasks, newest first
GET     /api/tasks/overdue          incomplete tasks past their due date
GET     /api/tasks/{task_id}        one task; 404 if unknown
POST    /api/tasks                  add a task
PATCH   /api/tasks/{task_id}        partial update
POST    /api/tasks/{task_id}/toggle flip ``completed``
DELETE  /api/tasks/{task_id}        delete; 404 if unknown

Calendar event ids are read-only here; they change only through the
calendar sync endpoints.
"""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response

from tasksync.api.models import ApiMeta, ApiResponse
from tasksync.core.clock import now_ms
from tasksync.tasks import Task, TaskCreate, TaskStore, TaskUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


def _get_task_store() -> TaskStore:
    """Dependency stub; overridden at app startup or in tests."""
    raise RuntimeError("TaskStore not initialized")


@router.get("", response_model=ApiResponse[list[Task]])
async def list_tasks(
    store: TaskStore = Depends(_get_task_store),
) -> ApiResponse[list[Task]]:
    tasks = await store.list_tasks()
    return ApiResponse[list[Task]](data=tasks, meta=ApiMeta(total=len(tasks)))


@router.get("/overdue", response_model=ApiResponse[list[Task]])
async def list_overdue_tasks(
    at: int | None = Query(
        default=None,
        ge=0,
        description="Reference time in epoch milliseconds; defaults to now.",
    ),
    store: TaskStore = Depends(_get_task_store),
) -> ApiResponse[list[Task]]:
    """Incomplete tasks whose due date has passed."""
    as_of = now_ms() if at is None else at
    tasks = await store.list_overdue(as_of)
    return ApiResponse[list[Task]](data=tasks, meta=ApiMeta(total=len(tasks), as_of=as_of))


@router.get("/{task_id}", response_model=ApiResponse[Task])
async def get_task(
    task_id: UUID,
    store: TaskStore = Depends(_get_task_store),
) -> ApiResponse[Task]:
    return ApiResponse[Task](data=await store.require_task(task_id))


@router.post("", response_model=ApiResponse[Task], status_code=201)
async def add_task(
    body: TaskCreate,
    store: TaskStore = Depends(_get_task_store),
) -> ApiResponse[Task]:
    return ApiResponse[Task](data=await store.add_task(body))


@router.patch("/{task_id}", response_model=ApiResponse[Task])
async def update_task(
    task_id: UUID,
    body: TaskUpdate,
    store: TaskStore = Depends(_get_task_store),
) -> ApiResponse[Task]:
    return ApiResponse[Task](data=await store.update_task(task_id, body))


@router.post("/{task_id}/toggle", response_model=ApiResponse[Task])
async def toggle_task(
    task_id: UUID,
    store: TaskStore = Depends(_get_task_store),
) -> ApiResponse[Task]:
    return ApiResponse[Task](data=await store.toggle_task(task_id))


@router.delete("/{task_id}", status_code=204)
async def delete_task(
    task_id: UUID,
    store: TaskStore = Depends(_get_task_store),
) -> Response:
    """Delete the task.  Remote calendar events are left in place."""
    await store.delete_task(task_id)
    return Response(status_code=204)
