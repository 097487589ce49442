"""Task model and asyncpg-backed task store.

Tasks are global to the deployment (there is no owner column).  Each task
carries one optional remote event reference per calendar provider; those
fields are written only through :meth:`TaskStore.compare_and_set_event_id`
so a concurrent sync cannot silently overwrite another's reference.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, field_validator

from tasksync.calendar.errors import TaskNotFound
from tasksync.calendar.providers import Provider
from tasksync.core.clock import now_ms
from tasksync.db import rows_affected

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)

_TABLE = "tasks"
_COLUMNS = (
    "id, title, description, due_date, due_time, priority, completed, category, "
    "reminder_sent, google_event_id, outlook_event_id, created_at"
)

# Provider -> column holding that provider's remote event id.
EVENT_ID_COLUMNS: dict[Provider, str] = {
    Provider.GOOGLE: "google_event_id",
    Provider.OUTLOOK: "outlook_event_id",
}

# Columns TaskUpdate may write. Event ids go through compare_and_set_event_id.
_UPDATABLE_COLUMNS = ("title", "description", "due_date", "due_time", "priority", "category")


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


def _clean_title(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("title must be a non-empty string")
    return value


class Task(BaseModel):
    """A stored to-do item.

    ``due_date`` is epoch milliseconds; ``due_time`` is a free-form display
    string such as ``"09:30"`` and plays no part in scheduling.
    """

    id: uuid.UUID
    title: str
    description: str | None = None
    due_date: int | None = None
    due_time: str | None = None
    priority: Priority = Priority.MEDIUM
    completed: bool = False
    category: str | None = None
    reminder_sent: bool = False
    google_event_id: str | None = None
    outlook_event_id: str | None = None
    created_at: datetime | None = None

    def calendar_event_id(self, provider: Provider) -> str | None:
        """Remote event id of this task under *provider*, if synced."""
        return getattr(self, EVENT_ID_COLUMNS[provider])

    def is_overdue(self, at_ms: int) -> bool:
        return not self.completed and self.due_date is not None and self.due_date < at_ms


class TaskCreate(BaseModel):
    """Fields accepted when adding a task."""

    title: str
    description: str | None = None
    due_date: int | None = Field(default=None, ge=0)
    due_time: str | None = None
    priority: Priority = Priority.MEDIUM
    category: str | None = None

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        return _clean_title(value)


class TaskUpdate(BaseModel):
    """Partial update; only fields explicitly set are written."""

    title: str | None = None
    description: str | None = None
    due_date: int | None = Field(default=None, ge=0)
    due_time: str | None = None
    priority: Priority | None = None
    category: str | None = None

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str | None) -> str | None:
        if value is None:
            raise ValueError("title cannot be null")
        return _clean_title(value)

    @field_validator("priority")
    @classmethod
    def _priority_not_null(cls, value: Priority | None) -> Priority | None:
        if value is None:
            raise ValueError("priority cannot be null")
        return value


def _row_to_task(row: Any) -> Task:
    return Task(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        due_date=row["due_date"],
        due_time=row["due_time"],
        priority=Priority(row["priority"]),
        completed=row["completed"],
        category=row["category"],
        reminder_sent=row["reminder_sent"],
        google_event_id=row["google_event_id"],
        outlook_event_id=row["outlook_event_id"],
        created_at=row["created_at"],
    )


# ---------------------------------------------------------------------------
# TaskStore
# ---------------------------------------------------------------------------


class TaskStore:
    """CRUD over the ``tasks`` table."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def add_task(self, data: TaskCreate) -> Task:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO {_TABLE}
                    (id, title, description, due_date, due_time, priority, category)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                RETURNING {_COLUMNS}
                """,
                uuid.uuid4(),
                data.title,
                data.description,
                data.due_date,
                data.due_time,
                data.priority.value,
                data.category,
            )
        task = _row_to_task(row)
        logger.info("Task added: id=%s priority=%s", task.id, task.priority.value)
        return task

    async def get_task(self, task_id: uuid.UUID) -> Task | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM {_TABLE} WHERE id = $1",
                task_id,
            )
        return _row_to_task(row) if row is not None else None

    async def require_task(self, task_id: uuid.UUID) -> Task:
        """Like :meth:`get_task` but raises ``TaskNotFound`` instead of returning None."""
        task = await self.get_task(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        return task

    async def list_tasks(self) -> list[Task]:
        """All tasks, newest first."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_COLUMNS} FROM {_TABLE} ORDER BY created_at DESC, id DESC"
            )
        return [_row_to_task(row) for row in rows]

    async def list_overdue(self, at_ms: int | None = None) -> list[Task]:
        """Incomplete tasks whose due date lies before *at_ms* (default: now)."""
        cutoff = now_ms() if at_ms is None else at_ms
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_COLUMNS} FROM {_TABLE}
                WHERE completed = false
                  AND due_date IS NOT NULL
                  AND due_date < $1
                ORDER BY due_date ASC
                """,
                cutoff,
            )
        return [_row_to_task(row) for row in rows]

    async def toggle_task(self, task_id: uuid.UUID) -> Task:
        """Flip ``completed``.  Raises ``TaskNotFound`` for unknown ids."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE {_TABLE} SET completed = NOT completed
                WHERE id = $1
                RETURNING {_COLUMNS}
                """,
                task_id,
            )
        if row is None:
            raise TaskNotFound(task_id)
        return _row_to_task(row)

    async def update_task(self, task_id: uuid.UUID, changes: TaskUpdate) -> Task:
        """Apply the fields set on *changes*; unset fields are left alone."""
        values = changes.model_dump(exclude_unset=True)
        assignments: list[str] = []
        params: list[Any] = [task_id]
        for column in _UPDATABLE_COLUMNS:
            if column not in values:
                continue
            value = values[column]
            if isinstance(value, Priority):
                value = value.value
            params.append(value)
            assignments.append(f"{column} = ${len(params)}")

        if not assignments:
            return await self.require_task(task_id)

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE {_TABLE} SET {", ".join(assignments)}
                WHERE id = $1
                RETURNING {_COLUMNS}
                """,
                *params,
            )
        if row is None:
            raise TaskNotFound(task_id)
        logger.info("Task updated: id=%s fields=%s", task_id, sorted(values))
        return _row_to_task(row)

    async def delete_task(self, task_id: uuid.UUID) -> None:
        """Delete the task.  Raises ``TaskNotFound`` for unknown ids."""
        async with self.pool.acquire() as conn:
            status = await conn.execute(f"DELETE FROM {_TABLE} WHERE id = $1", task_id)
        if rows_affected(status) == 0:
            raise TaskNotFound(task_id)
        logger.info("Task deleted: id=%s", task_id)

    async def compare_and_set_event_id(
        self,
        task_id: uuid.UUID,
        provider: Provider,
        *,
        expected: str | None,
        new: str | None,
    ) -> bool:
        """Write *new* into the provider's event id field if it still equals *expected*.

        Returns ``False`` when the task is gone or another writer changed the
        field since it was read.
        """
        column = EVENT_ID_COLUMNS[provider]
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                f"""
                UPDATE {_TABLE} SET {column} = $2
                WHERE id = $1 AND {column} IS NOT DISTINCT FROM $3
                """,
                task_id,
                new,
                expected,
            )
        return rows_affected(status) == 1
