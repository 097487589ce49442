"""Tests for TaskStore SQL and row mapping against a mocked asyncpg pool."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

import pytest

from tasksync.calendar.errors import TaskNotFound
from tasksync.calendar.providers import Provider
from tasksync.tasks import Priority, TaskCreate, TaskStore, TaskUpdate, _row_to_task
from tests.conftest import make_pool

pytestmark = pytest.mark.unit

TASK_ID = uuid.UUID("6f1c2f7e-4d0b-4c55-9a43-3d0f2c7d9e01")


def _make_row(**overrides) -> dict:
    row = {
        "id": TASK_ID,
        "title": "Buy milk",
        "description": None,
        "due_date": 1_700_000_000_000,
        "due_time": "09:30",
        "priority": "high",
        "completed": False,
        "category": "errands",
        "reminder_sent": False,
        "google_event_id": None,
        "outlook_event_id": None,
        "created_at": datetime(2026, 1, 1, tzinfo=UTC),
    }
    row.update(overrides)
    return row


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class TestModels:
    def test_create_strips_title(self):
        assert TaskCreate(title="  Buy milk ").title == "Buy milk"

    @pytest.mark.parametrize("title", ["", "   "])
    def test_create_rejects_blank_title(self, title):
        with pytest.raises(ValueError):
            TaskCreate(title=title)

    def test_create_rejects_negative_due_date(self):
        with pytest.raises(ValueError):
            TaskCreate(title="x", due_date=-1)

    def test_create_defaults(self):
        data = TaskCreate(title="x")
        assert data.priority is Priority.MEDIUM
        assert data.due_date is None

    def test_update_rejects_explicit_null_title(self):
        with pytest.raises(ValueError):
            TaskUpdate(title=None)

    def test_update_allows_clearing_due_date(self):
        assert TaskUpdate(due_date=None).model_dump(exclude_unset=True) == {"due_date": None}

    def test_is_overdue(self):
        task = _row_to_task(_make_row(due_date=1000))
        assert task.is_overdue(1001)
        assert not task.is_overdue(1000)
        assert not task.model_copy(update={"completed": True}).is_overdue(1001)
        assert not task.model_copy(update={"due_date": None}).is_overdue(1001)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestReads:
    async def test_get_task_maps_row(self):
        pool = make_pool(fetchrow_return=_make_row(google_event_id="evt-1"))
        task = await TaskStore(pool).get_task(TASK_ID)

        assert task.id == TASK_ID
        assert task.priority is Priority.HIGH
        assert task.calendar_event_id(Provider.GOOGLE) == "evt-1"
        assert task.calendar_event_id(Provider.OUTLOOK) is None
        args = pool._conn.fetchrow.call_args.args
        assert "WHERE id = $1" in args[0]
        assert args[1] == TASK_ID

    async def test_get_task_missing(self):
        assert await TaskStore(make_pool()).get_task(TASK_ID) is None

    async def test_require_task_missing(self):
        with pytest.raises(TaskNotFound):
            await TaskStore(make_pool()).require_task(TASK_ID)

    async def test_list_tasks_newest_first(self):
        pool = make_pool(fetch_return=[_make_row(), _make_row(id=uuid.uuid4())])
        tasks = await TaskStore(pool).list_tasks()

        assert len(tasks) == 2
        assert "ORDER BY created_at DESC" in pool._conn.fetch.call_args.args[0]

    async def test_list_overdue_filters(self):
        pool = make_pool(fetch_return=[_make_row()])
        tasks = await TaskStore(pool).list_overdue(1_800_000_000_000)

        assert [t.id for t in tasks] == [TASK_ID]
        sql, cutoff = pool._conn.fetch.call_args.args
        assert "completed = false" in sql
        assert "due_date < $1" in sql
        assert cutoff == 1_800_000_000_000


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


class TestWrites:
    async def test_add_task(self):
        pool = make_pool(fetchrow_return=_make_row())
        data = TaskCreate(title="Buy milk", due_date=1_700_000_000_000, priority="high")

        task = await TaskStore(pool).add_task(data)

        assert task.title == "Buy milk"
        args = pool._conn.fetchrow.call_args.args
        assert args[0].strip().startswith("INSERT INTO tasks")
        assert isinstance(args[1], uuid.UUID)
        assert args[2:] == ("Buy milk", None, 1_700_000_000_000, None, "high", None)

    async def test_toggle_task(self):
        pool = make_pool(fetchrow_return=_make_row(completed=True))
        task = await TaskStore(pool).toggle_task(TASK_ID)

        assert task.completed is True
        assert "completed = NOT completed" in pool._conn.fetchrow.call_args.args[0]

    async def test_toggle_missing(self):
        with pytest.raises(TaskNotFound):
            await TaskStore(make_pool()).toggle_task(TASK_ID)

    async def test_update_writes_only_set_fields(self):
        pool = make_pool(fetchrow_return=_make_row(title="Oat milk", priority="low"))
        changes = TaskUpdate(title="Oat milk", priority=Priority.LOW)

        task = await TaskStore(pool).update_task(TASK_ID, changes)

        assert task.title == "Oat milk"
        args = pool._conn.fetchrow.call_args.args
        assert "title = $2" in args[0]
        assert "priority = $3" in args[0]
        assert "due_date" not in args[0].split("WHERE")[0].split("SET")[1]
        assert args[1:] == (TASK_ID, "Oat milk", "low")

    async def test_update_without_changes_reads_task(self):
        pool = make_pool(fetchrow_return=_make_row())
        await TaskStore(pool).update_task(TASK_ID, TaskUpdate())

        assert "SELECT" in pool._conn.fetchrow.call_args.args[0]

    async def test_update_missing(self):
        with pytest.raises(TaskNotFound):
            await TaskStore(make_pool()).update_task(TASK_ID, TaskUpdate(category="home"))

    async def test_delete_task(self):
        pool = make_pool(execute_return="DELETE 1")
        await TaskStore(pool).delete_task(TASK_ID)
        assert pool._conn.execute.call_args.args == ("DELETE FROM tasks WHERE id = $1", TASK_ID)

    async def test_delete_missing(self):
        with pytest.raises(TaskNotFound):
            await TaskStore(make_pool(execute_return="DELETE 0")).delete_task(TASK_ID)


class TestCompareAndSetEventId:
    @pytest.mark.parametrize(
        ("provider", "column"),
        [(Provider.GOOGLE, "google_event_id"), (Provider.OUTLOOK, "outlook_event_id")],
    )
    async def test_writes_provider_column(self, provider, column):
        pool = make_pool(execute_return="UPDATE 1")

        swapped = await TaskStore(pool).compare_and_set_event_id(
            TASK_ID, provider, expected=None, new="evt-1"
        )

        assert swapped is True
        sql, *params = pool._conn.execute.call_args.args
        assert f"SET {column} = $2" in sql
        assert f"{column} IS NOT DISTINCT FROM $3" in sql
        assert params == [TASK_ID, "evt-1", None]

    async def test_lost_swap(self):
        pool = make_pool(execute_return="UPDATE 0")
        swapped = await TaskStore(pool).compare_and_set_event_id(
            TASK_ID, Provider.GOOGLE, expected="evt-1", new=None
        )
        assert swapped is False
