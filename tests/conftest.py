"""Shared test doubles: in-memory stores, asyncpg pool mocks, fake provider APIs."""

from __future__ import annotations

import json
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from tasksync.auth import Identity, require_identity
from tasksync.calendar.adapters import build_adapters
from tasksync.calendar.credentials import CalendarCredential
from tasksync.calendar.errors import TaskNotFound
from tasksync.calendar.oauth import TokenRefresher
from tasksync.calendar.providers import Provider
from tasksync.calendar.sync import CalendarSync
from tasksync.config import OAuthClientConfig
from tasksync.tasks import EVENT_ID_COLUMNS, Task, TaskCreate

NOW_MS = 1_700_000_000_000
CREATED_AT = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)
USER = Identity(subject="user-123")


# ---------------------------------------------------------------------------
# asyncpg pool doubles
# ---------------------------------------------------------------------------


def make_pool(
    *,
    fetchrow_return=None,
    fetch_return=None,
    execute_return: str = "UPDATE 0",
) -> MagicMock:
    """Build a minimal asyncpg pool mock; the connection is ``pool._conn``."""
    conn = AsyncMock()
    conn.fetchrow.return_value = fetchrow_return
    conn.fetch.return_value = fetch_return or []
    conn.execute.return_value = execute_return

    cm = AsyncMock()
    cm.__aenter__ = AsyncMock(return_value=conn)
    cm.__aexit__ = AsyncMock(return_value=False)

    pool = MagicMock()
    pool.acquire.return_value = cm
    pool._conn = conn
    return pool


# ---------------------------------------------------------------------------
# In-memory stores
# ---------------------------------------------------------------------------


class InMemoryTaskStore:
    """Dict-backed stand-in for ``TaskStore``.

    ``before_swap`` runs just before each compare-and-swap so a test can
    simulate another writer changing the row.
    """

    def __init__(self) -> None:
        self.tasks: dict[uuid.UUID, Task] = {}
        self.before_swap: Callable[[uuid.UUID, Provider], None] | None = None

    def add(self, **fields: Any) -> Task:
        task = Task(id=uuid.uuid4(), created_at=CREATED_AT, **fields)
        self.tasks[task.id] = task
        return task

    async def add_task(self, data: TaskCreate) -> Task:
        return self.add(**data.model_dump())

    async def get_task(self, task_id: uuid.UUID) -> Task | None:
        return self.tasks.get(task_id)

    async def require_task(self, task_id: uuid.UUID) -> Task:
        task = self.tasks.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        return task

    def set_event_id(self, task_id: uuid.UUID, provider: Provider, value: str | None) -> None:
        task = self.tasks[task_id]
        self.tasks[task_id] = task.model_copy(update={EVENT_ID_COLUMNS[provider]: value})

    async def compare_and_set_event_id(
        self,
        task_id: uuid.UUID,
        provider: Provider,
        *,
        expected: str | None,
        new: str | None,
    ) -> bool:
        if self.before_swap is not None:
            self.before_swap(task_id, provider)
        task = self.tasks.get(task_id)
        if task is None or task.calendar_event_id(provider) != expected:
            return False
        self.set_event_id(task_id, provider, new)
        return True


class InMemoryCredentialStore:
    """Dict-backed stand-in for ``CredentialStore`` keyed on (user, provider)."""

    def __init__(self) -> None:
        self.rows: dict[tuple[str, Provider], CalendarCredential] = {}
        self.store_calls = 0

    def put(
        self,
        provider: Provider = Provider.GOOGLE,
        *,
        user_id: str = USER.subject,
        access_token: str = "stored-access",
        refresh_token: str | None = "stored-refresh",
        expires_at: int = NOW_MS + 3_600_000,
        calendar_id: str = "primary",
    ) -> CalendarCredential:
        credential = CalendarCredential(
            user_id=user_id,
            provider=provider,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            calendar_id=calendar_id,
            created_at=CREATED_AT,
            updated_at=CREATED_AT,
        )
        self.rows[(user_id, provider)] = credential
        return credential

    async def store(
        self,
        identity: Identity | None,
        provider: Provider,
        *,
        access_token: str,
        refresh_token: str | None,
        expires_at: int,
        calendar_id: str,
    ) -> CalendarCredential:
        user = require_identity(identity)
        self.store_calls += 1
        existing = self.rows.get((user.subject, provider))
        credential = CalendarCredential(
            user_id=user.subject,
            provider=provider,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            calendar_id=calendar_id,
            created_at=existing.created_at if existing else CREATED_AT,
            updated_at=CREATED_AT,
        )
        self.rows[(user.subject, provider)] = credential
        return credential

    async def get(self, user_id: str, provider: Provider) -> CalendarCredential | None:
        return self.rows.get((user_id, provider))

    async def delete(self, user_id: str, provider: Provider) -> bool:
        return self.rows.pop((user_id, provider), None) is not None


# ---------------------------------------------------------------------------
# Fake provider HTTP API
# ---------------------------------------------------------------------------


@dataclass
class FakeProviderApi:
    """Answers token, create and delete calls for both providers.

    Every request is recorded in ``requests`` in arrival order.
    """

    token_status: int = 200
    token_payload: dict[str, Any] = field(
        default_factory=lambda: {"access_token": "fresh-access", "expires_in": 3600}
    )
    create_status: int = 200
    event_id: str = "evt-1"
    delete_status: int = 204
    requests: list[httpx.Request] = field(default_factory=list)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/token"):
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_grant"})
            return httpx.Response(200, json=self.token_payload)
        if request.method == "POST":
            if self.create_status >= 300:
                return httpx.Response(self.create_status, json={"error": {"message": "nope"}})
            return httpx.Response(self.create_status, json={"id": self.event_id})
        if request.method == "DELETE":
            return httpx.Response(self.delete_status)
        return httpx.Response(405)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    @property
    def token_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith("/token")]

    @property
    def event_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if "/events" in r.url.path]


def form_of(request: httpx.Request) -> dict[str, str]:
    """Decode an ``application/x-www-form-urlencoded`` request body."""
    return dict(httpx.QueryParams(request.content.decode()))


def json_of(request: httpx.Request) -> dict[str, Any]:
    return json.loads(request.content)


OAUTH_CLIENTS = {
    Provider.GOOGLE: OAuthClientConfig(client_id="g-id", client_secret="g-secret"),
    Provider.OUTLOOK: OAuthClientConfig(
        client_id="o-id", client_secret="o-secret", public_client_id="o-public"
    ),
}


@dataclass
class SyncHarness:
    api: FakeProviderApi
    tasks: InMemoryTaskStore
    credentials: InMemoryCredentialStore
    refresher: TokenRefresher
    sync: CalendarSync
    http_client: httpx.AsyncClient

    def expire(self, provider: Provider = Provider.GOOGLE) -> None:
        key = (USER.subject, provider)
        self.credentials.rows[key] = replace(self.credentials.rows[key], expires_at=NOW_MS)


@pytest.fixture
def fake_api() -> FakeProviderApi:
    return FakeProviderApi()


@pytest.fixture
def task_store() -> InMemoryTaskStore:
    return InMemoryTaskStore()


@pytest.fixture
def credential_store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
async def harness(fake_api, task_store, credential_store):
    client = fake_api.client()
    refresher = TokenRefresher(credential_store, OAUTH_CLIENTS, client, clock=lambda: NOW_MS)
    adapters = build_adapters(client, timezone="Europe/London")
    sync = CalendarSync(task_store, credential_store, refresher, adapters)
    yield SyncHarness(
        api=fake_api,
        tasks=task_store,
        credentials=credential_store,
        refresher=refresher,
        sync=sync,
        http_client=client,
    )
    await client.aclose()
