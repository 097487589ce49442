"""Service wiring and FastAPI dependencies.

Routers declare ``_get_*`` dependency stubs that raise until the app
lifespan (or a test) overrides them; :func:`wire_dependencies` points every
stub at the live :class:`AppServices` instance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx
from fastapi import Header, Request

from tasksync.auth import Identity, decode_identity
from tasksync.calendar.adapters import EventAdapter, build_adapters
from tasksync.calendar.credentials import CredentialStore
from tasksync.calendar.oauth import TokenRefresher
from tasksync.calendar.providers import Provider
from tasksync.calendar.sync import CalendarSync
from tasksync.config import AppConfig
from tasksync.core.logging import set_user_context
from tasksync.db import Database
from tasksync.tasks import TaskStore

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    """Long-lived objects shared by all requests."""

    config: AppConfig
    http_client: httpx.AsyncClient
    tasks: TaskStore
    credentials: CredentialStore
    refresher: TokenRefresher
    adapters: dict[Provider, EventAdapter]
    sync: CalendarSync
    database: Database | None = None

    async def aclose(self) -> None:
        await self.http_client.aclose()
        if self.database is not None:
            await self.database.close()


def build_services(
    config: AppConfig,
    pool,
    *,
    http_client: httpx.AsyncClient | None = None,
    database: Database | None = None,
) -> AppServices:
    """Assemble stores, refresher, adapters and the sync orchestrator on *pool*."""
    client = http_client or httpx.AsyncClient(timeout=config.http_timeout_seconds)
    tasks = TaskStore(pool)
    credentials = CredentialStore(pool)
    refresher = TokenRefresher(credentials, config.oauth, client)
    adapters = build_adapters(client, timezone=config.timezone)
    return AppServices(
        config=config,
        http_client=client,
        tasks=tasks,
        credentials=credentials,
        refresher=refresher,
        adapters=adapters,
        sync=CalendarSync(tasks, credentials, refresher, adapters),
        database=database,
    )


async def open_services(config: AppConfig) -> AppServices:
    """Provision and connect the database, then build services on its pool."""
    database = Database.from_env(config.db_name)
    await database.provision()
    pool = await database.connect()
    return build_services(config, pool, database=database)


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_identity(
    request: Request,
    authorization: str | None = Header(default=None),
) -> Identity | None:
    """Resolve the caller from the ``Authorization: Bearer`` header.

    Returns ``None`` for anonymous callers; operations that need an identity
    raise ``Unauthenticated`` themselves.  The subject is bound to the
    logging context of the request.
    """
    config: AppConfig | None = getattr(request.app.state, "config", None)
    secret = config.jwt_secret if config is not None else None
    identity = decode_identity(_bearer_token(authorization), secret)
    set_user_context(identity.subject if identity else None)
    return identity


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def wire_dependencies(app: FastAPI, services: AppServices) -> None:
    """Override every router-level dependency stub with *services*."""
    from tasksync.api.routers import calendar, tasks

    app.dependency_overrides[tasks._get_task_store] = lambda: services.tasks
    app.dependency_overrides[calendar._get_credential_store] = lambda: services.credentials
    app.dependency_overrides[calendar._get_refresher] = lambda: services.refresher
    app.dependency_overrides[calendar._get_sync] = lambda: services.sync
    logger.debug("Wired API dependencies")
