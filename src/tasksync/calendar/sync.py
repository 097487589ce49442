"""One-way task → calendar sync.

``CalendarSync`` ties the stores, the token refresher and the event adapters
together for the two user-facing operations: put a task on a calendar and
take it off again.

Concurrency model
-----------------
- Operations on the same ``(task, provider)`` pair are serialized in-process
  by an ``asyncio.Lock``.
- The task's event id field is committed with a compare-and-swap against
  the value read at the start of the operation, which catches writers in
  other processes.  A lost swap raises :class:`SyncConflict`; on create, the
  orphaned remote event is deleted first (best effort).
"""

from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from dataclasses import dataclass
from enum import StrEnum

from opentelemetry import trace

from tasksync.auth import Identity, require_identity
from tasksync.calendar.adapters import EventAdapter
from tasksync.calendar.credentials import CredentialStore
from tasksync.calendar.errors import CalendarNotConnected, RemoteCallError, SyncConflict
from tasksync.calendar.oauth import TokenRefresher
from tasksync.calendar.providers import Provider, get_profile
from tasksync.tasks import EVENT_ID_COLUMNS, Task, TaskStore

logger = logging.getLogger(__name__)

_tracer = trace.get_tracer("tasksync")


@dataclass(frozen=True)
class SyncResult:
    task: Task
    event_id: str
    token_refreshed: bool = False


class RemovalStatus(StrEnum):
    REMOVED = "removed"
    ALREADY_GONE = "already_gone"
    NOTHING_TO_REMOVE = "nothing_to_remove"
    NOT_CONNECTED = "not_connected"


@dataclass(frozen=True)
class RemovalResult:
    task: Task
    status: RemovalStatus
    token_refreshed: bool = False

    @property
    def remote_call_made(self) -> bool:
        return self.status in (RemovalStatus.REMOVED, RemovalStatus.ALREADY_GONE)


class CalendarSync:
    """Sync orchestrator for all providers.

    Parameters
    ----------
    tasks:
        Task persistence; the event id fields are written through its
        compare-and-swap.
    credentials:
        Per-user OAuth credential store.
    refresher:
        Supplies a valid access token, refreshing an expired one.
    adapters:
        One event adapter per provider.
    """

    def __init__(
        self,
        tasks: TaskStore,
        credentials: CredentialStore,
        refresher: TokenRefresher,
        adapters: dict[Provider, EventAdapter],
    ) -> None:
        self._tasks = tasks
        self._credentials = credentials
        self._refresher = refresher
        self._adapters = adapters
        self._locks: weakref.WeakValueDictionary[tuple[uuid.UUID, Provider], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _adapter(self, provider: Provider) -> EventAdapter:
        try:
            return self._adapters[provider]
        except KeyError:
            raise ValueError(f"No event adapter registered for {provider.value!r}") from None

    def _lock_for(self, task_id: uuid.UUID, provider: Provider) -> asyncio.Lock:
        key = (task_id, provider)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def sync_task(
        self,
        identity: Identity | None,
        task_id: uuid.UUID,
        provider: Provider,
    ) -> SyncResult:
        """Create a calendar event for the task and record its id on the task.

        Raises
        ------
        Unauthenticated
            Without an identity.
        TaskNotFound
            If the task does not exist.
        CalendarNotConnected
            If the caller has no stored credential for *provider*.
        NoRefreshToken, MissingProviderCredentials, TokenRefreshFailed
            When an expired token cannot be renewed.
        TaskNotSchedulable
            If the task has no due date.
        RemoteEventCreateFailed
            If the provider rejects the event.
        SyncConflict
            If the task's event id changed while the event was being created.
        """
        user = require_identity(identity)
        adapter = self._adapter(provider)
        profile = get_profile(provider)

        with _tracer.start_as_current_span("tasksync.calendar.sync_task") as span:
            span.set_attribute("tasksync.provider", provider.value)
            span.set_attribute("tasksync.task_id", str(task_id))

            async with self._lock_for(task_id, provider):
                task = await self._tasks.require_task(task_id)
                previous_event_id = task.calendar_event_id(provider)

                credential = await self._credentials.get(user.subject, provider)
                if credential is None:
                    raise CalendarNotConnected(profile.display_name)

                access_token, refreshed = await self._refresher.ensure_access_token(
                    user, provider, credential
                )
                span.set_attribute("tasksync.token_refreshed", refreshed)

                if previous_event_id is not None:
                    logger.info(
                        "Task %s already has %s event %s; creating a replacement",
                        task_id,
                        profile.display_name,
                        previous_event_id,
                    )

                event_id = await adapter.create_event(access_token, credential.calendar_id, task)

                committed = await self._tasks.compare_and_set_event_id(
                    task_id, provider, expected=previous_event_id, new=event_id
                )
                if not committed:
                    await self._discard_orphan(
                        adapter, access_token, credential.calendar_id, event_id
                    )
                    raise SyncConflict(
                        f"Task {task_id} changed while syncing to {profile.display_name}"
                    )

        synced = task.model_copy(update={EVENT_ID_COLUMNS[provider]: event_id})
        logger.info(
            "Task %s synced to %s: event=%s refreshed=%s",
            task_id,
            profile.display_name,
            event_id,
            refreshed,
        )
        return SyncResult(task=synced, event_id=event_id, token_refreshed=refreshed)

    async def _discard_orphan(
        self,
        adapter: EventAdapter,
        access_token: str,
        calendar_id: str,
        event_id: str,
    ) -> None:
        try:
            await adapter.delete_event(access_token, calendar_id, event_id)
        except RemoteCallError as exc:
            logger.warning(
                "Could not delete orphaned %s event %s: %s",
                adapter.profile.display_name,
                event_id,
                exc,
            )

    # ------------------------------------------------------------------
    # Remove
    # ------------------------------------------------------------------

    async def remove_task(
        self,
        identity: Identity | None,
        task_id: uuid.UUID,
        provider: Provider,
    ) -> RemovalResult:
        """Delete the task's calendar event and clear its event id.

        A task with no event under *provider*, or a caller without a stored
        credential, succeeds without contacting the provider.  The event id
        is only cleared after the provider confirmed the delete (or reported
        the event already gone).

        Raises
        ------
        Unauthenticated
            Without an identity.
        TaskNotFound
            If the task does not exist.
        NoRefreshToken, MissingProviderCredentials, TokenRefreshFailed
            When an expired token cannot be renewed.
        RemoteEventDeleteFailed
            If the provider rejects the delete; the event id is kept.
        SyncConflict
            If the task's event id changed while the event was being deleted.
        """
        user = require_identity(identity)
        adapter = self._adapter(provider)
        profile = get_profile(provider)

        with _tracer.start_as_current_span("tasksync.calendar.remove_task") as span:
            span.set_attribute("tasksync.provider", provider.value)
            span.set_attribute("tasksync.task_id", str(task_id))

            async with self._lock_for(task_id, provider):
                task = await self._tasks.require_task(task_id)
                event_id = task.calendar_event_id(provider)
                if event_id is None:
                    span.set_attribute("tasksync.removal_status", RemovalStatus.NOTHING_TO_REMOVE)
                    return RemovalResult(task=task, status=RemovalStatus.NOTHING_TO_REMOVE)

                credential = await self._credentials.get(user.subject, provider)
                if credential is None:
                    span.set_attribute("tasksync.removal_status", RemovalStatus.NOT_CONNECTED)
                    return RemovalResult(task=task, status=RemovalStatus.NOT_CONNECTED)

                access_token, refreshed = await self._refresher.ensure_access_token(
                    user, provider, credential
                )
                result = await adapter.delete_event(access_token, credential.calendar_id, event_id)

                cleared = await self._tasks.compare_and_set_event_id(
                    task_id, provider, expected=event_id, new=None
                )
                if not cleared:
                    raise SyncConflict(
                        f"Task {task_id} changed while removing it from {profile.display_name}"
                    )

                status = (
                    RemovalStatus.ALREADY_GONE if result.already_gone else RemovalStatus.REMOVED
                )
                span.set_attribute("tasksync.removal_status", status)

        logger.info(
            "Task %s removed from %s: event=%s status=%s",
            task_id,
            profile.display_name,
            event_id,
            status,
        )
        return RemovalResult(
            task=task.model_copy(update={EVENT_ID_COLUMNS[provider]: None}),
            status=status,
            token_refreshed=refreshed,
        )
