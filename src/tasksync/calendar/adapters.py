"""Calendar event adapters.

An adapter turns a :class:`~tasksync.tasks.Task` into a provider event
payload, creates it with a bearer token, and deletes it again.  Adapters hold
no per-call state; the access token and calendar id arrive with every call.

Every event is a fixed one-hour block starting at the task's due date.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from tasksync.calendar.errors import (
    RemoteEventCreateFailed,
    RemoteEventDeleteFailed,
    TaskNotSchedulable,
)
from tasksync.calendar.providers import PROVIDER_PROFILES, Provider, ProviderProfile
from tasksync.calendar.remote import (
    is_success,
    json_object,
    safe_error_message,
    status_text,
    transport_error_text,
)
from tasksync.core.clock import ms_to_datetime
from tasksync.tasks import Task

logger = logging.getLogger(__name__)

EVENT_DURATION_MS = 3_600_000
EVENT_TITLE_PREFIX = "📝 "
DEFAULT_EVENT_DESCRIPTION = "Task from Bebu's Reminder App"
REMINDER_MINUTES_BEFORE_START = 30


def format_event_time(epoch_ms: int) -> str:
    """ISO-8601 UTC with millisecond precision: ``2023-11-14T22:13:20.000Z``."""
    return ms_to_datetime(epoch_ms).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class DeleteResult:
    """Outcome of a successful delete.

    ``already_gone`` is True when the provider reported the event as
    missing, which counts as success.
    """

    already_gone: bool = False


class EventAdapter(abc.ABC):
    """Request/response translator for one provider's event API."""

    provider: Provider

    def __init__(self, http_client: httpx.AsyncClient, *, timezone: str = "UTC") -> None:
        self._http_client = http_client
        self._timezone = timezone

    @property
    def profile(self) -> ProviderProfile:
        return PROVIDER_PROFILES[self.provider]

    @abc.abstractmethod
    def build_event_body(self, task: Task) -> dict[str, Any]:
        """Provider-specific JSON body for *task*."""

    def _time_window(self, task: Task) -> tuple[dict[str, str], dict[str, str]]:
        if task.due_date is None:
            raise TaskNotSchedulable(task.id)
        start = {"dateTime": format_event_time(task.due_date), "timeZone": self._timezone}
        end = {
            "dateTime": format_event_time(task.due_date + EVENT_DURATION_MS),
            "timeZone": self._timezone,
        }
        return start, end

    async def create_event(self, access_token: str, calendar_id: str, task: Task) -> str:
        """Create the event and return the provider's event id.

        Raises
        ------
        TaskNotSchedulable
            If the task has no due date.
        RemoteEventCreateFailed
            On a non-2xx answer, a transport failure, or a 2xx body without
            an ``id``.
        """
        body = self.build_event_body(task)
        url = self.profile.events_url(calendar_id)
        try:
            response = await self._http_client.post(
                url,
                json=body,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as exc:
            raise RemoteEventCreateFailed(
                status_code=None, status_text=transport_error_text(exc)
            ) from exc

        if not is_success(response):
            logger.warning(
                "%s event create rejected: task=%s status=%d detail=%s",
                self.profile.display_name,
                task.id,
                response.status_code,
                safe_error_message(response),
            )
            raise RemoteEventCreateFailed(
                status_code=response.status_code, status_text=status_text(response)
            )

        payload = json_object(response) or {}
        event_id = payload.get("id")
        if not isinstance(event_id, str) or not event_id.strip():
            raise RemoteEventCreateFailed(
                status_code=response.status_code,
                status_text="response did not include an event id",
            )
        logger.info(
            "%s event created: task=%s calendar=%r event=%s",
            self.profile.display_name,
            task.id,
            calendar_id,
            event_id,
        )
        return event_id

    async def delete_event(
        self, access_token: str, calendar_id: str, event_id: str
    ) -> DeleteResult:
        """Delete the event; the provider's "gone" status counts as success.

        Raises
        ------
        RemoteEventDeleteFailed
            On any other non-2xx answer or a transport failure.
        """
        normalized_event_id = event_id.strip()
        if not normalized_event_id:
            raise ValueError("event_id must be a non-empty string")

        url = self.profile.event_url(calendar_id, normalized_event_id)
        try:
            response = await self._http_client.delete(
                url,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as exc:
            raise RemoteEventDeleteFailed(
                status_code=None, status_text=transport_error_text(exc)
            ) from exc

        if response.status_code == self.profile.gone_status:
            logger.debug(
                "%s event %s already deleted; treating as success",
                self.profile.display_name,
                normalized_event_id,
            )
            return DeleteResult(already_gone=True)

        if not is_success(response):
            logger.warning(
                "%s event delete rejected: event=%s status=%d detail=%s",
                self.profile.display_name,
                normalized_event_id,
                response.status_code,
                safe_error_message(response),
            )
            raise RemoteEventDeleteFailed(
                status_code=response.status_code, status_text=status_text(response)
            )
        return DeleteResult()


class GoogleEventAdapter(EventAdapter):
    provider = Provider.GOOGLE

    def build_event_body(self, task: Task) -> dict[str, Any]:
        start, end = self._time_window(task)
        return {
            "summary": f"{EVENT_TITLE_PREFIX}{task.title}",
            "description": task.description or DEFAULT_EVENT_DESCRIPTION,
            "start": start,
            "end": end,
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "popup", "minutes": REMINDER_MINUTES_BEFORE_START},
                    {"method": "popup", "minutes": 0},
                ],
            },
        }


class OutlookEventAdapter(EventAdapter):
    provider = Provider.OUTLOOK

    def build_event_body(self, task: Task) -> dict[str, Any]:
        start, end = self._time_window(task)
        return {
            "subject": f"{EVENT_TITLE_PREFIX}{task.title}",
            "body": {
                "contentType": "text",
                "content": task.description or DEFAULT_EVENT_DESCRIPTION,
            },
            "start": start,
            "end": end,
            "reminderMinutesBeforeStart": REMINDER_MINUTES_BEFORE_START,
            "isReminderOn": True,
        }


ADAPTER_CLASSES: dict[Provider, type[EventAdapter]] = {
    Provider.GOOGLE: GoogleEventAdapter,
    Provider.OUTLOOK: OutlookEventAdapter,
}


def build_adapters(
    http_client: httpx.AsyncClient, *, timezone: str
) -> dict[Provider, EventAdapter]:
    """One adapter per provider sharing *http_client*."""
    return {
        provider: adapter_cls(http_client, timezone=timezone)
        for provider, adapter_cls in ADAPTER_CLASSES.items()
    }
