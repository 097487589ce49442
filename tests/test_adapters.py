"""Tests for the Google and Outlook event adapters."""

from __future__ import annotations

import uuid

import httpx
import pytest

from tasksync.calendar.adapters import (
    DEFAULT_EVENT_DESCRIPTION,
    GoogleEventAdapter,
    OutlookEventAdapter,
    build_adapters,
    format_event_time,
)
from tasksync.calendar.errors import (
    RemoteEventCreateFailed,
    RemoteEventDeleteFailed,
    TaskNotSchedulable,
)
from tasksync.calendar.providers import Provider
from tasksync.tasks import Task
from tests.conftest import json_of

pytestmark = pytest.mark.unit

DUE = 1_700_000_000_000


def _task(**overrides) -> Task:
    fields = {"id": uuid.uuid4(), "title": "Buy milk", "due_date": DUE}
    fields.update(overrides)
    return Task(**fields)


def test_format_event_time():
    assert format_event_time(DUE) == "2023-11-14T22:13:20.000Z"
    assert format_event_time(DUE + 3_600_000) == "2023-11-14T23:13:20.000Z"
    assert format_event_time(DUE + 5) == "2023-11-14T22:13:20.005Z"


# ---------------------------------------------------------------------------
# Event bodies
# ---------------------------------------------------------------------------


class TestEventBodies:
    def test_google_body(self):
        adapter = GoogleEventAdapter(httpx.AsyncClient(), timezone="Europe/London")

        body = adapter.build_event_body(_task(description="2 litres"))

        assert body == {
            "summary": "📝 Buy milk",
            "description": "2 litres",
            "start": {"dateTime": "2023-11-14T22:13:20.000Z", "timeZone": "Europe/London"},
            "end": {"dateTime": "2023-11-14T23:13:20.000Z", "timeZone": "Europe/London"},
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "popup", "minutes": 30},
                    {"method": "popup", "minutes": 0},
                ],
            },
        }

    def test_outlook_body(self):
        adapter = OutlookEventAdapter(httpx.AsyncClient())

        body = adapter.build_event_body(_task())

        assert body["subject"] == "📝 Buy milk"
        assert body["body"] == {"contentType": "text", "content": DEFAULT_EVENT_DESCRIPTION}
        assert body["start"] == {"dateTime": "2023-11-14T22:13:20.000Z", "timeZone": "UTC"}
        assert body["end"]["dateTime"] == "2023-11-14T23:13:20.000Z"
        assert body["reminderMinutesBeforeStart"] == 30
        assert body["isReminderOn"] is True

    def test_blank_description_uses_default(self):
        adapter = GoogleEventAdapter(httpx.AsyncClient())
        assert adapter.build_event_body(_task(description=""))["description"] == (
            DEFAULT_EVENT_DESCRIPTION
        )

    @pytest.mark.parametrize("adapter_cls", [GoogleEventAdapter, OutlookEventAdapter])
    def test_no_due_date(self, adapter_cls):
        adapter = adapter_cls(httpx.AsyncClient())
        with pytest.raises(TaskNotSchedulable):
            adapter.build_event_body(_task(due_date=None))

    def test_build_adapters_covers_every_provider(self):
        adapters = build_adapters(httpx.AsyncClient(), timezone="UTC")
        assert set(adapters) == set(Provider)
        assert all(adapters[p].provider is p for p in Provider)


# ---------------------------------------------------------------------------
# create_event / delete_event
# ---------------------------------------------------------------------------


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestCreateEvent:
    async def test_returns_event_id(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "evt-123", "status": "confirmed"})

        async with _client(handler) as client:
            event_id = await GoogleEventAdapter(client).create_event(
                "tok", "me@example.com", _task()
            )

        assert event_id == "evt-123"
        (request,) = seen
        assert str(request.url) == (
            "https://www.googleapis.com/calendar/v3/calendars/me%40example.com/events"
        )
        assert request.headers["Authorization"] == "Bearer tok"
        assert json_of(request)["summary"] == "📝 Buy milk"

    async def test_rejected(self):
        async with _client(lambda r: httpx.Response(401, json={"error": "expired"})) as client:
            with pytest.raises(RemoteEventCreateFailed) as exc_info:
                await OutlookEventAdapter(client).create_event("tok", "calendar", _task())

        assert exc_info.value.status_code == 401
        assert str(exc_info.value) == "Failed to create calendar event: Unauthorized"

    async def test_missing_id(self):
        async with _client(lambda r: httpx.Response(201, json={})) as client:
            with pytest.raises(RemoteEventCreateFailed):
                await OutlookEventAdapter(client).create_event("tok", "calendar", _task())

    async def test_no_request_without_due_date(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "x"})

        async with _client(handler) as client:
            adapter = GoogleEventAdapter(client)
            with pytest.raises(TaskNotSchedulable):
                await adapter.create_event("tok", "primary", _task(due_date=None))
        assert seen == []


class TestDeleteEvent:
    @pytest.mark.parametrize(
        ("adapter_cls", "status", "already_gone"),
        [
            (GoogleEventAdapter, 204, False),
            (GoogleEventAdapter, 200, False),
            (GoogleEventAdapter, 410, True),
            (OutlookEventAdapter, 204, False),
            (OutlookEventAdapter, 404, True),
        ],
    )
    async def test_success_statuses(self, adapter_cls, status, already_gone):
        async with _client(lambda r: httpx.Response(status)) as client:
            result = await adapter_cls(client).delete_event("tok", "primary", "evt-1")
        assert result.already_gone is already_gone

    @pytest.mark.parametrize(
        ("adapter_cls", "status"),
        [
            (GoogleEventAdapter, 404),
            (GoogleEventAdapter, 500),
            (OutlookEventAdapter, 410),
            (OutlookEventAdapter, 403),
        ],
    )
    async def test_failure_statuses(self, adapter_cls, status):
        async with _client(lambda r: httpx.Response(status)) as client:
            with pytest.raises(RemoteEventDeleteFailed) as exc_info:
                await adapter_cls(client).delete_event("tok", "primary", "evt-1")
        assert exc_info.value.status_code == status

    async def test_event_id_is_path_quoted(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        async with _client(handler) as client:
            await OutlookEventAdapter(client).delete_event("tok", "calendar", "AAMk/abc=")

        assert seen[0].url.raw_path.decode().endswith("/calendar/events/AAMk%2Fabc%3D")

    async def test_blank_event_id(self):
        async with _client(lambda r: httpx.Response(204)) as client:
            with pytest.raises(ValueError):
                await GoogleEventAdapter(client).delete_event("tok", "primary", " ")

    async def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        async with _client(handler) as client:
            with pytest.raises(RemoteEventDeleteFailed) as exc_info:
                await GoogleEventAdapter(client).delete_event("tok", "primary", "evt-1")
        assert exc_info.value.status_code is None
