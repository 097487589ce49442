"""Per-provider calendar endpoints.

Every route is mounted under ``/api/calendar/{provider}`` where
``provider`` is ``google`` or ``outlook``.

Endpoints
---------
GET     /authorize              browser authorization URL (public client id)
POST    /connect                exchange an authorization code and store tokens
PUT     /tokens                 store tokens obtained elsewhere
GET     /tokens                 connection metadata (never raw tokens)
DELETE  /tokens                 forget the stored credential
POST    /refresh                force a refresh-token grant
POST    /tasks/{task_id}        create a calendar event for the task
DELETE  /tasks/{task_id}        delete the task's calendar event

All but ``/authorize`` require a bearer identity.
"""

from __future__ import annotations

import logging
import secrets
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from tasksync.api.deps import get_identity
from tasksync.api.models import ApiResponse
from tasksync.api.models.calendar import (
    AuthorizationUrlResponse,
    ConnectRequest,
    CredentialStatus,
    DisconnectResponse,
    RefreshResponse,
    RemovalResponse,
    StoreTokensRequest,
    SyncResponse,
)
from tasksync.auth import Identity, require_identity
from tasksync.calendar.credentials import CredentialStore
from tasksync.calendar.oauth import TokenRefresher
from tasksync.calendar.providers import Provider, get_profile
from tasksync.calendar.sync import CalendarSync

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/calendar/{provider}", tags=["calendar"])


def _get_credential_store() -> CredentialStore:
    """Dependency stub; overridden at app startup or in tests."""
    raise RuntimeError("CredentialStore not initialized")


def _get_refresher() -> TokenRefresher:
    """Dependency stub; overridden at app startup or in tests."""
    raise RuntimeError("TokenRefresher not initialized")


def _get_sync() -> CalendarSync:
    """Dependency stub; overridden at app startup or in tests."""
    raise RuntimeError("CalendarSync not initialized")


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


@router.get("/authorize", response_model=ApiResponse[AuthorizationUrlResponse])
async def authorize(
    provider: Provider,
    redirect_uri: str = Query(min_length=1),
    state: str | None = Query(default=None),
    refresher: TokenRefresher = Depends(_get_refresher),
) -> ApiResponse[AuthorizationUrlResponse]:
    """Return the URL that starts the provider's consent screen.

    A random ``state`` is generated when the caller does not supply one.
    """
    state = state or secrets.token_urlsafe(32)
    url = refresher.authorization_url(provider, redirect_uri, state)
    return ApiResponse[AuthorizationUrlResponse](
        data=AuthorizationUrlResponse(
            provider=provider.value,
            authorization_url=url,
            state=state,
        )
    )


@router.post("/connect", response_model=ApiResponse[CredentialStatus])
async def connect(
    provider: Provider,
    body: ConnectRequest,
    identity: Identity | None = Depends(get_identity),
    refresher: TokenRefresher = Depends(_get_refresher),
    store: CredentialStore = Depends(_get_credential_store),
) -> ApiResponse[CredentialStatus]:
    """Exchange an authorization code and store the resulting credential."""
    user = require_identity(identity)
    grant = await refresher.exchange_code(provider, body.code, body.redirect_uri)
    credential = await store.store(
        user,
        provider,
        access_token=grant.access_token,
        refresh_token=grant.refresh_token,
        expires_at=grant.expires_at,
        calendar_id=body.calendar_id or get_profile(provider).default_calendar_id,
    )
    return ApiResponse[CredentialStatus](
        data=CredentialStatus.from_credential(provider.value, credential)
    )


@router.post("/refresh", response_model=ApiResponse[RefreshResponse])
async def refresh(
    provider: Provider,
    identity: Identity | None = Depends(get_identity),
    refresher: TokenRefresher = Depends(_get_refresher),
) -> ApiResponse[RefreshResponse]:
    refreshed = await refresher.refresh(identity, provider)
    return ApiResponse[RefreshResponse](
        data=RefreshResponse(provider=provider.value, expires_at=refreshed.expires_at)
    )


# ---------------------------------------------------------------------------
# Stored tokens
# ---------------------------------------------------------------------------


@router.put("/tokens", response_model=ApiResponse[CredentialStatus])
async def store_tokens(
    provider: Provider,
    body: StoreTokensRequest,
    identity: Identity | None = Depends(get_identity),
    store: CredentialStore = Depends(_get_credential_store),
) -> ApiResponse[CredentialStatus]:
    credential = await store.store(
        identity,
        provider,
        access_token=body.access_token,
        refresh_token=body.refresh_token,
        expires_at=body.expires_at,
        calendar_id=body.calendar_id or get_profile(provider).default_calendar_id,
    )
    return ApiResponse[CredentialStatus](
        data=CredentialStatus.from_credential(provider.value, credential)
    )


@router.get("/tokens", response_model=ApiResponse[CredentialStatus])
async def get_tokens(
    provider: Provider,
    identity: Identity | None = Depends(get_identity),
    store: CredentialStore = Depends(_get_credential_store),
) -> ApiResponse[CredentialStatus]:
    """Connection metadata for the caller.  Token values are never returned."""
    user = require_identity(identity)
    credential = await store.get(user.subject, provider)
    return ApiResponse[CredentialStatus](
        data=CredentialStatus.from_credential(provider.value, credential)
    )


@router.delete("/tokens", response_model=ApiResponse[DisconnectResponse])
async def delete_tokens(
    provider: Provider,
    identity: Identity | None = Depends(get_identity),
    store: CredentialStore = Depends(_get_credential_store),
) -> ApiResponse[DisconnectResponse]:
    user = require_identity(identity)
    deleted = await store.delete(user.subject, provider)
    return ApiResponse[DisconnectResponse](
        data=DisconnectResponse(provider=provider.value, deleted=deleted)
    )


# ---------------------------------------------------------------------------
# Task sync
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}", response_model=ApiResponse[SyncResponse])
async def sync_task(
    provider: Provider,
    task_id: UUID,
    identity: Identity | None = Depends(get_identity),
    sync: CalendarSync = Depends(_get_sync),
) -> ApiResponse[SyncResponse]:
    """Put the task on the caller's calendar as a one-hour event."""
    result = await sync.sync_task(identity, task_id, provider)
    return ApiResponse[SyncResponse](
        data=SyncResponse(
            task_id=task_id,
            provider=provider.value,
            event_id=result.event_id,
            token_refreshed=result.token_refreshed,
        )
    )


@router.delete("/tasks/{task_id}", response_model=ApiResponse[RemovalResponse])
async def remove_task(
    provider: Provider,
    task_id: UUID,
    identity: Identity | None = Depends(get_identity),
    sync: CalendarSync = Depends(_get_sync),
) -> ApiResponse[RemovalResponse]:
    """Delete the task's calendar event; succeeds when there is nothing to delete."""
    result = await sync.remove_task(identity, task_id, provider)
    return ApiResponse[RemovalResponse](
        data=RemovalResponse(
            task_id=task_id,
            provider=provider.value,
            status=result.status,
            token_refreshed=result.token_refreshed,
        )
    )
