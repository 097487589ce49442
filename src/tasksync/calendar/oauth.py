"""OAuth token lifecycle: authorization URL, code exchange, refresh.

All three go to the provider's token endpoint described by its
:class:`~tasksync.calendar.providers.ProviderProfile`; Google and Outlook
differ only in the optional ``scope`` form field and authorize-URL extras.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import httpx

from tasksync.auth import Identity, require_identity
from tasksync.calendar.credentials import CalendarCredential, CredentialStore
from tasksync.calendar.errors import (
    CalendarNotConnected,
    NoRefreshToken,
    RemoteCallError,
    TokenExchangeFailed,
    TokenRefreshFailed,
)
from tasksync.calendar.providers import Provider, get_profile
from tasksync.calendar.remote import (
    is_success,
    json_object,
    safe_error_message,
    status_text,
    transport_error_text,
)
from tasksync.config import OAuthClientConfig
from tasksync.core.clock import now_ms

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN_SECONDS = 3600


@dataclass(frozen=True)
class TokenGrant:
    """Result of an authorization-code exchange.

    ``expires_at`` is epoch milliseconds.
    """

    access_token: str
    refresh_token: str | None
    expires_at: int

    def __repr__(self) -> str:
        return (
            f"TokenGrant(expires_at={self.expires_at!r}, "
            f"has_refresh_token={self.refresh_token is not None})"
        )


@dataclass(frozen=True)
class RefreshedToken:
    access_token: str
    expires_at: int

    def __repr__(self) -> str:
        return f"RefreshedToken(expires_at={self.expires_at!r})"


def _coerce_expires_in_seconds(value: Any) -> int:
    if isinstance(value, bool):
        return DEFAULT_EXPIRES_IN_SECONDS
    if isinstance(value, int | float):
        return int(value) if value > 0 else DEFAULT_EXPIRES_IN_SECONDS
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip()) or DEFAULT_EXPIRES_IN_SECONDS
    return DEFAULT_EXPIRES_IN_SECONDS


class TokenRefresher:
    """Exchanges authorization codes and refreshes stored access tokens.

    Parameters
    ----------
    credentials:
        Store the refreshed credential is written back to.
    oauth_clients:
        Per-provider OAuth client registration.
    http_client:
        Shared client used for token endpoint calls.
    clock:
        Returns the current time in epoch milliseconds.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        oauth_clients: dict[Provider, OAuthClientConfig],
        http_client: httpx.AsyncClient,
        *,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._credentials = credentials
        self._oauth_clients = oauth_clients
        self._http_client = http_client
        self._clock = clock
        self._refresh_locks: weakref.WeakValueDictionary[tuple[str, Provider], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _client(self, provider: Provider) -> OAuthClientConfig:
        return self._oauth_clients.get(provider) or OAuthClientConfig()

    # ------------------------------------------------------------------
    # Authorization URL
    # ------------------------------------------------------------------

    def authorization_url(
        self,
        provider: Provider,
        redirect_uri: str,
        state: str | None = None,
    ) -> str:
        """Browser URL that starts the consent flow for *provider*.

        Uses the public client id, which may differ from the server-side one.

        Raises
        ------
        MissingProviderCredentials
            If no client id is configured.
        """
        profile = get_profile(provider)
        params: dict[str, str] = {
            "client_id": self._client(provider).require_public_client_id(provider),
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": profile.authorize_scope,
            **profile.authorize_params,
        }
        if state:
            params["state"] = state
        return f"{profile.authorize_url}?{urlencode(params)}"

    # ------------------------------------------------------------------
    # Code exchange
    # ------------------------------------------------------------------

    async def exchange_code(self, provider: Provider, code: str, redirect_uri: str) -> TokenGrant:
        """Trade an authorization *code* for tokens.

        Raises
        ------
        MissingProviderCredentials
            If the provider's client id/secret are not configured.
        TokenExchangeFailed
            On a non-2xx answer or a transport failure.
        """
        if not code.strip():
            raise ValueError("code must be a non-empty string")
        client_id, client_secret = self._client(provider).require(provider)
        form = {
            "client_id": client_id,
            "client_secret": client_secret,
            "code": code.strip(),
            "grant_type": "authorization_code",
            "redirect_uri": redirect_uri,
        }
        payload = await self._token_request(provider, form, TokenExchangeFailed)
        access_token, expires_at = self._parse_token_payload(payload, TokenExchangeFailed)
        refresh_token = payload.get("refresh_token")
        if not isinstance(refresh_token, str) or not refresh_token.strip():
            refresh_token = None
        logger.info(
            "Exchanged authorization code: provider=%s has_refresh_token=%s",
            provider.value,
            refresh_token is not None,
        )
        return TokenGrant(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
        )

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self, identity: Identity | None, provider: Provider) -> RefreshedToken:
        """Run the refresh-token grant for the caller's stored credential.

        The stored credential is replaced with the new access token and
        expiry; its refresh token and calendar id are kept unchanged even
        when the provider issues a rotated refresh token.

        Raises
        ------
        Unauthenticated
            Without an identity.
        CalendarNotConnected
            If no credential is stored.
        NoRefreshToken
            If the stored credential has no refresh token.
        MissingProviderCredentials
            If client id/secret are not configured.
        TokenRefreshFailed
            On a non-2xx answer or a transport failure.
        """
        user = require_identity(identity)
        profile = get_profile(provider)
        credential = await self._credentials.get(user.subject, provider)
        if credential is None:
            raise CalendarNotConnected(profile.display_name)
        if not credential.refresh_token:
            raise NoRefreshToken(profile.display_name)
        client_id, client_secret = self._client(provider).require(provider)

        form = {
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": credential.refresh_token,
            "grant_type": "refresh_token",
        }
        payload = await self._token_request(provider, form, TokenRefreshFailed)
        access_token, expires_at = self._parse_token_payload(payload, TokenRefreshFailed)

        await self._credentials.store(
            user,
            provider,
            access_token=access_token,
            refresh_token=credential.refresh_token,
            expires_at=expires_at,
            calendar_id=credential.calendar_id,
        )
        logger.info(
            "Refreshed access token: user=%r provider=%s expires_at=%d",
            user.subject,
            provider.value,
            expires_at,
        )
        return RefreshedToken(access_token=access_token, expires_at=expires_at)

    async def ensure_access_token(
        self,
        identity: Identity | None,
        provider: Provider,
        credential: CalendarCredential,
    ) -> tuple[str, bool]:
        """Return a usable access token and whether a refresh was needed.

        A credential is refreshed once ``now >= expires_at``.  Concurrent
        callers for the same user and provider wait on one lock; whoever
        gets it second re-reads the store and reuses the fresh token.
        """
        user = require_identity(identity)
        if not credential.is_expired(self._clock()):
            return credential.access_token, False

        key = (user.subject, provider)
        lock = self._refresh_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._refresh_locks[key] = lock

        async with lock:
            current = await self._credentials.get(user.subject, provider)
            if current is not None and not current.is_expired(self._clock()):
                return current.access_token, False
            refreshed = await self.refresh(user, provider)
            return refreshed.access_token, True

    # ------------------------------------------------------------------
    # Token endpoint plumbing
    # ------------------------------------------------------------------

    async def _token_request(
        self,
        provider: Provider,
        form: dict[str, str],
        error_cls: type[RemoteCallError],
    ) -> dict[str, Any]:
        profile = get_profile(provider)
        if profile.token_scope is not None:
            form = {**form, "scope": profile.token_scope}
        try:
            response = await self._http_client.post(
                profile.token_url,
                data=form,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            detail = transport_error_text(exc)
            logger.warning(
                "%s token request failed before a response: provider=%s %s",
                form["grant_type"],
                provider.value,
                detail,
            )
            raise error_cls(status_code=None, status_text=detail) from exc

        if not is_success(response):
            logger.warning(
                "%s token request rejected: provider=%s status=%d detail=%s",
                form["grant_type"],
                provider.value,
                response.status_code,
                safe_error_message(response),
            )
            raise error_cls(status_code=response.status_code, status_text=status_text(response))

        payload = json_object(response)
        if payload is None:
            raise error_cls(
                status_code=response.status_code,
                status_text="token endpoint returned invalid JSON",
            )
        return payload

    def _parse_token_payload(
        self,
        payload: dict[str, Any],
        error_cls: type[RemoteCallError],
    ) -> tuple[str, int]:
        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token.strip():
            raise error_cls(
                status_code=None,
                status_text="token response is missing a non-empty access_token",
            )
        expires_in = _coerce_expires_in_seconds(payload.get("expires_in"))
        return access_token.strip(), self._clock() + expires_in * 1000
