"""Request/response models for the per-provider calendar endpoints.

No model here carries a raw access or refresh token in a response.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, computed_field

from tasksync.calendar.credentials import CalendarCredential
from tasksync.calendar.sync import RemovalStatus
from tasksync.core.clock import now_ms


class StoreTokensRequest(BaseModel):
    """Body of ``PUT /api/calendar/{provider}/tokens``."""

    access_token: str = Field(min_length=1)
    refresh_token: str | None = None
    expires_at: int = Field(ge=0, description="Access-token expiry, epoch milliseconds.")
    calendar_id: str | None = Field(
        default=None,
        description="Target calendar; defaults to the provider's primary calendar.",
    )


class ConnectRequest(BaseModel):
    """Body of ``POST /api/calendar/{provider}/connect``."""

    code: str = Field(min_length=1)
    redirect_uri: str = Field(min_length=1)
    calendar_id: str | None = None


class CredentialStatus(BaseModel):
    """Connection metadata for one provider; never includes token values."""

    provider: str
    connected: bool
    calendar_id: str | None = None
    expires_at: int | None = None
    has_refresh_token: bool = False
    updated_at: datetime | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def expired(self) -> bool | None:
        if self.expires_at is None:
            return None
        return now_ms() >= self.expires_at

    @classmethod
    def from_credential(
        cls, provider: str, credential: CalendarCredential | None
    ) -> CredentialStatus:
        if credential is None:
            return cls(provider=provider, connected=False)
        return cls(
            provider=provider,
            connected=True,
            calendar_id=credential.calendar_id,
            expires_at=credential.expires_at,
            has_refresh_token=credential.refresh_token is not None,
            updated_at=credential.updated_at or credential.created_at,
        )


class AuthorizationUrlResponse(BaseModel):
    provider: str
    authorization_url: str
    state: str


class RefreshResponse(BaseModel):
    """Result of a forced refresh; the new token itself stays server-side."""

    provider: str
    expires_at: int


class DisconnectResponse(BaseModel):
    provider: str
    deleted: bool


class SyncResponse(BaseModel):
    task_id: UUID
    provider: str
    event_id: str
    token_refreshed: bool


class RemovalResponse(BaseModel):
    task_id: UUID
    provider: str
    status: RemovalStatus
    token_refreshed: bool
