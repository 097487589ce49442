"""Provider profile table.

Google and Outlook run the same token and event protocol; everything that
differs between them lives in :data:`PROVIDER_PROFILES` rather than in
duplicated code paths.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from urllib.parse import quote


class Provider(StrEnum):
    """External calendar service a task can be pushed to."""

    GOOGLE = "google"
    OUTLOOK = "outlook"


OUTLOOK_SCOPE = "https://graph.microsoft.com/Calendars.ReadWrite offline_access"
GOOGLE_SCOPE = "https://www.googleapis.com/auth/calendar.events"


@dataclass(frozen=True)
class ProviderProfile:
    """Static endpoints and quirks of one provider.

    Attributes
    ----------
    token_url:
        OAuth token endpoint used for both the code and refresh grants.
    authorize_url:
        Browser authorization endpoint.
    events_base_url:
        Prefix for ``/{calendar_id}/events`` paths.
    token_scope:
        ``scope`` sent with token requests, or ``None`` when the provider
        does not take one there.
    authorize_scope:
        ``scope`` requested in the authorization URL.
    gone_status:
        HTTP status the provider answers a DELETE with when the event is
        already absent.
    env_prefix:
        Prefix of the ``*_CLIENT_ID`` / ``*_CLIENT_SECRET`` /
        ``*_PUBLIC_CLIENT_ID`` environment variables.
    """

    provider: Provider
    display_name: str
    token_url: str
    authorize_url: str
    events_base_url: str
    token_scope: str | None
    authorize_scope: str
    gone_status: int
    env_prefix: str
    default_calendar_id: str
    authorize_params: dict[str, str] = field(default_factory=dict)

    def events_url(self, calendar_id: str) -> str:
        return f"{self.events_base_url}/{quote(calendar_id, safe='')}/events"

    def event_url(self, calendar_id: str, event_id: str) -> str:
        return f"{self.events_url(calendar_id)}/{quote(event_id, safe='')}"


PROVIDER_PROFILES: dict[Provider, ProviderProfile] = {
    Provider.GOOGLE: ProviderProfile(
        provider=Provider.GOOGLE,
        display_name="Google",
        token_url="https://oauth2.googleapis.com/token",
        authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
        events_base_url="https://www.googleapis.com/calendar/v3/calendars",
        token_scope=None,
        authorize_scope=GOOGLE_SCOPE,
        gone_status=410,
        env_prefix="GOOGLE",
        default_calendar_id="primary",
        authorize_params={"access_type": "offline", "prompt": "consent"},
    ),
    Provider.OUTLOOK: ProviderProfile(
        provider=Provider.OUTLOOK,
        display_name="Outlook",
        token_url="https://login.microsoftonline.com/common/oauth2/v2.0/token",
        authorize_url="https://login.microsoftonline.com/common/oauth2/v2.0/authorize",
        events_base_url="https://graph.microsoft.com/v1.0/me/calendars",
        token_scope=OUTLOOK_SCOPE,
        authorize_scope=OUTLOOK_SCOPE,
        gone_status=404,
        env_prefix="OUTLOOK",
        default_calendar_id="calendar",
        authorize_params={"response_mode": "query"},
    ),
}


def get_profile(provider: Provider | str) -> ProviderProfile:
    """Return the profile for *provider*; raises ``ValueError`` for unknown names."""
    try:
        return PROVIDER_PROFILES[Provider(provider)]
    except ValueError:
        valid = ", ".join(p.value for p in Provider)
        raise ValueError(
            f"Unknown calendar provider {provider!r}; expected one of: {valid}"
        ) from None
