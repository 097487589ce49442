"""Per-user, per-provider OAuth credential storage.

One row per ``(user_id, provider)`` in ``calendar_credentials``.  Writes are
an explicit upsert on that key, so a reconnect or a refresh replaces the
previous credential instead of accumulating rows.

Raw token values are never logged and never appear in ``repr()``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from tasksync.auth import Identity, require_identity
from tasksync.calendar.providers import Provider
from tasksync.core.clock import now_ms
from tasksync.db import rows_affected

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)

_TABLE = "calendar_credentials"
_COLUMNS = (
    "user_id, provider, access_token, refresh_token, expires_at, calendar_id, "
    "created_at, updated_at"
)


@dataclass(frozen=True)
class CalendarCredential:
    """Stored OAuth credential for one user and provider.

    Attributes
    ----------
    expires_at:
        Access-token expiry as epoch milliseconds.
    created_at:
        When the row was first written.
    updated_at:
        When the credential was last stored or refreshed.
    """

    user_id: str
    provider: Provider
    access_token: str
    refresh_token: str | None
    expires_at: int
    calendar_id: str
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def is_expired(self, at_ms: int | None = None) -> bool:
        """True once the wall clock has reached ``expires_at``."""
        return (now_ms() if at_ms is None else at_ms) >= self.expires_at

    def __repr__(self) -> str:
        return (
            f"CalendarCredential(user_id={self.user_id!r}, "
            f"provider={self.provider.value!r}, "
            f"calendar_id={self.calendar_id!r}, "
            f"expires_at={self.expires_at!r}, "
            f"has_refresh_token={self.refresh_token is not None})"
        )


def _row_to_credential(row: Any) -> CalendarCredential:
    return CalendarCredential(
        user_id=row["user_id"],
        provider=Provider(row["provider"]),
        access_token=row["access_token"],
        refresh_token=row["refresh_token"],
        expires_at=int(row["expires_at"]),
        calendar_id=row["calendar_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class CredentialStore:
    """Async store backed by the ``calendar_credentials`` table.

    Parameters
    ----------
    pool:
        An asyncpg connection pool; each operation acquires a connection
        for the duration of the call.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

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
        """Upsert the credential for ``(identity.subject, provider)``.

        Raises
        ------
        Unauthenticated
            If *identity* is ``None``.
        ValueError
            If *access_token* or *calendar_id* is empty.
        """
        user = require_identity(identity)
        if not access_token:
            raise ValueError("access_token must be a non-empty string")
        calendar_id = calendar_id.strip()
        if not calendar_id:
            raise ValueError("calendar_id must be a non-empty string")

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO {_TABLE}
                    (user_id, provider, access_token, refresh_token,
                     expires_at, calendar_id)
                VALUES ($1, $2, $3, $4, $5, $6)
                ON CONFLICT (user_id, provider) DO UPDATE SET
                    access_token  = EXCLUDED.access_token,
                    refresh_token = EXCLUDED.refresh_token,
                    expires_at    = EXCLUDED.expires_at,
                    calendar_id   = EXCLUDED.calendar_id,
                    updated_at    = now()
                RETURNING {_COLUMNS}
                """,
                user.subject,
                provider.value,
                access_token,
                refresh_token,
                int(expires_at),
                calendar_id,
            )

        # Never log token values.
        logger.info(
            "Calendar credential stored: user=%r provider=%s calendar=%r expires_at=%d",
            user.subject,
            provider.value,
            calendar_id,
            expires_at,
        )
        return _row_to_credential(row)

    async def get(self, user_id: str, provider: Provider) -> CalendarCredential | None:
        """Return the stored credential, or ``None`` when the user never connected."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM {_TABLE} WHERE user_id = $1 AND provider = $2",
                user_id,
                provider.value,
            )
        if row is None:
            return None
        return _row_to_credential(row)

    async def delete(self, user_id: str, provider: Provider) -> bool:
        """Forget the credential.  Returns ``True`` if a row was removed."""
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                f"DELETE FROM {_TABLE} WHERE user_id = $1 AND provider = $2",
                user_id,
                provider.value,
            )
        deleted = rows_affected(status) > 0
        if deleted:
            logger.info(
                "Calendar credential deleted: user=%r provider=%s", user_id, provider.value
            )
        return deleted

    def __repr__(self) -> str:
        return f"CredentialStore(pool={self.pool!r})"
