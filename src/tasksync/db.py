"""PostgreSQL connection settings, provisioning, and the asyncpg pool.

Connection settings come from ``DATABASE_URL`` when set, otherwise from the
``POSTGRES_HOST`` / ``POSTGRES_PORT`` / ``POSTGRES_USER`` /
``POSTGRES_PASSWORD`` / ``POSTGRES_SSLMODE`` variables.  The database name is
always supplied by configuration (``AppConfig.db_name``), never by the URL.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar
from urllib.parse import parse_qs, quote, unquote, urlparse

import asyncpg

logger = logging.getLogger(__name__)

T = TypeVar("T")

SSL_MODES = frozenset({"disable", "prefer", "allow", "require", "verify-ca", "verify-full"})

# asyncpg's STARTTLS negotiation against servers without SSL can drop the
# connection with this message instead of falling back.
_SSL_UPGRADE_LOST = "unexpected connection_lost() call"


def parse_ssl_mode(value: str | None) -> str | None:
    """Lower-cased libpq ``sslmode`` or ``None`` when unset or unrecognised."""
    if not value or not value.strip():
        return None
    mode = value.strip().lower()
    if mode not in SSL_MODES:
        logger.warning("Ignoring unknown PostgreSQL sslmode %r", value)
        return None
    return mode


@dataclass(frozen=True)
class ConnectionSettings:
    """Server coordinates shared by every database on the cluster."""

    host: str = "localhost"
    port: int = 5432
    user: str = "tasksync"
    password: str = "tasksync"
    sslmode: str | None = None

    @classmethod
    def from_url(cls, database_url: str) -> ConnectionSettings:
        parsed = urlparse(database_url)
        query = parse_qs(parsed.query)
        return cls(
            host=parsed.hostname or cls.host,
            port=parsed.port or cls.port,
            user=unquote(parsed.username or cls.user),
            password=unquote(parsed.password or cls.password),
            sslmode=parse_ssl_mode(query.get("sslmode", [None])[0]),
        )

    @classmethod
    def from_env(cls) -> ConnectionSettings:
        database_url = os.environ.get("DATABASE_URL", "").strip()
        if database_url:
            return cls.from_url(database_url)
        return cls(
            host=os.environ.get("POSTGRES_HOST", cls.host),
            port=int(os.environ.get("POSTGRES_PORT", cls.port)),
            user=os.environ.get("POSTGRES_USER", cls.user),
            password=os.environ.get("POSTGRES_PASSWORD", cls.password),
            sslmode=parse_ssl_mode(os.environ.get("POSTGRES_SSLMODE")),
        )

    def url_for(self, db_name: str) -> str:
        """libpq/SQLAlchemy URL for *db_name* with credentials percent-encoded."""
        url = (
            f"postgresql://{quote(self.user, safe='')}:{quote(self.password, safe='')}"
            f"@{self.host}:{self.port}/{quote(db_name, safe='')}"
        )
        return f"{url}?sslmode={self.sslmode}" if self.sslmode else url

    def connect_kwargs(self, db_name: str) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "database": db_name,
        }
        if self.sslmode is not None:
            kwargs["ssl"] = self.sslmode
        return kwargs


def is_ssl_upgrade_failure(exc: BaseException, sslmode: str | None) -> bool:
    """True when a connect attempt should be retried with ``ssl=disable``.

    Only applies when no sslmode was configured explicitly.
    """
    return sslmode is None and isinstance(exc, ConnectionError) and _SSL_UPGRADE_LOST in str(exc)


async def _open_with_ssl_fallback(
    opener: Callable[..., Awaitable[T]],
    kwargs: dict[str, Any],
    sslmode: str | None,
) -> T:
    try:
        return await opener(**kwargs)
    except ConnectionError as exc:
        if not is_ssl_upgrade_failure(exc, sslmode):
            raise
        logger.info(
            "PostgreSQL dropped the SSL upgrade; retrying %s with ssl=disable",
            kwargs["database"],
        )
        return await opener(**{**kwargs, "ssl": "disable"})


class Database:
    """Owns the asyncpg pool for one application database.

    Parameters
    ----------
    db_name:
        Name of the application database.
    settings:
        Cluster connection settings; defaults to :meth:`ConnectionSettings.from_env`.
    """

    def __init__(
        self,
        db_name: str,
        settings: ConnectionSettings | None = None,
        *,
        min_pool_size: int = 2,
        max_pool_size: int = 10,
    ) -> None:
        self.db_name = db_name
        self.settings = settings or ConnectionSettings.from_env()
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.pool: asyncpg.Pool | None = None

    @classmethod
    def from_env(cls, db_name: str) -> Database:
        return cls(db_name, ConnectionSettings.from_env())

    @property
    def url(self) -> str:
        """URL handed to the Alembic migration runner."""
        return self.settings.url_for(self.db_name)

    async def provision(self) -> None:
        """Create the application database through the ``postgres`` maintenance db."""
        conn = await _open_with_ssl_fallback(
            asyncpg.connect, self.settings.connect_kwargs("postgres"), self.settings.sslmode
        )
        try:
            exists = await conn.fetchval(
                "SELECT 1 FROM pg_database WHERE datname = $1", self.db_name
            )
            if exists:
                logger.debug("Database %s already exists", self.db_name)
                return
            # Identifiers cannot be bound as parameters.
            quoted = self.db_name.replace('"', '""')
            await conn.execute(f'CREATE DATABASE "{quoted}" TEMPLATE template0')
            logger.info("Created database %s", self.db_name)
        finally:
            await conn.close()

    async def connect(self) -> asyncpg.Pool:
        """Open the pool on the application database and return it."""
        kwargs = {
            **self.settings.connect_kwargs(self.db_name),
            "min_size": self.min_pool_size,
            "max_size": self.max_pool_size,
        }
        self.pool = await _open_with_ssl_fallback(
            asyncpg.create_pool, kwargs, self.settings.sslmode
        )
        logger.info(
            "Connected to %s at %s:%d", self.db_name, self.settings.host, self.settings.port
        )
        return self.pool

    async def close(self) -> None:
        if self.pool is None:
            return
        await self.pool.close()
        self.pool = None
        logger.info("Closed connection pool for %s", self.db_name)


def rows_affected(status: str | None) -> int:
    """Row count from an asyncpg command status such as ``"UPDATE 1"``."""
    if not status:
        return 0
    try:
        return int(status.rsplit(" ", 1)[-1])
    except ValueError:
        return 0
