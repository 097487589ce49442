"""Caller identity resolution.

The application does not run its own sign-in flow.  An upstream auth layer
issues HS256 bearer tokens whose ``sub`` claim is the user's stable external
identity; this module verifies them and exposes the result as an
:class:`Identity`.  A missing or invalid token resolves to ``None`` and the
calendar operations then raise :class:`~tasksync.calendar.errors.Unauthenticated`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from tasksync.calendar.errors import Unauthenticated

logger = logging.getLogger(__name__)

DEFAULT_ALGORITHM = "HS256"
DEFAULT_TOKEN_TTL = timedelta(days=3)


@dataclass(frozen=True)
class Identity:
    """Authenticated caller."""

    subject: str


def require_identity(identity: Identity | None) -> Identity:
    """Return *identity* or raise ``Unauthenticated`` when absent."""
    if identity is None or not identity.subject:
        raise Unauthenticated()
    return identity


def create_access_token(
    subject: str,
    secret: str,
    *,
    ttl: timedelta = DEFAULT_TOKEN_TTL,
    algorithm: str = DEFAULT_ALGORITHM,
) -> str:
    """Mint a bearer token for *subject* (development and tests)."""
    subject = subject.strip()
    if not subject:
        raise ValueError("subject must be a non-empty string")
    expire = datetime.now(UTC) + ttl
    return jwt.encode({"sub": subject, "exp": expire}, secret, algorithm=algorithm)


def decode_identity(
    token: str | None,
    secret: str | None,
    *,
    algorithm: str = DEFAULT_ALGORITHM,
) -> Identity | None:
    """Verify *token* and return its identity, or ``None`` if it is unusable."""
    if not token or not secret:
        return None
    try:
        payload = jwt.decode(token, secret, algorithms=[algorithm])
    except JWTError as exc:
        logger.info("Rejected bearer token: %s", exc)
        return None
    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject.strip():
        logger.info("Rejected bearer token without a subject claim")
        return None
    return Identity(subject=subject.strip())
