"""Helpers shared by the token and event clients for provider HTTP responses."""

from __future__ import annotations

import re
from typing import Any

import httpx

MAX_ERROR_MESSAGE_LENGTH = 200

_SECRET_FIELDS = r"(?:client_secret|refresh_token|access_token|id_token)"
_SECRET_KEYS = r"(?:client_secret|refresh_token|access_token|id_token|code|token)"
_KEY_EQUALS_VALUE = re.compile(rf"(?i)\b({_SECRET_KEYS})\s*=\s*([^\s,;&]+)")
_QUOTED_KEY_VALUE = re.compile(rf"""(?i)(['"]{_SECRET_KEYS}['"]\s*:\s*)(['"]).*?\2""")
_KEY_COLON_VALUE = re.compile(rf"(?i)\b({_SECRET_FIELDS})\s*:\s*([^\s,;\"']+)")
_BEARER_VALUE = re.compile(r"(?i)\bBearer\s+[A-Za-z0-9\-._~+/]+=*")


def redact_credential_values(message: str) -> str:
    """Mask token-looking values in *message*.

    Credentials live in the database, not in process env vars, so redaction
    is pattern-based.
    """
    redacted = _BEARER_VALUE.sub("Bearer [REDACTED]", message)
    redacted = _KEY_EQUALS_VALUE.sub(r"\1=[REDACTED]", redacted)
    redacted = _QUOTED_KEY_VALUE.sub(r'\1"[REDACTED]"', redacted)
    redacted = _KEY_COLON_VALUE.sub(r"\1: [REDACTED]", redacted)
    return redacted


def sanitize_error_message(message: str) -> str:
    """Redact, collapse whitespace, and truncate an error message for clients."""
    return " ".join(redact_credential_values(message).split())[:MAX_ERROR_MESSAGE_LENGTH]


def status_text(response: httpx.Response) -> str:
    """The response's reason phrase, falling back to the numeric status."""
    reason = (response.reason_phrase or "").strip()
    return reason or str(response.status_code)


def safe_error_message(response: httpx.Response) -> str:
    """Short, redacted description of a provider error body, for logs."""
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            message = error_payload.get("message")
            if isinstance(message, str) and message.strip():
                return sanitize_error_message(message)
        if isinstance(error_payload, str) and error_payload.strip():
            description = payload.get("error_description")
            if isinstance(description, str) and description.strip():
                return sanitize_error_message(f"{error_payload}: {description}")
            return sanitize_error_message(error_payload)

    raw_text = response.text.strip()
    if raw_text:
        return sanitize_error_message(raw_text)
    return "Request failed without an error payload"


def transport_error_text(exc: httpx.HTTPError) -> str:
    detail = str(exc).strip()
    name = type(exc).__name__
    return sanitize_error_message(f"{name}: {detail}" if detail else name)


def is_success(response: httpx.Response) -> bool:
    return 200 <= response.status_code < 300


def json_object(response: httpx.Response) -> dict[str, Any] | None:
    """Decode the body as a JSON object, or ``None`` if it is not one."""
    try:
        payload = response.json()
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None
