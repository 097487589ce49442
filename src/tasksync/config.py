"""Application configuration loading and validation.

Reads an optional ``tasksync.toml``, resolves ``${VAR}`` references against
the environment, fills gaps from well-known environment variables, and
returns a validated :class:`AppConfig`.

Example ``tasksync.toml``::

    [tasksync]
    db_name = "tasksync"
    timezone = "Europe/London"
    cors_origins = ["http://localhost:5173"]

    [tasksync.logging]
    level = "DEBUG"
    format = "json"

    [tasksync.google]
    client_id = "${GOOGLE_CLIENT_ID}"
    client_secret = "${GOOGLE_CLIENT_SECRET}"

Values in the file win over environment fallbacks.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from tasksync.calendar.errors import MissingProviderCredentials
from tasksync.calendar.providers import PROVIDER_PROFILES, Provider

_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

DEFAULT_CONFIG_FILE = Path("tasksync.toml")
DEFAULT_DB_NAME = "tasksync"
DEFAULT_TIMEZONE = "UTC"
DEFAULT_CORS_ORIGINS = ("http://localhost:5173",)
DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0


class ConfigError(Exception):
    """Raised when configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from the [tasksync.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class OAuthClientConfig:
    """OAuth client registration for one provider.

    ``client_id``/``client_secret`` are server-side secrets used for token
    requests. ``public_client_id`` is what the browser authorization URL
    carries; it defaults to ``client_id``.
    """

    client_id: str | None = None
    client_secret: str | None = None
    public_client_id: str | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def require(self, provider: Provider) -> tuple[str, str]:
        """Return ``(client_id, client_secret)`` or raise ``MissingProviderCredentials``."""
        if not self.client_id or not self.client_secret:
            raise MissingProviderCredentials(PROVIDER_PROFILES[provider].display_name)
        return self.client_id, self.client_secret

    def require_public_client_id(self, provider: Provider) -> str:
        client_id = self.public_client_id or self.client_id
        if not client_id:
            raise MissingProviderCredentials(PROVIDER_PROFILES[provider].display_name)
        return client_id

    def __repr__(self) -> str:
        return (
            f"OAuthClientConfig(client_id={self.client_id!r}, "
            f"client_secret={'<REDACTED>' if self.client_secret else None}, "
            f"public_client_id={self.public_client_id!r})"
        )


@dataclass
class AppConfig:
    """Validated application configuration."""

    db_name: str = DEFAULT_DB_NAME
    timezone: str = DEFAULT_TIMEZONE
    jwt_secret: str | None = None
    cors_origins: list[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))
    http_timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    oauth: dict[Provider, OAuthClientConfig] = field(
        default_factory=lambda: {provider: OAuthClientConfig() for provider in Provider}
    )

    def oauth_client(self, provider: Provider) -> OAuthClientConfig:
        return self.oauth.get(provider) or OAuthClientConfig()


# ---------------------------------------------------------------------------
# Environment variable resolution
# ---------------------------------------------------------------------------


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings.  Non-string leaves are returned as-is.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]
    if isinstance(value, str):
        return _resolve_string(value)
    return value


def _resolve_string(s: str) -> str:
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)
    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(f"Unresolved environment variable(s) in config value: {vars_str}")
    return result


def _env(name: str) -> str | None:
    value = os.environ.get(name, "").strip()
    return value or None


def _optional_str(section: dict[str, Any], key: str, fallback: str | None) -> str | None:
    raw = section.get(key)
    if raw is None:
        return fallback
    if not isinstance(raw, str):
        raise ConfigError(f"{key} must be a string")
    return raw.strip() or fallback


# ---------------------------------------------------------------------------
# Section parsers
# ---------------------------------------------------------------------------


def _parse_logging(section: Any) -> LoggingConfig:
    if section is None:
        section = {}
    if not isinstance(section, dict):
        raise ConfigError("[tasksync.logging] must be a table")
    level = str(section.get("level") or _env("TASKSYNC_LOG_LEVEL") or "INFO").upper()
    fmt = str(section.get("format") or _env("TASKSYNC_LOG_FORMAT") or "text").lower()
    if fmt not in ("text", "json"):
        raise ConfigError(
            f"Invalid tasksync.logging.format: {fmt!r}. Expected 'text' or 'json'."
        )
    log_root = section.get("log_root") or _env("TASKSYNC_LOG_ROOT")
    return LoggingConfig(level=level, format=fmt, log_root=log_root)


def _parse_oauth(provider: Provider, section: Any) -> OAuthClientConfig:
    if section is None:
        section = {}
    if not isinstance(section, dict):
        raise ConfigError(f"[tasksync.{provider.value}] must be a table")
    prefix = PROVIDER_PROFILES[provider].env_prefix
    return OAuthClientConfig(
        client_id=_optional_str(section, "client_id", _env(f"{prefix}_CLIENT_ID")),
        client_secret=_optional_str(section, "client_secret", _env(f"{prefix}_CLIENT_SECRET")),
        public_client_id=_optional_str(
            section, "public_client_id", _env(f"{prefix}_PUBLIC_CLIENT_ID")
        ),
    )


def _parse_cors_origins(raw: Any) -> list[str]:
    if raw is None:
        env_value = _env("TASKSYNC_CORS_ORIGINS")
        if env_value is None:
            return list(DEFAULT_CORS_ORIGINS)
        raw = [origin.strip() for origin in env_value.split(",")]
    if not isinstance(raw, list) or not all(isinstance(o, str) for o in raw):
        raise ConfigError("tasksync.cors_origins must be a list of strings")
    return [origin for origin in raw if origin]


def validate_timezone(value: str) -> str:
    """Return *value* if it names an IANA time zone, else raise ``ConfigError``."""
    normalized = value.strip()
    try:
        ZoneInfo(normalized)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"Invalid timezone: {value!r}") from exc
    return normalized


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from *path* (or ``tasksync.toml``) and the environment.

    A missing default file is not an error; an explicitly passed *path* that
    does not exist is.

    Raises
    ------
    ConfigError
        If the file is unreadable TOML or a value fails validation.
    """
    toml_path = path or DEFAULT_CONFIG_FILE
    data: dict[str, Any] = {}
    if toml_path.exists():
        try:
            data = tomllib.loads(toml_path.read_text())
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc
        data = resolve_env_vars(data)
    elif path is not None:
        raise ConfigError(f"Config file not found: {toml_path}")

    section = data.get("tasksync", {})
    if not isinstance(section, dict):
        raise ConfigError("[tasksync] must be a table")

    db_name = str(section.get("db_name") or _env("TASKSYNC_DB_NAME") or DEFAULT_DB_NAME).strip()
    timezone = validate_timezone(
        str(section.get("timezone") or _env("TASKSYNC_TIMEZONE") or DEFAULT_TIMEZONE)
    )

    timeout_raw = section.get("http_timeout_seconds", DEFAULT_HTTP_TIMEOUT_SECONDS)
    if isinstance(timeout_raw, bool) or not isinstance(timeout_raw, int | float):
        raise ConfigError("tasksync.http_timeout_seconds must be a number")
    if timeout_raw <= 0:
        raise ConfigError("tasksync.http_timeout_seconds must be positive")

    return AppConfig(
        db_name=db_name,
        timezone=timezone,
        jwt_secret=_optional_str(section, "jwt_secret", _env("TASKSYNC_JWT_SECRET")),
        cors_origins=_parse_cors_origins(section.get("cors_origins")),
        http_timeout_seconds=float(timeout_raw),
        logging=_parse_logging(section.get("logging")),
        oauth={
            provider: _parse_oauth(provider, section.get(provider.value)) for provider in Provider
        },
    )
