"""Structured logging for tasksync.

Module code keeps using ``logging.getLogger(__name__)``; :func:`configure_logging`
routes those records through structlog's ``ProcessorFormatter`` so console and
file output share one processor chain.  Each record is stamped with the user
acting on the current request and with the active OpenTelemetry trace and span.

With ``log_root`` set, JSON copies land in ``app/tasksync.log`` (application
records) and ``http/tasksync.log`` (uvicorn and httpx records).
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from pathlib import Path

import structlog
from opentelemetry import trace

_current_user: ContextVar[str | None] = ContextVar("tasksync_user", default=None)

# Chatty at INFO; kept at WARNING on the console and mirrored to http/.
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "uvicorn.error")

LOG_FILE_NAME = "tasksync.log"

_NO_TRACE = "0" * 32
_NO_SPAN = "0" * 16


def set_user_context(user_id: str | None) -> None:
    _current_user.set(user_id)


def get_user_context() -> str | None:
    return _current_user.get()


def add_user_context(logger, method_name, event_dict: dict) -> dict:  # noqa: ARG001
    """structlog processor adding ``user``."""
    event_dict["user"] = _current_user.get()
    return event_dict


def add_otel_context(logger, method_name, event_dict: dict) -> dict:  # noqa: ARG001
    """structlog processor adding ``trace_id``/``span_id`` (zeros outside a span)."""
    span_context = trace.get_current_span().get_span_context()
    if span_context is not None and span_context.trace_id:
        event_dict["trace_id"] = f"{span_context.trace_id:032x}"
        event_dict["span_id"] = f"{span_context.span_id:016x}"
    else:
        event_dict["trace_id"] = _NO_TRACE
        event_dict["span_id"] = _NO_SPAN
    return event_dict


def _pre_chain(timestamp_fmt: str) -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=timestamp_fmt),
        add_user_context,
        add_otel_context,
        structlog.stdlib.ExtraAdder(),
    ]


def _formatter(renderer, pre_chain: list) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=pre_chain,
    )


def _attach_log_files(root: logging.Logger, log_root: Path) -> None:
    json_formatter = _formatter(structlog.processors.JSONRenderer(), _pre_chain("iso"))

    def file_handler(subdir: str) -> logging.FileHandler:
        directory = log_root / subdir
        directory.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(directory / LOG_FILE_NAME)
        handler.setFormatter(json_formatter)
        handler.setLevel(logging.DEBUG)
        return handler

    root.addHandler(file_handler("app"))
    transport_handler = file_handler("http")
    for name in NOISY_LOGGERS:
        logging.getLogger(name).addHandler(transport_handler)


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | str | None = None,
) -> None:
    """Install console (and optional file) logging on the root logger.

    ``fmt`` is ``"text"`` for the coloured development renderer or ``"json"``
    for JSON lines.  Calling again replaces the root handlers installed by a
    previous call.
    """
    as_json = fmt == "json"
    pre_chain = _pre_chain("iso" if as_json else "%H:%M:%S")
    renderer = structlog.processors.JSONRenderer() if as_json else structlog.dev.ConsoleRenderer()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_formatter(renderer, pre_chain))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if log_root is not None:
        _attach_log_files(root, Path(log_root))

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
