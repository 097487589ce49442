"""Error envelopes for the HTTP API.

Every failure leaves the app as ``{"error": {"code", "message", ...}}``:
``TaskSyncError`` subclasses carry their own status and code, ``ValueError``
becomes a 400 ``VALIDATION_ERROR`` and anything else a 500 ``INTERNAL_ERROR``.
Messages are passed through :func:`sanitize_error_message` first.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from tasksync.api.models import ErrorDetail, ErrorResponse
from tasksync.calendar.errors import RemoteCallError, TaskSyncError
from tasksync.calendar.remote import sanitize_error_message

logger = logging.getLogger(__name__)


def error_response(status_code: int, code: str, message: str, **extra) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, **extra))
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def _on_task_sync_error(request: Request, exc: TaskSyncError) -> JSONResponse:
    message = sanitize_error_message(str(exc))
    log_level = logging.WARNING if exc.http_status >= 500 else logging.INFO
    logger.log(log_level, "%s on %s %s: %s", exc.code, request.method, request.url.path, message)

    upstream = (
        {"upstream_status": exc.status_code} if isinstance(exc, RemoteCallError) else None
    )
    return error_response(
        exc.http_status,
        exc.code,
        message,
        provider=getattr(exc, "provider", None),
        details=upstream,
    )


async def _on_value_error(request: Request, exc: ValueError) -> JSONResponse:
    message = sanitize_error_message(str(exc))
    logger.info("Rejected %s %s: %s", request.method, request.url.path, message)
    return error_response(400, "VALIDATION_ERROR", message)


class CatchAllErrorMiddleware(BaseHTTPMiddleware):
    """Renders unhandled exceptions as the 500 envelope instead of plain text."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception:
            logger.exception("Unhandled error on %s %s", request.method, request.url.path)
            return error_response(500, "INTERNAL_ERROR", "Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TaskSyncError, _on_task_sync_error)  # type: ignore[arg-type]
    app.add_exception_handler(ValueError, _on_value_error)  # type: ignore[arg-type]
    app.add_middleware(CatchAllErrorMiddleware)
