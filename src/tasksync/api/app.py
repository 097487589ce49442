"""FastAPI application for tasks and their calendar sync.

:func:`create_app` mounts the task and calendar routers plus ``GET /api/health``.
The lifespan owns the database pool and the shared provider HTTP client unless
services were injected by the caller.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tasksync import __version__
from tasksync.api.deps import AppServices, open_services, wire_dependencies
from tasksync.api.middleware import register_error_handlers
from tasksync.api.models import HealthStatus
from tasksync.api.routers.calendar import router as calendar_router
from tasksync.api.routers.tasks import router as tasks_router
from tasksync.config import AppConfig, load_config

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open services on startup unless they were injected; close them on shutdown."""
    services: AppServices | None = getattr(app.state, "services", None)
    owned = services is None
    if services is None:
        services = await open_services(app.state.config)
        app.state.services = services
        logger.info("Services started for database %s", app.state.config.db_name)
    wire_dependencies(app, services)

    yield

    if owned:
        await services.aclose()
        app.state.services = None
        logger.info("Services stopped")


def create_app(
    config: AppConfig | None = None,
    *,
    services: AppServices | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    config:
        Application configuration; loaded with :func:`load_config` when
        omitted.
    services:
        Pre-built services.  When given, the lifespan wires them instead of
        connecting to the database and does not close them on shutdown.
    """
    if config is None:
        config = services.config if services is not None else load_config()

    app = FastAPI(
        title="tasksync API",
        version=__version__,
        lifespan=lifespan,
    )
    app.router.redirect_slashes = False
    app.state.config = config
    app.state.services = services
    if services is not None:
        wire_dependencies(app, services)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    app.include_router(tasks_router)
    app.include_router(calendar_router)

    @app.get("/api/health", response_model=HealthStatus)
    async def health() -> HealthStatus:
        return HealthStatus()

    return app
