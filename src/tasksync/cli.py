"""CLI for tasksync: schema migrations, the API server and development tokens."""

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import timedelta
from pathlib import Path

import click

from tasksync import __version__
from tasksync.config import AppConfig, ConfigError, load_config
from tasksync.core.logging import configure_logging

logger = logging.getLogger(__name__)


def _load(config_path: Path | None) -> AppConfig:
    try:
        return load_config(config_path)
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Path to tasksync.toml (default: ./tasksync.toml if present)",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """tasksync: to-do backend with Google and Outlook calendar sync."""
    config = _load(config_path)
    configure_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_root=config.logging.log_root,
    )
    ctx.obj = config


@cli.command()
@click.pass_obj
def migrate(config: AppConfig) -> None:
    """Create the database if needed and apply all migrations."""
    from tasksync.db import Database
    from tasksync.migrations import run_migrations

    database = Database.from_env(config.db_name)
    asyncio.run(database.provision())
    run_migrations(database.url)
    click.echo(f"Database {config.db_name} is up to date")


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind address")
@click.option("--port", type=int, default=8000, show_default=True, help="Bind port")
@click.pass_obj
def serve(config: AppConfig, host: str, port: int) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    from tasksync.api.app import create_app

    if not config.jwt_secret:
        logger.warning("TASKSYNC_JWT_SECRET is not set; every request will be anonymous")
    app = create_app(config)
    click.echo(f"Serving tasksync on http://{host}:{port}")
    # log_config=None keeps the structlog handlers installed by configure_logging()
    uvicorn.run(app, host=host, port=port, log_config=None)


@cli.command()
@click.option("--subject", required=True, help="Identity subject (the user id)")
@click.option(
    "--ttl-hours",
    type=click.IntRange(min=1),
    default=72,
    show_default=True,
    help="Token lifetime in hours",
)
@click.pass_obj
def token(config: AppConfig, subject: str, ttl_hours: int) -> None:
    """Print a bearer token for SUBJECT signed with the configured JWT secret."""
    from tasksync.auth import create_access_token

    if not config.jwt_secret:
        click.echo("TASKSYNC_JWT_SECRET is not configured", err=True)
        sys.exit(1)
    try:
        value = create_access_token(subject, config.jwt_secret, ttl=timedelta(hours=ttl_hours))
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--subject") from exc
    click.echo(value)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
