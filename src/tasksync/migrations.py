"""Apply the Alembic schema chain from inside the process."""

from __future__ import annotations

import logging
from pathlib import Path

from alembic.config import Config

from alembic import command

logger = logging.getLogger(__name__)

# <repo>/alembic, next to src/
ALEMBIC_DIR = Path(__file__).resolve().parents[2] / "alembic"

SCHEMA_CHAIN = "core"


def _build_alembic_config(db_url: str) -> Config:
    config = Config(str(ALEMBIC_DIR / "alembic.ini"))
    config.set_main_option("script_location", str(ALEMBIC_DIR))
    # configparser interpolation treats '%' specially.
    config.set_main_option("sqlalchemy.url", db_url.replace("%", "%%"))
    config.set_main_option("version_locations", str(ALEMBIC_DIR / "versions" / SCHEMA_CHAIN))
    return config


def run_migrations(db_url: str, revision: str = "heads") -> None:
    """Upgrade the tasks and calendar credential tables at *db_url* to *revision*."""
    logger.info("Applying %s schema migrations up to %s", SCHEMA_CHAIN, revision)
    command.upgrade(_build_alembic_config(db_url), revision)
