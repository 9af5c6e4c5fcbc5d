"""Programmatic Alembic migration runner.

Works both in development and when installed as a package: the migration
scripts ship inside ``cadence.db.migrations``.
"""

import logging
import os
from pathlib import Path

from alembic import command
from alembic.config import Config

logger = logging.getLogger(__name__)


def get_alembic_config(database_url: str | None = None) -> Config:
    migrations_dir = str(Path(__file__).parent / "migrations")
    cfg = Config()
    cfg.set_main_option("script_location", migrations_dir)

    db_url = database_url or os.environ.get("CADENCE_DATABASE_URL", "")
    if db_url:
        cfg.set_main_option("sqlalchemy.url", db_url)

    return cfg


def upgrade(revision: str = "head", database_url: str | None = None) -> None:
    cfg = get_alembic_config(database_url)
    logger.info(f"Upgrading task store schema to {revision}")
    command.upgrade(cfg, revision)
