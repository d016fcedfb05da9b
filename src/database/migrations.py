# -*- coding: utf-8 -*-
"""Apply the Alembic revisions under ``migrations/`` to the app's database."""
from pathlib import Path

from alembic import command
from alembic.config import Config as AlembicConfig
from flask import Flask

from src.services.structured_logging import get_logger

logger = get_logger('jobcredits.startup')

MIGRATIONS_DIR = Path(__file__).resolve().parents[2] / "migrations"


def upgrade_to_head(app: Flask) -> None:
    # Built in memory so deployments need no alembic.ini
    alembic_cfg = AlembicConfig()
    alembic_cfg.set_main_option("script_location", str(MIGRATIONS_DIR))
    alembic_cfg.set_main_option("sqlalchemy.url", app.config["SQLALCHEMY_DATABASE_URI"])
    command.upgrade(alembic_cfg, "head")
    logger.info("Schema upgraded to head", script_location=str(MIGRATIONS_DIR))
