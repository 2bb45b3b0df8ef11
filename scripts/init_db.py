#!/usr/bin/env python3
"""
@file: scripts/init_db.py
@description: Создание таблицы caldav_sync_status и таблиц расписания sqlalchemy_celery_beat
@dependencies: sqlmodel, sqlalchemy_celery_beat
"""

import sys
from pathlib import Path

from sqlalchemy import text

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.append(str(PROJECT_ROOT))

from caldav_sync.core.database import create_tables, sync_engine
from caldav_sync.core.logging import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)


def create_beat_tables() -> None:
    from sqlalchemy_celery_beat.session import ModelBase

    with sync_engine.connect() as conn:
        conn.execute(text("CREATE SCHEMA IF NOT EXISTS celery_schema;"))
        conn.commit()
    logger.info("Creating sqlalchemy_celery_beat tables...")
    ModelBase.metadata.create_all(sync_engine)


if __name__ == "__main__":
    create_tables()
    if "--skip-beat" not in sys.argv:
        create_beat_tables()
    logger.info("Database initialized")
