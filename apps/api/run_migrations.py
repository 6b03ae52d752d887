#!/usr/bin/env python3
"""Container entrypoint step: wait for the database, then `alembic upgrade head`.

Exits non-zero when the database never comes up or a migration fails, so
the API never starts against an unknown schema.
"""
import logging
import sys
import time
from pathlib import Path

from alembic import command
from alembic.config import Config

from core.database import check_db_connection
from core.logging import log_event, setup_logging

logger = logging.getLogger("run_migrations")

WAIT_ATTEMPTS = 30
WAIT_SECONDS = 1.0


def wait_for_database(attempts: int = WAIT_ATTEMPTS, delay: float = WAIT_SECONDS) -> bool:
    for attempt in range(1, attempts + 1):
        if check_db_connection():
            return True
        log_event(logger, "database_not_ready", attempt=attempt, max_attempts=attempts)
        time.sleep(delay)
    return False


def upgrade_to_head() -> None:
    config = Config(str(Path(__file__).resolve().parent / "alembic.ini"))
    command.upgrade(config, "head")


def main() -> int:
    setup_logging()
    if not wait_for_database():
        log_event(logger, "database_unavailable", logging.ERROR, max_attempts=WAIT_ATTEMPTS)
        return 1
    try:
        upgrade_to_head()
    except Exception as e:
        log_event(logger, "migration_failed", logging.ERROR, error=str(e))
        return 1
    log_event(logger, "migrations_applied")
    return 0


if __name__ == "__main__":
    sys.exit(main())
