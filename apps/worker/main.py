"""
Celery worker entry point for the session side-effect tasks.

    celery -A main worker -Q session_side_effects --loglevel=info

The API source is mounted at API_PATH (default /api) and shares its
settings, models and task definitions with the web process.
"""
import logging
import os
import sys

sys.path.insert(0, os.environ.get("API_PATH", "/api"))

from core.config import settings  # noqa: E402
from core.logging import setup_logging  # noqa: E402
from tasks import celery_app  # noqa: E402

setup_logging()
logger = logging.getLogger("worker")

if settings.SENTRY_DSN:
    import sentry_sdk
    from sentry_sdk.integrations.celery import CeleryIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        integrations=[CeleryIntegration()],
        send_default_pii=False,
    )
    logger.info("Sentry enabled for worker")


@celery_app.task(name="worker.ping")
def ping():
    """Liveness probe: `celery -A main call worker.ping`."""
    return {"status": "ok", "queue": celery_app.conf.task_default_queue}
