"""
Celery application.

The API enqueues through this app; the worker (apps/worker) executes.
Session side effects go to their own queue so a slow integration cannot
starve anything else the broker carries. The parent summary job is routed
by name to the summary worker, which is deployed separately.
"""
from celery import Celery

from core.config import settings

celery_app = Celery(
    "session_engine",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    result_expires=24 * 60 * 60,
    timezone="UTC",
    enable_utc=True,
    task_default_queue="session_side_effects",
    task_routes={settings.PARENT_SUMMARY_TASK_NAME: {"queue": "parent_summaries"}},
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    # External HTTP calls only; anything slower is stuck.
    task_time_limit=5 * 60,
    task_soft_time_limit=4 * 60,
)

from . import session_tasks  # noqa: E402,F401

__all__ = ["celery_app"]
