"""
Session background tasks

Best-effort side effects of the session flows run here, one task per effect,
so a failing integration is retried on its own and never blocks the request
that triggered it:

- tasks.update_calendar_for_offline: drop the video link, set the location
- tasks.cancel_recording_bot: cancel the bot of a session that went offline
- tasks.notify_parent_offline: tell the parent the session is in person

The parent summary generator (tasks.generate_parent_summary) lives in a
separate worker; this module only publishes jobs for it.
"""

import logging
from datetime import datetime
from typing import Dict, Optional

from celery import Task

from core.config import settings
from core.logging import log_event
from schemas import ParentSummaryJob
from services.calendar_service import CalendarService, CalendarServiceError
from services.messaging_service import MessagingError, MessagingService
from services.recording_bot_service import RecordingBotError, RecordingBotService
from tasks import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    name="tasks.update_calendar_for_offline",
    bind=True,
    autoretry_for=(CalendarServiceError,),
    retry_backoff=True,
    retry_backoff_max=300,
    max_retries=3,
)
def update_calendar_for_offline_task(
    self: Task,
    session_id: str,
    event_id: str,
    organizer_email: Optional[str],
    location: Optional[str],
) -> Dict:
    CalendarService().update_event_for_offline(event_id, organizer_email, location)
    log_event(logger, "calendar_updated_for_offline", session_id=session_id, event_id=event_id)
    return {"status": "success", "session_id": session_id}


@celery_app.task(
    name="tasks.cancel_recording_bot",
    bind=True,
    autoretry_for=(RecordingBotError,),
    retry_backoff=True,
    retry_backoff_max=300,
    max_retries=3,
)
def cancel_recording_bot_task(self: Task, session_id: str, bot_id: str) -> Dict:
    RecordingBotService().cancel_bot(bot_id)
    log_event(logger, "recording_bot_cancelled", session_id=session_id, bot_id=bot_id)
    return {"status": "success", "session_id": session_id}


@celery_app.task(name="tasks.notify_parent_offline", bind=True)
def notify_parent_offline_task(
    self: Task,
    session_id: str,
    parent_phone: Optional[str],
    parent_name: Optional[str],
    child_name: Optional[str],
    scheduled_at: Optional[str],
) -> Dict:
    """
    Fire-and-forget parent notification. Never retried: a duplicate message
    is worse than a missing one.
    """
    if not parent_phone:
        return {"status": "skipped", "reason": "no_parent_phone"}

    when = datetime.fromisoformat(scheduled_at) if scheduled_at else None
    try:
        sent = MessagingService().send_offline_parent_notification(parent_phone, parent_name, child_name, when)
    except MessagingError as e:
        log_event(logger, "parent_notification_failed", logging.WARNING, session_id=session_id, error=str(e))
        return {"status": "error", "reason": str(e)}

    return {"status": "success" if sent else "skipped", "session_id": session_id}


def publish_parent_summary(job: ParentSummaryJob) -> str:
    """
    Enqueue the parent summary job with a short delay so the facts written by
    the completion request are committed before the generator reads them.

    Returns the Celery task id. Raises whatever the broker raises.
    """
    result = celery_app.send_task(
        settings.PARENT_SUMMARY_TASK_NAME,
        kwargs=job.model_dump(),
        countdown=settings.PARENT_SUMMARY_DELAY_S,
        retry=True,
        retry_policy={"max_retries": settings.PARENT_SUMMARY_MAX_RETRIES},
    )
    return result.id
