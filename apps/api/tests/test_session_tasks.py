"""
Tests for the session background tasks.

Tasks are invoked through .run() so they execute inline; collaborator
clients are patched.
"""
from unittest.mock import MagicMock, patch

import pytest

from schemas import ParentSummaryJob
from services.messaging_service import MessagingError
from services.offline_conversion import OfflineSideEffects
from tasks.session_tasks import (
    cancel_recording_bot_task,
    notify_parent_offline_task,
    publish_parent_summary,
    update_calendar_for_offline_task,
)


def test_calendar_task_calls_the_client():
    with patch("tasks.session_tasks.CalendarService") as service_cls:
        result = update_calendar_for_offline_task.run("s1", "evt_1", "coach@example.com", "Home")

    service_cls.return_value.update_event_for_offline.assert_called_once_with("evt_1", "coach@example.com", "Home")
    assert result == {"status": "success", "session_id": "s1"}


def test_bot_task_calls_the_client():
    with patch("tasks.session_tasks.RecordingBotService") as service_cls:
        cancel_recording_bot_task.run("s1", "bot_1")

    service_cls.return_value.cancel_bot.assert_called_once_with("bot_1")


class TestNotifyParent:

    def test_no_phone_is_skipped(self):
        with patch("tasks.session_tasks.MessagingService") as service_cls:
            result = notify_parent_offline_task.run("s1", None, "Meera", "Aarav", None)

        assert result["status"] == "skipped"
        service_cls.assert_not_called()

    def test_sends_with_parsed_time(self):
        with patch("tasks.session_tasks.MessagingService") as service_cls:
            service_cls.return_value.send_offline_parent_notification.return_value = True
            result = notify_parent_offline_task.run("s1", "+91", "Meera", "Aarav", "2026-03-03T11:00:00+00:00")

        args = service_cls.return_value.send_offline_parent_notification.call_args.args
        assert args[0] == "+91"
        assert args[3].hour == 11
        assert result["status"] == "success"

    def test_send_failure_is_not_retried(self):
        with patch("tasks.session_tasks.MessagingService") as service_cls:
            service_cls.return_value.send_offline_parent_notification.side_effect = MessagingError("rate limited")
            result = notify_parent_offline_task.run("s1", "+91", "Meera", "Aarav", None)

        assert result["status"] == "error"


def test_publish_parent_summary_uses_named_task():
    job = ParentSummaryJob(session_id="s1", child_id="c1", request_id="r1", offline_context={"session_mode": "offline"})
    with patch("tasks.session_tasks.celery_app.send_task", return_value=MagicMock(id="task-1")) as send_task:
        task_id = publish_parent_summary(job)

    assert task_id == "task-1"
    name = send_task.call_args.args[0]
    kwargs = send_task.call_args.kwargs
    assert name == "tasks.generate_parent_summary"
    assert kwargs["kwargs"]["offline_context"] == {"session_mode": "offline"}
    assert kwargs["countdown"] == 5


def test_side_effects_dispatch_tasks(offline_session):
    offline_session.calendar_event_id = "evt_1"
    offline_session.recording_bot_id = "bot_1"
    side_effects = OfflineSideEffects()

    with patch.object(update_calendar_for_offline_task, "delay") as cal, \
            patch.object(cancel_recording_bot_task, "delay") as bot, \
            patch.object(notify_parent_offline_task, "delay") as notify:
        side_effects.update_calendar(offline_session)
        side_effects.cancel_recording_bot(offline_session)
        side_effects.notify_parent(offline_session)

    assert cal.call_args.args[1] == "evt_1"
    bot.assert_called_once_with(str(offline_session.id), "bot_1")
    assert notify.call_args.args[1] == "+919800000000"
    assert notify.call_args.args[3] == "Aarav"


@pytest.mark.parametrize("task", [update_calendar_for_offline_task, cancel_recording_bot_task])
def test_integration_tasks_retry(task):
    assert task.max_retries == 3
