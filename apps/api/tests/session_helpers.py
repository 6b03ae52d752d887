"""Shared builders and fakes for the session flow tests."""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from core.security import issue_coach_token

SCHEDULED_AT = datetime(2026, 3, 3, 11, 0, tzinfo=timezone.utc)

TEMPLATE_FLOW = [
    {"activity_index": 0, "activity_id": "warmup", "activity_name": "Warm-up",
     "activity_purpose": "Settle in", "planned_duration_minutes": 5},
    {"activity_index": 1, "activity_id": "phonics", "activity_name": "Phonics drill",
     "activity_purpose": "Blends", "planned_duration_minutes": 10},
    {"activity_index": 2, "activity_id": "reading", "activity_name": "Guided reading",
     "activity_purpose": "Fluency", "planned_duration_minutes": 10},
    {"activity_index": 3, "activity_id": "wrapup", "activity_name": "Wrap-up",
     "activity_purpose": "Recap", "planned_duration_minutes": 5},
]


def activity(index: int, status: str = "completed", seconds: Optional[int] = None,
             note: Optional[str] = None) -> Dict[str, Any]:
    """A reported activity matching TEMPLATE_FLOW[index], on time by default."""
    step = TEMPLATE_FLOW[index]
    return {
        "activity_index": index,
        "activity_id": step["activity_id"],
        "activity_name": step["activity_name"],
        "activity_purpose": step["activity_purpose"],
        "status": status,
        "planned_duration_minutes": step["planned_duration_minutes"],
        "actual_duration_seconds": step["planned_duration_minutes"] * 60 if seconds is None else seconds,
        "coach_note": note,
    }


def all_activities(status: str = "completed") -> List[Dict[str, Any]]:
    return [activity(i, status) for i in range(len(TEMPLATE_FLOW))]


class FakeSideEffects:
    """Records offline side effects instead of dispatching Celery tasks."""

    def __init__(self, fail: tuple = ()):
        self.calls: List[tuple] = []
        self.fail = set(fail)

    def _record(self, name, session):
        self.calls.append((name, session.id))
        if name in self.fail:
            raise RuntimeError(f"{name} unavailable")

    def names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def update_calendar(self, session):
        self._record("update_calendar", session)

    def cancel_recording_bot(self, session):
        self._record("cancel_recording_bot", session)

    def notify_parent(self, session):
        self._record("notify_parent", session)


def auth_headers_for(coach) -> Dict[str, str]:
    return {"Authorization": f"Bearer {issue_coach_token(coach.id, coach.role)}"}
