"""
Activity Report Recorder

Persists what a coach reports for a session: one session_activity_log row per
activity, verbatim and in order, plus one activity_struggle_flag learning
event per activity marked 'struggled'.

Rows are never updated afterwards. Corrections go through a new session-level
event, not row edits.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from core.logging import log_event
from models import (
    EVENT_STRUGGLE_FLAG,
    LearningEvent,
    ScheduledSession,
    SessionActivityLog,
)
from services.adherence_scorer import count_statuses

logger = logging.getLogger(__name__)


@dataclass
class RecordedActivities:
    rows: List[SessionActivityLog]
    status_counts: Dict[str, int]
    struggle_flags: List[LearningEvent] = field(default_factory=list)

    @property
    def saved(self) -> int:
        return len(self.rows)


def _field(activity: Any, name: str) -> Any:
    if isinstance(activity, dict):
        return activity.get(name)
    return getattr(activity, name, None)


def build_activity_rows(
    session_id,
    activities: Sequence[Any],
    source: str,
    now: Optional[datetime] = None,
) -> List[SessionActivityLog]:
    """Map reported activities to log rows (no reordering, no dedupe)."""
    now = now or datetime.now(timezone.utc)
    rows = []
    for a in activities:
        rows.append(SessionActivityLog(
            session_id=session_id,
            activity_index=_field(a, "activity_index"),
            activity_name=_field(a, "activity_name"),
            activity_purpose=_field(a, "activity_purpose") or None,
            status=_field(a, "status"),
            planned_duration_minutes=_field(a, "planned_duration_minutes") or None,
            actual_duration_seconds=_field(a, "actual_duration_seconds") or None,
            coach_note=_field(a, "coach_note") or None,
            started_at=_field(a, "started_at"),
            completed_at=_field(a, "completed_at") or now,
            source=source,
        ))
    return rows


def build_struggle_flags(
    session: ScheduledSession,
    activities: Sequence[Any],
    source: str,
    logged_by: Optional[str],
) -> List[LearningEvent]:
    """One flag per struggled activity, for the intervention dashboards."""
    flags = []
    for a in activities:
        if _field(a, "status") != "struggled":
            continue
        flags.append(LearningEvent(
            child_id=session.child_id,
            coach_id=session.coach_id,
            session_id=session.id,
            event_type=EVENT_STRUGGLE_FLAG,
            event_data={
                "session_id": str(session.id),
                "session_number": session.session_number,
                "activity_name": _field(a, "activity_name"),
                "activity_purpose": _field(a, "activity_purpose") or None,
                "coach_note": _field(a, "coach_note") or None,
                "logged_by": logged_by,
                "source": source,
            },
        ))
    return flags


def record_activities(
    db: Session,
    session: ScheduledSession,
    activities: Sequence[Any],
    source: str,
) -> RecordedActivities:
    """
    Insert activity log rows for a session and flush.

    This is the primary record of a completion: a store failure here
    propagates to the caller and aborts the request.
    """
    rows = build_activity_rows(session.id, activities, source)
    db.add_all(rows)
    db.flush()

    counts = count_statuses(activities)
    log_event(logger, "activity_log_inserted", session_id=str(session.id), count=len(rows), source=source)
    return RecordedActivities(rows=rows, status_counts=counts)


def record_struggle_flags(
    db: Session,
    session: ScheduledSession,
    activities: Sequence[Any],
    source: str,
    logged_by: Optional[str],
) -> List[LearningEvent]:
    """Insert struggle flags and flush. Callers treat failure as degraded, not fatal."""
    flags = build_struggle_flags(session, activities, source, logged_by)
    if flags:
        db.add_all(flags)
        db.flush()
        log_event(logger, "struggle_flags_created", session_id=str(session.id), count=len(flags))
    return flags
