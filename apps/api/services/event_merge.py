"""
Event Merge Engine

A session's "what happened" record can come from two producers:

- the transcript pipeline (recording bot -> transcript -> analysis), which
  writes a learning event of type 'session'
- the coach's activity report (companion panel or offline report), which
  writes a 'session_companion_log'

Either may arrive first. Both paths upsert the single canonical session fact
keyed by session id (learning_event.canonical_session_id is unique), so the
merge is commutative: whichever arrives second folds its fields into the
existing payload instead of creating a second fact. Re-merging the same
source overwrites that source's keys.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.logging import log_event
from models import (
    CANONICAL_SESSION_EVENT_TYPES,
    EVENT_COMPANION_LOG,
    EVENT_SESSION,
    LearningEvent,
    ScheduledSession,
)

logger = logging.getLogger(__name__)


@dataclass
class MergeOutcome:
    event: LearningEvent
    created: bool


def find_canonical_event(db: Session, session: ScheduledSession) -> Optional[LearningEvent]:
    """Latest canonical session fact for this child + session, if any."""
    return (
        db.query(LearningEvent)
        .filter(
            LearningEvent.child_id == session.child_id,
            LearningEvent.canonical_session_id == session.id,
            LearningEvent.event_type.in_(CANONICAL_SESSION_EVENT_TYPES),
        )
        .order_by(LearningEvent.created_at.desc())
        .first()
    )


def companion_merge_fields(companion_data: Dict[str, Any], logged_by: Optional[str], now: datetime) -> Dict[str, Any]:
    """Fields a coach report contributes to an existing canonical fact."""
    fields = {
        "activity_statuses": companion_data.get("status_counts"),
        "companion_activities": companion_data.get("activities"),
        "companion_notes": companion_data.get("coach_notes"),
        "companion_elapsed_seconds": companion_data.get("session_elapsed_seconds"),
        "companion_logged_by": logged_by,
        "companion_merged_at": now.isoformat(),
    }
    # Offline reports carry audio-derived context the summary generator reads.
    for key in ("voice_note_transcript", "reading_clip_analysis", "confidence_level",
                "words_struggled", "words_mastered", "session_mode", "source"):
        if key in companion_data:
            fields[key] = companion_data[key]
    return fields


def transcript_merge_fields(transcript_data: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    """Fields the transcript pipeline contributes to an existing canonical fact."""
    fields = {k: v for k, v in transcript_data.items() if k != "session_id"}
    fields["transcript_merged_at"] = now.isoformat()
    return fields


def _apply(event: LearningEvent, fields: Dict[str, Any], now: datetime) -> None:
    # Reassign (not mutate) so the JSON column is marked dirty.
    merged = dict(event.event_data or {})
    merged.update(fields)
    event.event_data = merged
    event.updated_at = now


def _upsert(
    db: Session,
    session: ScheduledSession,
    new_event_type: str,
    new_payload: Dict[str, Any],
    merge_fields: Dict[str, Any],
    now: datetime,
    ai_summary: Optional[str] = None,
) -> MergeOutcome:
    existing = find_canonical_event(db, session)
    if existing is not None:
        _apply(existing, merge_fields, now)
        if ai_summary and not existing.ai_summary:
            existing.ai_summary = ai_summary
        db.flush()
        return MergeOutcome(event=existing, created=False)

    event = LearningEvent(
        child_id=session.child_id,
        coach_id=session.coach_id,
        session_id=session.id,
        canonical_session_id=session.id,
        event_type=new_event_type,
        event_date=now.date(),
        event_data=new_payload,
        ai_summary=ai_summary,
    )
    try:
        with db.begin_nested():
            db.add(event)
            db.flush()
        return MergeOutcome(event=event, created=True)
    except IntegrityError:
        # The other producer inserted between our lookup and insert.
        log_event(logger, "canonical_event_insert_race", session_id=str(session.id))
        existing = find_canonical_event(db, session)
        if existing is None:
            raise
        _apply(existing, merge_fields, now)
        db.flush()
        return MergeOutcome(event=existing, created=False)


def merge_companion_report(
    db: Session,
    session: ScheduledSession,
    companion_data: Dict[str, Any],
    logged_by: Optional[str],
    now: Optional[datetime] = None,
) -> MergeOutcome:
    """
    Write a coach report into the canonical session fact.

    If the transcript pipeline already created the fact, the report is merged
    into it (stamped with companion_merged_at / companion_logged_by).
    Otherwise a new 'session_companion_log' fact holds the report alone.
    """
    now = now or datetime.now(timezone.utc)
    payload = dict(companion_data)
    payload.setdefault("logged_by", logged_by)
    outcome = _upsert(
        db,
        session,
        new_event_type=EVENT_COMPANION_LOG,
        new_payload=payload,
        merge_fields=companion_merge_fields(companion_data, logged_by, now),
        now=now,
    )
    event_name = "companion_log_created" if outcome.created else "companion_merged_into_session"
    log_event(logger, event_name, session_id=str(session.id), event_id=str(outcome.event.id))
    return outcome


def merge_transcript_record(
    db: Session,
    session: ScheduledSession,
    transcript_data: Dict[str, Any],
    ai_summary: Optional[str] = None,
    now: Optional[datetime] = None,
) -> MergeOutcome:
    """
    Write the transcript pipeline's analysis into the canonical session fact.

    Mirror of merge_companion_report for the case where the coach report
    arrived first. Also marks the session transcript as available.
    """
    now = now or datetime.now(timezone.utc)
    payload = dict(transcript_data)
    payload["session_id"] = str(session.id)
    outcome = _upsert(
        db,
        session,
        new_event_type=EVENT_SESSION,
        new_payload=payload,
        merge_fields=transcript_merge_fields(transcript_data, now),
        now=now,
        ai_summary=ai_summary,
    )
    session.transcript_status = "available"
    db.flush()
    event_name = "transcript_event_created" if outcome.created else "transcript_merged_into_companion_log"
    log_event(logger, event_name, session_id=str(session.id), event_id=str(outcome.event.id))
    return outcome
