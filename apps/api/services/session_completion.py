"""
Session Completion Orchestrator

Runs when a coach finishes a session. Online (companion panel) and offline
(after-the-fact report) submissions validate differently but converge on the
same finalize sequence:

    1. insert activity log rows               primary, fatal
    2. merge into the canonical session fact  best effort (savepoint)
    3. struggle flags                         best effort (savepoint)
    4. adherence score                        best effort
    5. mark the session completed             primary, fatal
       -- commit --
    6. coach streak (atomic increment)        best effort
    7. enqueue the parent summary job         best effort

A failed best-effort step is logged under a stable event name and listed in
the response's `degraded` field; the coach still gets a success as long as
the primary record was written.

Two simultaneous submissions for one session can both pass the "already
completed" check before either commits. The check is an optimistic guard,
not a lock.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from core.exceptions import PreconditionError
from core.logging import log_event
from models import Coach, ScheduledSession
from schemas import ActivityInput, CompletionResponse, OfflineReportRequest, OnlineCompletionRequest, ParentSummaryJob
from services.activity_recorder import record_activities, record_struggle_flags
from services.adherence_scorer import score_adherence
from services.audio_analysis import AudioAnalysisService
from services.event_merge import merge_companion_report
from services.offline_conversion import check_session_owner, load_session

logger = logging.getLogger(__name__)

CONFIDENCE_COACH_AUDIO = "coach_audio"
CONFIDENCE_COACH_REPORTED = "coach_reported"


def _default_publisher(job: ParentSummaryJob) -> Any:
    from tasks.session_tasks import publish_parent_summary

    return publish_parent_summary(job)


@dataclass
class CompletionDeps:
    """External collaborators used by the completion flow (swapped in tests)."""
    audio: Optional[AudioAnalysisService] = None
    publish_summary: Callable[[ParentSummaryJob], Any] = _default_publisher

    def audio_service(self) -> AudioAnalysisService:
        if self.audio is None:
            self.audio = AudioAnalysisService()
        return self.audio


@dataclass
class _Submission:
    activities: List[ActivityInput]
    source: str
    elapsed_seconds: Optional[int]
    coach_notes: Optional[str]
    companion_data: Dict[str, Any]
    offline_context: Optional[Dict[str, Any]] = None
    report_late: Optional[bool] = None
    degraded: List[str] = field(default_factory=list)


def _as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; stored values are UTC.
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)


def _activity_dicts(activities: Sequence[ActivityInput]) -> List[Dict[str, Any]]:
    return [a.model_dump(mode="json") for a in activities]


def _check_common(db: Session, session_id: UUID, actor: Coach, offline: bool) -> ScheduledSession:
    session = load_session(db, session_id)
    if session.child_id is None:
        raise PreconditionError("Session has no child", error_code="session_has_no_child")
    check_session_owner(session, actor)

    if offline and session.report_submitted_at is not None:
        raise PreconditionError(
            "Offline report already submitted", error_code="report_already_submitted", status_code=409
        )
    if session.status == "completed":
        raise PreconditionError(
            "Session already completed",
            error_code="report_already_submitted" if offline else "session_already_completed",
            status_code=409,
        )
    if session.status == "cancelled":
        raise PreconditionError("Session was cancelled", error_code="session_cancelled")
    return session


# --- Shared finalize ------------------------------------------------------------

def _finalize(
    db: Session,
    session: ScheduledSession,
    actor: Coach,
    submission: _Submission,
    deps: CompletionDeps,
    now: datetime,
) -> CompletionResponse:
    session_id = str(session.id)
    logged_by = actor.email or str(actor.id)
    degraded = submission.degraded

    recorded = record_activities(db, session, submission.activities, submission.source)

    companion_data = dict(submission.companion_data)
    companion_data.update({
        "session_id": session_id,
        "status_counts": recorded.status_counts,
        "activities": _activity_dicts(submission.activities),
        "coach_notes": submission.coach_notes,
        "session_elapsed_seconds": submission.elapsed_seconds,
    })
    try:
        with db.begin_nested():
            merge_companion_report(db, session, companion_data, logged_by, now=now)
    except Exception as e:
        log_event(logger, "companion_merge_failed", logging.ERROR, session_id=session_id, error=str(e))
        degraded.append("event_merge")

    try:
        with db.begin_nested():
            record_struggle_flags(db, session, submission.activities, submission.source, logged_by)
    except Exception as e:
        log_event(logger, "struggle_flags_failed", logging.ERROR, session_id=session_id, error=str(e))
        degraded.append("struggle_flags")

    result = None
    try:
        activity_flow = session.template.activity_flow if session.template else None
        result = score_adherence(activity_flow, submission.activities)
    except Exception as e:
        log_event(logger, "adherence_scoring_failed", logging.ERROR, session_id=session_id, error=str(e))
        degraded.append("adherence_score")

    session.status = "completed"
    session.completed_at = now
    session.updated_at = now
    session.companion_panel_completed = True
    session.session_elapsed_seconds = submission.elapsed_seconds
    if submission.coach_notes:
        session.coach_notes = submission.coach_notes
    if result is not None and session.adherence_score is None:
        session.adherence_score = result.score
        session.adherence_details = result.details_dict()
    if submission.report_late is not None:
        session.report_submitted_at = now
        session.report_late = submission.report_late
    db.commit()

    log_event(
        logger, "session_completed",
        session_id=session_id, source=submission.source, saved=recorded.saved,
        adherence_score=session.adherence_score, degraded=",".join(degraded) or None,
    )

    if session.coach_id:
        try:
            db.query(Coach).filter(Coach.id == session.coach_id).update(
                {Coach.completed_sessions_with_logs: Coach.completed_sessions_with_logs + 1},
                synchronize_session=False,
            )
            db.commit()
        except Exception as e:
            db.rollback()
            log_event(logger, "coach_streak_increment_failed", logging.WARNING, session_id=session_id, error=str(e))
            degraded.append("coach_streak")

    job = ParentSummaryJob(
        session_id=session_id,
        child_id=str(session.child_id),
        request_id=str(uuid.uuid4()),
        offline_context=submission.offline_context,
    )
    try:
        deps.publish_summary(job)
        log_event(logger, "parent_summary_enqueued", session_id=session_id, request_id=job.request_id)
    except Exception as e:
        log_event(logger, "parent_summary_enqueue_failed", logging.ERROR, session_id=session_id, error=str(e))
        degraded.append("parent_summary_enqueue")

    return CompletionResponse(
        session_id=session.id,
        saved=recorded.saved,
        status_counts=recorded.status_counts,
        adherence_score=session.adherence_score,
        degraded=degraded,
    )


# --- Online ---------------------------------------------------------------------

def complete_online_session(
    db: Session,
    session_id: UUID,
    actor: Coach,
    submission: OnlineCompletionRequest,
    deps: Optional[CompletionDeps] = None,
    now: Optional[datetime] = None,
) -> CompletionResponse:
    """Record the companion panel report for an online session."""
    deps = deps or CompletionDeps()
    now = now or datetime.now(timezone.utc)

    session = _check_common(db, session_id, actor, offline=False)
    if session.session_mode == "offline":
        raise PreconditionError(
            "Offline sessions are completed through the offline report", error_code="session_is_offline"
        )

    # A transcript may already have landed; don't downgrade it.
    if session.transcript_status != "available":
        session.transcript_status = "awaiting" if session.recording_bot_id else "none"

    return _finalize(
        db,
        session,
        actor,
        _Submission(
            activities=list(submission.activities),
            source="companion_panel",
            elapsed_seconds=submission.session_elapsed_seconds,
            coach_notes=submission.coach_notes,
            companion_data={"session_mode": "online", "source": "companion_panel"},
        ),
        deps,
        now,
    )


# --- Offline --------------------------------------------------------------------

def _elapsed_seconds(start: datetime, end: datetime) -> Optional[int]:
    elapsed = int((_as_utc(end) - _as_utc(start)).total_seconds())
    return elapsed if elapsed > 0 else None


def complete_offline_session(
    db: Session,
    session_id: UUID,
    actor: Coach,
    submission: OfflineReportRequest,
    deps: Optional[CompletionDeps] = None,
    now: Optional[datetime] = None,
) -> CompletionResponse:
    """
    Record the after-the-fact report for an approved offline session.

    The coach's voice note must already be uploaded. It is transcribed here,
    and the optional reading clip analyzed; both are best effort and feed the
    offline_context bundle of the parent summary job.
    """
    deps = deps or CompletionDeps()
    now = now or datetime.now(timezone.utc)

    session = _check_common(db, session_id, actor, offline=True)
    if session.session_mode != "offline":
        raise PreconditionError("Session is not an offline session", error_code="not_offline_session")
    if not session.is_offline_approved:
        raise PreconditionError(
            f"Offline request is not approved (status: {session.offline_request_status})",
            error_code="offline_not_approved",
        )
    if not session.coach_voice_note_path:
        raise PreconditionError("Upload the voice note before submitting the report", error_code="voice_note_required")

    degraded: List[str] = []
    sid = str(session.id)

    transcript = None
    try:
        transcript = deps.audio_service().transcribe_voice_note(session.coach_voice_note_path)
        session.voice_note_transcript = transcript
    except Exception as e:
        log_event(logger, "voice_note_transcription_failed", logging.WARNING, session_id=sid, error=str(e))
        degraded.append("voice_note_transcription")

    reading_analysis = None
    if session.child_reading_clip_path:
        child = session.child
        try:
            reading_analysis = deps.audio_service().analyze_child_reading(
                session.child_reading_clip_path,
                child_name=child.child_name if child else None,
                child_age=child.age if child else None,
            ).to_dict()
        except Exception as e:
            log_event(logger, "reading_clip_analysis_failed", logging.WARNING, session_id=sid, error=str(e))
            degraded.append("reading_clip_analysis")

    confidence = CONFIDENCE_COACH_AUDIO if session.child_reading_clip_path else CONFIDENCE_COACH_REPORTED

    deadline = _as_utc(session.report_deadline)
    report_late = bool(deadline and _as_utc(now) > deadline)
    if report_late:
        log_event(logger, "offline_report_late", session_id=sid, report_deadline=deadline)

    offline_context = {
        "voice_note_transcript": transcript,
        "reading_clip_analysis": reading_analysis,
        "confidence_level": confidence,
        "words_struggled": list(submission.words_struggled),
        "words_mastered": list(submission.words_mastered),
        "session_mode": "offline",
    }

    response = _finalize(
        db,
        session,
        actor,
        _Submission(
            activities=list(submission.activities) + list(submission.additional_activities),
            source="offline_report",
            elapsed_seconds=_elapsed_seconds(submission.actual_start_time, submission.actual_end_time),
            coach_notes=submission.coach_notes,
            companion_data={
                **offline_context,
                "source": "offline_report",
                "actual_start_time": submission.actual_start_time.isoformat(),
                "actual_end_time": submission.actual_end_time.isoformat(),
                "report_late": report_late,
            },
            offline_context=offline_context,
            report_late=report_late,
            degraded=degraded,
        ),
        deps,
        now,
    )
    response.report_late = report_late
    response.voice_note_transcribed = transcript is not None
    response.reading_clip_analyzed = reading_analysis is not None
    response.confidence_level = confidence
    return response
