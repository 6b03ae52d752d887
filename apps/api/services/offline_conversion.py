"""
Offline Conversion State Machine

Moves a scheduled session from online to offline (in person).

    none ──(qualified coach)──────► auto_approved   mode = offline
    none ──(not yet qualified)────► pending
    pending ──(admin approve)─────► approved        mode = offline
    pending ──(admin reject)──────► rejected        mode stays online

Every enrollment may have at most floor(total_sessions * offline_max_percent
/ 100) offline sessions. The cap is checked before qualification and again
on admin approval, so a qualified coach is still rejected once the cap is hit.

A coach is qualified once they have enough completed online sessions at or
above the adherence threshold. Thresholds come in through an OfflinePolicy
resolved by the caller.

Qualification is judged on the coach assigned to the session, not on the
actor making the request, so an admin requesting on a coach's behalf gets
that coach's record.

Once a session goes offline, the calendar event, recording bot and parent
notification are updated through background tasks. Dispatch failures are
logged and reported as degraded; they never fail the transition.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import NotFoundError, ForbiddenError, PreconditionError, OfflineCapReachedError
from core.logging import log_event
from models import Coach, Enrollment, ScheduledSession
from schemas import OfflineConversionRequest
from services.site_settings import OfflinePolicy

logger = logging.getLogger(__name__)


@dataclass
class OfflineDecision:
    session: ScheduledSession
    status: str
    message: str
    report_deadline: Optional[datetime] = None
    qualified_count: Optional[int] = None
    required_count: Optional[int] = None
    degraded: List[str] = field(default_factory=list)


class OfflineSideEffects:
    """Dispatches the post-approval integrations as Celery tasks."""

    def update_calendar(self, session: ScheduledSession) -> None:
        from tasks.session_tasks import update_calendar_for_offline_task

        update_calendar_for_offline_task.delay(
            str(session.id),
            session.calendar_event_id,
            session.coach.email if session.coach else None,
            session.offline_location,
        )

    def cancel_recording_bot(self, session: ScheduledSession) -> None:
        from tasks.session_tasks import cancel_recording_bot_task

        cancel_recording_bot_task.delay(str(session.id), session.recording_bot_id)

    def notify_parent(self, session: ScheduledSession) -> None:
        from tasks.session_tasks import notify_parent_offline_task

        child = session.child
        notify_parent_offline_task.delay(
            str(session.id),
            child.parent_phone if child else None,
            child.parent_name if child else None,
            child.child_name if child else None,
            session.scheduled_at.isoformat() if session.scheduled_at else None,
        )


# --- Counting -----------------------------------------------------------------

def offline_cap(total_sessions: int, max_percent: int) -> int:
    """Maximum offline sessions for an enrollment (floor)."""
    return (total_sessions * max_percent) // 100


def count_offline_sessions(db: Session, enrollment_id: UUID) -> int:
    return (
        db.query(func.count(ScheduledSession.id))
        .filter(
            ScheduledSession.enrollment_id == enrollment_id,
            ScheduledSession.session_mode == "offline",
        )
        .scalar()
    ) or 0


def count_qualifying_sessions(db: Session, coach_id: UUID, policy: OfflinePolicy) -> int:
    """Completed online sessions at or above the adherence threshold."""
    return (
        db.query(func.count(ScheduledSession.id))
        .filter(
            ScheduledSession.coach_id == coach_id,
            ScheduledSession.session_mode == "online",
            ScheduledSession.status == "completed",
            ScheduledSession.adherence_score >= policy.adherence_threshold_ratio,
        )
        .scalar()
    ) or 0


def enrollment_total_sessions(enrollment: Enrollment) -> int:
    return enrollment.total_sessions or settings.DEFAULT_ENROLLMENT_TOTAL_SESSIONS


def _check_cap(db: Session, enrollment: Enrollment, policy: OfflinePolicy, session_id: UUID) -> None:
    offline_count = count_offline_sessions(db, enrollment.id)
    max_offline = offline_cap(enrollment_total_sessions(enrollment), policy.offline_max_percent)
    if offline_count >= max_offline:
        log_event(
            logger, "offline_cap_reached", logging.WARNING,
            session_id=str(session_id), enrollment_id=str(enrollment.id),
            offline_count=offline_count, max_offline=max_offline,
        )
        raise OfflineCapReachedError(offline_count, max_offline, policy.offline_max_percent)


# --- Guards -------------------------------------------------------------------

def load_session(db: Session, session_id: UUID) -> ScheduledSession:
    session = db.get(ScheduledSession, session_id)
    if session is None:
        raise NotFoundError("Session", str(session_id), error_code="session_not_found")
    return session


def check_session_owner(session: ScheduledSession, actor: Coach) -> None:
    if actor.is_admin or session.coach_id == actor.id:
        return
    raise ForbiddenError("You are not the coach for this session", error_code="not_session_coach")


def _load_enrollment(db: Session, session: ScheduledSession) -> Enrollment:
    if session.enrollment_id is None:
        raise PreconditionError("Session has no enrollment", error_code="no_enrollment")
    enrollment = db.get(Enrollment, session.enrollment_id)
    if enrollment is None:
        raise NotFoundError("Enrollment", str(session.enrollment_id), error_code="enrollment_not_found")
    return enrollment


# --- Transitions --------------------------------------------------------------

def _report_deadline(session: ScheduledSession, policy: OfflinePolicy) -> Optional[datetime]:
    if session.scheduled_at is None:
        return None
    return session.scheduled_at + timedelta(hours=policy.report_deadline_hours)


def _flip_to_offline(session: ScheduledSession, status: str, approved_by: str,
                     policy: OfflinePolicy, now: datetime) -> None:
    session.session_mode = "offline"
    session.offline_request_status = status
    session.offline_approved_by = approved_by
    session.offline_approved_at = now
    session.report_deadline = _report_deadline(session, policy)
    session.updated_at = now


def run_offline_side_effects(session: ScheduledSession, side_effects: OfflineSideEffects) -> List[str]:
    """Dispatch calendar, bot and parent updates. Returns the names of failed steps."""
    degraded = []

    if session.calendar_event_id:
        try:
            side_effects.update_calendar(session)
        except Exception as e:
            log_event(logger, "calendar_update_failed", logging.ERROR, session_id=str(session.id), error=str(e))
            degraded.append("calendar_update")

    if session.recording_bot_id:
        try:
            side_effects.cancel_recording_bot(session)
        except Exception as e:
            log_event(logger, "bot_cancel_failed", logging.ERROR, session_id=str(session.id), error=str(e))
            degraded.append("recording_bot_cancel")

    try:
        side_effects.notify_parent(session)
    except Exception as e:
        log_event(logger, "parent_notification_failed", logging.WARNING, session_id=str(session.id), error=str(e))
        degraded.append("parent_notification")

    return degraded


def request_offline_conversion(
    db: Session,
    session_id: UUID,
    actor: Coach,
    request: OfflineConversionRequest,
    policy: OfflinePolicy,
    side_effects: Optional[OfflineSideEffects] = None,
    now: Optional[datetime] = None,
) -> OfflineDecision:
    """
    Ask to run a scheduled session in person.

    Raises a NotFoundError / ForbiddenError / PreconditionError with a
    specific error_code when a guard fails; OfflineCapReachedError carries the
    current count and the cap.
    """
    now = now or datetime.now(timezone.utc)
    side_effects = side_effects or OfflineSideEffects()

    session = load_session(db, session_id)
    check_session_owner(session, actor)

    if session.status != "scheduled":
        raise PreconditionError(
            f"Only scheduled sessions can go offline (status: {session.status})",
            error_code="session_not_scheduled",
        )
    if session.session_mode == "offline":
        raise PreconditionError("Session is already offline", error_code="already_offline")
    if session.offline_request_status != "none":
        raise PreconditionError(
            f"An offline request already exists (status: {session.offline_request_status})",
            error_code="offline_request_exists",
        )

    enrollment = _load_enrollment(db, session)
    _check_cap(db, enrollment, policy, session.id)

    session.offline_request_reason = request.reason
    session.offline_reason_detail = request.detail
    session.offline_location = request.location
    session.offline_location_type = request.location_type
    session.offline_requested_at = now

    qualified_count = count_qualifying_sessions(db, session.coach_id, policy) if session.coach_id else 0
    required_count = policy.online_threshold

    if qualified_count < required_count:
        session.offline_request_status = "pending"
        session.updated_at = now
        db.flush()
        log_event(
            logger, "offline_request_pending",
            session_id=str(session.id), coach_id=str(session.coach_id),
            qualified_count=qualified_count, required_count=required_count,
        )
        return OfflineDecision(
            session=session,
            status="pending",
            message="Offline request submitted for admin approval",
            qualified_count=qualified_count,
            required_count=required_count,
        )

    _flip_to_offline(session, "auto_approved", "auto", policy, now)
    db.flush()
    log_event(
        logger, "offline_auto_approved",
        session_id=str(session.id), coach_id=str(session.coach_id),
        qualified_count=qualified_count, report_deadline=session.report_deadline,
    )

    degraded = run_offline_side_effects(session, side_effects)
    return OfflineDecision(
        session=session,
        status="auto_approved",
        message="Session converted to offline",
        report_deadline=session.report_deadline,
        qualified_count=qualified_count,
        required_count=required_count,
        degraded=degraded,
    )


def decide_offline_request(
    db: Session,
    session_id: UUID,
    admin: Coach,
    decision: str,
    reason: Optional[str],
    policy: OfflinePolicy,
    side_effects: Optional[OfflineSideEffects] = None,
    now: Optional[datetime] = None,
) -> OfflineDecision:
    """Admin review of a pending request: 'approve' or 'reject'."""
    now = now or datetime.now(timezone.utc)
    side_effects = side_effects or OfflineSideEffects()

    session = load_session(db, session_id)
    if session.offline_request_status != "pending":
        raise PreconditionError(
            f"Offline request is not pending (status: {session.offline_request_status})",
            error_code="offline_request_not_pending",
        )

    reviewer = admin.email or str(admin.id)

    if decision == "reject":
        session.offline_request_status = "rejected"
        session.offline_rejection_reason = reason
        session.updated_at = now
        db.flush()
        log_event(logger, "offline_request_rejected", session_id=str(session.id), reviewer=reviewer)
        return OfflineDecision(session=session, status="rejected", message="Offline request rejected")

    if decision != "approve":
        raise PreconditionError(f"Unknown decision: {decision}", error_code="invalid_decision")

    if session.status != "scheduled":
        raise PreconditionError(
            f"Only scheduled sessions can go offline (status: {session.status})",
            error_code="session_not_scheduled",
        )
    enrollment = _load_enrollment(db, session)
    _check_cap(db, enrollment, policy, session.id)

    _flip_to_offline(session, "approved", reviewer, policy, now)
    db.flush()
    log_event(logger, "offline_request_approved", session_id=str(session.id), reviewer=reviewer)

    degraded = run_offline_side_effects(session, side_effects)
    return OfflineDecision(
        session=session,
        status="approved",
        message="Offline request approved",
        report_deadline=session.report_deadline,
        degraded=degraded,
    )


def list_pending_offline_requests(db: Session, policy: OfflinePolicy) -> List[Dict[str, Any]]:
    """Pending requests, oldest session first, with each enrollment's cap usage."""
    sessions = (
        db.query(ScheduledSession)
        .filter(ScheduledSession.offline_request_status == "pending")
        .order_by(ScheduledSession.scheduled_at.asc().nulls_last())
        .all()
    )

    usage: Dict[UUID, Dict[str, int]] = {}
    results = []
    for s in sessions:
        if s.enrollment_id not in usage:
            enrollment = db.get(Enrollment, s.enrollment_id) if s.enrollment_id else None
            if enrollment is None:
                usage[s.enrollment_id] = {"offline_count": 0, "max_offline": 0}
            else:
                usage[s.enrollment_id] = {
                    "offline_count": count_offline_sessions(db, enrollment.id),
                    "max_offline": offline_cap(enrollment_total_sessions(enrollment), policy.offline_max_percent),
                }
        results.append({
            "id": s.id,
            "child_id": s.child_id,
            "coach_id": s.coach_id,
            "enrollment_id": s.enrollment_id,
            "session_number": s.session_number,
            "scheduled_at": s.scheduled_at,
            "offline_request_reason": s.offline_request_reason,
            "offline_reason_detail": s.offline_reason_detail,
            "offline_location": s.offline_location,
            "offline_location_type": s.offline_location_type,
            "offline_requested_at": s.offline_requested_at,
            **usage[s.enrollment_id],
        })
    return results
