"""
Coach Assignment Selector

Round robin by recency: the eligible coach who was assigned least recently
(never-assigned coaches first) gets the next discovery call.

Selection and stamping are separate calls. The caller stamps the coach only
after it has actually used the result, so a failed booking does not skip a
coach in the rotation. Two concurrent bookings can still pick the same coach;
fairness is best effort.
"""

import logging
from datetime import date, datetime, timezone
from typing import Optional, Set
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from models import Coach, CoachLeave

logger = logging.getLogger(__name__)

BLOCKING_LEAVE_STATUSES = ("upcoming", "active")


def unavailable_coach_ids(db: Session, on_date: date) -> Set[UUID]:
    """Coaches whose leave window covers on_date (both ends inclusive)."""
    rows = (
        db.query(CoachLeave.coach_id)
        .filter(
            CoachLeave.status.in_(BLOCKING_LEAVE_STATUSES),
            CoachLeave.start_date <= on_date,
            CoachLeave.end_date >= on_date,
        )
        .distinct()
        .all()
    )
    return {row.coach_id for row in rows}


def select_coach_for_date(db: Session, on_date: date) -> Optional[Coach]:
    """
    Pick the next coach for a booking on on_date.

    Returns None when nobody is eligible; the booking then waits for manual
    assignment.
    """
    on_leave = unavailable_coach_ids(db, on_date)

    query = db.query(Coach).filter(
        Coach.is_active.is_(True),
        Coach.is_available.is_(True),
        or_(Coach.exit_status.is_(None), Coach.exit_status != "pending"),
    )
    if on_leave:
        query = query.filter(Coach.id.notin_(list(on_leave)))

    coach = query.order_by(Coach.last_assigned_at.asc().nulls_first(), Coach.created_at.asc()).first()

    if coach is None:
        logger.info(f"No eligible coach for {on_date.isoformat()} ({len(on_leave)} on leave)")
    return coach


def mark_coach_assigned(db: Session, coach_id: UUID, at: Optional[datetime] = None) -> None:
    """Move the coach to the back of the rotation."""
    at = at or datetime.now(timezone.utc)
    db.query(Coach).filter(Coach.id == coach_id).update(
        {Coach.last_assigned_at: at}, synchronize_session="fetch"
    )
    db.flush()
