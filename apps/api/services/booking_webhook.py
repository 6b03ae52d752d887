"""
Booking provider webhook handling.

A BOOKING_CREATED event for a discovery call becomes a discovery_call row,
auto-assigned to the next coach in the round robin when one is eligible and
linked to an existing child when parent email and child name match.

The provider sends booking-form answers either as plain strings or as
{"label": ..., "value": ..., "isHidden": ...} objects, under labels that
changed over time, so each field is looked up under several keys.
"""

import hashlib
import hmac
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import PreconditionError
from core.logging import log_event
from models import Child, DiscoveryCall
from schemas import BookingWebhookResponse
from services.coach_assignment import mark_coach_assigned, select_coach_for_date

logger = logging.getLogger(__name__)

BOOKING_CREATED = "BOOKING_CREATED"
DISCOVERY_CALL_LENGTHS = (20, 30)

PARENT_NAME_KEYS = ("your_name", "name", "Your name", "Your Name")
PARENT_EMAIL_KEYS = ("email_address", "email", "Email address", "Email Address")
PARENT_PHONE_KEYS = ("phone", "Phone Number", "Phone number", "phoneNumber", "phone_number")
CHILD_NAME_KEYS = ("Child Name", "child name", "childName", "child-name", "child_name", "childname")
CHILD_AGE_KEYS = ("Child Age", "child age", "childAge", "child-age", "child_age", "childage")


def verify_booking_signature(body: bytes, signature: Optional[str], secret: Optional[str] = None) -> bool:
    """
    HMAC-SHA256 of the raw body, hex encoded.

    When no secret is configured every request is accepted.
    """
    secret = secret if secret is not None else settings.BOOKING_WEBHOOK_SECRET
    if not secret:
        return True
    if not signature:
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature.replace("sha256=", ""), expected)


def extract_value(field: Any) -> str:
    """Unwrap {"value": ...} answer objects; everything else is stringified."""
    if field is None:
        return ""
    if isinstance(field, dict):
        value = field.get("value")
        return "" if value is None else str(value)
    return str(field)


def first_response(responses: Dict[str, Any], keys: Iterable[str], fallback: Optional[str] = "") -> str:
    for key in keys:
        value = extract_value(responses.get(key)).strip()
        if value:
            return value
    return (fallback or "").strip()


def is_discovery_booking(booking: Dict[str, Any]) -> bool:
    event_type = ((booking.get("eventType") or {}).get("slug") or booking.get("type") or "").lower()
    return "discovery" in event_type or booking.get("length") in DISCOVERY_CALL_LENGTHS


def parse_start_time(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable booking startTime: {raw!r}")
        return None


def _parse_age(raw: str) -> Optional[int]:
    digits = ""
    for ch in raw.strip():
        if not ch.isdigit():
            break
        digits += ch
    return int(digits) if digits else None


def find_matching_child(db: Session, parent_email: str, child_name: str) -> Optional[Child]:
    """Most recent child with this parent email and child name (case-insensitive)."""
    if not parent_email or not child_name:
        return None
    return (
        db.query(Child)
        .filter(
            func.lower(Child.parent_email) == parent_email.lower(),
            func.lower(Child.child_name) == child_name.lower(),
        )
        .order_by(Child.created_at.desc())
        .first()
    )


def handle_booking_event(db: Session, payload: Dict[str, Any], now: Optional[datetime] = None) -> BookingWebhookResponse:
    """Create a discovery call from a booking event. Non-discovery events are ignored."""
    now = now or datetime.now(timezone.utc)
    trigger = payload.get("triggerEvent")
    if trigger != BOOKING_CREATED:
        log_event(logger, "booking_event_ignored", trigger=trigger)
        return BookingWebhookResponse(ignored=True, reason="not_booking_created")

    booking = payload.get("payload") or {}
    if not is_discovery_booking(booking):
        return BookingWebhookResponse(ignored=True, reason="not_discovery")

    booking_uid = booking.get("uid")
    if booking_uid:
        existing = db.query(DiscoveryCall).filter(DiscoveryCall.booking_uid == booking_uid).first()
        if existing is not None:
            # Provider retried a delivery we already processed.
            return BookingWebhookResponse(
                ignored=True,
                reason="duplicate_booking",
                discovery_call_id=existing.id,
                auto_assigned=existing.assignment_type == "auto",
                child_linked=existing.child_id is not None,
            )

    attendees = booking.get("attendees") or []
    attendee = attendees[0] if attendees else {}
    responses = booking.get("responses") or {}

    parent_name = first_response(responses, PARENT_NAME_KEYS, attendee.get("name"))
    parent_email = first_response(responses, PARENT_EMAIL_KEYS, attendee.get("email"))
    parent_phone = first_response(responses, PARENT_PHONE_KEYS)
    child_name = first_response(responses, CHILD_NAME_KEYS)
    child_age = _parse_age(first_response(responses, CHILD_AGE_KEYS))

    if not parent_name:
        log_event(logger, "booking_missing_parent_name", logging.WARNING, response_keys=sorted(responses))
        raise PreconditionError("Missing parent name", error_code="missing_parent_name")

    child = find_matching_child(db, parent_email, child_name)

    scheduled_at = parse_start_time(booking.get("startTime"))
    scheduled_date: date = scheduled_at.astimezone(timezone.utc).date() if scheduled_at else now.date()
    coach = select_coach_for_date(db, scheduled_date)

    call = DiscoveryCall(
        child_id=child.id if child else None,
        parent_name=parent_name,
        parent_email=parent_email or None,
        parent_phone=parent_phone or None,
        child_name=child_name or "Not provided",
        child_age=child_age,
        status="scheduled",
        scheduled_at=scheduled_at,
        meeting_url=(booking.get("metadata") or {}).get("videoCallUrl") or booking.get("location"),
        booking_id=str(booking.get("bookingId") or booking.get("id") or "") or None,
        booking_uid=booking_uid,
        source="booking_webhook",
        coach_id=coach.id if coach else None,
        assignment_type="auto" if coach else "pending",
        assigned_at=now if coach else None,
        assigned_by="system" if coach else None,
    )
    db.add(call)
    db.flush()

    if coach is not None:
        try:
            with db.begin_nested():
                mark_coach_assigned(db, coach.id, now)
        except Exception as e:
            log_event(logger, "coach_stamp_failed", logging.WARNING, coach_id=str(coach.id), error=str(e))

    log_event(
        logger, "discovery_call_created",
        discovery_call_id=str(call.id), auto_assigned=coach is not None,
        coach_id=str(coach.id) if coach else None, child_linked=child is not None,
    )
    return BookingWebhookResponse(
        discovery_call_id=call.id,
        auto_assigned=coach is not None,
        assigned_coach=coach.name if coach else None,
        child_linked=child is not None,
    )
