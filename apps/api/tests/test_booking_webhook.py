"""
Tests for booking webhook handling and discovery call auto-assignment.
"""
import hashlib
import hmac
from datetime import date, datetime, timezone

import pytest

from core.exceptions import APIException
from models import CoachLeave, DiscoveryCall
from services.booking_webhook import (
    extract_value,
    first_response,
    handle_booking_event,
    is_discovery_booking,
    verify_booking_signature,
)

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _payload(**booking_overrides):
    booking = {
        "uid": "bk_123",
        "id": 991,
        "length": 30,
        "eventType": {"slug": "discovery-call"},
        "startTime": "2026-03-05T10:00:00Z",
        "attendees": [{"name": "Attendee Name", "email": "attendee@example.com"}],
        "responses": {
            "your_name": {"label": "Your name", "value": "Meera Shah"},
            "email_address": {"value": "Meera@Example.com"},
            "phone": "+919800000000",
            "Child Name": {"value": "aarav", "isHidden": False},
            "Child Age": "7 years",
        },
        "metadata": {"videoCallUrl": "https://meet.example.com/abc"},
    }
    booking.update(booking_overrides)
    return {"triggerEvent": "BOOKING_CREATED", "payload": booking}


class TestSignature:

    def test_valid_signature(self):
        body = b'{"triggerEvent":"BOOKING_CREATED"}'
        signature = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()

        assert verify_booking_signature(body, signature, secret="s3cret") is True
        assert verify_booking_signature(body, f"sha256={signature}", secret="s3cret") is True

    def test_invalid_or_missing_signature(self):
        assert verify_booking_signature(b"{}", "deadbeef", secret="s3cret") is False
        assert verify_booking_signature(b"{}", None, secret="s3cret") is False

    def test_no_secret_accepts_everything(self):
        assert verify_booking_signature(b"{}", None, secret="") is True


def test_answer_objects_are_unwrapped():
    assert extract_value({"value": "Meera", "label": "Your name"}) == "Meera"
    assert extract_value({"label": "empty"}) == ""
    assert extract_value(7) == "7"
    assert first_response({"name": "", "Your name": "Meera"}, ("name", "Your name")) == "Meera"
    assert first_response({}, ("name",), fallback=" From attendee ") == "From attendee"


@pytest.mark.parametrize("booking,expected", [
    ({"eventType": {"slug": "free-discovery"}}, True),
    ({"length": 20}, True),
    ({"type": "coaching-session", "length": 45}, False),
])
def test_discovery_detection(booking, expected):
    assert is_discovery_booking(booking) is expected


class TestHandleBookingEvent:

    def test_creates_call_assigns_coach_and_links_child(self, db_session, coach, child):
        response = handle_booking_event(db_session, _payload(), now=NOW)
        db_session.commit()

        call = db_session.get(DiscoveryCall, response.discovery_call_id)
        assert response.auto_assigned is True
        assert response.assigned_coach == coach.name
        assert response.child_linked is True
        assert call.child_id == child.id
        assert call.coach_id == coach.id
        assert call.assignment_type == "auto"
        assert call.parent_name == "Meera Shah"
        assert call.child_age == 7
        assert call.meeting_url == "https://meet.example.com/abc"
        assert call.booking_id == "991"

        db_session.refresh(coach)
        assert coach.last_assigned_at is not None

    def test_least_recently_assigned_coach_gets_the_call(self, db_session, make_coach):
        first = make_coach(name="First")
        second = make_coach(name="Second")

        a = handle_booking_event(db_session, _payload(uid="bk_1"), now=NOW)
        b = handle_booking_event(db_session, _payload(uid="bk_2"), now=NOW.replace(hour=10))

        assert {a.assigned_coach, b.assigned_coach} == {first.name, second.name}

    def test_no_eligible_coach_leaves_call_pending(self, db_session, coach):
        db_session.add(CoachLeave(coach_id=coach.id, start_date=date(2026, 3, 4), end_date=date(2026, 3, 6)))
        db_session.commit()

        response = handle_booking_event(db_session, _payload(), now=NOW)

        call = db_session.get(DiscoveryCall, response.discovery_call_id)
        assert response.auto_assigned is False
        assert call.assignment_type == "pending"
        assert call.coach_id is None

    def test_duplicate_delivery_is_ignored(self, db_session, coach):
        first = handle_booking_event(db_session, _payload(), now=NOW)
        db_session.commit()

        again = handle_booking_event(db_session, _payload(), now=NOW)

        assert again.ignored is True
        assert again.reason == "duplicate_booking"
        assert again.discovery_call_id == first.discovery_call_id
        assert db_session.query(DiscoveryCall).count() == 1

    def test_other_triggers_and_event_types_are_ignored(self, db_session, coach):
        cancelled = dict(_payload(), triggerEvent="BOOKING_CANCELLED")
        coaching = _payload(eventType={"slug": "weekly-coaching"}, length=45)

        assert handle_booking_event(db_session, cancelled).reason == "not_booking_created"
        assert handle_booking_event(db_session, coaching).reason == "not_discovery"
        assert db_session.query(DiscoveryCall).count() == 0

    def test_attendee_name_is_the_fallback(self, db_session, coach):
        response = handle_booking_event(db_session, _payload(responses={}), now=NOW)

        call = db_session.get(DiscoveryCall, response.discovery_call_id)
        assert call.parent_name == "Attendee Name"
        assert call.child_name == "Not provided"
        assert response.child_linked is False

    def test_missing_parent_name_is_rejected(self, db_session, coach):
        with pytest.raises(APIException) as exc_info:
            handle_booking_event(db_session, _payload(responses={}, attendees=[]), now=NOW)
        assert exc_info.value.error_code == "missing_parent_name"
