"""
API tests for the coach session, admin review and booking webhook routes.

Service behaviour is covered in the service tests; these check wiring,
authentication, and how rejections are rendered.
"""
import json
from uuid import uuid4

import pytest

from core.config import settings
from models import DiscoveryCall, SessionActivityLog
from tests.session_helpers import all_activities, auth_headers_for

OFFLINE_REQUEST = {"reason": "travel", "location": "12 Lake Road", "location_type": "home_visit"}


def _qualify(make_session, count=3):
    for _ in range(count):
        make_session(status="completed", adherence_score=0.9)


class TestAuthentication:

    def test_missing_token_is_401(self, client, online_session):
        response = client.post(f"/v1/coach/sessions/{online_session.id}/request-offline", json=OFFLINE_REQUEST)
        assert response.status_code == 401

    def test_garbage_token_is_401(self, client, online_session):
        response = client.post(
            f"/v1/coach/sessions/{online_session.id}/request-offline",
            json=OFFLINE_REQUEST,
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert response.status_code == 401

    def test_admin_routes_reject_coaches(self, client, coach):
        response = client.get("/v1/admin/sessions/offline-requests", headers=auth_headers_for(coach))
        assert response.status_code == 403

    def test_deactivated_coach_is_403(self, client, db_session, make_coach, online_session):
        inactive = make_coach(is_active=False)

        response = client.post(
            f"/v1/coach/sessions/{online_session.id}/request-offline",
            json=OFFLINE_REQUEST,
            headers=auth_headers_for(inactive),
        )
        assert response.status_code == 403


def test_health_ping_and_request_id(client):
    assert client.get("/ping").json() == {"pong": True}

    response = client.get("/health", headers={"X-Request-ID": "req-42"})
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.headers["X-Request-ID"] == "req-42"


class TestRequestOffline:

    def test_auto_approved(self, client, coach, make_session, side_effects):
        _qualify(make_session)
        session = make_session()

        response = client.post(
            f"/v1/coach/sessions/{session.id}/request-offline", json=OFFLINE_REQUEST, headers=auth_headers_for(coach)
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "auto_approved"
        assert body["session_mode"] == "offline"
        assert body["report_deadline"] is not None
        assert side_effects.names() == ["notify_parent"]

    def test_pending(self, client, coach, online_session):
        response = client.post(
            f"/v1/coach/sessions/{online_session.id}/request-offline",
            json=OFFLINE_REQUEST,
            headers=auth_headers_for(coach),
        )

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "pending"
        assert body["qualified_count"] == 0
        assert body["required_count"] == 3

    def test_cap_rejection_renders_counts(self, client, coach, enrollment, make_session, db_session):
        enrollment.total_sessions = 4
        db_session.commit()
        make_session(session_mode="offline", offline_request_status="auto_approved")
        session = make_session()

        response = client.post(
            f"/v1/coach/sessions/{session.id}/request-offline", json=OFFLINE_REQUEST, headers=auth_headers_for(coach)
        )

        assert response.status_code == 403
        body = response.json()
        assert body["error_code"] == "offline_cap_reached"
        assert body["offline_count"] == 1
        assert body["max_offline"] == 1

    def test_unknown_session_is_404(self, client, coach):
        response = client.post(
            f"/v1/coach/sessions/{uuid4()}/request-offline", json=OFFLINE_REQUEST, headers=auth_headers_for(coach)
        )
        assert response.status_code == 404
        assert response.json()["error_code"] == "session_not_found"

    def test_invalid_reason_is_422(self, client, coach, online_session):
        response = client.post(
            f"/v1/coach/sessions/{online_session.id}/request-offline",
            json={"reason": "bored"},
            headers=auth_headers_for(coach),
        )
        assert response.status_code == 422


class TestAdminReview:

    def test_list_and_approve(self, client, coach, admin, online_session, side_effects):
        client.post(
            f"/v1/coach/sessions/{online_session.id}/request-offline",
            json=OFFLINE_REQUEST,
            headers=auth_headers_for(coach),
        )

        listed = client.get("/v1/admin/sessions/offline-requests", headers=auth_headers_for(admin))
        assert listed.status_code == 200
        assert [r["id"] for r in listed.json()] == [str(online_session.id)]
        assert listed.json()[0]["max_offline"] == 6

        decided = client.post(
            f"/v1/admin/sessions/{online_session.id}/offline-decision",
            json={"decision": "approve"},
            headers=auth_headers_for(admin),
        )
        assert decided.status_code == 200
        assert decided.json()["offline_request_status"] == "approved"
        assert decided.json()["session_mode"] == "offline"

    def test_decision_on_non_pending_request(self, client, admin, online_session):
        response = client.post(
            f"/v1/admin/sessions/{online_session.id}/offline-decision",
            json={"decision": "reject", "reason": "No"},
            headers=auth_headers_for(admin),
        )
        assert response.status_code == 400
        assert response.json()["error_code"] == "offline_request_not_pending"


class TestCompletionRoutes:

    def test_activity_log(self, client, coach, online_session, published_jobs, db_session):
        response = client.post(
            f"/v1/coach/sessions/{online_session.id}/activity-log",
            json={"activities": all_activities(), "session_elapsed_seconds": 1800},
            headers=auth_headers_for(coach),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["saved"] == 4
        assert body["adherence_score"] == 1.0
        assert db_session.query(SessionActivityLog).count() == 4
        assert len(published_jobs) == 1

    def test_activity_log_twice_is_409(self, client, coach, online_session):
        payload = {"activities": all_activities()}
        headers = auth_headers_for(coach)
        client.post(f"/v1/coach/sessions/{online_session.id}/activity-log", json=payload, headers=headers)

        response = client.post(f"/v1/coach/sessions/{online_session.id}/activity-log", json=payload, headers=headers)

        assert response.status_code == 409
        assert response.json()["error_code"] == "session_already_completed"

    def test_empty_activity_log_is_422(self, client, coach, online_session):
        response = client.post(
            f"/v1/coach/sessions/{online_session.id}/activity-log",
            json={"activities": []},
            headers=auth_headers_for(coach),
        )
        assert response.status_code == 422

    def test_offline_report(self, client, coach, offline_session):
        response = client.post(
            f"/v1/coach/sessions/{offline_session.id}/offline-report",
            json={
                "actual_start_time": "2026-03-03T11:00:00Z",
                "actual_end_time": "2026-03-03T11:30:00Z",
                "activities": all_activities(),
                "words_struggled": ["ship"],
            },
            headers=auth_headers_for(coach),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["confidence_level"] == "coach_reported"
        assert body["voice_note_transcribed"] is True
        # Submitted now, long after the 4 hour deadline.
        assert body["report_late"] is True


class TestUploadAudio:

    @pytest.fixture(autouse=True)
    def storage_dir(self, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, "AUDIO_STORAGE_DIR", str(tmp_path))
        return tmp_path

    def test_voice_note_upload(self, client, coach, offline_session, storage_dir):
        response = client.post(
            f"/v1/coach/sessions/{offline_session.id}/upload-audio",
            data={"audio_type": "voice_note"},
            files={"file": ("note.webm", b"\x1aE\xdf\xa3voice", "audio/webm")},
            headers=auth_headers_for(coach),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["audio_type"] == "voice_note"
        assert body["content_type"] == "audio/webm"
        assert (storage_dir / body["path"]).exists()

    def test_unsupported_type_is_415(self, client, coach, offline_session):
        response = client.post(
            f"/v1/coach/sessions/{offline_session.id}/upload-audio",
            data={"audio_type": "voice_note"},
            files={"file": ("note.txt", b"hello", "text/plain")},
            headers=auth_headers_for(coach),
        )

        assert response.status_code == 415
        assert response.json()["error_code"] == "unsupported_audio_type"

    def test_oversized_upload_is_413(self, client, coach, offline_session, monkeypatch):
        monkeypatch.setattr(settings, "AUDIO_MAX_UPLOAD_BYTES", 16)

        response = client.post(
            f"/v1/coach/sessions/{offline_session.id}/upload-audio",
            data={"audio_type": "reading_clip"},
            files={"file": ("clip.ogg", b"x" * 64, "audio/ogg")},
            headers=auth_headers_for(coach),
        )

        assert response.status_code == 413
        assert response.json()["error_code"] == "file_too_large"

    def test_online_session_upload_is_rejected(self, client, coach, online_session):
        response = client.post(
            f"/v1/coach/sessions/{online_session.id}/upload-audio",
            data={"audio_type": "voice_note"},
            files={"file": ("note.webm", b"voice", "audio/webm")},
            headers=auth_headers_for(coach),
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "not_offline_session"


class TestBookingWebhookRoute:

    BODY = {
        "triggerEvent": "BOOKING_CREATED",
        "payload": {
            "uid": "bk_api_1",
            "length": 30,
            "startTime": "2026-03-05T10:00:00Z",
            "attendees": [{"name": "Meera Shah", "email": "meera@example.com"}],
            "responses": {"Child Name": "Aarav", "Child Age": "7"},
        },
    }

    def test_ready_check(self, client):
        assert client.get("/v1/webhooks/booking").json()["status"] == "ok"

    def test_booking_creates_discovery_call(self, client, coach, db_session):
        response = client.post("/v1/webhooks/booking", content=json.dumps(self.BODY))

        assert response.status_code == 200
        assert response.json()["auto_assigned"] is True
        assert db_session.query(DiscoveryCall).count() == 1

    def test_bad_signature_is_401(self, client, monkeypatch):
        monkeypatch.setattr(settings, "BOOKING_WEBHOOK_SECRET", "s3cret")

        response = client.post(
            "/v1/webhooks/booking", content=json.dumps(self.BODY), headers={"X-Cal-Signature-256": "nope"}
        )

        assert response.status_code == 401

    def test_invalid_json_is_400(self, client):
        response = client.post("/v1/webhooks/booking", content=b"{not json")
        assert response.status_code == 400
