"""
Tests for offline session audio uploads.
"""
from datetime import datetime, timezone
from pathlib import Path

import pytest

from core.exceptions import APIException
from services.audio_upload import (
    base_content_type,
    load_session_for_upload,
    store_session_audio,
    validate_audio,
)

NOW = datetime(2026, 3, 3, 12, 30, tzinfo=timezone.utc)


@pytest.mark.parametrize("raw,expected", [
    ("audio/webm;codecs=opus", "audio/webm"),
    ("Audio/MP4", "audio/mp4"),
    (None, ""),
])
def test_base_content_type(raw, expected):
    assert base_content_type(raw) == expected


class TestValidateAudio:

    def test_codec_suffix_is_accepted(self):
        assert validate_audio("audio/webm;codecs=opus", 1024) == "audio/webm"

    def test_unsupported_type(self):
        with pytest.raises(APIException) as exc_info:
            validate_audio("video/mp4", 1024)
        assert exc_info.value.status_code == 415
        assert exc_info.value.error_code == "unsupported_audio_type"
        assert "audio/ogg" in exc_info.value.extra["allowed_types"]

    def test_empty_file(self):
        with pytest.raises(APIException) as exc_info:
            validate_audio("audio/ogg", 0)
        assert exc_info.value.status_code == 422

    def test_too_large(self):
        with pytest.raises(APIException) as exc_info:
            validate_audio("audio/mpeg", 2 * 1024 * 1024 + 1, max_bytes=2 * 1024 * 1024)
        assert exc_info.value.status_code == 413
        assert exc_info.value.error_code == "file_too_large"


class TestLoadSessionForUpload:

    def test_approved_offline_session(self, db_session, coach, offline_session):
        assert load_session_for_upload(db_session, offline_session.id, coach) is offline_session

    def test_online_session_rejected(self, db_session, coach, online_session):
        with pytest.raises(APIException) as exc_info:
            load_session_for_upload(db_session, online_session.id, coach)
        assert exc_info.value.error_code == "not_offline_session"

    def test_pending_request_rejected(self, db_session, coach, make_session):
        session = make_session(session_mode="offline", offline_request_status="pending")

        with pytest.raises(APIException) as exc_info:
            load_session_for_upload(db_session, session.id, coach)
        assert exc_info.value.error_code == "offline_not_approved"

    def test_submitted_report_rejected(self, db_session, coach, offline_session):
        offline_session.report_submitted_at = NOW
        db_session.commit()

        with pytest.raises(APIException) as exc_info:
            load_session_for_upload(db_session, offline_session.id, coach)
        assert exc_info.value.status_code == 409
        assert exc_info.value.error_code == "report_already_submitted"


class TestStoreSessionAudio:

    def test_voice_note_written_and_recorded(self, db_session, offline_session, tmp_path):
        result = store_session_audio(
            db_session, offline_session, "voice_note", "audio/webm;codecs=opus", b"RIFF....",
            storage_dir=str(tmp_path), now=NOW,
        )

        expected = f"sessions/{offline_session.id}/voice_note_20260303T123000000000.webm"
        assert result == {
            "audio_type": "voice_note",
            "path": expected,
            "size_bytes": 8,
            "content_type": "audio/webm",
        }
        assert offline_session.coach_voice_note_path == expected
        assert (Path(tmp_path) / expected).read_bytes() == b"RIFF...."

    def test_reading_clip_sets_clip_path(self, db_session, offline_session, tmp_path):
        before = offline_session.coach_voice_note_path

        result = store_session_audio(
            db_session, offline_session, "reading_clip", "audio/mp4", b"clip", storage_dir=str(tmp_path), now=NOW
        )

        assert result["path"].endswith(".m4a")
        assert offline_session.child_reading_clip_path == result["path"]
        assert offline_session.coach_voice_note_path == before

    def test_reupload_removes_replaced_file(self, db_session, offline_session, tmp_path):
        first = store_session_audio(
            db_session, offline_session, "voice_note", "audio/webm", b"take one", storage_dir=str(tmp_path), now=NOW
        )
        second = store_session_audio(
            db_session, offline_session, "voice_note", "audio/ogg", b"take two",
            storage_dir=str(tmp_path), now=NOW.replace(minute=45),
        )

        assert offline_session.coach_voice_note_path == second["path"]
        assert not (Path(tmp_path) / first["path"]).exists()
        assert (Path(tmp_path) / second["path"]).read_bytes() == b"take two"

    def test_unknown_audio_type(self, db_session, offline_session, tmp_path):
        with pytest.raises(APIException) as exc_info:
            store_session_audio(db_session, offline_session, "music", "audio/webm", b"x", storage_dir=str(tmp_path))
        assert exc_info.value.error_code == "VALIDATION_ERROR_AUDIO_TYPE"
        assert list(Path(tmp_path).iterdir()) == []
