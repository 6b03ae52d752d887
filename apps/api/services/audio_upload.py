"""
Offline session audio uploads.

Coaches attach one coach voice note (required before the offline report) and
optionally one child reading clip. Files are stored under

    <AUDIO_STORAGE_DIR>/sessions/<session_id>/<audio_type>_<timestamp>.<ext>

and the path relative to AUDIO_STORAGE_DIR is recorded on the session.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import APIException, PreconditionError, ValidationError
from core.logging import log_event
from models import Coach, ScheduledSession
from services.offline_conversion import check_session_owner, load_session

logger = logging.getLogger(__name__)

AUDIO_TYPES = ("voice_note", "reading_clip")

EXTENSION_BY_CONTENT_TYPE: Dict[str, str] = {
    "audio/webm": "webm",
    "audio/ogg": "ogg",
    "audio/mp4": "m4a",
    "audio/x-m4a": "m4a",
    "audio/mpeg": "mp3",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
}


def base_content_type(content_type: Optional[str]) -> str:
    """'audio/webm;codecs=opus' -> 'audio/webm'"""
    return (content_type or "").split(";", 1)[0].strip().lower()


def validate_audio(content_type: Optional[str], size_bytes: int, max_bytes: Optional[int] = None) -> str:
    """Check type and size; returns the normalized content type."""
    max_bytes = max_bytes or settings.AUDIO_MAX_UPLOAD_BYTES
    ctype = base_content_type(content_type)
    if ctype not in EXTENSION_BY_CONTENT_TYPE:
        raise APIException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail=f"Unsupported audio type: {content_type or 'unknown'}",
            error_code="unsupported_audio_type",
            extra={"allowed_types": sorted(EXTENSION_BY_CONTENT_TYPE)},
        )
    if size_bytes <= 0:
        raise ValidationError("Uploaded file is empty", field="file")
    if size_bytes > max_bytes:
        raise APIException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File too large (max {max_bytes // (1024 * 1024)} MB)",
            error_code="file_too_large",
            extra={"max_bytes": max_bytes},
        )
    return ctype


def load_session_for_upload(db: Session, session_id: UUID, actor: Coach) -> ScheduledSession:
    """Uploads are only accepted for open, approved offline sessions."""
    session = load_session(db, session_id)
    check_session_owner(session, actor)
    if session.session_mode != "offline":
        raise PreconditionError("Audio upload is only for offline sessions", error_code="not_offline_session")
    if not session.is_offline_approved:
        raise PreconditionError(
            f"Offline request is not approved (status: {session.offline_request_status})",
            error_code="offline_not_approved",
        )
    if session.status != "scheduled" or session.report_submitted_at is not None:
        raise PreconditionError(
            "Report already submitted for this session", error_code="report_already_submitted", status_code=409
        )
    return session


def _discard_replaced_audio(path: Path, session_id: UUID) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        log_event(logger, "replaced_audio_delete_failed", logging.WARNING, session_id=str(session_id), error=str(e))

def store_session_audio(
    db: Session,
    session: ScheduledSession,
    audio_type: str,
    content_type: str,
    data: bytes,
    storage_dir: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, object]:
    """Write the file and point the session at it. A re-upload deletes the file it replaces."""
    if audio_type not in AUDIO_TYPES:
        raise ValidationError(f"audio_type must be one of {', '.join(AUDIO_TYPES)}", field="audio_type")
    ctype = validate_audio(content_type, len(data))
    now = now or datetime.now(timezone.utc)

    relative = Path("sessions") / str(session.id) / f"{audio_type}_{now.strftime('%Y%m%dT%H%M%S%f')}.{EXTENSION_BY_CONTENT_TYPE[ctype]}"
    root = Path(storage_dir or settings.AUDIO_STORAGE_DIR)
    full_path = root / relative
    full_path.parent.mkdir(parents=True, exist_ok=True)
    full_path.write_bytes(data)

    if audio_type == "voice_note":
        previous = session.coach_voice_note_path
        session.coach_voice_note_path = relative.as_posix()
    else:
        previous = session.child_reading_clip_path
        session.child_reading_clip_path = relative.as_posix()
    session.updated_at = now
    db.flush()

    if previous and previous != relative.as_posix():
        _discard_replaced_audio(root / previous, session.id)

    log_event(
        logger, "session_audio_uploaded",
        session_id=str(session.id), audio_type=audio_type, size_bytes=len(data), content_type=ctype,
    )
    return {
        "audio_type": audio_type,
        "path": relative.as_posix(),
        "size_bytes": len(data),
        "content_type": ctype,
    }
