"""
Coach Session API Router

Endpoints a coach uses during a session's lifecycle:
- request offline (in-person) conversion
- upload offline audio (voice note / reading clip)
- submit the online activity log
- submit the offline report
"""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.orm import Session

from core.auth import get_current_coach
from core.config import settings
from core.database import get_db
from core.exceptions import APIException
from models import Coach
from schemas import (
    AudioType,
    AudioUploadResponse,
    CompletionResponse,
    OfflineConversionRequest,
    OfflineConversionResponse,
    OfflineReportRequest,
    OnlineCompletionRequest,
)
from services.audio_upload import load_session_for_upload, store_session_audio
from services.offline_conversion import OfflineSideEffects, request_offline_conversion
from services.session_completion import CompletionDeps, complete_offline_session, complete_online_session
from services.site_settings import OfflinePolicy, load_offline_policy

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/coach/sessions", tags=["coach-sessions"])

UPLOAD_CHUNK_BYTES = 1024 * 1024


# Overridable in tests through app.dependency_overrides.
def get_offline_policy(db: Session = Depends(get_db)) -> OfflinePolicy:
    return load_offline_policy(db)


def get_offline_side_effects() -> OfflineSideEffects:
    return OfflineSideEffects()


def get_completion_deps() -> CompletionDeps:
    return CompletionDeps()


@router.post("/{session_id}/request-offline", response_model=OfflineConversionResponse)
def request_offline(
    session_id: UUID,
    request: OfflineConversionRequest,
    current_coach: Coach = Depends(get_current_coach),
    db: Session = Depends(get_db),
    policy: OfflinePolicy = Depends(get_offline_policy),
    side_effects: OfflineSideEffects = Depends(get_offline_side_effects),
):
    """
    Ask to run a session in person.

    Auto-approved for coaches with enough high-adherence online sessions,
    otherwise queued for admin review. Rejected once the enrollment has used
    its offline allowance.
    """
    decision = request_offline_conversion(db, session_id, current_coach, request, policy, side_effects)
    if decision.status == "pending":
        return OfflineConversionResponse(
            status="pending",
            session_mode=decision.session.session_mode,
            message=decision.message,
            qualified_count=decision.qualified_count,
            required_count=decision.required_count,
        )
    return OfflineConversionResponse(
        status="auto_approved",
        session_mode=decision.session.session_mode,
        message=decision.message,
        report_deadline=decision.report_deadline,
        qualified_count=decision.qualified_count,
        required_count=decision.required_count,
    )


@router.post("/{session_id}/upload-audio", response_model=AudioUploadResponse)
async def upload_audio(
    session_id: UUID,
    audio_type: AudioType = Form(...),
    file: UploadFile = File(...),
    current_coach: Coach = Depends(get_current_coach),
    db: Session = Depends(get_db),
):
    """Attach the coach voice note or the child reading clip to an offline session."""
    session = load_session_for_upload(db, session_id, current_coach)

    max_bytes = settings.AUDIO_MAX_UPLOAD_BYTES
    chunks = []
    total = 0
    try:
        while True:
            chunk = await file.read(UPLOAD_CHUNK_BYTES)
            if not chunk:
                break
            total += len(chunk)
            if total > max_bytes:
                raise APIException(
                    status_code=413,
                    detail=f"File too large (max {max_bytes // (1024 * 1024)} MB)",
                    error_code="file_too_large",
                    extra={"max_bytes": max_bytes},
                )
            chunks.append(chunk)
    finally:
        await file.close()

    stored = store_session_audio(db, session, audio_type, file.content_type, b"".join(chunks))
    return AudioUploadResponse(**stored)


@router.post("/{session_id}/activity-log", response_model=CompletionResponse)
def submit_activity_log(
    session_id: UUID,
    submission: OnlineCompletionRequest,
    current_coach: Coach = Depends(get_current_coach),
    db: Session = Depends(get_db),
    deps: CompletionDeps = Depends(get_completion_deps),
):
    """Complete an online session with the companion panel's activity log."""
    return complete_online_session(db, session_id, current_coach, submission, deps)


@router.post("/{session_id}/offline-report", response_model=CompletionResponse)
def submit_offline_report(
    session_id: UUID,
    submission: OfflineReportRequest,
    current_coach: Coach = Depends(get_current_coach),
    db: Session = Depends(get_db),
    deps: CompletionDeps = Depends(get_completion_deps),
):
    """Complete an approved offline session. The voice note must be uploaded first."""
    return complete_offline_session(db, session_id, current_coach, submission, deps)
