"""
Admin Session API Router

Review queue for offline requests that were not auto-approved.
"""
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.auth import require_admin
from core.database import get_db
from models import Coach
from schemas import OfflineDecisionRequest, OfflineDecisionResponse, PendingOfflineRequest
from services.offline_conversion import OfflineSideEffects, decide_offline_request, list_pending_offline_requests
from services.site_settings import OfflinePolicy
from routers.sessions import get_offline_policy, get_offline_side_effects

router = APIRouter(prefix="/v1/admin/sessions", tags=["admin-sessions"])


@router.get("/offline-requests", response_model=List[PendingOfflineRequest])
def list_offline_requests(
    admin: Coach = Depends(require_admin),
    db: Session = Depends(get_db),
    policy: OfflinePolicy = Depends(get_offline_policy),
):
    """Pending offline requests with each enrollment's offline usage and cap."""
    return list_pending_offline_requests(db, policy)


@router.post("/{session_id}/offline-decision", response_model=OfflineDecisionResponse)
def decide_offline(
    session_id: UUID,
    request: OfflineDecisionRequest,
    admin: Coach = Depends(require_admin),
    db: Session = Depends(get_db),
    policy: OfflinePolicy = Depends(get_offline_policy),
    side_effects: OfflineSideEffects = Depends(get_offline_side_effects),
):
    decision = decide_offline_request(db, session_id, admin, request.decision, request.reason, policy, side_effects)
    return OfflineDecisionResponse(
        session_id=decision.session.id,
        offline_request_status=decision.session.offline_request_status,
        session_mode=decision.session.session_mode,
        report_deadline=decision.report_deadline,
    )
