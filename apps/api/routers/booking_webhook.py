"""
Booking Webhook Router

Receives booking provider events. Discovery call bookings are turned into
discovery_call rows and auto-assigned to a coach.
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from core.database import get_db
from schemas import BookingWebhookResponse
from services.booking_webhook import handle_booking_event, verify_booking_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])


@router.get("/booking")
def booking_webhook_ready():
    """Lets the provider's dashboard check that the endpoint exists."""
    return {"status": "ok", "message": "Booking webhook endpoint ready"}


@router.post("/booking", response_model=BookingWebhookResponse)
async def handle_booking_webhook(
    request: Request,
    x_signature: Optional[str] = Header(None, alias="X-Cal-Signature-256"),
    db: Session = Depends(get_db),
):
    body_bytes = await request.body()

    if not verify_booking_signature(body_bytes, x_signature):
        logger.warning("Invalid booking webhook signature - rejecting")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        payload = json.loads(body_bytes.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.error("Invalid JSON in booking webhook payload")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON")

    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")

    return handle_booking_event(db, payload)
