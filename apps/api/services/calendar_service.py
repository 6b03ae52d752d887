"""
Calendar Service client

Thin client for the calendar/booking service that owns session events and
their video-call links. Only the operation the offline flow needs is exposed:
turning a video session's event into an in-person one.
"""

import logging
from typing import Optional

import requests

from core.config import settings

logger = logging.getLogger(__name__)


class CalendarServiceError(RuntimeError):
    """Raised when the calendar service rejects or fails a request."""


class CalendarService:
    """Client for the external calendar service."""

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None, timeout: Optional[int] = None):
        self.base_url = (base_url or settings.CALENDAR_API_BASE_URL or "").rstrip("/")
        self.api_key = api_key or settings.CALENDAR_API_KEY
        self.timeout = timeout or settings.EXTERNAL_API_TIMEOUT

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def update_event_for_offline(
        self,
        event_id: str,
        organizer_email: Optional[str],
        location: Optional[str],
    ) -> None:
        """
        Drop the video link from a calendar event and set the visit location.

        Raises:
            CalendarServiceError: when the service is unconfigured or the call fails.
        """
        if not self.enabled:
            raise CalendarServiceError("Calendar service not configured")

        body = {
            "organizer_email": organizer_email,
            "location": location or "In-person session",
            "remove_conference": True,
        }
        try:
            resp = requests.patch(
                f"{self.base_url}/events/{event_id}",
                json=body,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise CalendarServiceError(f"Calendar request failed: {e}") from e

        if resp.status_code >= 400:
            raise CalendarServiceError(f"Calendar update failed ({resp.status_code}): {resp.text[:200]}")
        logger.info(f"Calendar event {event_id} switched to in-person")
