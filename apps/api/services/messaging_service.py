"""
Messaging Service

Sends template chat messages (WhatsApp-style) to parents and coaches.
Disabled by default; when disabled it only logs what it would send.
"""

import logging
from datetime import datetime
from typing import List, Optional
from zoneinfo import ZoneInfo

import requests

from core.config import settings

logger = logging.getLogger(__name__)

OFFLINE_PARENT_TEMPLATE = "offline_parent_notification"


class MessagingError(RuntimeError):
    """Raised when the messaging provider rejects or fails a send."""


def first_name(full_name: Optional[str], fallback: str) -> str:
    parts = (full_name or "").split()
    return parts[0] if parts else fallback


def format_session_time(when: Optional[datetime], tz_name: Optional[str] = None) -> str:
    """Human-friendly local time, e.g. 'Tue, 3 Mar, 4:30 PM'."""
    if when is None:
        return "your upcoming session"
    tz = ZoneInfo(tz_name or settings.MESSAGING_TIMEZONE)
    if when.tzinfo is None:
        when = when.replace(tzinfo=ZoneInfo("UTC"))
    local = when.astimezone(tz)
    hour = local.strftime("%I").lstrip("0") or "12"
    return f"{local.strftime('%a')}, {local.day} {local.strftime('%b')}, {hour}:{local.strftime('%M %p')}"


class MessagingService:
    """Client for the chat messaging provider."""

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None, timeout: Optional[int] = None):
        self.base_url = (base_url or settings.MESSAGING_API_BASE_URL or "").rstrip("/")
        self.api_key = api_key or settings.MESSAGING_API_KEY
        self.timeout = timeout or settings.EXTERNAL_API_TIMEOUT
        self.enabled = settings.MESSAGING_ENABLED and bool(self.base_url)

    def send_template(self, to: str, template_name: str, variables: List[str]) -> bool:
        """
        Send a template message.

        Returns False (and logs) when messaging is disabled.

        Raises:
            MessagingError: when the provider call fails.
        """
        if not self.enabled:
            logger.info(f"Messaging disabled, would send {template_name} to {to}")
            return False

        try:
            resp = requests.post(
                f"{self.base_url}/messages/template",
                json={"to": to, "template": template_name, "variables": variables},
                headers={"Authorization": f"Bearer {self.api_key}"} if self.api_key else {},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise MessagingError(f"Message send failed: {e}") from e

        if resp.status_code >= 400:
            raise MessagingError(f"Message send failed ({resp.status_code}): {resp.text[:200]}")
        return True

    def send_offline_parent_notification(
        self,
        parent_phone: str,
        parent_name: Optional[str],
        child_name: Optional[str],
        scheduled_at: Optional[datetime],
    ) -> bool:
        """Tell a parent their child's next session will be in person."""
        return self.send_template(
            to=parent_phone,
            template_name=OFFLINE_PARENT_TEMPLATE,
            variables=[
                first_name(parent_name, "Parent"),
                first_name(child_name, "Student"),
                format_session_time(scheduled_at),
            ],
        )
