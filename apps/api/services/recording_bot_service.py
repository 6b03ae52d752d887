"""
Recording Bot Service client

Video sessions get a recording bot that joins the call and feeds the
transcript pipeline. When a session moves in person the bot is cancelled.
"""

import logging
from typing import Optional

import requests

from core.config import settings

logger = logging.getLogger(__name__)


class RecordingBotError(RuntimeError):
    """Raised when the recording bot service rejects or fails a request."""


class RecordingBotService:
    """Client for the external recording bot service."""

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None, timeout: Optional[int] = None):
        self.base_url = (base_url or settings.RECORDING_BOT_API_BASE_URL or "").rstrip("/")
        self.api_key = api_key or settings.RECORDING_BOT_API_KEY
        self.timeout = timeout or settings.EXTERNAL_API_TIMEOUT

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    def cancel_bot(self, bot_id: str) -> None:
        """
        Cancel a scheduled or running bot.

        A bot the service no longer knows about (404) counts as cancelled.
        """
        if not self.enabled:
            raise RecordingBotError("Recording bot service not configured")

        headers = {"Authorization": f"Token {self.api_key}"} if self.api_key else {}
        try:
            resp = requests.delete(
                f"{self.base_url}/bots/{bot_id}",
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise RecordingBotError(f"Bot cancel request failed: {e}") from e

        if resp.status_code == 404:
            logger.info(f"Recording bot {bot_id} already gone")
            return
        if resp.status_code >= 400:
            raise RecordingBotError(f"Bot cancel failed ({resp.status_code}): {resp.text[:200]}")
