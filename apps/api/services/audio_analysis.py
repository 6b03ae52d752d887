"""
Audio Analysis client

Offline sessions have no recording bot, so the coach uploads audio instead:

- transcribe_voice_note: coach's spoken session summary -> plain transcript
- analyze_child_reading: child's reading clip -> structured fluency analysis

Both call the external transcription/analysis service. Results are
normalized (clamped ranges, list defaults) so downstream consumers can rely
on the shape.
"""

import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from core.config import settings

logger = logging.getLogger(__name__)

MIN_TRANSCRIPT_CHARS = 10

MIME_BY_EXTENSION = {
    "mp4": "audio/mp4",
    "m4a": "audio/mp4",
    "webm": "audio/webm",
    "ogg": "audio/ogg",
    "mp3": "audio/mpeg",
    "mpeg": "audio/mpeg",
    "wav": "audio/wav",
}


class AudioAnalysisError(RuntimeError):
    """Raised when transcription or reading analysis fails."""


@dataclass
class ReadingAnalysis:
    wpm: float = 0
    accuracy_percent: float = 0
    fluency_score: float = 5
    errors: List[str] = field(default_factory=list)
    self_corrections: List[str] = field(default_factory=list)
    hesitations: List[str] = field(default_factory=list)
    strengths: List[str] = field(default_factory=list)
    areas_for_improvement: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def mime_type_for(path: str) -> str:
    ext = Path(path).suffix.lstrip(".").lower()
    return MIME_BY_EXTENSION.get(ext, "audio/webm")


def normalize_reading_analysis(raw: Dict[str, Any]) -> ReadingAnalysis:
    """Clamp model output into sane ranges."""
    def _num(key: str, default: float) -> float:
        try:
            return float(raw.get(key) or default)
        except (TypeError, ValueError):
            return default

    return ReadingAnalysis(
        wpm=max(0.0, _num("wpm", 0)),
        accuracy_percent=min(100.0, max(0.0, _num("accuracy_percent", 0))),
        fluency_score=min(10.0, max(1.0, _num("fluency_score", 5))),
        errors=list(raw.get("errors") or []),
        self_corrections=list(raw.get("self_corrections") or []),
        hesitations=list(raw.get("hesitations") or []),
        strengths=list(raw.get("strengths") or ["Completed the reading"]),
        areas_for_improvement=list(raw.get("areas_for_improvement") or []),
    )


class AudioAnalysisService:
    """Client for the external transcription / reading analysis service."""

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None,
                 timeout: Optional[int] = None, storage_dir: Optional[str] = None):
        self.base_url = (base_url or settings.TRANSCRIPTION_API_BASE_URL or "").rstrip("/")
        self.api_key = api_key or settings.TRANSCRIPTION_API_KEY
        self.timeout = timeout or settings.EXTERNAL_API_TIMEOUT
        self.storage_dir = Path(storage_dir or settings.AUDIO_STORAGE_DIR)

    def _post_audio(self, endpoint: str, storage_path: str, data: Dict[str, Any]) -> Dict[str, Any]:
        if not self.base_url:
            raise AudioAnalysisError("Transcription service not configured")

        full_path = self.storage_dir / storage_path
        try:
            audio_bytes = full_path.read_bytes()
        except OSError as e:
            raise AudioAnalysisError(f"Failed to read audio {storage_path}: {e}") from e

        try:
            resp = requests.post(
                f"{self.base_url}/{endpoint}",
                files={"file": (full_path.name, audio_bytes, mime_type_for(storage_path))},
                data=data,
                headers={"Authorization": f"Bearer {self.api_key}"} if self.api_key else {},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise AudioAnalysisError(f"{endpoint} request failed: {e}") from e

        if resp.status_code >= 400:
            raise AudioAnalysisError(f"{endpoint} failed ({resp.status_code}): {resp.text[:200]}")
        try:
            return resp.json()
        except ValueError as e:
            raise AudioAnalysisError(f"{endpoint} returned non-JSON body") from e

    def transcribe_voice_note(self, storage_path: str) -> str:
        """Transcribe a coach voice note. Raises AudioAnalysisError on failure."""
        body = self._post_audio("transcribe", storage_path, {"kind": "coach_voice_note"})
        transcript = (body.get("transcript") or "").strip()
        if len(transcript) < MIN_TRANSCRIPT_CHARS:
            raise AudioAnalysisError("Empty or invalid transcript")
        return transcript

    def analyze_child_reading(self, storage_path: str, child_name: Optional[str] = None,
                              child_age: Optional[int] = None) -> ReadingAnalysis:
        """Analyze a child's reading clip. Raises AudioAnalysisError on failure."""
        body = self._post_audio(
            "analyze-reading",
            storage_path,
            {"child_name": child_name or "", "child_age": str(child_age or "")},
        )
        analysis = body.get("analysis", body)
        if not isinstance(analysis, dict):
            raise AudioAnalysisError("Reading analysis has unexpected shape")
        return normalize_reading_analysis(analysis)
