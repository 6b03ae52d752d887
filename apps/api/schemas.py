from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from uuid import UUID
from typing import Optional, List, Dict, Any, Literal


ActivityStatus = Literal["completed", "partial", "skipped", "struggled"]
OfflineReason = Literal["travel", "parent_preference", "connectivity", "other"]
OfflineLocationType = Literal["home_visit", "school", "center", "other"]
OfflineDecisionValue = Literal["approve", "reject"]
AudioType = Literal["voice_note", "reading_clip"]


class ActivityInput(BaseModel):
    """One reported activity, as submitted by the coach."""
    activity_index: Optional[int] = None
    activity_id: Optional[str] = None
    activity_name: str = Field(..., min_length=1)
    activity_purpose: Optional[str] = None
    status: ActivityStatus
    planned_duration_minutes: Optional[float] = Field(default=None, ge=0)
    actual_duration_seconds: Optional[int] = Field(default=None, ge=0)
    coach_note: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class OnlineCompletionRequest(BaseModel):
    """Live companion-panel submission at the end of an online session."""
    activities: List[ActivityInput] = Field(..., min_length=1)
    session_elapsed_seconds: Optional[int] = Field(default=None, ge=0)
    coach_notes: Optional[str] = None


class OfflineReportRequest(BaseModel):
    """After-the-fact report for an in-person session."""
    actual_start_time: datetime
    actual_end_time: datetime
    activities: List[ActivityInput] = Field(..., min_length=1)
    additional_activities: List[ActivityInput] = Field(default_factory=list)
    words_struggled: List[str] = Field(default_factory=list)
    words_mastered: List[str] = Field(default_factory=list)
    coach_notes: Optional[str] = None


class CompletionResponse(BaseModel):
    success: bool = True
    session_id: UUID
    saved: int
    status_counts: Dict[str, int]
    adherence_score: Optional[float] = None
    degraded: List[str] = Field(default_factory=list)
    # Offline only
    report_late: Optional[bool] = None
    voice_note_transcribed: Optional[bool] = None
    reading_clip_analyzed: Optional[bool] = None
    confidence_level: Optional[str] = None


class OfflineConversionRequest(BaseModel):
    reason: OfflineReason
    detail: Optional[str] = Field(default=None, max_length=1000)
    location: Optional[str] = Field(default=None, max_length=500)
    location_type: Optional[OfflineLocationType] = None


class OfflineConversionResponse(BaseModel):
    status: Literal["auto_approved", "pending"]
    session_mode: Literal["online", "offline"]
    message: str
    report_deadline: Optional[datetime] = None
    qualified_count: Optional[int] = None
    required_count: Optional[int] = None


class OfflineDecisionRequest(BaseModel):
    decision: OfflineDecisionValue
    reason: Optional[str] = Field(default=None, max_length=1000)


class OfflineDecisionResponse(BaseModel):
    session_id: UUID
    offline_request_status: str
    session_mode: str
    report_deadline: Optional[datetime] = None


class PendingOfflineRequest(BaseModel):
    id: UUID
    child_id: Optional[UUID] = None
    coach_id: Optional[UUID] = None
    enrollment_id: Optional[UUID] = None
    session_number: Optional[int] = None
    scheduled_at: Optional[datetime] = None
    offline_request_reason: Optional[str] = None
    offline_reason_detail: Optional[str] = None
    offline_location: Optional[str] = None
    offline_location_type: Optional[str] = None
    offline_requested_at: Optional[datetime] = None
    offline_count: int
    max_offline: int

    model_config = ConfigDict(from_attributes=True)


class AudioUploadResponse(BaseModel):
    success: bool = True
    audio_type: AudioType
    path: str
    size_bytes: int
    content_type: str


class BookingWebhookResponse(BaseModel):
    received: bool = True
    ignored: bool = False
    reason: Optional[str] = None
    discovery_call_id: Optional[UUID] = None
    auto_assigned: bool = False
    assigned_coach: Optional[str] = None
    child_linked: bool = False


class ParentSummaryJob(BaseModel):
    """Queue message consumed by the parent summary generator."""
    session_id: str
    child_id: str
    request_id: str
    offline_context: Optional[Dict[str, Any]] = None
