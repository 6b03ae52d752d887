from sqlalchemy import Column, Integer, Boolean, CheckConstraint, Date, DateTime, Float, ForeignKey, Text, String, Index, JSON, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from core.database import Base
import uuid
from datetime import datetime, timezone

# JSONB on Postgres, plain JSON elsewhere (sqlite test database).
JSONType = JSON().with_variant(JSONB(), "postgresql")


# --- Vocabularies -----------------------------------------------------------

SESSION_MODES = ("online", "offline")
SESSION_STATUSES = ("scheduled", "completed", "cancelled")
OFFLINE_REQUEST_STATUSES = ("none", "pending", "approved", "auto_approved", "rejected")
OFFLINE_APPROVED_STATUSES = ("approved", "auto_approved")
OFFLINE_REASONS = ("travel", "parent_preference", "connectivity", "other")
OFFLINE_LOCATION_TYPES = ("home_visit", "school", "center", "other")
ACTIVITY_STATUSES = ("completed", "partial", "skipped", "struggled")
ACTIVITY_SOURCES = ("companion_panel", "offline_report")

# learning_event.event_type values
EVENT_SESSION = "session"                        # written by the transcript pipeline
EVENT_COMPANION_LOG = "session_companion_log"    # written from a coach report
EVENT_STRUGGLE_FLAG = "activity_struggle_flag"
CANONICAL_SESSION_EVENT_TYPES = (EVENT_SESSION, EVENT_COMPANION_LOG)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Coach(Base):
    __tablename__ = "coach"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    name = Column(Text, nullable=False)
    email = Column(Text, unique=True, nullable=True)
    phone = Column(Text, nullable=True)
    role = Column(Text, default="coach", nullable=False)  # 'coach', 'admin'

    # --- ASSIGNMENT ELIGIBILITY ---
    is_active = Column(Boolean, default=True, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)  # manual "not taking bookings" switch
    # None, 'pending' (mid-exit, excluded from assignment) or 'completed'
    exit_status = Column(Text, nullable=True)

    # Round robin cursor: least recently assigned coach is picked first.
    last_assigned_at = Column(DateTime(timezone=True), nullable=True)

    # Informational streak: sessions completed with a submitted activity log.
    completed_sessions_with_logs = Column(Integer, default=0, nullable=False)

    leaves = relationship("CoachLeave", back_populates="coach", cascade="all, delete-orphan")

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    __table_args__ = (
        Index("ix_coach_assignment_pool", "is_active", "is_available", "last_assigned_at"),
    )


class CoachLeave(Base):
    """A window (inclusive dates) during which a coach takes no new bookings."""
    __tablename__ = "coach_leave"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    coach_id = Column(Uuid, ForeignKey("coach.id"), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    status = Column(Text, default="upcoming", nullable=False)  # upcoming, active, completed, cancelled
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    coach = relationship("Coach", back_populates="leaves")

    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="ck_coach_leave_window"),
    )


class Child(Base):
    __tablename__ = "child"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    child_name = Column(Text, nullable=False)
    age = Column(Integer, nullable=True)
    parent_name = Column(Text, nullable=True)
    parent_email = Column(Text, nullable=True, index=True)
    parent_phone = Column(Text, nullable=True)


class Enrollment(Base):
    __tablename__ = "enrollment"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    child_id = Column(Uuid, ForeignKey("child.id"), nullable=False, index=True)
    coach_id = Column(Uuid, ForeignKey("coach.id"), nullable=True, index=True)
    # Planned session count; the offline cap is a percentage of this.
    total_sessions = Column(Integer, nullable=True)
    status = Column(Text, default="active", nullable=False)

    child = relationship("Child")


class SessionTemplate(Base):
    """
    Planned activity flow for a session.

    activity_flow is a list of steps:
        {"activity_index": 0, "activity_id": "warmup", "activity_name": "Warm-up",
         "activity_purpose": "...", "planned_duration_minutes": 5}
    """
    __tablename__ = "session_template"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    name = Column(Text, nullable=False)
    activity_flow = Column(JSONType, nullable=False, default=list)


class ScheduledSession(Base):
    """
    One planned or completed coaching encounter.

    session_mode only becomes 'offline' through services.offline_conversion.
    adherence_score is written once, at completion.
    """
    __tablename__ = "scheduled_session"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    child_id = Column(Uuid, ForeignKey("child.id"), nullable=True, index=True)
    coach_id = Column(Uuid, ForeignKey("coach.id"), nullable=True, index=True)
    enrollment_id = Column(Uuid, ForeignKey("enrollment.id"), nullable=True, index=True)
    session_number = Column(Integer, nullable=True)
    session_template_id = Column(Uuid, ForeignKey("session_template.id"), nullable=True)

    session_mode = Column(Text, default="online", nullable=False)
    status = Column(Text, default="scheduled", nullable=False)
    scheduled_at = Column(DateTime(timezone=True), nullable=True)

    # --- OFFLINE CONVERSION ---
    offline_request_status = Column(Text, default="none", nullable=False)
    offline_request_reason = Column(Text, nullable=True)
    offline_reason_detail = Column(Text, nullable=True)
    offline_location = Column(Text, nullable=True)
    offline_location_type = Column(Text, nullable=True)
    offline_requested_at = Column(DateTime(timezone=True), nullable=True)
    offline_approved_by = Column(Text, nullable=True)  # 'auto' or admin email
    offline_approved_at = Column(DateTime(timezone=True), nullable=True)
    offline_rejection_reason = Column(Text, nullable=True)
    report_deadline = Column(DateTime(timezone=True), nullable=True)
    report_submitted_at = Column(DateTime(timezone=True), nullable=True)
    report_late = Column(Boolean, nullable=True)

    # --- OUTCOME ---
    adherence_score = Column(Float, nullable=True)  # 0-1
    adherence_details = Column(JSONType, nullable=True)
    coach_notes = Column(Text, nullable=True)
    session_elapsed_seconds = Column(Integer, nullable=True)
    companion_panel_completed = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # --- AUDIO / TRANSCRIPT ---
    coach_voice_note_path = Column(Text, nullable=True)
    child_reading_clip_path = Column(Text, nullable=True)
    voice_note_transcript = Column(Text, nullable=True)
    transcript_status = Column(Text, default="none", nullable=False)  # none, awaiting, available

    # --- INTEGRATIONS ---
    calendar_event_id = Column(Text, nullable=True)
    recording_bot_id = Column(Text, nullable=True)

    child = relationship("Child")
    coach = relationship("Coach")
    enrollment = relationship("Enrollment")
    template = relationship("SessionTemplate")

    @property
    def is_offline_approved(self) -> bool:
        return self.offline_request_status in OFFLINE_APPROVED_STATUSES

    __table_args__ = (
        CheckConstraint("session_mode IN ('online', 'offline')", name="ck_session_mode"),
        CheckConstraint("status IN ('scheduled', 'completed', 'cancelled')", name="ck_session_status"),
        CheckConstraint(
            "offline_request_status IN ('none', 'pending', 'approved', 'auto_approved', 'rejected')",
            name="ck_offline_request_status",
        ),
        Index("ix_session_enrollment_mode", "enrollment_id", "session_mode"),
        Index("ix_session_coach_mode_status", "coach_id", "session_mode", "status"),
    )


class SessionActivityLog(Base):
    """One reported activity within a session. Insert-only."""
    __tablename__ = "session_activity_log"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    session_id = Column(Uuid, ForeignKey("scheduled_session.id"), nullable=False, index=True)
    activity_index = Column(Integer, nullable=True)
    activity_name = Column(Text, nullable=False)
    activity_purpose = Column(Text, nullable=True)
    status = Column(Text, nullable=False)  # completed, partial, skipped, struggled
    planned_duration_minutes = Column(Float, nullable=True)
    actual_duration_seconds = Column(Integer, nullable=True)
    coach_note = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    source = Column(Text, default="companion_panel", nullable=False)

    __table_args__ = (
        CheckConstraint("status IN ('completed', 'partial', 'skipped', 'struggled')", name="ck_activity_status"),
    )


class LearningEvent(Base):
    """
    Append-only fact about a child.

    Canonical session facts (event_type 'session' or 'session_companion_log')
    also set canonical_session_id; the unique constraint on that column is
    what guarantees one canonical fact per session.
    """
    __tablename__ = "learning_event"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    child_id = Column(Uuid, ForeignKey("child.id"), nullable=False, index=True)
    coach_id = Column(Uuid, ForeignKey("coach.id"), nullable=True)
    session_id = Column(Uuid, ForeignKey("scheduled_session.id"), nullable=True, index=True)
    canonical_session_id = Column(Uuid, ForeignKey("scheduled_session.id"), nullable=True, unique=True)
    event_type = Column(Text, nullable=False, index=True)
    event_date = Column(Date, nullable=False, default=lambda: _utcnow().date())
    event_data = Column(JSONType, nullable=False, default=dict)
    ai_summary = Column(Text, nullable=True)


class DiscoveryCall(Base):
    """A booked discovery call, created from the booking provider webhook."""
    __tablename__ = "discovery_call"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    child_id = Column(Uuid, ForeignKey("child.id"), nullable=True)
    parent_name = Column(Text, nullable=False)
    parent_email = Column(Text, nullable=True)
    parent_phone = Column(Text, nullable=True)
    child_name = Column(Text, nullable=True)
    child_age = Column(Integer, nullable=True)
    status = Column(Text, default="scheduled", nullable=False)
    scheduled_at = Column(DateTime(timezone=True), nullable=True)
    meeting_url = Column(Text, nullable=True)
    booking_id = Column(String, nullable=True)
    booking_uid = Column(String, nullable=True, unique=True)
    source = Column(Text, default="booking_webhook", nullable=False)

    coach_id = Column(Uuid, ForeignKey("coach.id"), nullable=True)
    assignment_type = Column(Text, default="pending", nullable=False)  # auto, pending, manual
    assigned_at = Column(DateTime(timezone=True), nullable=True)
    assigned_by = Column(Text, nullable=True)


class SiteSetting(Base):
    """Key/value store for operator-tunable thresholds. Values are strings."""
    __tablename__ = "site_setting"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=True)
