"""
Pytest configuration and fixtures

Tests run against an in-memory SQLite database: the schema is created from
the models before each test and dropped after it, so nothing leaks between
tests. External collaborators (Celery, calendar, recording bot, messaging,
transcription) are replaced with recording fakes.
"""
import os
import sys
from datetime import timedelta
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

# Settings are read at import time; configure before importing the app.
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-at-least-32-characters-long")
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["CACHE_ENABLED"] = "false"
os.environ["MESSAGING_ENABLED"] = "false"
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fastapi.testclient import TestClient  # noqa: E402

from core.database import Base, SessionLocal, engine, get_db  # noqa: E402
from models import Child, Coach, Enrollment, ScheduledSession, SessionTemplate  # noqa: E402
from services.audio_analysis import ReadingAnalysis  # noqa: E402
from services.session_completion import CompletionDeps  # noqa: E402
from services.site_settings import OfflinePolicy  # noqa: E402
from tests.session_helpers import SCHEDULED_AT, TEMPLATE_FLOW, FakeSideEffects  # noqa: E402


@pytest.fixture(scope="function")
def db_session():
    """Fresh schema per test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def policy():
    return OfflinePolicy(adherence_threshold=70, online_threshold=3, offline_max_percent=25, report_deadline_hours=4)


@pytest.fixture
def make_coach(db_session):
    def _make(**overrides) -> Coach:
        fields = {"name": "Test Coach", "email": f"coach_{uuid4().hex[:8]}@example.com"}
        fields.update(overrides)
        coach = Coach(**fields)
        db_session.add(coach)
        db_session.commit()
        return coach
    return _make


@pytest.fixture
def coach(make_coach):
    return make_coach(name="Rucha Coach")


@pytest.fixture
def admin(make_coach):
    return make_coach(name="Ops Admin", role="admin")


@pytest.fixture
def child(db_session):
    child = Child(
        child_name="Aarav",
        age=7,
        parent_name="Meera Shah",
        parent_email="meera@example.com",
        parent_phone="+919800000000",
    )
    db_session.add(child)
    db_session.commit()
    return child


@pytest.fixture
def enrollment(db_session, child, coach):
    enrollment = Enrollment(child_id=child.id, coach_id=coach.id, total_sessions=24)
    db_session.add(enrollment)
    db_session.commit()
    return enrollment


@pytest.fixture
def template(db_session):
    template = SessionTemplate(name="Foundations 1", activity_flow=TEMPLATE_FLOW)
    db_session.add(template)
    db_session.commit()
    return template


@pytest.fixture
def make_session(db_session, child, coach, enrollment, template):
    counter = {"n": 0}

    def _make(**overrides) -> ScheduledSession:
        counter["n"] += 1
        fields = {
            "child_id": child.id,
            "coach_id": coach.id,
            "enrollment_id": enrollment.id,
            "session_template_id": template.id,
            "session_number": counter["n"],
            "scheduled_at": SCHEDULED_AT + timedelta(days=counter["n"]),
        }
        fields.update(overrides)
        session = ScheduledSession(**fields)
        db_session.add(session)
        db_session.commit()
        return session
    return _make


@pytest.fixture
def online_session(make_session):
    return make_session()


@pytest.fixture
def offline_session(make_session):
    """Approved offline session with a voice note already uploaded."""
    return make_session(
        session_mode="offline",
        offline_request_status="auto_approved",
        offline_approved_by="auto",
        scheduled_at=SCHEDULED_AT,
        report_deadline=SCHEDULED_AT + timedelta(hours=4),
        coach_voice_note_path="sessions/x/voice_note_1.webm",
    )


@pytest.fixture
def side_effects():
    return FakeSideEffects()


@pytest.fixture
def audio_service():
    audio = MagicMock()
    audio.transcribe_voice_note.return_value = "We read the blends book and practised sh and ch."
    audio.analyze_child_reading.return_value = ReadingAnalysis(
        wpm=42, accuracy_percent=91, fluency_score=6, strengths=["Steady pace"]
    )
    return audio


@pytest.fixture
def published_jobs():
    return []


@pytest.fixture
def completion_deps(audio_service, published_jobs):
    return CompletionDeps(audio=audio_service, publish_summary=published_jobs.append)


@pytest.fixture
def client(db_session, policy, side_effects, completion_deps):
    """TestClient sharing the test's db session, with fakes for collaborators."""
    from main import app
    from routers.sessions import get_completion_deps, get_offline_policy, get_offline_side_effects

    def _override_get_db():
        try:
            yield db_session
            db_session.commit()
        except Exception:
            db_session.rollback()
            raise

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_offline_policy] = lambda: policy
    app.dependency_overrides[get_offline_side_effects] = lambda: side_effects
    app.dependency_overrides[get_completion_deps] = lambda: completion_deps
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
