"""
Tests for the canonical session fact merge.

Whichever producer arrives first, a session ends up with exactly one
canonical fact holding both payloads.
"""
from models import CANONICAL_SESSION_EVENT_TYPES, EVENT_COMPANION_LOG, EVENT_SESSION, LearningEvent
from services.event_merge import merge_companion_report, merge_transcript_record

COMPANION = {
    "status_counts": {"completed": 3, "partial": 0, "skipped": 1, "struggled": 0},
    "activities": [{"activity_name": "Warm-up", "status": "completed"}],
    "coach_notes": "Great focus today",
    "session_elapsed_seconds": 1800,
}
TRANSCRIPT = {"focus_area": "blends", "engagement": "high", "key_observations": ["Read 3 pages"]}


def _canonical(db, session):
    return (
        db.query(LearningEvent)
        .filter(
            LearningEvent.session_id == session.id,
            LearningEvent.event_type.in_(CANONICAL_SESSION_EVENT_TYPES),
        )
        .all()
    )


def test_companion_first_creates_companion_log(db_session, online_session):
    outcome = merge_companion_report(db_session, online_session, COMPANION, "coach@example.com")
    db_session.commit()

    assert outcome.created is True
    assert outcome.event.event_type == EVENT_COMPANION_LOG
    assert outcome.event.canonical_session_id == online_session.id
    assert outcome.event.event_data["logged_by"] == "coach@example.com"


def test_transcript_then_companion_merges_into_one_fact(db_session, online_session):
    merge_transcript_record(db_session, online_session, TRANSCRIPT, ai_summary="Summary")
    outcome = merge_companion_report(db_session, online_session, COMPANION, "coach@example.com")
    db_session.commit()

    facts = _canonical(db_session, online_session)
    assert outcome.created is False
    assert len(facts) == 1
    data = facts[0].event_data
    assert facts[0].event_type == EVENT_SESSION
    assert data["focus_area"] == "blends"
    assert data["activity_statuses"] == COMPANION["status_counts"]
    assert data["companion_notes"] == "Great focus today"
    assert data["companion_logged_by"] == "coach@example.com"
    assert "companion_merged_at" in data


def test_companion_then_transcript_merges_into_one_fact(db_session, online_session):
    merge_companion_report(db_session, online_session, COMPANION, "coach@example.com")
    outcome = merge_transcript_record(db_session, online_session, TRANSCRIPT, ai_summary="Summary")
    db_session.commit()

    facts = _canonical(db_session, online_session)
    assert outcome.created is False
    assert len(facts) == 1
    assert facts[0].event_data["focus_area"] == "blends"
    assert facts[0].event_data["status_counts"] == COMPANION["status_counts"]
    assert facts[0].ai_summary == "Summary"
    assert online_session.transcript_status == "available"


def test_remerging_the_same_report_is_idempotent(db_session, online_session):
    merge_transcript_record(db_session, online_session, TRANSCRIPT)
    merge_companion_report(db_session, online_session, COMPANION, "coach@example.com")
    merge_companion_report(db_session, online_session, dict(COMPANION, coach_notes="Edited"), "coach@example.com")
    db_session.commit()

    facts = _canonical(db_session, online_session)
    assert len(facts) == 1
    assert facts[0].event_data["companion_notes"] == "Edited"


def test_offline_context_is_carried_into_existing_fact(db_session, offline_session):
    merge_transcript_record(db_session, offline_session, TRANSCRIPT)
    offline = dict(COMPANION, voice_note_transcript="We read", confidence_level="coach_reported",
                   words_struggled=["ship"])
    merge_companion_report(db_session, offline_session, offline, "coach@example.com")
    db_session.commit()

    data = _canonical(db_session, offline_session)[0].event_data
    assert data["voice_note_transcript"] == "We read"
    assert data["confidence_level"] == "coach_reported"
    assert data["words_struggled"] == ["ship"]
