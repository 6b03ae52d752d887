"""initial session schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        'coach',
        sa.Column('id', sa.Uuid(), primary_key=True),
        *_timestamps(),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('email', sa.Text(), nullable=True, unique=True),
        sa.Column('phone', sa.Text(), nullable=True),
        sa.Column('role', sa.Text(), nullable=False, server_default='coach'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_available', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('exit_status', sa.Text(), nullable=True),
        sa.Column('last_assigned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_sessions_with_logs', sa.Integer(), nullable=False, server_default='0'),
    )
    op.create_index('ix_coach_assignment_pool', 'coach', ['is_active', 'is_available', 'last_assigned_at'])

    op.create_table(
        'coach_leave',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('coach_id', sa.Uuid(), sa.ForeignKey('coach.id'), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False, server_default='upcoming'),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('end_date >= start_date', name='ck_coach_leave_window'),
    )
    op.create_index('ix_coach_leave_coach_id', 'coach_leave', ['coach_id'])

    op.create_table(
        'child',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('child_name', sa.Text(), nullable=False),
        sa.Column('age', sa.Integer(), nullable=True),
        sa.Column('parent_name', sa.Text(), nullable=True),
        sa.Column('parent_email', sa.Text(), nullable=True),
        sa.Column('parent_phone', sa.Text(), nullable=True),
    )
    op.create_index('ix_child_parent_email', 'child', ['parent_email'])

    op.create_table(
        'enrollment',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('child_id', sa.Uuid(), sa.ForeignKey('child.id'), nullable=False),
        sa.Column('coach_id', sa.Uuid(), sa.ForeignKey('coach.id'), nullable=True),
        sa.Column('total_sessions', sa.Integer(), nullable=True),
        sa.Column('status', sa.Text(), nullable=False, server_default='active'),
    )
    op.create_index('ix_enrollment_child_id', 'enrollment', ['child_id'])
    op.create_index('ix_enrollment_coach_id', 'enrollment', ['coach_id'])

    op.create_table(
        'session_template',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('activity_flow', JSONType, nullable=False),
    )

    op.create_table(
        'scheduled_session',
        sa.Column('id', sa.Uuid(), primary_key=True),
        *_timestamps(),
        sa.Column('child_id', sa.Uuid(), sa.ForeignKey('child.id'), nullable=True),
        sa.Column('coach_id', sa.Uuid(), sa.ForeignKey('coach.id'), nullable=True),
        sa.Column('enrollment_id', sa.Uuid(), sa.ForeignKey('enrollment.id'), nullable=True),
        sa.Column('session_number', sa.Integer(), nullable=True),
        sa.Column('session_template_id', sa.Uuid(), sa.ForeignKey('session_template.id'), nullable=True),
        sa.Column('session_mode', sa.Text(), nullable=False, server_default='online'),
        sa.Column('status', sa.Text(), nullable=False, server_default='scheduled'),
        sa.Column('scheduled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('offline_request_status', sa.Text(), nullable=False, server_default='none'),
        sa.Column('offline_request_reason', sa.Text(), nullable=True),
        sa.Column('offline_reason_detail', sa.Text(), nullable=True),
        sa.Column('offline_location', sa.Text(), nullable=True),
        sa.Column('offline_location_type', sa.Text(), nullable=True),
        sa.Column('offline_requested_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('offline_approved_by', sa.Text(), nullable=True),
        sa.Column('offline_approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('offline_rejection_reason', sa.Text(), nullable=True),
        sa.Column('report_deadline', sa.DateTime(timezone=True), nullable=True),
        sa.Column('report_submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('report_late', sa.Boolean(), nullable=True),
        sa.Column('adherence_score', sa.Float(), nullable=True),
        sa.Column('adherence_details', JSONType, nullable=True),
        sa.Column('coach_notes', sa.Text(), nullable=True),
        sa.Column('session_elapsed_seconds', sa.Integer(), nullable=True),
        sa.Column('companion_panel_completed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('coach_voice_note_path', sa.Text(), nullable=True),
        sa.Column('child_reading_clip_path', sa.Text(), nullable=True),
        sa.Column('voice_note_transcript', sa.Text(), nullable=True),
        sa.Column('transcript_status', sa.Text(), nullable=False, server_default='none'),
        sa.Column('calendar_event_id', sa.Text(), nullable=True),
        sa.Column('recording_bot_id', sa.Text(), nullable=True),
        sa.CheckConstraint("session_mode IN ('online', 'offline')", name='ck_session_mode'),
        sa.CheckConstraint("status IN ('scheduled', 'completed', 'cancelled')", name='ck_session_status'),
        sa.CheckConstraint(
            "offline_request_status IN ('none', 'pending', 'approved', 'auto_approved', 'rejected')",
            name='ck_offline_request_status',
        ),
    )
    op.create_index('ix_scheduled_session_child_id', 'scheduled_session', ['child_id'])
    op.create_index('ix_scheduled_session_coach_id', 'scheduled_session', ['coach_id'])
    op.create_index('ix_scheduled_session_enrollment_id', 'scheduled_session', ['enrollment_id'])
    op.create_index('ix_session_enrollment_mode', 'scheduled_session', ['enrollment_id', 'session_mode'])
    op.create_index('ix_session_coach_mode_status', 'scheduled_session', ['coach_id', 'session_mode', 'status'])

    op.create_table(
        'session_activity_log',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('session_id', sa.Uuid(), sa.ForeignKey('scheduled_session.id'), nullable=False),
        sa.Column('activity_index', sa.Integer(), nullable=True),
        sa.Column('activity_name', sa.Text(), nullable=False),
        sa.Column('activity_purpose', sa.Text(), nullable=True),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('planned_duration_minutes', sa.Float(), nullable=True),
        sa.Column('actual_duration_seconds', sa.Integer(), nullable=True),
        sa.Column('coach_note', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('source', sa.Text(), nullable=False, server_default='companion_panel'),
        sa.CheckConstraint(
            "status IN ('completed', 'partial', 'skipped', 'struggled')", name='ck_activity_status'
        ),
    )
    op.create_index('ix_session_activity_log_session_id', 'session_activity_log', ['session_id'])

    op.create_table(
        'learning_event',
        sa.Column('id', sa.Uuid(), primary_key=True),
        *_timestamps(),
        sa.Column('child_id', sa.Uuid(), sa.ForeignKey('child.id'), nullable=False),
        sa.Column('coach_id', sa.Uuid(), sa.ForeignKey('coach.id'), nullable=True),
        sa.Column('session_id', sa.Uuid(), sa.ForeignKey('scheduled_session.id'), nullable=True),
        sa.Column('canonical_session_id', sa.Uuid(), sa.ForeignKey('scheduled_session.id'), nullable=True),
        sa.Column('event_type', sa.Text(), nullable=False),
        sa.Column('event_date', sa.Date(), nullable=False),
        sa.Column('event_data', JSONType, nullable=False),
        sa.Column('ai_summary', sa.Text(), nullable=True),
        sa.UniqueConstraint('canonical_session_id', name='uq_learning_event_canonical_session'),
    )
    op.create_index('ix_learning_event_child_id', 'learning_event', ['child_id'])
    op.create_index('ix_learning_event_session_id', 'learning_event', ['session_id'])
    op.create_index('ix_learning_event_event_type', 'learning_event', ['event_type'])

    op.create_table(
        'discovery_call',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('child_id', sa.Uuid(), sa.ForeignKey('child.id'), nullable=True),
        sa.Column('parent_name', sa.Text(), nullable=False),
        sa.Column('parent_email', sa.Text(), nullable=True),
        sa.Column('parent_phone', sa.Text(), nullable=True),
        sa.Column('child_name', sa.Text(), nullable=True),
        sa.Column('child_age', sa.Integer(), nullable=True),
        sa.Column('status', sa.Text(), nullable=False, server_default='scheduled'),
        sa.Column('scheduled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('meeting_url', sa.Text(), nullable=True),
        sa.Column('booking_id', sa.String(), nullable=True),
        sa.Column('booking_uid', sa.String(), nullable=True, unique=True),
        sa.Column('source', sa.Text(), nullable=False, server_default='booking_webhook'),
        sa.Column('coach_id', sa.Uuid(), sa.ForeignKey('coach.id'), nullable=True),
        sa.Column('assignment_type', sa.Text(), nullable=False, server_default='pending'),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('assigned_by', sa.Text(), nullable=True),
    )

    op.create_table(
        'site_setting',
        sa.Column('key', sa.String(), primary_key=True),
        sa.Column('value', sa.Text(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.bulk_insert(
        sa.table(
            'site_setting',
            sa.column('key', sa.String()),
            sa.column('value', sa.Text()),
            sa.column('description', sa.Text()),
        ),
        [
            {'key': 'offline_new_coach_adherence_threshold', 'value': '70',
             'description': 'Minimum adherence (percent) for an online session to count toward offline auto-approval'},
            {'key': 'offline_new_coach_online_threshold', 'value': '3',
             'description': 'Qualifying online sessions needed before offline requests are auto-approved'},
            {'key': 'offline_max_percent', 'value': '25',
             'description': 'Maximum share of an enrollment\'s sessions that may be offline'},
            {'key': 'offline_report_deadline_hours', 'value': '4',
             'description': 'Hours after the scheduled start to submit the offline report'},
        ],
    )


def downgrade() -> None:
    op.drop_table('site_setting')
    op.drop_table('discovery_call')
    op.drop_index('ix_learning_event_event_type', table_name='learning_event')
    op.drop_index('ix_learning_event_session_id', table_name='learning_event')
    op.drop_index('ix_learning_event_child_id', table_name='learning_event')
    op.drop_table('learning_event')
    op.drop_index('ix_session_activity_log_session_id', table_name='session_activity_log')
    op.drop_table('session_activity_log')
    op.drop_index('ix_session_coach_mode_status', table_name='scheduled_session')
    op.drop_index('ix_session_enrollment_mode', table_name='scheduled_session')
    op.drop_index('ix_scheduled_session_enrollment_id', table_name='scheduled_session')
    op.drop_index('ix_scheduled_session_coach_id', table_name='scheduled_session')
    op.drop_index('ix_scheduled_session_child_id', table_name='scheduled_session')
    op.drop_table('scheduled_session')
    op.drop_table('session_template')
    op.drop_index('ix_enrollment_coach_id', table_name='enrollment')
    op.drop_index('ix_enrollment_child_id', table_name='enrollment')
    op.drop_table('enrollment')
    op.drop_index('ix_child_parent_email', table_name='child')
    op.drop_table('child')
    op.drop_index('ix_coach_leave_coach_id', table_name='coach_leave')
    op.drop_table('coach_leave')
    op.drop_index('ix_coach_assignment_pool', table_name='coach')
    op.drop_table('coach')
