"""Baseline migration - users, events, audit trail and job queue

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-19

Creates the four tables of the event approval service.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    """Create users, events, audit_logs and jobs."""

    # ==========================================================================
    # Users
    # ==========================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('avatar_url', sa.String(500), nullable=True),
        sa.Column('role', sa.String(30), nullable=False, server_default='PENDING_ASSIGNMENT'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('email', name='uq_users_email'),
    )

    # ==========================================================================
    # Events
    # ==========================================================================
    op.create_table(
        'events',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_all_day', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('event_type', sa.String(30), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column(
            'created_by_id', sa.Uuid(),
            sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column(
            'approved_by_id', sa.Uuid(),
            sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True,
        ),
        sa.Column('external_calendar_event_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('end_date >= start_date', name='ck_events_date_order'),
    )
    op.create_index('idx_events_status_start', 'events', ['status', 'start_date'])
    op.create_index('idx_events_created_by', 'events', ['created_by_id', 'status'])
    op.create_index(
        'idx_events_self_approvals', 'events',
        ['approved_by_id', 'created_by_id', 'status', 'updated_at'],
    )

    # ==========================================================================
    # Audit trail
    # ==========================================================================
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'user_id', sa.Uuid(),
            sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True,
        ),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.Uuid(), nullable=False),
        sa.Column('details', JSONType, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('idx_audit_action_created', 'audit_logs', ['action', 'created_at'])
    op.create_index('idx_audit_entity', 'audit_logs', ['entity_type', 'entity_id'])

    # ==========================================================================
    # Jobs (email queue)
    # ==========================================================================
    op.create_table(
        'jobs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('job_type', sa.String(50), nullable=False),
        sa.Column('payload', JSONType, nullable=False),
        sa.Column('run_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('backoff_seconds', sa.Float(), nullable=False, server_default='2'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('idx_jobs_pending', 'jobs', ['status', 'run_at'])


def downgrade() -> None:
    op.drop_index('idx_jobs_pending', table_name='jobs')
    op.drop_table('jobs')
    op.drop_index('idx_audit_entity', table_name='audit_logs')
    op.drop_index('idx_audit_action_created', table_name='audit_logs')
    op.drop_table('audit_logs')
    op.drop_index('idx_events_self_approvals', table_name='events')
    op.drop_index('idx_events_created_by', table_name='events')
    op.drop_index('idx_events_status_start', table_name='events')
    op.drop_table('events')
    op.drop_table('users')
