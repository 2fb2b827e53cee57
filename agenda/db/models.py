"""SQLAlchemy ORM models for users, events, audit trail and background jobs."""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON, Boolean, CheckConstraint, Float, ForeignKey, Index, Integer, String, Text, Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agenda.db.base import Base
from agenda.db.enums import EventStatus, JobStatus, Role

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Users
# =============================================================================

class User(Base):
    """
    Application user.

    Identity is established upstream (Google sign-in); this table only keeps
    what the approval workflow needs: contact email and role.
    """
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    role: Mapped[str] = mapped_column(
        String(30), default=Role.PENDING_ASSIGNMENT.value, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    events: Mapped[list["Event"]] = relationship(
        back_populates="created_by", foreign_keys="Event.created_by_id"
    )


# =============================================================================
# Events
# =============================================================================

class Event(Base):
    """
    A calendar event going through the approval workflow.

    Lifecycle: PENDING -> APPROVED | REJECTED (terminal). APPROVED events are
    mirrored to the external calendar; `external_calendar_event_id` is set once
    that sync succeeds and cleared on rejection.
    """
    __tablename__ = "events"
    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="ck_events_date_order"),
        Index("idx_events_status_start", "status", "start_date"),
        Index("idx_events_created_by", "created_by_id", "status"),
        Index("idx_events_self_approvals", "approved_by_id", "created_by_id", "status", "updated_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_date: Mapped[datetime] = mapped_column(nullable=False)
    end_date: Mapped[datetime] = mapped_column(nullable=False)
    is_all_day: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    event_type: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=EventStatus.PENDING.value, nullable=False
    )

    created_by_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    approved_by_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    external_calendar_event_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    created_by: Mapped["User"] = relationship(back_populates="events", foreign_keys=[created_by_id])
    approved_by: Mapped[Optional["User"]] = relationship(foreign_keys=[approved_by_id])


# =============================================================================
# Audit
# =============================================================================

class AuditLog(Base):
    """
    Append-only record of workflow actions on events.

    Advisory only: rows are written after the state change commits and a
    failed write never rolls the transition back.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("idx_audit_action_created", "action", "created_at"),
        Index("idx_audit_entity", "entity_type", "entity_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # AuditAction
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    details: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


# =============================================================================
# Jobs
# =============================================================================

class Job(Base):
    """
    Background job for async processing.

    Used for outbound email. The worker polls for due pending jobs; failures
    are rescheduled with exponential backoff until max_attempts.
    """
    __tablename__ = "jobs"
    __table_args__ = (
        Index("idx_jobs_pending", "status", "run_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    job_type: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    run_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=JobStatus.PENDING.value, nullable=False
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    backoff_seconds: Mapped[float] = mapped_column(Float, default=2.0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
