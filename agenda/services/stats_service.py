"""Dashboard statistics - group-by counts over events, users and the audit log."""

from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import func
from sqlalchemy.orm import Session

from agenda.core.config import settings
from agenda.db.enums import AuditAction, EventStatus, Role
from agenda.db.models import AuditLog, Event, User


def _local_midnight(now: datetime | None = None) -> datetime:
    tz = ZoneInfo(settings.APP_TIMEZONE)
    local_now = (now or datetime.now(timezone.utc)).astimezone(tz)
    return datetime.combine(local_now.date(), time.min, tzinfo=tz)


def coordinator_pending_counts(db: Session) -> list[dict]:
    """Every coordinator with the number of events they have awaiting review."""
    pending = (
        db.query(Event.created_by_id, func.count(Event.id).label("pending"))
        .filter(Event.status == EventStatus.PENDING.value)
        .group_by(Event.created_by_id)
        .subquery()
    )
    rows = (
        db.query(User, func.coalesce(pending.c.pending, 0))
        .outerjoin(pending, pending.c.created_by_id == User.id)
        .filter(User.role == Role.COORDINATOR.value)
        .order_by(User.name.asc())
        .all()
    )
    return [
        {
            "id": user.id,
            "name": user.name,
            "email": user.email,
            "avatar": user.avatar_url,
            "pendingCount": count,
        }
        for user, count in rows
    ]


def supervisor_dashboard(db: Session, now: datetime | None = None) -> dict:
    """
    Review queue and approval figures for supervisors.

    pendingToday counts pending events starting today or later; approvedWeek
    counts approvals since the start of the week (Sunday, local time).
    """
    today = _local_midnight(now)
    # isoweekday: Monday=1 .. Sunday=7
    week_start = today - timedelta(days=today.isoweekday() % 7)
    today_utc = today.astimezone(timezone.utc)
    week_start_utc = week_start.astimezone(timezone.utc)

    pending_today = (
        db.query(func.count(Event.id))
        .filter(Event.status == EventStatus.PENDING.value, Event.start_date >= today_utc)
        .scalar()
    )
    approved_week = (
        db.query(func.count(Event.id))
        .filter(Event.status == EventStatus.APPROVED.value, Event.updated_at >= week_start_utc)
        .scalar()
    )
    total = db.query(func.count(Event.id)).scalar() or 0
    approved_total = (
        db.query(func.count(Event.id))
        .filter(Event.status == EventStatus.APPROVED.value)
        .scalar()
        or 0
    )
    by_type = (
        db.query(Event.event_type, func.count(Event.id))
        .group_by(Event.event_type)
        .order_by(Event.event_type)
        .all()
    )
    by_approver = (
        db.query(User.name, func.count(Event.id))
        .outerjoin(Event, Event.approved_by_id == User.id)
        .filter(User.role.in_([Role.SUPERVISOR.value, Role.ADMIN.value]))
        .group_by(User.id, User.name)
        .order_by(User.name)
        .all()
    )

    return {
        "pendingToday": pending_today or 0,
        "approvedWeek": approved_week or 0,
        "approvalRate": round(approved_total / total * 100) if total else 0,
        "byType": [{"name": name, "value": count} for name, count in by_type],
        "byApprover": [{"name": name, "value": count} for name, count in by_approver],
    }


def audit_summary(db: Session) -> dict:
    """Audit entries per action, plus the approval breakdown admins watch."""
    rows = (
        db.query(AuditLog.action, func.count(AuditLog.id))
        .group_by(AuditLog.action)
        .order_by(AuditLog.action)
        .all()
    )
    counts = {action: count for action, count in rows}
    self_approvals = counts.get(AuditAction.APPROVE_SELF.value, 0)
    other_approvals = counts.get(AuditAction.APPROVE_OTHER.value, 0)
    auto_approvals = counts.get(AuditAction.CREATE_AUTO_APPROVED.value, 0)
    return {
        "chartData": [
            {"name": action.replace("_", " "), "value": count} for action, count in rows
        ],
        "summary": {
            "selfApprovals": self_approvals,
            "otherApprovals": other_approvals,
            "autoApprovals": auto_approvals,
            "totalInterventions": self_approvals + other_approvals + auto_approvals,
        },
    }


def system_counts(db: Session) -> dict:
    users_by_role = db.query(User.role, func.count(User.id)).group_by(User.role).all()
    events_by_status = db.query(Event.status, func.count(Event.id)).group_by(Event.status).all()
    return {
        "usersByRole": {role: count for role, count in users_by_role},
        "eventsByStatus": {status: count for status, count in events_by_status},
    }
