"""Event listing and lookup with role-scoped visibility."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Query, Session, joinedload

from agenda.db.enums import EventStatus, EventType, Role
from agenda.db.models import Event
from agenda.schemas.auth import UserSession

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


def _visible_events(db: Session, session: UserSession) -> Query:
    """
    Base query restricted to what the caller may see.

    Coordinators see their own events plus everything approved; supervisors
    and admins see everything.
    """
    query = db.query(Event)
    if session.role == Role.COORDINATOR:
        query = query.filter(
            or_(
                Event.created_by_id == session.user_id,
                Event.status == EventStatus.APPROVED.value,
            )
        )
    return query


def list_events(
    db: Session,
    session: UserSession,
    *,
    status: EventStatus | None = None,
    event_type: EventType | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    created_by_id: UUID | None = None,
    page: int = 0,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> tuple[list[Event], int]:
    """
    List events with filters and offset pagination (page is 0-based).

    start_date keeps events starting at or after it; end_date keeps events
    ending at or before it. Ordered by start date, newest first.
    """
    query = _visible_events(db, session)

    if status:
        query = query.filter(Event.status == status.value)
    if event_type:
        query = query.filter(Event.event_type == event_type.value)
    if start_date:
        query = query.filter(Event.start_date >= start_date)
    if end_date:
        query = query.filter(Event.end_date <= end_date)
    if created_by_id:
        query = query.filter(Event.created_by_id == created_by_id)

    total = query.count()

    page = max(page, 0)
    page_size = min(max(page_size, 1), MAX_PAGE_SIZE)
    events = (
        query.options(joinedload(Event.created_by))
        .order_by(Event.start_date.desc(), Event.id)
        .offset(page * page_size)
        .limit(page_size)
        .all()
    )
    return events, total


def get_visible_event(db: Session, session: UserSession, event_id: UUID) -> Event | None:
    """Point lookup under the same visibility rule; invisible reads as missing."""
    return (
        _visible_events(db, session)
        .options(joinedload(Event.created_by))
        .filter(Event.id == event_id)
        .first()
    )
