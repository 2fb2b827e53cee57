"""Events router - submission, review and listing of calendar events."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from agenda.core.deps import get_current_session, get_db, get_event_engine, require_roles
from agenda.db.enums import EventStatus, EventType, Role
from agenda.schemas.admin import CoordinatorStats, SupervisorStats
from agenda.schemas.auth import UserSession
from agenda.schemas.events import (
    ApproveEventRequest,
    EventCreate,
    EventListResponse,
    EventRead,
    EventUpdate,
    MessageResponse,
    RejectEventRequest,
    ensure_utc,
)
from agenda.services import event_query_service, stats_service
from agenda.services.event_service import EventTransitionEngine, TransitionResult
from agenda.services.event_query_service import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

router = APIRouter()

require_reviewer = require_roles([Role.SUPERVISOR, Role.ADMIN])


def _to_read(result: TransitionResult) -> EventRead:
    read = EventRead.model_validate(result.event)
    read.warning = result.warning
    return read


# =============================================================================
# Dashboards (declared before /{event_id} so the paths don't collide)
# =============================================================================

@router.get("/stats/coordinators", response_model=list[CoordinatorStats])
def coordinator_stats(
    session: UserSession = Depends(require_reviewer),
    db: Session = Depends(get_db),
):
    """Coordinators with their pending-event counts."""
    return stats_service.coordinator_pending_counts(db)


@router.get("/stats/supervisor", response_model=SupervisorStats)
def supervisor_stats(
    session: UserSession = Depends(require_reviewer),
    db: Session = Depends(get_db),
):
    return stats_service.supervisor_dashboard(db)


# =============================================================================
# Read
# =============================================================================

@router.get("", response_model=EventListResponse)
def list_events(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
    status: EventStatus | None = None,
    event_type: EventType | None = Query(None, alias="eventType"),
    start_date: datetime | None = Query(None, alias="startDate"),
    end_date: datetime | None = Query(None, alias="endDate"),
    created_by_id: UUID | None = Query(None, alias="createdById"),
    page: int = Query(0, ge=0),
    page_size: int = Query(DEFAULT_PAGE_SIZE, alias="pageSize", ge=1, le=MAX_PAGE_SIZE),
):
    """
    List events visible to the caller.

    Coordinators see their own events and every approved event.
    `page` is 0-based.
    """
    events, total = event_query_service.list_events(
        db,
        session,
        status=status,
        event_type=event_type,
        start_date=ensure_utc(start_date) if start_date else None,
        end_date=ensure_utc(end_date) if end_date else None,
        created_by_id=created_by_id,
        page=page,
        page_size=page_size,
    )
    return EventListResponse(
        data=[EventRead.model_validate(e) for e in events],
        total=total,
    )


@router.get("/{event_id}", response_model=EventRead)
def get_event(
    event_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    event = event_query_service.get_visible_event(db, session, event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Evento não encontrado")
    return EventRead.model_validate(event)


# =============================================================================
# Write
# =============================================================================

@router.post("", response_model=EventRead, status_code=201)
def create_event(
    data: EventCreate,
    session: UserSession = Depends(get_current_session),
    engine: EventTransitionEngine = Depends(get_event_engine),
):
    """
    Submit an event.

    Supervisors and admins may pass `status=APPROVED` to approve on
    creation; supervisors fall back to PENDING (with a warning) when their
    self-approval limits are reached.
    """
    return _to_read(engine.create_event(session, data))


@router.patch("/{event_id}", response_model=EventRead)
def update_event(
    event_id: UUID,
    data: EventUpdate,
    session: UserSession = Depends(require_reviewer),
    engine: EventTransitionEngine = Depends(get_event_engine),
):
    return _to_read(engine.update_event(session, event_id, data))


@router.post("/{event_id}/approve", response_model=EventRead)
def approve_event(
    event_id: UUID,
    data: ApproveEventRequest | None = None,
    session: UserSession = Depends(require_reviewer),
    engine: EventTransitionEngine = Depends(get_event_engine),
):
    notify_creator = data.notify_creator if data else True
    return _to_read(engine.approve_event(session, event_id, notify_creator=notify_creator))


@router.post("/{event_id}/reject", response_model=EventRead)
def reject_event(
    event_id: UUID,
    data: RejectEventRequest,
    session: UserSession = Depends(require_reviewer),
    engine: EventTransitionEngine = Depends(get_event_engine),
):
    return _to_read(
        engine.reject_event(session, event_id, data.reason, notify_creator=data.notify_creator)
    )


@router.delete("/{event_id}", response_model=MessageResponse)
def delete_event(
    event_id: UUID,
    session: UserSession = Depends(get_current_session),
    engine: EventTransitionEngine = Depends(get_event_engine),
):
    engine.delete_event(session, event_id)
    return MessageResponse(message="Evento excluído")
