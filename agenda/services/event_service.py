"""Event approval workflow - status decisions and side-effect orchestration.

The engine decides the status for create/approve/reject, enforces the
self-approval limits, and then runs the follow-ups (calendar sync, audit,
notifications) with partial-failure tolerance:

- Errors (EventWorkflowError) abort the operation before anything is written.
- Warnings (TransitionResult.warnings) mean the state change committed but a
  calendar side effect degraded.
- Audit and notification failures are only logged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from typing import Any, Callable, Coroutine
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from agenda.core.async_utils import run_async
from agenda.core.config import settings
from agenda.core.structured_logging import build_log_context
from agenda.core.websocket import NotificationTarget
from agenda.db.enums import (
    AUTO_APPROVAL_EXEMPT_TYPES,
    ROLES_CAN_APPROVE,
    ROLES_CAN_CREATE_EVENTS,
    AuditAction,
    EventStatus,
    EventType,
    NotificationType,
    Role,
)
from agenda.db.models import Event
from agenda.schemas.auth import UserSession
from agenda.schemas.events import EventCreate, EventUpdate, ensure_utc
from agenda.services.audit_service import ENTITY_EVENT, AuditRecorder
from agenda.services.calendar_sync_service import CalendarSyncClient, CalendarSyncError
from agenda.services.email_service import format_date_br
from agenda.services.notification_service import NotificationDispatcher

logger = logging.getLogger(__name__)

REJECTION_MARKER = "[MOTIVO REJEIÇÃO]:"

WARNING_PAST_EVENT = "Aviso: O evento está no passado."
WARNING_CONFLICT = "Aviso: Conflito detectado no Google Agenda."
WARNING_SYNC_FAILED = "Falha na sincronização com Google Agenda."
WARNING_DELETE_FAILED = "Falha ao remover o evento do Google Agenda."


# =============================================================================
# Errors
# =============================================================================

class EventWorkflowError(Exception):
    """Operation aborted; nothing was persisted."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Forbidden(EventWorkflowError):
    status_code = 403


class EventNotFound(EventWorkflowError):
    status_code = 404


class InvalidState(EventWorkflowError):
    status_code = 400


class EventValidationError(EventWorkflowError):
    status_code = 400


class AutoApprovalDenied(EventWorkflowError):
    """Self-approval limit hit. At creation this degrades to a warning."""

    status_code = 400

    def __init__(self, message: str, warning: str):
        super().__init__(message)
        self.warning = warning


class DurationExceeded(AutoApprovalDenied):
    pass


class QuotaExceeded(AutoApprovalDenied):
    pass


# =============================================================================
# Results
# =============================================================================

@dataclass
class TransitionResult:
    """A committed state change plus any side effects that degraded."""

    event: Event
    warnings: list[str] = field(default_factory=list)

    @property
    def warning(self) -> str | None:
        return " ".join(self.warnings) if self.warnings else None


@dataclass(frozen=True)
class CalendarPayload:
    """Detached copy of the fields the calendar client reads."""

    title: str
    description: str | None
    start_date: datetime
    end_date: datetime
    is_all_day: bool
    event_type: str

    @classmethod
    def from_event(cls, event: Event) -> "CalendarPayload":
        return cls(
            title=event.title,
            description=event.description,
            start_date=ensure_utc(event.start_date),
            end_date=ensure_utc(event.end_date),
            is_all_day=event.is_all_day,
            event_type=event.event_type,
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def append_rejection_reason(description: str | None, reason: str) -> str:
    if description:
        return f"{description}\n\n{REJECTION_MARKER} {reason}"
    return f"{REJECTION_MARKER} {reason}"


# =============================================================================
# Engine
# =============================================================================

class EventTransitionEngine:
    """
    Create, approve, reject, update and delete events.

    Collaborators are injected so routes, the worker and tests can wire
    their own: `calendar` may be None when no service account is configured,
    in which case conflict checks report "not busy" and syncs become warnings.
    """

    def __init__(
        self,
        db: Session,
        *,
        calendar: CalendarSyncClient | None,
        notifications: NotificationDispatcher,
        audit: AuditRecorder,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.calendar = calendar
        self.notifications = notifications
        self.audit = audit
        self._clock = clock

    # ------------------------------------------------------------------
    # Lookups and rules
    # ------------------------------------------------------------------

    def _get_event(self, event_id: UUID) -> Event:
        event = self.db.get(Event, event_id)
        if not event:
            raise EventNotFound("Evento não encontrado")
        return event

    @staticmethod
    def _require_approver(requester: UserSession) -> None:
        if requester.role not in ROLES_CAN_APPROVE:
            raise Forbidden("Não autorizado")

    def start_of_today(self) -> datetime:
        """Midnight today in the application timezone, as a UTC instant."""
        tz = ZoneInfo(settings.APP_TIMEZONE)
        local_now = self._clock().astimezone(tz)
        midnight = datetime.combine(local_now.date(), time.min, tzinfo=tz)
        return midnight.astimezone(timezone.utc)

    def count_self_approvals_today(self, user_id: UUID) -> int:
        return (
            self.db.query(func.count(Event.id))
            .filter(
                Event.approved_by_id == user_id,
                Event.created_by_id == user_id,
                Event.status == EventStatus.APPROVED.value,
                Event.updated_at >= self.start_of_today(),
            )
            .scalar()
            or 0
        )

    def check_auto_approval(
        self,
        user_id: UUID,
        event_type: EventType | str,
        start_date: datetime,
        end_date: datetime,
    ) -> AutoApprovalDenied | None:
        """
        Return why self-approval is not allowed, or None when it is.

        EVENTO and VISITA are always eligible. Other types are limited by
        duration and by how many events the user self-approved today.
        """
        if EventType(event_type) in AUTO_APPROVAL_EXEMPT_TYPES:
            return None

        max_days = settings.AUTO_APPROVAL_MAX_DAYS
        duration_days = (ensure_utc(end_date) - ensure_utc(start_date)).total_seconds() / 86400
        if duration_days > max_days:
            return DurationExceeded(
                f"Auto-aprovação negada. Eventos com mais de {max_days} dias requerem "
                "aprovação de outro supervisor ou admin.",
                warning=f"Auto-aprovação desativada: Evento excede {max_days} dias.",
            )

        limit = settings.AUTO_APPROVAL_DAILY_LIMIT
        if self.count_self_approvals_today(user_id) >= limit:
            return QuotaExceeded(
                f"Limite diário de auto-aprovação ({limit}) atingido. "
                "Solicite aprovação de outro supervisor.",
                warning=f"Auto-aprovação desativada: Limite diário ({limit}) atingido.",
            )
        return None

    # ------------------------------------------------------------------
    # Calendar side effects
    # ------------------------------------------------------------------

    def _calendar_call(self, call: Callable[[CalendarSyncClient], Coroutine[Any, Any, Any]]) -> Any:
        if self.calendar is None:
            raise CalendarSyncError("Calendar sync is not configured")
        return run_async(call(self.calendar))

    def _is_busy(self, start: datetime, end: datetime) -> bool:
        """Conflict check. Fails open."""
        if self.calendar is None:
            return False
        try:
            return bool(self._calendar_call(lambda c: c.query_busy(start, end)))
        except Exception:
            logger.warning("Calendar conflict check failed; treating as free", exc_info=True)
            return False

    def _sync_to_calendar(self, event: Event, warnings: list[str]) -> None:
        """Update the mirrored calendar entry, or create it and store its id."""
        payload = CalendarPayload.from_event(event)
        external_id = event.external_calendar_event_id
        try:
            if external_id:
                self._calendar_call(lambda c: c.update(external_id, payload))
                return
            new_id = self._calendar_call(lambda c: c.create(payload))
        except Exception:
            logger.warning(
                "Calendar sync failed",
                exc_info=True,
                extra=build_log_context(event_id=str(event.id)),
            )
            warnings.append(WARNING_SYNC_FAILED)
            return
        event.external_calendar_event_id = new_id
        self.db.commit()

    # ------------------------------------------------------------------
    # Persistence guard
    # ------------------------------------------------------------------

    def _transition_from_pending(self, event: Event, message: str, **values: Any) -> None:
        """
        Apply `values` only if the row is still PENDING.

        The WHERE clause on status makes concurrent approve/reject calls
        resolve to exactly one winner; the loser gets InvalidState.
        """
        result = self.db.execute(
            update(Event)
            .where(Event.id == event.id, Event.status == EventStatus.PENDING.value)
            .values(updated_at=_utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise InvalidState(message)
        self.db.commit()
        self.db.refresh(event)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create_event(self, requester: UserSession, payload: EventCreate) -> TransitionResult:
        if requester.role not in ROLES_CAN_CREATE_EVENTS:
            raise Forbidden("Não autorizado")

        warnings: list[str] = []
        if payload.start_date < self._clock():
            warnings.append(WARNING_PAST_EVENT)

        auto_approved = False
        if payload.requested_status == EventStatus.APPROVED:
            if requester.role == Role.ADMIN:
                auto_approved = True
            elif requester.role == Role.SUPERVISOR:
                denial = self.check_auto_approval(
                    requester.user_id, payload.event_type, payload.start_date, payload.end_date
                )
                if denial:
                    warnings.append(denial.warning)
                else:
                    auto_approved = True

        event = Event(
            title=payload.title,
            description=payload.description,
            start_date=payload.start_date,
            end_date=payload.end_date,
            is_all_day=payload.is_all_day,
            event_type=payload.event_type.value,
            status=(EventStatus.APPROVED if auto_approved else EventStatus.PENDING).value,
            created_by_id=requester.user_id,
            approved_by_id=requester.user_id if auto_approved else None,
        )
        self.db.add(event)
        self.db.commit()
        self.db.refresh(event)

        if self._is_busy(payload.start_date, payload.end_date):
            warnings.append(WARNING_CONFLICT)

        if auto_approved:
            self._sync_to_calendar(event, warnings)

        action = AuditAction.CREATE_AUTO_APPROVED if auto_approved else AuditAction.CREATE_PENDING
        self.audit.record(requester.user_id, action, ENTITY_EVENT, event.id)

        data = {"eventId": str(event.id)}
        if auto_approved:
            self.notifications.notify(
                NotificationTarget.user(requester.user_id),
                NotificationType.EVENT_AUTO_APPROVED,
                f'Evento "{event.title}" criado e auto-aprovado.',
                data,
            )
            self.notifications.enqueue_email(
                requester.email,
                f"Evento Auto-Aprovado: {event.title}",
                "auto_approved",
                {
                    "userName": requester.name,
                    "eventTitle": event.title,
                    "startDate": format_date_br(event.start_date),
                },
            )
        elif requester.role == Role.COORDINATOR:
            self.notifications.notify(
                NotificationTarget.role(Role.SUPERVISOR.value),
                NotificationType.NEW_EVENT_FROM_COORDINATOR,
                f'Novo evento pendente de {requester.email}: "{event.title}"',
                data,
            )

        logger.info(
            "Event created",
            extra=build_log_context(
                user_id=str(requester.user_id),
                role=requester.role.value,
                event_id=str(event.id),
                action=action.value,
            ),
        )
        return TransitionResult(event, warnings)

    def approve_event(
        self, requester: UserSession, event_id: UUID, notify_creator: bool = True
    ) -> TransitionResult:
        self._require_approver(requester)
        event = self._get_event(event_id)
        if event.status != EventStatus.PENDING.value:
            raise InvalidState("Apenas eventos pendentes podem ser aprovados.")

        is_self_approval = event.created_by_id == requester.user_id
        if is_self_approval and requester.role != Role.ADMIN:
            denial = self.check_auto_approval(
                requester.user_id, event.event_type, event.start_date, event.end_date
            )
            if denial:
                raise denial

        warnings: list[str] = []
        if self._is_busy(event.start_date, event.end_date):
            warnings.append(WARNING_CONFLICT)

        self._transition_from_pending(
            event,
            "Apenas eventos pendentes podem ser aprovados.",
            status=EventStatus.APPROVED.value,
            approved_by_id=requester.user_id,
        )
        self._sync_to_calendar(event, warnings)

        action = AuditAction.APPROVE_SELF if is_self_approval else AuditAction.APPROVE_OTHER
        self.audit.record(
            requester.user_id,
            action,
            ENTITY_EVENT,
            event.id,
            {"selfApproval": is_self_approval},
        )

        data = {"eventId": str(event.id)}
        start_date = format_date_br(event.start_date)
        if is_self_approval:
            self.notifications.notify(
                NotificationTarget.user(requester.user_id),
                NotificationType.EVENT_SELF_APPROVED,
                f'Você auto-aprovou o evento: "{event.title}"',
                data,
            )
            self.notifications.enqueue_email(
                requester.email,
                f"Auto-Aprovação: {event.title}",
                "self_approved",
                {"userName": requester.name, "eventTitle": event.title, "startDate": start_date},
            )
        elif notify_creator:
            creator = event.created_by
            self.notifications.notify(
                NotificationTarget.user(event.created_by_id),
                NotificationType.EVENT_APPROVED_BY_OTHER,
                f'Seu evento "{event.title}" foi aprovado por {requester.email}.',
                data,
            )
            if creator and creator.email:
                self.notifications.enqueue_email(
                    creator.email,
                    f"Evento Aprovado: {event.title}",
                    "approved_by_supervisor",
                    {
                        "userName": creator.name,
                        "eventTitle": event.title,
                        "supervisorName": requester.name or requester.email,
                        "startDate": start_date,
                    },
                )

        logger.info(
            "Event approved",
            extra=build_log_context(
                user_id=str(requester.user_id),
                role=requester.role.value,
                event_id=str(event.id),
                action=action.value,
            ),
        )
        return TransitionResult(event, warnings)

    def reject_event(
        self,
        requester: UserSession,
        event_id: UUID,
        reason: str,
        notify_creator: bool = True,
    ) -> TransitionResult:
        self._require_approver(requester)
        reason = (reason or "").strip()
        if not reason:
            raise EventValidationError("Informe o motivo da rejeição.")

        event = self._get_event(event_id)
        if event.status != EventStatus.PENDING.value:
            raise InvalidState("Apenas eventos pendentes podem ser rejeitados.")

        self._transition_from_pending(
            event,
            "Apenas eventos pendentes podem ser rejeitados.",
            status=EventStatus.REJECTED.value,
            approved_by_id=requester.user_id,
            description=append_rejection_reason(event.description, reason),
        )

        warnings: list[str] = []
        external_id = event.external_calendar_event_id
        if external_id:
            try:
                self._calendar_call(lambda c: c.delete(external_id))
            except Exception:
                logger.warning(
                    "Calendar delete failed during rejection",
                    exc_info=True,
                    extra=build_log_context(event_id=str(event.id)),
                )
                warnings.append(WARNING_DELETE_FAILED)
            event.external_calendar_event_id = None
            self.db.commit()

        self.audit.record(requester.user_id, AuditAction.REJECT, ENTITY_EVENT, event.id)

        if notify_creator:
            creator = event.created_by
            self.notifications.notify(
                NotificationTarget.user(event.created_by_id),
                NotificationType.EVENT_REJECTED,
                f'Seu evento "{event.title}" foi rejeitado.',
                {"eventId": str(event.id)},
            )
            if creator and creator.email:
                self.notifications.enqueue_email(
                    creator.email,
                    f"Evento Rejeitado: {event.title}",
                    "event-rejected",
                    {
                        "userName": creator.name,
                        "eventTitle": event.title,
                        "startDate": format_date_br(event.start_date),
                        "rejectionReason": reason,
                    },
                )

        logger.info(
            "Event rejected",
            extra=build_log_context(
                user_id=str(requester.user_id),
                role=requester.role.value,
                event_id=str(event.id),
                action=AuditAction.REJECT.value,
            ),
        )
        return TransitionResult(event, warnings)

    def update_event(
        self, requester: UserSession, event_id: UUID, changes: EventUpdate
    ) -> TransitionResult:
        """Edit event fields. Status only moves through approve/reject."""
        self._require_approver(requester)
        event = self._get_event(event_id)

        data = changes.model_dump(exclude_unset=True)
        for required in ("title", "start_date", "end_date", "is_all_day", "event_type"):
            if required in data and data[required] is None:
                raise EventValidationError(f"{required} cannot be null")

        start_date = data.get("start_date", ensure_utc(event.start_date))
        end_date = data.get("end_date", ensure_utc(event.end_date))
        if end_date < start_date:
            raise EventValidationError("endDate must be on or after startDate")

        for key, value in data.items():
            setattr(event, key, value.value if isinstance(value, EventType) else value)
        self.db.commit()
        self.db.refresh(event)

        warnings: list[str] = []
        if event.status == EventStatus.APPROVED.value and event.external_calendar_event_id:
            self._sync_to_calendar(event, warnings)

        self.audit.record(
            requester.user_id,
            AuditAction.UPDATE,
            ENTITY_EVENT,
            event.id,
            {"fields": sorted(data)},
        )
        return TransitionResult(event, warnings)

    @staticmethod
    def can_delete(requester: UserSession, event: Event) -> bool:
        if requester.role == Role.ADMIN:
            return True
        if requester.role == Role.SUPERVISOR and event.status != EventStatus.APPROVED.value:
            return True
        return (
            event.created_by_id == requester.user_id
            and event.status == EventStatus.PENDING.value
        )

    def delete_event(self, requester: UserSession, event_id: UUID) -> None:
        """
        Delete an event and its calendar mirror.

        Calendar errors never block the local delete, so the remote entry
        can be orphaned.
        """
        event = self._get_event(event_id)
        if not self.can_delete(requester, event):
            raise Forbidden("Não autorizado")

        external_id = event.external_calendar_event_id
        if external_id:
            try:
                self._calendar_call(lambda c: c.delete(external_id))
            except Exception:
                logger.warning(
                    "Calendar delete failed; removing local event anyway",
                    exc_info=True,
                    extra=build_log_context(event_id=str(event.id)),
                )

        status = event.status
        self.db.delete(event)
        self.db.commit()

        self.audit.record(
            requester.user_id,
            AuditAction.DELETE,
            ENTITY_EVENT,
            event_id,
            {"status": status, "externalCalendarEventId": external_id},
        )
