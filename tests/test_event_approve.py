"""Tests for approving pending events."""

import uuid

import pytest
from sqlalchemy import update

from agenda.db.enums import AuditAction, EventStatus, EventType, NotificationType, Role
from agenda.db.models import AuditLog, Event, Job
from agenda.services.event_service import (
    DurationExceeded,
    EventNotFound,
    Forbidden,
    InvalidState,
    QuotaExceeded,
)


def test_supervisor_approves_coordinator_event(
    db, workflow, make_user, make_event, session_for, calendar, publisher
):
    coordinator = make_user(Role.COORDINATOR, name="Ana Coordenadora")
    supervisor = make_user(Role.SUPERVISOR, name="Bruno Supervisor")
    event = make_event(coordinator)

    result = workflow.approve_event(session_for(supervisor), event.id)

    assert result.event.status == EventStatus.APPROVED.value
    assert result.event.approved_by_id == supervisor.id
    assert result.event.external_calendar_event_id == "gcal-1"
    assert result.warning is None
    assert len(calendar.called("create")) == 1

    audit = db.query(AuditLog).one()
    assert audit.action == AuditAction.APPROVE_OTHER.value
    assert audit.details == {"selfApproval": False}

    assert publisher.rooms() == [f"user:{coordinator.id}"]
    assert publisher.types() == [NotificationType.EVENT_APPROVED_BY_OTHER.value]

    job = db.query(Job).one()
    assert job.payload["to"] == coordinator.email
    assert job.payload["template_name"] == "approved_by_supervisor"
    assert job.payload["context"]["supervisorName"] == "Bruno Supervisor"
    assert job.payload["context"]["userName"] == "Ana Coordenadora"


def test_notify_creator_false_skips_notification_and_email(
    db, workflow, make_user, make_event, session_for, publisher
):
    coordinator = make_user(Role.COORDINATOR)
    supervisor = make_user(Role.SUPERVISOR)
    event = make_event(coordinator)

    result = workflow.approve_event(session_for(supervisor), event.id, notify_creator=False)

    assert result.event.status == EventStatus.APPROVED.value
    assert publisher.published == []
    assert db.query(Job).count() == 0


def test_self_approval_within_limits(
    db, workflow, make_user, make_event, session_for, publisher
):
    supervisor = make_user(Role.SUPERVISOR)
    event = make_event(supervisor)

    result = workflow.approve_event(session_for(supervisor), event.id)

    assert result.event.status == EventStatus.APPROVED.value
    assert db.query(AuditLog).one().action == AuditAction.APPROVE_SELF.value
    assert publisher.types() == [NotificationType.EVENT_SELF_APPROVED.value]
    assert db.query(Job).one().payload["template_name"] == "self_approved"


@pytest.mark.parametrize("status", [EventStatus.APPROVED, EventStatus.REJECTED])
def test_only_pending_events_can_be_approved(
    db, workflow, make_user, make_event, session_for, calendar, status
):
    coordinator = make_user(Role.COORDINATOR)
    supervisor = make_user(Role.SUPERVISOR)
    event = make_event(coordinator, status=status)

    with pytest.raises(InvalidState) as excinfo:
        workflow.approve_event(session_for(supervisor), event.id)

    assert excinfo.value.message == "Apenas eventos pendentes podem ser aprovados."
    db.refresh(event)
    assert event.status == status.value
    assert calendar.calls == []
    assert db.query(AuditLog).count() == 0


def test_self_approval_rejected_when_too_long(
    db, workflow, make_user, make_event, session_for, calendar
):
    supervisor = make_user(Role.SUPERVISOR)
    event = make_event(supervisor, event_type=EventType.FERIAS, days=31)

    with pytest.raises(DurationExceeded) as excinfo:
        workflow.approve_event(session_for(supervisor), event.id)

    assert "30 dias" in excinfo.value.message
    db.refresh(event)
    assert event.status == EventStatus.PENDING.value
    assert calendar.calls == []


def test_self_approval_rejected_when_quota_used(
    db, workflow, make_user, make_event, session_for
):
    supervisor = make_user(Role.SUPERVISOR)
    for _ in range(5):
        make_event(supervisor, status=EventStatus.APPROVED, approved_by=supervisor)
    event = make_event(supervisor)

    with pytest.raises(QuotaExceeded) as excinfo:
        workflow.approve_event(session_for(supervisor), event.id)

    assert "(5)" in excinfo.value.message
    db.refresh(event)
    assert event.status == EventStatus.PENDING.value


def test_exempt_type_ignores_limits_on_self_approval(
    workflow, make_user, make_event, session_for
):
    supervisor = make_user(Role.SUPERVISOR)
    for _ in range(5):
        make_event(supervisor, status=EventStatus.APPROVED, approved_by=supervisor)
    event = make_event(supervisor, event_type=EventType.EVENTO, days=40)

    result = workflow.approve_event(session_for(supervisor), event.id)

    assert result.event.status == EventStatus.APPROVED.value


def test_admin_self_approval_bypasses_limits(workflow, make_user, make_event, session_for):
    admin = make_user(Role.ADMIN)
    for _ in range(5):
        make_event(admin, status=EventStatus.APPROVED, approved_by=admin)
    event = make_event(admin, event_type=EventType.LICENCA, days=90)

    result = workflow.approve_event(session_for(admin), event.id)

    assert result.event.status == EventStatus.APPROVED.value
    assert result.event.approved_by_id == admin.id


def test_existing_external_id_is_updated_not_recreated(
    workflow, make_user, make_event, session_for, calendar
):
    coordinator = make_user(Role.COORDINATOR)
    supervisor = make_user(Role.SUPERVISOR)
    event = make_event(coordinator, external_id="gcal-existing")

    result = workflow.approve_event(session_for(supervisor), event.id)

    assert calendar.called("create") == []
    updates = calendar.called("update")
    assert len(updates) == 1
    assert updates[0][1] == "gcal-existing"
    assert result.event.external_calendar_event_id == "gcal-existing"


def test_calendar_failure_keeps_approval_with_warning(
    db, workflow, make_user, make_event, session_for, calendar
):
    calendar.fail_create = True
    coordinator = make_user(Role.COORDINATOR)
    supervisor = make_user(Role.SUPERVISOR)
    event = make_event(coordinator)

    result = workflow.approve_event(session_for(supervisor), event.id)

    assert result.event.status == EventStatus.APPROVED.value
    assert result.event.external_calendar_event_id is None
    assert result.warning == "Falha na sincronização com Google Agenda."
    assert db.query(AuditLog).one().action == AuditAction.APPROVE_OTHER.value


def test_busy_slot_is_reported_as_warning(
    workflow, make_user, make_event, session_for, calendar
):
    calendar.busy = True
    coordinator = make_user(Role.COORDINATOR)
    supervisor = make_user(Role.SUPERVISOR)
    event = make_event(coordinator)

    result = workflow.approve_event(session_for(supervisor), event.id)

    assert result.event.status == EventStatus.APPROVED.value
    assert "Conflito" in result.warning


def test_coordinator_cannot_approve(workflow, make_user, make_event, session_for):
    coordinator = make_user(Role.COORDINATOR)
    event = make_event(coordinator)

    with pytest.raises(Forbidden):
        workflow.approve_event(session_for(coordinator), event.id)


def test_unknown_event_is_not_found(workflow, make_user, session_for):
    supervisor = make_user(Role.SUPERVISOR)

    with pytest.raises(EventNotFound):
        workflow.approve_event(session_for(supervisor), uuid.uuid4())


def test_concurrent_status_change_loses_the_race(
    db, workflow, make_user, make_event, session_for, calendar, publisher
):
    """The status flips between the read and the write; the write must not win."""
    coordinator = make_user(Role.COORDINATOR)
    supervisor = make_user(Role.SUPERVISOR)
    event = make_event(coordinator)
    event_id = event.id

    def reject_elsewhere():
        db.execute(
            update(Event)
            .where(Event.id == event_id)
            .values(status=EventStatus.REJECTED.value)
        )
        db.commit()

    calendar.on_query_busy = reject_elsewhere

    with pytest.raises(InvalidState):
        workflow.approve_event(session_for(supervisor), event_id)

    stored = db.get(Event, event_id)
    db.refresh(stored)
    assert stored.status == EventStatus.REJECTED.value
    assert stored.approved_by_id is None
    assert calendar.called("create") == []
    assert db.query(AuditLog).count() == 0
    assert publisher.published == []
