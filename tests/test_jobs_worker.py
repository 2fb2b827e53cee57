"""Tests for the job queue, email rendering and the worker batch loop."""

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from agenda.core.config import settings
from agenda.db.enums import JobStatus, JobType
from agenda.services import email_service, job_service
from agenda.worker import process_batch


def _email_job(db, **overrides):
    payload = {
        "to": "ana@test.com",
        "subject": "Evento Rejeitado: Reunião",
        "template_name": "event-rejected",
        "context": {
            "userName": "Ana",
            "eventTitle": "Reunião",
            "startDate": "02/04/2026",
            "rejectionReason": "Sem sala",
        },
    }
    payload.update(overrides)
    return job_service.schedule_job(db, JobType.SEND_EMAIL, payload)


# =============================================================================
# Job queue
# =============================================================================


def test_failed_job_is_rescheduled_with_exponential_backoff(db):
    job = job_service.schedule_job(db, JobType.SEND_EMAIL, {}, max_attempts=3, backoff_seconds=2.0)
    now = datetime(2026, 1, 1, 12, tzinfo=timezone.utc)

    job_service.mark_job_running(db, job)
    job_service.mark_job_failed(db, job, "boom", now=now)
    assert job.status == JobStatus.PENDING.value
    assert job.last_error == "boom"
    assert job_service.retry_delay(job) == timedelta(seconds=2)

    job_service.mark_job_running(db, job)
    assert job_service.retry_delay(job) == timedelta(seconds=4)
    job_service.mark_job_failed(db, job, "boom again", now=now)
    assert job.status == JobStatus.PENDING.value

    job_service.mark_job_running(db, job)
    job_service.mark_job_failed(db, job, "final", now=now)
    assert job.status == JobStatus.FAILED.value
    assert job.attempts == 3


def test_pending_jobs_respect_run_at(db):
    now = datetime.now(timezone.utc)
    due = job_service.schedule_job(db, JobType.SEND_EMAIL, {"n": 1}, run_at=now - timedelta(minutes=1))
    job_service.schedule_job(db, JobType.SEND_EMAIL, {"n": 2}, run_at=now + timedelta(hours=1))

    pending = job_service.get_pending_jobs(db, now=now)

    assert [job.id for job in pending] == [due.id]


def test_list_jobs_filters_by_status(db):
    done = job_service.schedule_job(db, JobType.SEND_EMAIL, {})
    job_service.schedule_job(db, JobType.SEND_EMAIL, {})
    job_service.mark_job_completed(db, done)

    completed = job_service.list_jobs(db, status=JobStatus.COMPLETED)

    assert [job.id for job in completed] == [done.id]
    assert job_service.get_job(db, done.id).completed_at is not None


# =============================================================================
# Templates
# =============================================================================


def test_render_template_escapes_and_blanks_missing():
    rendered = email_service.render_template(
        "<p>{{userName}} - {{missing}} - {{eventTitle}}</p>",
        {"userName": "<b>Ana</b>", "eventTitle": "Reunião & Cia"},
    )

    assert rendered == "<p>&lt;b&gt;Ana&lt;/b&gt; -  - Reunião &amp; Cia</p>"


def test_render_email_uses_packaged_template():
    body = email_service.render_email(
        "event-rejected", {"userName": "Ana", "rejectionReason": "Sem sala"}
    )

    assert "Olá, Ana." in body
    assert "Sem sala" in body


@pytest.mark.parametrize("name", ["nope", "../secrets", "a/b"])
def test_unknown_template_raises(name):
    with pytest.raises(email_service.EmailTemplateNotFound):
        email_service.load_template(name)


def test_format_date_br_uses_app_timezone():
    # 01:00 UTC is still the previous day in Sao Paulo
    assert email_service.format_date_br(datetime(2026, 4, 2, 1, tzinfo=timezone.utc)) == "01/04/2026"


# =============================================================================
# Worker
# =============================================================================


@pytest.mark.asyncio
async def test_worker_sends_email_through_resend(db, monkeypatch):
    monkeypatch.setattr(settings, "RESEND_API_KEY", "re_test")
    job = _email_job(db)
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "msg_1"})

    processed = await process_batch(db, transport=httpx.MockTransport(handler))

    assert processed == 1
    db.refresh(job)
    assert job.status == JobStatus.COMPLETED.value
    assert job.attempts == 1

    request = seen[0]
    assert request.headers["Authorization"] == "Bearer re_test"
    assert request.headers["Idempotency-Key"] == f"email-job/{job.id}"
    body = json.loads(request.content)
    assert body["to"] == ["ana@test.com"]
    assert body["subject"] == "Evento Rejeitado: Reunião"
    assert "Sem sala" in body["html"]
    assert "Sem sala" in body["text"]


@pytest.mark.asyncio
async def test_worker_reschedules_rejected_send(db, monkeypatch):
    monkeypatch.setattr(settings, "RESEND_API_KEY", "re_test")
    job = _email_job(db)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, json={"message": "invalid from"})

    await process_batch(db, transport=httpx.MockTransport(handler))

    db.refresh(job)
    assert job.status == JobStatus.PENDING.value
    assert job.attempts == 1
    assert "422" in job.last_error


@pytest.mark.asyncio
async def test_worker_dry_run_without_api_key(db):
    job = _email_job(db)

    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected in dry-run mode")

    await process_batch(db, transport=httpx.MockTransport(handler))

    db.refresh(job)
    assert job.status == JobStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_worker_fails_job_with_missing_template(db):
    job = _email_job(db, template_name="does-not-exist")
    job.max_attempts = 1
    db.commit()

    await process_batch(db)

    db.refresh(job)
    assert job.status == JobStatus.FAILED.value


@pytest.mark.asyncio
async def test_worker_rejects_unknown_job_type(db):
    job = job_service.schedule_job(db, JobType.SEND_EMAIL, {})
    job.job_type = "mystery"
    db.commit()

    await process_batch(db)

    db.refresh(job)
    assert "Unknown job type" in job.last_error


@pytest.mark.asyncio
async def test_worker_with_nothing_due(db):
    assert await process_batch(db) == 0
