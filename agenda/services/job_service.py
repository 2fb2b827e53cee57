"""Durable job queue backed by the jobs table.

Jobs are claimed by the worker process in run_at order. A failed attempt
goes back to PENDING with its run_at pushed out exponentially; once
max_attempts is spent it stays FAILED for an admin to inspect.
"""

from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from agenda.db.enums import JobStatus, JobType
from agenda.db.models import Job


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _save(db: Session, job: Job) -> Job:
    db.commit()
    db.refresh(job)
    return job


def schedule_job(
    db: Session,
    job_type: JobType,
    payload: dict,
    run_at: datetime | None = None,
    max_attempts: int = 3,
    backoff_seconds: float = 2.0,
) -> Job:
    """Queue a job; it becomes due at run_at, or right away when omitted."""
    job = Job(
        job_type=job_type.value,
        payload=payload,
        status=JobStatus.PENDING.value,
        run_at=run_at if run_at is not None else _utcnow(),
        max_attempts=max_attempts,
        backoff_seconds=backoff_seconds,
    )
    db.add(job)
    return _save(db, job)


def get_pending_jobs(db: Session, limit: int = 10, now: datetime | None = None) -> list[Job]:
    """Oldest-first batch of PENDING jobs whose run_at has passed."""
    cutoff = now if now is not None else _utcnow()
    due = db.query(Job).filter(Job.status == JobStatus.PENDING.value, Job.run_at <= cutoff)
    return due.order_by(Job.run_at).limit(limit).all()


def get_job(db: Session, job_id: UUID) -> Job | None:
    return db.get(Job, job_id)


def list_jobs(
    db: Session,
    status: JobStatus | None = None,
    job_type: JobType | None = None,
    limit: int = 50,
) -> list[Job]:
    query = db.query(Job)
    if status is not None:
        query = query.filter(Job.status == status.value)
    if job_type is not None:
        query = query.filter(Job.job_type == job_type.value)
    return query.order_by(Job.created_at.desc()).limit(limit).all()


def mark_job_running(db: Session, job: Job) -> Job:
    """Claim a job for one attempt."""
    job.attempts += 1
    job.status = JobStatus.RUNNING.value
    return _save(db, job)


def mark_job_completed(db: Session, job: Job) -> Job:
    job.status = JobStatus.COMPLETED.value
    job.last_error = None
    job.completed_at = _utcnow()
    return _save(db, job)


def retry_delay(job: Job) -> timedelta:
    """backoff_seconds after the first failure, doubling on each later one."""
    failures_before = max(job.attempts - 1, 0)
    return timedelta(seconds=job.backoff_seconds * 2**failures_before)


def mark_job_failed(db: Session, job: Job, error: str, now: datetime | None = None) -> Job:
    """Record an attempt's error and either reschedule the job or give up on it."""
    job.last_error = error
    if job.attempts >= job.max_attempts:
        job.status = JobStatus.FAILED.value
        return _save(db, job)

    job.status = JobStatus.PENDING.value
    job.run_at = (now if now is not None else _utcnow()) + retry_delay(job)
    return _save(db, job)
