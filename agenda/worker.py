"""
Background worker for processing queued jobs.

Usage:
    python -m agenda.worker

The worker polls for due pending jobs (outbound email) and processes them.
Run it as a separate process next to the API.
"""

import asyncio
import logging

import httpx

from agenda.core.config import settings
from agenda.core.structured_logging import build_log_context, configure_logging
from agenda.db.enums import JobType
from agenda.db.models import Job
from agenda.db.session import SessionLocal
from agenda.services import email_service, job_service

logger = logging.getLogger(__name__)


async def process_job(job: Job, transport: httpx.AsyncBaseTransport | None = None) -> None:
    """Process a single job based on its type."""
    logger.info("Processing job %s (type=%s, attempt=%s)", job.id, job.job_type, job.attempts)

    if job.job_type == JobType.SEND_EMAIL.value:
        message_id = await email_service.deliver_job(job, transport=transport)
        logger.info("Email job %s delivered (message_id=%s)", job.id, message_id)
        return

    raise ValueError(f"Unknown job type: {job.job_type}")


async def process_batch(
    db,
    *,
    limit: int | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    """Run every due job once. Returns how many jobs were picked up."""
    jobs = job_service.get_pending_jobs(db, limit=limit or settings.WORKER_BATCH_SIZE)
    if jobs:
        logger.info("Found %d pending jobs", len(jobs))

    for job in jobs:
        try:
            job_service.mark_job_running(db, job)
            await process_job(job, transport=transport)
            job_service.mark_job_completed(db, job)
            logger.info("Job %s completed successfully", job.id)
        except Exception as e:
            job_service.mark_job_failed(db, job, str(e))
            logger.error(
                "Job %s failed (%s); attempt %s of %s",
                job.id,
                type(e).__name__,
                job.attempts,
                job.max_attempts,
            )
    return len(jobs)


async def worker_loop() -> None:
    """Main worker loop - polls for and processes pending jobs."""
    logger.info(
        "Worker starting (poll interval: %ss, batch size: %s)",
        settings.WORKER_POLL_INTERVAL,
        settings.WORKER_BATCH_SIZE,
    )
    if not settings.RESEND_API_KEY:
        logger.warning("RESEND_API_KEY not set - emails will be logged but not sent")

    while True:
        with SessionLocal() as db:
            try:
                await process_batch(db)
            except Exception:
                db.rollback()
                logger.exception("Error polling jobs")
        await asyncio.sleep(settings.WORKER_POLL_INTERVAL)


def main() -> None:
    """Entry point for the worker."""
    configure_logging()
    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("Worker shutting down")
    except Exception:
        logger.exception(
            "Worker crashed",
            extra=build_log_context(route="worker", method="background"),
        )
        raise


if __name__ == "__main__":
    main()
