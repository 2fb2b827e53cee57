"""Email service - templated transactional email through a durable job queue.

Emails are enqueued as SEND_EMAIL jobs carrying the template name and its
context; the worker renders the template and sends it through Resend when
the job is consumed.
"""

from __future__ import annotations

import html as html_module
import logging
import re
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from zoneinfo import ZoneInfo

import httpx
from sqlalchemy.orm import Session

from agenda.core.config import settings
from agenda.db.enums import JobType
from agenda.db.models import Job
from agenda.services import job_service
from agenda.services.http_service import request_with_retries

logger = logging.getLogger(__name__)

VARIABLE_PATTERN = re.compile(r"\{\{(\w+)\}\}")
TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"

RESEND_SEND_URL = "https://api.resend.com/emails"
RESEND_MAX_ATTEMPTS = 3
RESEND_RETRY_BASE_DELAY = 0.5
RESEND_RETRY_MAX_DELAY = 4.0
RESEND_TIMEOUT_SECONDS = 20.0


class EmailTemplateNotFound(LookupError):
    pass


class EmailSendError(Exception):
    pass


def format_date_br(value: datetime) -> str:
    """Format an instant as dd/mm/YYYY in the application timezone."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(ZoneInfo(settings.APP_TIMEZONE)).strftime("%d/%m/%Y")


def render_template(template: str, variables: dict[str, object]) -> str:
    """
    Render a template with variable substitution.

    Variables in format {{variable_name}} are replaced with HTML-escaped
    values. Missing variables are replaced with empty string.
    """
    def replace_var(match: re.Match) -> str:
        value = variables.get(match.group(1))
        return html_module.escape(str(value)) if value is not None else ""

    return VARIABLE_PATTERN.sub(replace_var, template)


@lru_cache(maxsize=32)
def load_template(template_name: str) -> str:
    if not re.fullmatch(r"[\w-]+", template_name):
        raise EmailTemplateNotFound(template_name)
    path = TEMPLATE_DIR / f"{template_name}.html"
    if not path.is_file():
        raise EmailTemplateNotFound(template_name)
    return path.read_text(encoding="utf-8")


def render_email(template_name: str, context: dict[str, object]) -> str:
    return render_template(load_template(template_name), context)


def enqueue_email(
    db: Session,
    to: str,
    subject: str,
    template_name: str,
    context: dict[str, object],
) -> Job:
    """Queue an email for the worker. Context must be JSON-serializable."""
    return job_service.schedule_job(
        db,
        JobType.SEND_EMAIL,
        payload={
            "to": to,
            "subject": subject,
            "template_name": template_name,
            "context": context,
        },
        max_attempts=settings.EMAIL_MAX_ATTEMPTS,
        backoff_seconds=settings.EMAIL_BACKOFF_SECONDS,
    )


def _html_to_text(content: str) -> str:
    """Plain-text alternative for inbox previews."""
    text = re.sub(r"<(script|style)[^>]*>.*?</\1>", "", content, flags=re.DOTALL | re.I)
    text = re.sub(r"<[^>]+>", " ", text)
    text = re.sub(r"\s+", " ", text).strip()
    return html_module.unescape(text)


async def send_email(
    to: str,
    subject: str,
    body: str,
    *,
    idempotency_key: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str | None:
    """
    Send a rendered email via the Resend API.

    Returns the provider message id, or None in dry-run mode (no API key).
    Raises EmailSendError when the provider refuses the message.
    """
    if not settings.RESEND_API_KEY:
        logger.info("RESEND_API_KEY not set; dry-run email '%s'", subject)
        return None

    payload: dict[str, object] = {
        "from": settings.EMAIL_FROM,
        "to": [to],
        "subject": subject,
        "html": body,
    }
    text = _html_to_text(body)
    if text:
        payload["text"] = text

    headers = {
        "Authorization": f"Bearer {settings.RESEND_API_KEY}",
        "Content-Type": "application/json",
    }
    if idempotency_key:
        headers["Idempotency-Key"] = idempotency_key

    async with httpx.AsyncClient(transport=transport, timeout=RESEND_TIMEOUT_SECONDS) as client:
        try:
            response = await request_with_retries(
                lambda: client.post(RESEND_SEND_URL, json=payload, headers=headers),
                max_attempts=RESEND_MAX_ATTEMPTS,
                base_delay=RESEND_RETRY_BASE_DELAY,
                max_delay=RESEND_RETRY_MAX_DELAY,
            )
        except httpx.HTTPError as exc:
            raise EmailSendError(f"Resend request failed: {exc}") from exc

    if response.status_code not in (200, 201):
        raise EmailSendError(f"Resend returned {response.status_code}: {response.text[:200]}")
    return response.json().get("id")


async def deliver_job(job: Job, transport: httpx.AsyncBaseTransport | None = None) -> str | None:
    """Render and send the email described by a SEND_EMAIL job payload."""
    payload = job.payload or {}
    body = render_email(payload["template_name"], payload.get("context") or {})
    return await send_email(
        payload["to"],
        payload["subject"],
        body,
        idempotency_key=f"email-job/{job.id}",
        transport=transport,
    )
