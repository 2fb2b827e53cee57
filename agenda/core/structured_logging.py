"""Logging setup and structured logging helpers (PII-safe)."""

import logging
from typing import Any

from agenda.core.config import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once for the API and the worker."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
    )


def build_log_context(
    *,
    user_id: str | None = None,
    role: str | None = None,
    event_id: str | None = None,
    action: str | None = None,
    request_id: str | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict (IDs only, never emails or titles)."""
    context: dict[str, Any] = {}
    if user_id:
        context["user_id"] = user_id
    if role:
        context["role"] = role
    if event_id:
        context["event_id"] = event_id
    if action:
        context["action"] = action
    if request_id:
        context["request_id"] = request_id
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context
