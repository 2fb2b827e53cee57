"""Notification service - realtime pushes and queued emails for workflow events.

Both channels are best-effort: failures are logged and never reach the
caller, so a dead websocket or an unavailable queue cannot undo a state
change that has already been committed.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Protocol

from sqlalchemy.orm import Session

from agenda.core.async_utils import run_async
from agenda.core.websocket import NotificationTarget
from agenda.db.enums import NotificationType
from agenda.db.models import Job
from agenda.services import email_service

logger = logging.getLogger(__name__)

NOTIFICATION_EVENT = "notification"
PUBLISH_TIMEOUT_SECONDS = 5.0


class RealtimePublisher(Protocol):
    async def publish(self, target: NotificationTarget, event_name: str, payload: dict) -> int:
        ...


def build_notification(
    notification_type: NotificationType,
    message: str,
    data: dict[str, Any] | None = None,
) -> dict[str, Any]:
    return {
        "id": str(uuid.uuid4()),
        "type": notification_type.value,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "read": False,
        "data": data or {},
    }


class NotificationDispatcher:
    """Fans workflow notifications out to the realtime hub and the email queue."""

    def __init__(self, db: Session, publisher: RealtimePublisher | None):
        self.db = db
        self.publisher = publisher

    def notify(
        self,
        target: NotificationTarget,
        notification_type: NotificationType,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Publish a notification to a user or role room. Returns the payload sent."""
        notification = build_notification(notification_type, message, data)
        if self.publisher is None:
            logger.debug("No realtime publisher; dropping %s", notification_type.value)
            return notification
        try:
            run_async(
                self.publisher.publish(target, NOTIFICATION_EVENT, notification),
                timeout=PUBLISH_TIMEOUT_SECONDS,
            )
        except Exception:
            logger.warning(
                "Realtime publish failed for %s (%s)",
                target.room,
                notification_type.value,
                exc_info=True,
            )
        return notification

    def enqueue_email(
        self,
        to: str,
        subject: str,
        template_name: str,
        context: dict[str, Any],
    ) -> Job | None:
        """Queue a templated email. Returns the job, or None if enqueueing failed."""
        try:
            return email_service.enqueue_email(self.db, to, subject, template_name, context)
        except Exception:
            self.db.rollback()
            logger.exception("Failed to enqueue '%s' email", template_name)
            return None
