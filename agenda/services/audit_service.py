"""Audit logging service - append-only trail of event workflow actions.

Audit writes are advisory: they happen after the state change has been
committed and a failure is logged, never raised.

Security guidelines:
- NEVER log secrets (tokens, keys)
- Use IDs instead of raw data where possible
"""

import logging
from uuid import UUID
from typing import Any

from sqlalchemy.orm import Session

from agenda.core.structured_logging import build_log_context
from agenda.db.enums import AuditAction
from agenda.db.models import AuditLog

logger = logging.getLogger(__name__)

ENTITY_EVENT = "Event"


class AuditRecorder:
    """Writes audit_logs rows on a caller-provided session."""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        user_id: UUID | None,
        action: AuditAction,
        entity_type: str,
        entity_id: UUID,
        metadata: dict[str, Any] | None = None,
    ) -> AuditLog | None:
        """
        Append one audit entry and commit it.

        Returns the entry, or None when the write failed (rolled back and logged).
        """
        entry = AuditLog(
            user_id=user_id,
            action=action.value,
            entity_type=entity_type,
            entity_id=entity_id,
            details=metadata,
        )
        try:
            self.db.add(entry)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception(
                "Failed to write audit log",
                extra=build_log_context(
                    user_id=str(user_id) if user_id else None,
                    event_id=str(entity_id),
                    action=action.value,
                ),
            )
            return None
        return entry
