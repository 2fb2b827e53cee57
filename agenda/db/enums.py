"""Enum definitions for application constants."""

from enum import Enum


class Role(str, Enum):
    """
    User roles with increasing privilege levels.

    - PENDING_ASSIGNMENT: Signed in but not yet assigned; no event access
    - COORDINATOR: Submits events for approval
    - SUPERVISOR: Approves/rejects events, may self-approve within limits
    - ADMIN: Unrestricted approvals, deletions and role management
    """

    PENDING_ASSIGNMENT = "PENDING_ASSIGNMENT"
    COORDINATOR = "COORDINATOR"
    SUPERVISOR = "SUPERVISOR"
    ADMIN = "ADMIN"

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a valid role."""
        return value in cls._value2member_map_


ROLES_CAN_APPROVE = frozenset({Role.SUPERVISOR, Role.ADMIN})
ROLES_CAN_CREATE_EVENTS = frozenset({Role.COORDINATOR, Role.SUPERVISOR, Role.ADMIN})


class EventStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class EventType(str, Enum):
    """Event categories. Each maps to a display color and a Google Calendar color id."""

    EVENTO = "EVENTO"
    ACAO_PONTUAL = "ACAO_PONTUAL"
    REUNIAO = "REUNIAO"
    VISITA = "VISITA"
    FERIAS = "FERIAS"
    FOLGA = "FOLGA"
    LICENCA = "LICENCA"
    OUTROS = "OUTROS"


# Types that bypass the duration and daily-quota limits on self-approval
AUTO_APPROVAL_EXEMPT_TYPES = frozenset({EventType.EVENTO, EventType.VISITA})


class AuditAction(str, Enum):
    """Actions recorded in the event audit trail."""

    CREATE_PENDING = "CREATE_PENDING"
    CREATE_AUTO_APPROVED = "CREATE_AUTO_APPROVED"
    APPROVE_SELF = "APPROVE_SELF"
    APPROVE_OTHER = "APPROVE_OTHER"
    REJECT = "REJECT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class NotificationType(str, Enum):
    """Types of real-time notifications."""

    EVENT_AUTO_APPROVED = "EVENT_AUTO_APPROVED"
    EVENT_SELF_APPROVED = "EVENT_SELF_APPROVED"
    EVENT_APPROVED_BY_OTHER = "EVENT_APPROVED_BY_OTHER"
    EVENT_REJECTED = "EVENT_REJECTED"
    NEW_EVENT_FROM_COORDINATOR = "NEW_EVENT_FROM_COORDINATOR"


class JobType(str, Enum):
    """Types of background jobs."""

    SEND_EMAIL = "send_email"


class JobStatus(str, Enum):
    """Status of background jobs."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
