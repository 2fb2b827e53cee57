"""Event request/response schemas.

The HTTP API speaks camelCase JSON; attributes stay snake_case in Python.
"""

from datetime import datetime, timezone
from uuid import UUID

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from agenda.db.enums import EventStatus, EventType


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def clean_title(value: str) -> str:
    """Strip surrounding whitespace; what remains must still be 3+ characters."""
    value = value.strip()
    if len(value) < 3:
        raise ValueError("Title must be at least 3 characters")
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ============================================================================
# Requests
# ============================================================================


class EventCreate(CamelModel):
    """Body for POST /events."""

    title: str = Field(min_length=3, max_length=255)
    description: str | None = None
    start_date: datetime
    end_date: datetime
    is_all_day: bool = False
    event_type: EventType
    # Only honored for SUPERVISOR/ADMIN; coordinators always start PENDING
    requested_status: EventStatus | None = Field(
        default=None,
        validation_alias=AliasChoices("status", "requestedStatus", "requested_status"),
    )

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        return clean_title(value)

    @field_validator("start_date", "end_date")
    @classmethod
    def _normalize_dates(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _check_date_order(self) -> "EventCreate":
        if self.end_date < self.start_date:
            raise ValueError("endDate must be on or after startDate")
        return self


class EventUpdate(CamelModel):
    """Body for PATCH /events/{id}. Status is changed only via approve/reject."""

    title: str | None = Field(default=None, min_length=3, max_length=255)
    description: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    is_all_day: bool | None = None
    event_type: EventType | None = None

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return clean_title(value)

    @field_validator("start_date", "end_date")
    @classmethod
    def _normalize_dates(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _check_date_order(self) -> "EventUpdate":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("endDate must be on or after startDate")
        return self


class ApproveEventRequest(CamelModel):
    reason: str | None = None
    notify_creator: bool = True


class RejectEventRequest(CamelModel):
    reason: str = Field(min_length=1)
    notify_creator: bool = True

    @field_validator("reason")
    @classmethod
    def _reason_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("A reason is required to reject an event")
        return value


# ============================================================================
# Responses
# ============================================================================


class EventOwner(CamelModel):
    name: str
    email: str


class EventRead(CamelModel):
    """An event as returned by the API, plus any non-fatal warning."""

    id: UUID
    title: str
    description: str | None
    start_date: datetime
    end_date: datetime
    is_all_day: bool
    event_type: EventType
    status: EventStatus
    created_by_id: UUID
    approved_by_id: UUID | None
    external_calendar_event_id: str | None
    created_at: datetime
    updated_at: datetime
    created_by: EventOwner | None = None
    warning: str | None = None

    @field_serializer("start_date", "end_date", "created_at", "updated_at")
    def _serialize_dates(self, value: datetime) -> str:
        return ensure_utc(value).isoformat()


class EventListResponse(BaseModel):
    data: list[EventRead]
    total: int


class MessageResponse(BaseModel):
    message: str
