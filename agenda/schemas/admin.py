"""Admin and dashboard schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from agenda.db.enums import Role


class UserRead(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: UUID
    name: str
    email: str
    role: Role
    created_at: datetime


class RoleUpdate(BaseModel):
    role: Role


class RoleUpdateResponse(BaseModel):
    id: UUID
    role: Role


class CoordinatorStats(BaseModel):
    id: UUID
    name: str
    email: str
    avatar: str | None = None
    pendingCount: int


class NamedCount(BaseModel):
    name: str
    value: int


class SupervisorStats(BaseModel):
    pendingToday: int
    approvedWeek: int
    approvalRate: int
    byType: list[NamedCount]
    byApprover: list[NamedCount]


class AuditSummary(BaseModel):
    selfApprovals: int
    otherApprovals: int
    autoApprovals: int
    totalInterventions: int


class AuditStats(BaseModel):
    chartData: list[NamedCount]
    summary: AuditSummary


class SystemStats(BaseModel):
    usersByRole: dict[str, int]
    eventsByStatus: dict[str, int]
