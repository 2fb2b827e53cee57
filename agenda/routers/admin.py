"""Admin router - user roles and system-wide statistics (ADMIN only)."""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from agenda.core.async_utils import run_async
from agenda.core.deps import get_db, require_roles
from agenda.db.enums import Role
from agenda.schemas.admin import (
    AuditStats,
    RoleUpdate,
    RoleUpdateResponse,
    SystemStats,
    UserRead,
)
from agenda.schemas.auth import UserSession
from agenda.services import stats_service, user_service

logger = logging.getLogger(__name__)

require_admin = require_roles([Role.ADMIN])

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/audit-stats", response_model=AuditStats)
def audit_stats(db: Session = Depends(get_db)):
    """Audit entries per action and the self/other/auto approval breakdown."""
    return stats_service.audit_summary(db)


@router.get("/stats", response_model=SystemStats)
def system_stats(db: Session = Depends(get_db)):
    return stats_service.system_counts(db)


@router.get("/users", response_model=list[UserRead])
def list_users(db: Session = Depends(get_db)):
    return user_service.list_users(db)


@router.patch("/users/{user_id}/role", response_model=RoleUpdateResponse)
def update_user_role(
    user_id: UUID,
    data: RoleUpdate,
    request: Request,
    session: UserSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    user = user_service.get_user_by_id(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    previous_role = user.role
    try:
        user = user_service.change_role(db, user, data.role, changed_by=session.user_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    # Open sockets follow the new role without reconnecting.
    hub = getattr(request.app.state, "realtime", None)
    if hub is not None and previous_role != user.role:
        try:
            run_async(hub.reassign_role(user.id, previous_role, user.role))
        except Exception:
            logger.warning(
                "Could not move realtime connections to the new role",
                exc_info=True,
                extra={"user_id": str(user.id)},
            )
    return RoleUpdateResponse(id=user.id, role=Role(user.role))
