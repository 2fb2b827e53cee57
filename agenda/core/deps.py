"""FastAPI dependencies for authentication, authorization, and database access."""

from typing import Generator
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from agenda.core.security import decode_access_token, parse_bearer_token
from agenda.db.session import SessionLocal


def get_db() -> Generator[Session, None, None]:
    """One session per request, closed when the response is sent."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_session(
    request: Request,
    db: Session = Depends(get_db)
):
    """
    Get the authenticated principal from the Authorization bearer token.

    The role comes from the stored user, not the token, so role changes
    apply on the next request.

    Raises:
        HTTPException 401: Missing/invalid token or unknown user
        HTTPException 403: Unknown role or account still awaiting assignment
    """
    # Import here to avoid circular imports
    from agenda.db.enums import Role
    from agenda.db.models import User
    from agenda.schemas.auth import UserSession

    token = parse_bearer_token(request.headers.get("Authorization"))
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        payload = decode_access_token(token)
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    user = db.query(User).filter(User.id == _parse_uuid(payload.get("sub"))).first()
    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    # A role string the enum does not know is a data problem, not a crash.
    if not Role.has_value(user.role):
        raise HTTPException(
            status_code=403,
            detail=f"Unknown role '{user.role}'. Contact administrator."
        )
    role = Role(user.role)
    if role == Role.PENDING_ASSIGNMENT:
        raise HTTPException(status_code=403, detail="Account awaiting role assignment")

    return UserSession(
        user_id=user.id,
        email=user.email,
        name=user.name,
        role=role,
    )


def _parse_uuid(value) -> UUID:
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token")


def require_roles(allowed_roles: list):
    """
    Guard a route to the given roles; the resolved UserSession is returned.

    Usage:
        @router.post("/x", dependencies=[Depends(require_roles([Role.SUPERVISOR, Role.ADMIN]))])
    """
    def dependency(request: Request, db: Session = Depends(get_db)):
        session = get_current_session(request, db)
        if session.role not in allowed_roles:
            raise HTTPException(
                status_code=403,
                detail=f"Role '{session.role.value}' not authorized for this action"
            )
        return session
    return dependency


def get_event_engine(
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Build the workflow engine for this request.

    Long-lived collaborators (realtime hub, calendar client) live on
    app.state and are set up by the application lifespan.
    """
    from agenda.services.audit_service import AuditRecorder
    from agenda.services.event_service import EventTransitionEngine
    from agenda.services.notification_service import NotificationDispatcher

    state = request.app.state
    return EventTransitionEngine(
        db,
        calendar=getattr(state, "calendar", None),
        notifications=NotificationDispatcher(db, getattr(state, "realtime", None)),
        audit=AuditRecorder(db),
    )
