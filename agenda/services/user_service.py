"""User service - lookups and role administration."""

import logging
from uuid import UUID

from sqlalchemy.orm import Session

from agenda.db.enums import Role
from agenda.db.models import User

logger = logging.getLogger(__name__)


def get_user_by_id(db: Session, user_id: UUID) -> User | None:
    """Get user by ID."""
    return db.query(User).filter(User.id == user_id).first()


def list_users(db: Session) -> list[User]:
    return db.query(User).order_by(User.name.asc()).all()


def change_role(db: Session, user: User, new_role: Role, changed_by: UUID) -> User:
    """
    Assign a new role.

    Users still awaiting assignment must receive a regular role before
    they can be made ADMIN.

    Raises:
        ValueError: promotion straight from PENDING_ASSIGNMENT to ADMIN
    """
    if user.role == Role.PENDING_ASSIGNMENT.value and new_role == Role.ADMIN:
        raise ValueError(
            "Cannot promote PENDING users directly to ADMIN. Assign another role first."
        )
    previous = user.role
    user.role = new_role.value
    db.commit()
    db.refresh(user)
    logger.info(
        "User role changed from %s to %s",
        previous,
        new_role.value,
        extra={"user_id": str(user.id), "changed_by": str(changed_by)},
    )
    return user
