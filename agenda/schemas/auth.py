"""Authentication-related Pydantic schemas."""

from uuid import UUID

from pydantic import BaseModel

from agenda.db.enums import Role


class UserSession(BaseModel):
    """
    Authenticated principal for a request.

    Returned by the get_current_session dependency and passed into the
    workflow services, which never look at tokens themselves.
    """
    user_id: UUID
    email: str
    name: str
    role: Role  # Validated enum
