from __future__ import annotations

from pydantic import BaseModel

from app.models.user import UserRole


class SessionUser(BaseModel):
    """The authenticated caller, fixed for the lifetime of a request."""

    id: int
    email: str
    name: str
    role: UserRole

    class Config:
        from_attributes = True
        frozen = True
