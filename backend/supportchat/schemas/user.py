"""Directory (user) schemas."""

from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class UserPublic(BaseModel):
    """Public user information shown next to conversations and messages."""
    id: int
    name: str
    email: Optional[str] = None
    role: str
    avatar: Optional[str] = None

    class Config:
        from_attributes = True


class UserResponse(UserPublic):
    """Directory entry with account state."""
    tenant_id: int
    is_active: bool
    created_at: datetime
