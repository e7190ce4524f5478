"""Read-only lookups against the tenant directory."""

from sqlalchemy import func
from sqlalchemy.orm import Session
from typing import List, Optional
from supportchat.models.user import User
from supportchat.services.access_guard import AccessGuard
from supportchat.utils.security import Identity


class DirectoryService:
    """Service for tenant-scoped user lookups."""

    @staticmethod
    def get_user(db: Session, identity: Identity, user_id: int) -> User:
        """Get an active user of the caller's tenant."""
        return AccessGuard.get_tenant_user(db, identity, user_id)

    @staticmethod
    def list_users(
        db: Session,
        identity: Identity,
        query: Optional[str] = None,
        skip: int = 0,
        limit: int = 100
    ) -> List[User]:
        """List active users of the caller's tenant, optionally filtered by name or email."""
        users = db.query(User).filter(
            User.tenant_id == identity.tenant_id,
            User.is_active == True
        )
        if query:
            term = query.strip().lower()
            users = users.filter(
                func.lower(User.name).contains(term, autoescape=True)
                | func.lower(User.email).contains(term, autoescape=True)
            )
        return users.order_by(User.name, User.id).offset(skip).limit(limit).all()
