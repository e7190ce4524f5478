"""Session-token handling for the tenant directory.

Tokens are issued by the directory service; the chat core only verifies them
and resolves the caller to an :class:`Identity`.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from supportchat.config import get_settings
from supportchat.database import get_db
from supportchat.errors import UnauthenticatedError
from supportchat.models.user import User, ROLE_ADMIN

logger = logging.getLogger(__name__)
settings = get_settings()

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Identity:
    """Resolved caller: who they are, which tenant, which role."""
    user_id: int
    tenant_id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def create_access_token(
    user_id: int,
    tenant_id: int,
    role: str,
    expires_delta: Optional[timedelta] = None
) -> str:
    """Create a signed session token for a directory user."""
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {
        "sub": str(user_id),
        "tenant_id": tenant_id,
        "role": role,
        "iat": int(now.timestamp()),
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and verify a session token."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise UnauthenticatedError("Token has expired")
    except jwt.InvalidTokenError:
        raise UnauthenticatedError("Invalid token")


def resolve_identity(db: Session, token: str) -> Identity:
    """Turn a bearer token into the caller's identity.

    The role comes from the directory record rather than the token, so a
    demoted administrator loses moderation rights immediately.
    """
    payload = decode_token(token)
    try:
        user_id = int(payload.get("sub"))
        tenant_id = int(payload.get("tenant_id"))
    except (TypeError, ValueError):
        raise UnauthenticatedError("Invalid token")

    user = db.query(User).filter(User.id == user_id).first()
    if not user or not user.is_active or user.tenant_id != tenant_id:
        logger.warning(f"Rejected token for unknown or inactive user {user_id} (tenant {tenant_id})")
        raise UnauthenticatedError("Token is invalid. User not found.")

    if not user.tenant or not user.tenant.is_active:
        logger.warning(f"Rejected token for user {user_id}: tenant {tenant_id} is deactivated")
        raise UnauthenticatedError("Company account is deactivated.")

    return Identity(user_id=user.id, tenant_id=user.tenant_id, role=user.role)


def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db)
) -> Identity:
    """Dependency resolving the Authorization header to an Identity."""
    if credentials is None:
        raise UnauthenticatedError("Access denied. No token provided.")
    return resolve_identity(db, credentials.credentials)
