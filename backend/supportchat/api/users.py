from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from supportchat.database import get_db
from supportchat.schemas import UserResponse
from supportchat.services.directory_service import DirectoryService
from supportchat.utils.security import Identity, get_current_identity

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("/", response_model=List[UserResponse])
async def get_all_users(
    q: Optional[str] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    """
    Get active users of your company, optionally filtered by name or email.
    """
    users = DirectoryService.list_users(db, identity, q, skip, limit)
    return [UserResponse.model_validate(user) for user in users]


@router.get("/me", response_model=UserResponse)
async def get_me(
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    return UserResponse.model_validate(DirectoryService.get_user(db, identity, identity.user_id))


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: int,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    """
    Get a specific user by ID.
    """
    return UserResponse.model_validate(DirectoryService.get_user(db, identity, user_id))
