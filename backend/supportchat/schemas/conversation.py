"""Conversation-related Pydantic schemas."""

from pydantic import BaseModel, Field, model_validator
from datetime import datetime
from typing import Optional, List
from supportchat.schemas.user import UserPublic


class DirectConversationCreate(BaseModel):
    """Schema for create-or-get of a direct conversation."""
    participant_id: int


class ConversationCreate(BaseModel):
    """Schema for creating a group conversation."""
    title: str = Field(..., max_length=100)
    participant_ids: List[int] = Field(..., min_length=1)
    description: Optional[str] = Field(None, max_length=500)

    @model_validator(mode="before")
    @classmethod
    def dedupe_participants(cls, data):
        """Remove duplicate participant ids while preserving order."""
        if not isinstance(data, dict):
            return data

        unique_ids = []
        seen = set()
        for participant_id in data.get('participant_ids') or []:
            if participant_id not in seen:
                seen.add(participant_id)
                unique_ids.append(participant_id)
        data['participant_ids'] = unique_ids
        return data


class ConversationUpdate(BaseModel):
    """Fields a member may change on a conversation; anything else is rejected."""
    title: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    avatar: Optional[str] = Field(None, max_length=500)
    allow_new_members: Optional[bool] = None

    class Config:
        extra = "forbid"


class ParticipantAdd(BaseModel):
    user_id: int


class MuteRequest(BaseModel):
    """Mute notifications, optionally until a point in time."""
    until: Optional[datetime] = None


class ConversationResponse(BaseModel):
    """Schema for conversation response data."""
    id: int
    tenant_id: int
    title: str
    description: Optional[str] = None
    avatar: Optional[str] = None
    is_group: bool
    is_active: bool
    allow_new_members: bool
    created_by: int
    participants: List[UserPublic]
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    unread_count: int = 0
    is_muted: bool = False
    muted_until: Optional[datetime] = None


class ChannelSummary(BaseModel):
    """Compact listing entry for group conversations."""
    id: int
    title: str
    description: Optional[str] = None
    participants_count: int
    unread_count: int = 0
    last_message_at: Optional[datetime] = None


class ConversationStatsEntry(BaseModel):
    is_group: bool
    count: int
    avg_participants: float


class ConversationStats(BaseModel):
    total: int
    stats: List[ConversationStatsEntry]


class ConversationDeleted(BaseModel):
    id: int
    permanent: bool
    messages_deleted: int = 0
