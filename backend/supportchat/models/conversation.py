from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
from typing import Iterable, Optional
from supportchat.database import Base
from supportchat.models.user import conversation_participants


DIRECT_CONVERSATION_TITLE = "Direct Message"
LAST_MESSAGE_PREVIEW_LENGTH = 200


def direct_key_for(user_ids: Iterable[int]) -> Optional[str]:
    """Return the pair key of a two-person conversation, None otherwise."""
    ids = sorted(set(user_ids))
    if len(ids) != 2:
        return None
    return f"{ids[0]}:{ids[1]}"


def truncate_preview(text: str) -> str:
    """Cut a message down to the conversation list preview length."""
    if len(text) > LAST_MESSAGE_PREVIEW_LENGTH:
        return text[:LAST_MESSAGE_PREVIEW_LENGTH - 3] + "..."
    return text


class Conversation(Base):
    """Conversation model for direct and group chats."""

    __tablename__ = "conversations"
    __table_args__ = (
        # At most one active direct conversation per user pair and tenant.
        # Group and soft-deleted conversations keep direct_key NULL.
        UniqueConstraint("tenant_id", "direct_key", name="uq_conversations_direct_pair"),
        Index("ix_conversations_tenant_group_title", "tenant_id", "is_group", "title"),
        Index("ix_conversations_last_message_at", "last_message_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    title = Column(String(100), nullable=False)
    description = Column(String(500), nullable=True)
    avatar = Column(String(500), nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    is_group = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    allow_new_members = Column(Boolean, default=True, nullable=False)
    direct_key = Column(String(64), nullable=True)
    last_message = Column(String(LAST_MESSAGE_PREVIEW_LENGTH), nullable=True)
    last_message_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    participants = relationship(
        "User",
        secondary=conversation_participants,
        back_populates="conversations"
    )
    creator = relationship("User", foreign_keys=[created_by])

    @property
    def participant_ids(self) -> list:
        return [p.id for p in self.participants]

    def has_participant(self, user_id: int) -> bool:
        return any(p.id == user_id for p in self.participants)

    def sync_membership_flags(self) -> None:
        """Recompute is_group and direct_key from the participant set."""
        self.is_group = len(self.participants) > 2
        # is_active is still None on a conversation that was never flushed
        if self.is_group or self.is_active is False:
            self.direct_key = None
        else:
            self.direct_key = direct_key_for(self.participant_ids)

    def set_last_message(self, text: Optional[str], timestamp: Optional[datetime]) -> None:
        self.last_message = truncate_preview(text) if text is not None else None
        self.last_message_at = timestamp

    def __repr__(self):
        return f"<Conversation {self.id} - {'Group' if self.is_group else 'Direct'}>"
