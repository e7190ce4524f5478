from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Boolean, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
from supportchat.database import Base


MESSAGE_TYPE_TEXT = "text"
MESSAGE_TYPE_IMAGE = "image"
MESSAGE_TYPE_FILE = "file"
MESSAGE_TYPE_SYSTEM = "system"
MESSAGE_TYPES = (MESSAGE_TYPE_TEXT, MESSAGE_TYPE_IMAGE, MESSAGE_TYPE_FILE, MESSAGE_TYPE_SYSTEM)

# Ordered: a message's delivery status only ever moves right.
DELIVERY_STATUSES = ("sent", "delivered", "read")

DELETED_MESSAGE_TEXT = "[Message deleted]"
ATTACHMENT_PREVIEW_TEXT = "[File attachment]"


class Message(Base):
    """Message posted into a conversation."""

    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    text = Column(Text, nullable=True)
    message_type = Column(String(20), default=MESSAGE_TYPE_TEXT, nullable=False)
    reply_to_id = Column(Integer, ForeignKey("messages.id", ondelete="SET NULL"), nullable=True)
    delivery_status = Column(String(20), default="sent", nullable=False)
    is_edited = Column(Boolean, default=False, nullable=False)
    edited_at = Column(DateTime, nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(DateTime, nullable=True)
    deleted_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    conversation = relationship("Conversation")
    sender = relationship("User", foreign_keys=[sender_id])
    attachments = relationship(
        "MessageAttachment",
        back_populates="message",
        cascade="all, delete-orphan",
        order_by="MessageAttachment.position"
    )
    reactions = relationship(
        "MessageReaction",
        back_populates="message",
        cascade="all, delete-orphan",
        order_by="MessageReaction.id"
    )
    read_receipts = relationship(
        "MessageReadReceipt",
        back_populates="message",
        cascade="all, delete-orphan",
        order_by="MessageReadReceipt.id"
    )

    def raise_delivery_status(self, status: str) -> None:
        """Move delivery_status forward to ``status``; never backwards."""
        current = DELIVERY_STATUSES.index(self.delivery_status or "sent")
        if DELIVERY_STATUSES.index(status) > current:
            self.delivery_status = status

    def reaction_summary(self) -> list:
        """Group reaction rows into ``[{emoji, users, count}]`` in first-use order."""
        grouped = {}
        for reaction in self.reactions:
            grouped.setdefault(reaction.emoji, []).append(reaction.user_id)
        return [
            {"emoji": emoji, "users": users, "count": len(users)}
            for emoji, users in grouped.items()
        ]

    def __repr__(self):
        return f"<Message {self.id} from User {self.sender_id}>"


class MessageAttachment(Base):
    """File recorded against a message; bytes live in attachment storage."""

    __tablename__ = "message_attachments"

    id = Column(Integer, primary_key=True)
    message_id = Column(Integer, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, default=0, nullable=False)
    filename = Column(String(255), nullable=False)
    original_name = Column(String(255), nullable=False)
    mime_type = Column(String(100), nullable=False)
    size = Column(Integer, nullable=False)
    path = Column(String(500), nullable=False)
    thumbnail_path = Column(String(500), nullable=True)

    message = relationship("Message", back_populates="attachments")


class MessageReaction(Base):
    """One user's emoji reaction on a message."""

    __tablename__ = "message_reactions"
    __table_args__ = (
        UniqueConstraint("message_id", "user_id", "emoji", name="uq_message_reaction"),
    )

    id = Column(Integer, primary_key=True)
    message_id = Column(Integer, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    emoji = Column(String(32), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    message = relationship("Message", back_populates="reactions")


class MessageReadReceipt(Base):
    """Tracks when a user read a message."""

    __tablename__ = "message_read_receipts"
    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uq_message_read_receipt"),
        Index("ix_read_receipts_user", "user_id"),
    )

    id = Column(Integer, primary_key=True)
    message_id = Column(Integer, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    read_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    message = relationship("Message", back_populates="read_receipts")
