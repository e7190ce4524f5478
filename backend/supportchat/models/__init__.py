"""Database models."""

from supportchat.models.tenant import Tenant
from supportchat.models.user import User, conversation_participants
from supportchat.models.conversation import Conversation
from supportchat.models.message import (
    Message,
    MessageAttachment,
    MessageReaction,
    MessageReadReceipt,
)

__all__ = [
    "Tenant",
    "User",
    "Conversation",
    "Message",
    "MessageAttachment",
    "MessageReaction",
    "MessageReadReceipt",
    "conversation_participants",
]
