from supportchat.schemas.user import UserPublic, UserResponse
from supportchat.schemas.message import (
    AttachmentIn,
    AttachmentResponse,
    MessageCreate,
    MessageEdit,
    ReactionCreate,
    ReactionResponse,
    ReadReceiptResponse,
    MessageResponse,
    MessageSearchResponse,
    MarkReadResponse,
    CountResponse,
    RealtimeEvent,
    WSClientMessage,
)
from supportchat.schemas.conversation import (
    DirectConversationCreate,
    ConversationCreate,
    ConversationUpdate,
    ParticipantAdd,
    MuteRequest,
    ConversationResponse,
    ChannelSummary,
    ConversationStatsEntry,
    ConversationStats,
    ConversationDeleted,
)

__all__ = [
    "UserPublic",
    "UserResponse",
    "AttachmentIn",
    "AttachmentResponse",
    "MessageCreate",
    "MessageEdit",
    "ReactionCreate",
    "ReactionResponse",
    "ReadReceiptResponse",
    "MessageResponse",
    "MessageSearchResponse",
    "MarkReadResponse",
    "CountResponse",
    "RealtimeEvent",
    "WSClientMessage",
    "DirectConversationCreate",
    "ConversationCreate",
    "ConversationUpdate",
    "ParticipantAdd",
    "MuteRequest",
    "ConversationResponse",
    "ChannelSummary",
    "ConversationStatsEntry",
    "ConversationStats",
    "ConversationDeleted",
]
