"""Message-related Pydantic schemas."""

from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional


MessageType = Literal["text", "image", "file", "system"]


class AttachmentIn(BaseModel):
    """Attachment descriptor returned by the upload endpoint."""
    filename: str = Field(..., min_length=1, max_length=255)
    original_name: str = Field(..., min_length=1, max_length=255)
    mime_type: str = Field(..., min_length=1, max_length=100)
    size: int = Field(..., ge=0)
    path: str = Field(..., min_length=1, max_length=500)
    thumbnail_path: Optional[str] = Field(None, max_length=500)


class AttachmentResponse(AttachmentIn):
    id: int

    class Config:
        from_attributes = True


class MessageCreate(BaseModel):
    """Schema for posting a message.

    Text requiredness depends on ``message_type`` and attachments, so it is
    checked by the message service rather than here.
    """
    text: Optional[str] = Field(None, max_length=5000)
    message_type: MessageType = "text"
    attachments: List[AttachmentIn] = []
    reply_to_id: Optional[int] = None


class MessageEdit(BaseModel):
    """Schema for editing a message."""
    text: str = Field(..., min_length=1, max_length=5000)

    @field_validator('text')
    @classmethod
    def text_not_empty(cls, v):
        if not v.strip():
            raise ValueError('Message text cannot be empty')
        return v.strip()


class ReactionCreate(BaseModel):
    emoji: str = Field(..., min_length=1, max_length=10)


class ReactionResponse(BaseModel):
    emoji: str
    users: List[int]
    count: int


class ReadReceiptResponse(BaseModel):
    user_id: int
    read_at: datetime

    class Config:
        from_attributes = True


class MessageResponse(BaseModel):
    """Schema for message response data."""
    id: int
    conversation_id: int
    sender_id: int
    sender_name: str
    text: Optional[str] = None
    message_type: str
    attachments: List[AttachmentResponse] = []
    reply_to_id: Optional[int] = None
    reactions: List[ReactionResponse] = []
    delivery_status: str
    read_by: List[ReadReceiptResponse] = []
    is_edited: bool = False
    edited_at: Optional[datetime] = None
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[int] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class MessageSearchResponse(BaseModel):
    messages: List[MessageResponse]
    total: int
    query: str


class MarkReadResponse(BaseModel):
    conversation_id: int
    marked: int
    unread_count: int


class CountResponse(BaseModel):
    conversation_id: int
    count: int


class RealtimeEvent(BaseModel):
    """Event pushed to subscribed connections."""
    kind: Literal["newMessage", "messageUpdated", "messageDeleted", "messageReaction"]
    conversation_id: int
    payload: Dict[str, Any]


class WSClientMessage(BaseModel):
    """Frame sent by a realtime client."""
    type: Literal["join", "leave", "ping"]
    conversation_id: Optional[int] = None
