from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional
from supportchat.database import get_db
from supportchat.schemas import MessageResponse, MessageEdit, MessageSearchResponse, ReactionCreate
from supportchat.services.message_service import MessageService
from supportchat.services.realtime import (
    RealtimeHub,
    get_realtime_hub,
    EVENT_MESSAGE_UPDATED,
    EVENT_MESSAGE_DELETED,
    EVENT_MESSAGE_REACTION,
)
from supportchat.utils.security import Identity, get_current_identity

router = APIRouter(prefix="/messages", tags=["Messages"])


def _publish_reactions(hub: RealtimeHub, message: MessageResponse):
    hub.publish(
        message.conversation_id,
        EVENT_MESSAGE_REACTION,
        {
            "message_id": message.id,
            "reactions": [r.model_dump() for r in message.reactions],
        }
    )


@router.get("/search", response_model=MessageSearchResponse)
async def search_messages(
    q: str = Query(..., min_length=1),
    conversation_id: Optional[int] = Query(None),
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    """Search message text in your conversations."""
    messages = MessageService.search_messages(db, identity, q, conversation_id)
    return MessageSearchResponse(messages=messages, total=len(messages), query=q)


@router.get("/{message_id}", response_model=MessageResponse)
async def get_message(
    message_id: int,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    return MessageService.get_message(db, identity, message_id)


@router.put("/{message_id}", response_model=MessageResponse)
async def update_message(
    message_id: int,
    message_data: MessageEdit,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    hub: RealtimeHub = Depends(get_realtime_hub)
):
    """Edit a message text."""
    message, changed = MessageService.edit_message(db, identity, message_id, message_data.text)
    if changed:
        hub.publish(message.conversation_id, EVENT_MESSAGE_UPDATED, {"message": message.model_dump(mode="json")})
    return message


@router.delete("/{message_id}", response_model=MessageResponse)
async def delete_message(
    message_id: int,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    hub: RealtimeHub = Depends(get_realtime_hub)
):
    """Delete a message for everyone, leaving a placeholder in its place."""
    message = MessageService.delete_message(db, identity, message_id)
    hub.publish(message.conversation_id, EVENT_MESSAGE_DELETED, {"message_id": message.id})
    return message


@router.post("/{message_id}/reactions", response_model=MessageResponse)
async def add_reaction(
    message_id: int,
    reaction: ReactionCreate,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    hub: RealtimeHub = Depends(get_realtime_hub)
):
    message = MessageService.add_reaction(db, identity, message_id, reaction.emoji)
    _publish_reactions(hub, message)
    return message


@router.delete("/{message_id}/reactions/{emoji}", response_model=MessageResponse)
async def remove_reaction(
    message_id: int,
    emoji: str,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    hub: RealtimeHub = Depends(get_realtime_hub)
):
    message = MessageService.remove_reaction(db, identity, message_id, emoji)
    _publish_reactions(hub, message)
    return message


@router.put("/{message_id}/read", response_model=MessageResponse)
async def mark_message_as_read(
    message_id: int,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    return MessageService.mark_message_as_read(db, identity, message_id)
