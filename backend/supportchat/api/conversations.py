import logging
from fastapi import APIRouter, Depends, status, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import datetime
from supportchat.database import get_db
from supportchat.errors import ChatError
from supportchat.schemas import (
    ChannelSummary,
    ConversationCreate,
    ConversationDeleted,
    ConversationResponse,
    ConversationStats,
    ConversationUpdate,
    CountResponse,
    DirectConversationCreate,
    MarkReadResponse,
    MessageCreate,
    MessageResponse,
    MuteRequest,
    ParticipantAdd,
)
from supportchat.services.conversation_service import ConversationService
from supportchat.services.message_service import MessageService
from supportchat.services.realtime import RealtimeHub, get_realtime_hub, EVENT_NEW_MESSAGE
from supportchat.utils.security import Identity, get_current_identity

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/conversations", tags=["Conversations"])


@router.post("/direct", response_model=ConversationResponse)
async def create_direct_conversation(
    conversation_data: DirectConversationCreate,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    """
    Get or create the direct conversation between the caller and another user.

    Repeated calls, including concurrent ones, return the same conversation.
    """
    logger.info(
        f"API request: Direct conversation between user {identity.user_id} "
        f"and user {conversation_data.participant_id}"
    )
    result = ConversationService.create_direct_conversation(db, identity, conversation_data.participant_id)
    logger.info(f"API response: Direct conversation {result.id} for user {identity.user_id}")
    return result


@router.post("/", response_model=ConversationResponse, status_code=status.HTTP_201_CREATED)
async def create_conversation(
    conversation_data: ConversationCreate,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    """
    Create a titled conversation.

    - **title**: 1-100 characters
    - **participant_ids**: users to include besides yourself
    - **description**: optional, up to 500 characters
    """
    logger.info(
        f"API request: Create conversation by user {identity.user_id} "
        f"(participants={conversation_data.participant_ids})"
    )
    try:
        result = ConversationService.create_group_conversation(db, identity, conversation_data)
        logger.info(f"API response: Created conversation {result.id} for user {identity.user_id}")
        return result
    except ChatError as e:
        logger.error(
            f"API error: Failed to create conversation for user {identity.user_id}: "
            f"{e.status_code} - {e.message}"
        )
        raise


@router.get("/", response_model=List[ConversationResponse])
async def get_conversations(
    page: int = Query(1),
    page_size: Optional[int] = Query(None),
    q: Optional[str] = Query(None),
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    """
    Get the caller's conversations, most recent activity first.

    With **q**, return the conversations whose title or description contains it.
    """
    if q is not None:
        logger.info(f"API request: Search conversations for user {identity.user_id} (q={q!r})")
        return ConversationService.search_conversations(db, identity, q)

    logger.info(f"API request: Get conversations for user {identity.user_id} (page={page})")
    result = ConversationService.get_user_conversations(db, identity, page, page_size)
    logger.info(f"API response: Returning {len(result)} conversation(s) for user {identity.user_id}")
    return result


@router.get("/stats", response_model=ConversationStats)
async def get_conversation_stats(
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    return ConversationService.get_conversation_stats(db, identity)


@router.get("/channels", response_model=List[ChannelSummary])
async def get_channels(
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    """Group conversations of the caller."""
    return ConversationService.get_channels(db, identity)


@router.get("/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: int,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    """
    Get a specific conversation by ID.
    """
    logger.info(f"API request: Get conversation {conversation_id} for user {identity.user_id}")
    return ConversationService.get_conversation(db, identity, conversation_id)


@router.patch("/{conversation_id}", response_model=ConversationResponse)
async def update_conversation(
    conversation_id: int,
    update: ConversationUpdate,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    """Change title, description, avatar or allow_new_members."""
    logger.info(f"API request: Update conversation {conversation_id} by user {identity.user_id}")
    return ConversationService.update_conversation(db, identity, conversation_id, update)


@router.delete("/{conversation_id}", response_model=ConversationDeleted)
async def delete_conversation(
    conversation_id: int,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    hub: RealtimeHub = Depends(get_realtime_hub)
):
    """
    Deactivate a conversation. Its messages are kept.
    """
    logger.info(f"API request: Delete conversation {conversation_id} by user {identity.user_id}")
    try:
        ConversationService.delete_conversation(db, identity, conversation_id)
    except ChatError as e:
        logger.error(
            f"API error: Failed to delete conversation {conversation_id}: {e.status_code} - {e.message}"
        )
        raise
    hub.drop_topic(conversation_id)
    return ConversationDeleted(id=conversation_id, permanent=False)


@router.delete("/{conversation_id}/permanent", response_model=ConversationDeleted)
async def hard_delete_conversation(
    conversation_id: int,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    hub: RealtimeHub = Depends(get_realtime_hub)
):
    """
    Permanently delete a group conversation with all of its messages.
    """
    logger.info(f"API request: Permanently delete conversation {conversation_id} by user {identity.user_id}")
    try:
        deleted = ConversationService.hard_delete_conversation(db, identity, conversation_id)
    except ChatError as e:
        logger.error(
            f"API error: Failed to permanently delete conversation {conversation_id}: "
            f"{e.status_code} - {e.message}"
        )
        raise
    hub.drop_topic(conversation_id)
    return ConversationDeleted(id=conversation_id, permanent=True, messages_deleted=deleted)


@router.post("/{conversation_id}/participants", response_model=ConversationResponse)
async def add_participant(
    conversation_id: int,
    participant: ParticipantAdd,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    logger.info(
        f"API request: Add user {participant.user_id} to conversation {conversation_id} "
        f"by user {identity.user_id}"
    )
    return ConversationService.add_participant(db, identity, conversation_id, participant.user_id)


@router.delete("/{conversation_id}/participants/{user_id}", response_model=ConversationResponse)
async def remove_participant(
    conversation_id: int,
    user_id: int,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    hub: RealtimeHub = Depends(get_realtime_hub)
):
    """Leave a conversation, or remove someone as an administrator."""
    logger.info(
        f"API request: Remove user {user_id} from conversation {conversation_id} "
        f"by user {identity.user_id}"
    )
    conversation = ConversationService.remove_participant(db, identity, conversation_id, user_id)
    hub.drop_user(conversation_id, user_id)
    return conversation


@router.post("/{conversation_id}/mute", response_model=ConversationResponse)
async def mute_conversation(
    conversation_id: int,
    mute: Optional[MuteRequest] = None,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    until = mute.until if mute else None
    return ConversationService.set_muted(db, identity, conversation_id, True, until)


@router.delete("/{conversation_id}/mute", response_model=ConversationResponse)
async def unmute_conversation(
    conversation_id: int,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    return ConversationService.set_muted(db, identity, conversation_id, False)


@router.post("/{conversation_id}/read", response_model=MarkReadResponse)
async def mark_conversation_as_read(
    conversation_id: int,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    """
    Mark all messages in a conversation as read for the current user.
    """
    logger.info(f"API request: Mark conversation {conversation_id} as read by user {identity.user_id}")
    marked = MessageService.mark_conversation_as_read(db, identity, conversation_id)
    return MarkReadResponse(
        conversation_id=conversation_id,
        marked=marked,
        unread_count=MessageService.get_unread_count(db, conversation_id, identity.user_id)
    )


@router.get("/{conversation_id}/unread-count", response_model=CountResponse)
async def get_unread_count(
    conversation_id: int,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    conversation = ConversationService.get_conversation(db, identity, conversation_id)
    return CountResponse(conversation_id=conversation.id, count=conversation.unread_count)


@router.get("/{conversation_id}/messages", response_model=List[MessageResponse])
async def get_conversation_messages(
    conversation_id: int,
    before: Optional[datetime] = Query(None),
    limit: Optional[int] = Query(None),
    include_deleted: bool = Query(True),
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    """
    Get one page of messages in chronological order.

    - **before**: only messages created strictly before this time
    - **limit**: page size, 1-200 (default 50)
    """
    logger.info(
        f"API request: Get messages for conversation {conversation_id} by user {identity.user_id} "
        f"(before={before}, limit={limit})"
    )
    result = MessageService.get_conversation_messages(
        db, identity, conversation_id, before=before, limit=limit, include_deleted=include_deleted
    )
    # Pages are fetched newest first; clients render oldest first.
    result.reverse()
    logger.info(
        f"API response: Returning {len(result)} message(s) from conversation {conversation_id} "
        f"for user {identity.user_id}"
    )
    return result


@router.get("/{conversation_id}/messages/count", response_model=CountResponse)
async def count_conversation_messages(
    conversation_id: int,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    count = MessageService.count_messages(db, identity, conversation_id)
    return CountResponse(conversation_id=conversation_id, count=count)


@router.post("/{conversation_id}/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    conversation_id: int,
    message_data: MessageCreate,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    hub: RealtimeHub = Depends(get_realtime_hub)
):
    """
    Send a message in a conversation.

    - **text**: message text (up to 5000 chars), optional for attachment-only messages
    - **attachments**: descriptors returned by `POST /api/uploads`
    """
    logger.info(
        f"API request: Send message in conversation {conversation_id} by user {identity.user_id} "
        f"(type={message_data.message_type}, attachments={len(message_data.attachments)})"
    )
    try:
        result = MessageService.create_message(db, identity, conversation_id, message_data)
    except ChatError as e:
        logger.error(
            f"API error: Failed to send message in conversation {conversation_id}: "
            f"{e.status_code} - {e.message}"
        )
        raise

    hub.publish(conversation_id, EVENT_NEW_MESSAGE, {"message": result.model_dump(mode="json")})
    logger.info(
        f"API response: Created message {result.id} in conversation {conversation_id} "
        f"by user {identity.user_id}"
    )
    return result
