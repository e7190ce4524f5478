import logging
from sqlalchemy.orm import Session
from sqlalchemy import desc, exists, func, select
from sqlalchemy.exc import IntegrityError
from typing import List, Optional, Tuple
from datetime import datetime, timezone
from supportchat.config import get_settings
from supportchat.errors import (
    ConflictError,
    InvalidStateError,
    PermissionDeniedError,
    ValidationError,
)
from supportchat.models.conversation import Conversation
from supportchat.models.message import (
    Message,
    MessageAttachment,
    MessageReaction,
    MessageReadReceipt,
    MESSAGE_TYPE_SYSTEM,
    MESSAGE_TYPE_IMAGE,
    MESSAGE_TYPE_FILE,
    DELETED_MESSAGE_TEXT,
    ATTACHMENT_PREVIEW_TEXT,
)
from supportchat.models.user import conversation_participants
from supportchat.schemas.message import (
    AttachmentResponse,
    MessageCreate,
    MessageResponse,
    ReactionResponse,
    ReadReceiptResponse,
)
from supportchat.services.access_guard import AccessGuard
from supportchat.utils.security import Identity

logger = logging.getLogger(__name__)
settings = get_settings()

MAX_TEXT_LENGTH = 5000
MAX_EMOJI_LENGTH = 10
# Concurrent markers can race on the receipt uniqueness constraint.
READ_RECEIPT_ATTEMPTS = 3


class MessageService:
    """Service for message operations."""

    @staticmethod
    def create_message(
        db: Session,
        identity: Identity,
        conversation_id: int,
        message_data: MessageCreate
    ) -> MessageResponse:
        """Append a message and refresh the conversation's last-message cache.

        Both writes are committed together; the caller publishes ``newMessage``
        afterwards.
        """
        conversation = AccessGuard.get_conversation(db, identity, conversation_id)

        text = MessageService._clean_text(message_data.text)
        attachments = message_data.attachments or []
        message_type = message_data.message_type

        if len(attachments) > settings.MAX_ATTACHMENTS_PER_MESSAGE:
            raise ValidationError(
                f"A message can carry at most {settings.MAX_ATTACHMENTS_PER_MESSAGE} attachments"
            )
        if text is None:
            if message_type not in (MESSAGE_TYPE_IMAGE, MESSAGE_TYPE_FILE) or not attachments:
                raise ValidationError("Message text is required")

        if message_data.reply_to_id is not None:
            reply_target = db.query(Message).filter(
                Message.id == message_data.reply_to_id,
                Message.conversation_id == conversation.id
            ).first()
            if not reply_target:
                logger.warning(
                    f"Rejected reply to message {message_data.reply_to_id} "
                    f"outside conversation {conversation.id}"
                )
                raise ValidationError("Invalid reply message")

        now = datetime.utcnow()
        new_message = Message(
            tenant_id=conversation.tenant_id,
            conversation_id=conversation.id,
            sender_id=identity.user_id,
            text=text,
            message_type=message_type,
            reply_to_id=message_data.reply_to_id,
            created_at=now,
            updated_at=now,
            attachments=[
                MessageAttachment(position=position, **attachment.model_dump())
                for position, attachment in enumerate(attachments)
            ]
        )
        db.add(new_message)

        if message_type != MESSAGE_TYPE_SYSTEM:
            conversation.set_last_message(text or ATTACHMENT_PREVIEW_TEXT, now)

        db.commit()
        db.refresh(new_message)

        logger.info(
            f"User {identity.user_id} posted message {new_message.id} "
            f"({message_type}, {len(attachments)} attachment(s)) in conversation {conversation.id}"
        )
        return MessageService._message_to_response(new_message)

    @staticmethod
    def get_message(db: Session, identity: Identity, message_id: int) -> MessageResponse:
        message = AccessGuard.get_message(db, identity, message_id)
        return MessageService._message_to_response(message)

    @staticmethod
    def get_conversation_messages(
        db: Session,
        identity: Identity,
        conversation_id: int,
        before: Optional[datetime] = None,
        limit: Optional[int] = None,
        include_deleted: bool = True
    ) -> List[MessageResponse]:
        """Return one page of messages, newest first.

        ``before`` is an exclusive ``created_at`` cursor. Tombstones of
        soft-deleted messages stay in the page unless ``include_deleted`` is
        false.
        """
        conversation = AccessGuard.get_conversation(db, identity, conversation_id)

        if limit is None:
            limit = settings.MESSAGE_PAGE_SIZE
        if limit < 1 or limit > settings.MAX_MESSAGE_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {settings.MAX_MESSAGE_PAGE_SIZE}")

        if before is not None and before.tzinfo is not None:
            before = before.astimezone(timezone.utc).replace(tzinfo=None)

        query = db.query(Message).filter(Message.conversation_id == conversation.id)
        if before is not None:
            query = query.filter(Message.created_at < before)
        if not include_deleted:
            query = query.filter(Message.is_deleted == False)

        messages = query.order_by(desc(Message.created_at), desc(Message.id)).limit(limit).all()
        logger.debug(f"Fetched {len(messages)} message(s) from conversation {conversation.id}")
        return [MessageService._message_to_response(msg) for msg in messages]

    @staticmethod
    def count_messages(db: Session, identity: Identity, conversation_id: int) -> int:
        conversation = AccessGuard.get_conversation(db, identity, conversation_id)
        return db.query(func.count(Message.id)).filter(
            Message.conversation_id == conversation.id,
            Message.is_deleted == False
        ).scalar() or 0

    @staticmethod
    def edit_message(
        db: Session,
        identity: Identity,
        message_id: int,
        text: str
    ) -> Tuple[MessageResponse, bool]:
        """Edit a message's text. Returns the message and whether it changed."""
        message = AccessGuard.get_message(db, identity, message_id)

        if message.sender_id != identity.user_id:
            raise PermissionDeniedError("Access denied. You can only edit your own messages.")

        if message.is_deleted:
            raise InvalidStateError("Cannot edit a deleted message")

        text = MessageService._clean_text(text)
        if text is None:
            raise ValidationError("Message text cannot be empty")

        if text == message.text:
            return MessageService._message_to_response(message), False

        message.text = text
        message.is_edited = True
        message.edited_at = datetime.utcnow()

        if message.message_type != MESSAGE_TYPE_SYSTEM:
            MessageService._refresh_last_message(db, message.conversation)

        db.commit()
        db.refresh(message)

        logger.info(f"User {identity.user_id} edited message {message.id}")
        return MessageService._message_to_response(message), True

    @staticmethod
    def delete_message(db: Session, identity: Identity, message_id: int) -> MessageResponse:
        """Soft-delete a message, leaving a tombstone in place."""
        message = AccessGuard.get_message(db, identity, message_id, allow_admin=True)

        if message.sender_id != identity.user_id and not identity.is_admin:
            raise PermissionDeniedError("Access denied. You can only delete your own messages.")

        if message.is_deleted:
            raise InvalidStateError("Message already deleted")

        message.is_deleted = True
        message.deleted_at = datetime.utcnow()
        message.deleted_by = identity.user_id
        message.text = DELETED_MESSAGE_TEXT
        message.attachments.clear()

        if message.message_type != MESSAGE_TYPE_SYSTEM:
            MessageService._refresh_last_message(db, message.conversation)

        db.commit()
        db.refresh(message)

        logger.info(
            f"User {identity.user_id} deleted message {message.id} in conversation {message.conversation_id}"
        )
        return MessageService._message_to_response(message)

    @staticmethod
    def add_reaction(db: Session, identity: Identity, message_id: int, emoji: str) -> MessageResponse:
        """Add the caller's reaction; repeating an existing reaction is a no-op."""
        emoji = MessageService._clean_emoji(emoji)
        message = AccessGuard.get_message(db, identity, message_id)

        if message.is_deleted:
            raise InvalidStateError("Cannot react to a deleted message")

        existing = db.query(MessageReaction).filter(
            MessageReaction.message_id == message.id,
            MessageReaction.user_id == identity.user_id,
            MessageReaction.emoji == emoji
        ).first()

        if not existing:
            db.add(MessageReaction(message_id=message.id, user_id=identity.user_id, emoji=emoji))
            try:
                db.commit()
            except IntegrityError:
                # Another request stored the same reaction first.
                db.rollback()
                logger.debug(f"Reaction {emoji} by user {identity.user_id} on message {message.id} already stored")

        db.refresh(message)
        return MessageService._message_to_response(message)

    @staticmethod
    def remove_reaction(db: Session, identity: Identity, message_id: int, emoji: str) -> MessageResponse:
        """Remove the caller's reaction; emojis without users disappear from the list."""
        emoji = MessageService._clean_emoji(emoji)
        message = AccessGuard.get_message(db, identity, message_id)

        if message.is_deleted:
            raise InvalidStateError("Cannot react to a deleted message")

        db.query(MessageReaction).filter(
            MessageReaction.message_id == message.id,
            MessageReaction.user_id == identity.user_id,
            MessageReaction.emoji == emoji
        ).delete(synchronize_session=False)
        db.commit()

        db.refresh(message)
        return MessageService._message_to_response(message)

    @staticmethod
    def mark_conversation_as_read(db: Session, identity: Identity, conversation_id: int) -> int:
        """Record a read receipt for every unread message; returns how many were added."""
        conversation = AccessGuard.get_conversation(db, identity, conversation_id)

        for attempt in range(1, READ_RECEIPT_ATTEMPTS + 1):
            unread = MessageService._unread_query(db, conversation.id, identity.user_id).all()
            if not unread:
                return 0

            now = datetime.utcnow()
            for message in unread:
                db.add(MessageReadReceipt(message_id=message.id, user_id=identity.user_id, read_at=now))
                message.raise_delivery_status("read")

            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.info(
                    f"Concurrent read receipts for user {identity.user_id} in conversation "
                    f"{conversation.id}, retrying (attempt {attempt})"
                )
                continue

            logger.info(
                f"User {identity.user_id} marked {len(unread)} message(s) as read "
                f"in conversation {conversation.id}"
            )
            return len(unread)

        raise ConflictError("Could not record read receipts, please retry")

    @staticmethod
    def mark_message_as_read(db: Session, identity: Identity, message_id: int) -> MessageResponse:
        message = AccessGuard.get_message(db, identity, message_id)

        if message.sender_id == identity.user_id:
            raise ValidationError("Cannot mark your own message as read")

        already_read = db.query(MessageReadReceipt).filter(
            MessageReadReceipt.message_id == message.id,
            MessageReadReceipt.user_id == identity.user_id
        ).first()

        if not already_read:
            db.add(MessageReadReceipt(message_id=message.id, user_id=identity.user_id))
            message.raise_delivery_status("read")
            try:
                db.commit()
            except IntegrityError:
                db.rollback()

        db.refresh(message)
        return MessageService._message_to_response(message)

    @staticmethod
    def mark_delivered(db: Session, identity: Identity, conversation_id: int) -> int:
        """Raise ``sent`` messages from other senders to ``delivered``."""
        conversation = AccessGuard.get_conversation(db, identity, conversation_id)
        updated = db.query(Message).filter(
            Message.conversation_id == conversation.id,
            Message.sender_id != identity.user_id,
            Message.is_deleted == False,
            Message.delivery_status == "sent"
        ).update({"delivery_status": "delivered"}, synchronize_session=False)
        db.commit()
        return updated

    @staticmethod
    def get_unread_count(db: Session, conversation_id: int, user_id: int) -> int:
        """Messages from others in the conversation without a receipt by ``user_id``."""
        return MessageService._unread_query(db, conversation_id, user_id).count()

    @staticmethod
    def search_messages(
        db: Session,
        identity: Identity,
        term: str,
        conversation_id: Optional[int] = None
    ) -> List[MessageResponse]:
        """Case-insensitive text search over the caller's conversations, newest first."""
        term = (term or "").strip()
        if not term:
            raise ValidationError("Search query is required")

        member_of = select(conversation_participants.c.conversation_id).where(
            conversation_participants.c.user_id == identity.user_id
        )

        query = db.query(Message).join(Conversation, Message.conversation_id == Conversation.id).filter(
            Message.tenant_id == identity.tenant_id,
            Message.conversation_id.in_(member_of),
            Conversation.is_active == True,
            Message.is_deleted == False,
            func.lower(Message.text).contains(term.lower(), autoescape=True)
        )

        if conversation_id is not None:
            conversation = AccessGuard.get_conversation(db, identity, conversation_id)
            query = query.filter(Message.conversation_id == conversation.id)

        messages = query.order_by(desc(Message.created_at), desc(Message.id)).limit(
            settings.MESSAGE_SEARCH_LIMIT
        ).all()
        logger.debug(f"Message search by user {identity.user_id} matched {len(messages)} message(s)")
        return [MessageService._message_to_response(msg) for msg in messages]

    @staticmethod
    def _unread_query(db: Session, conversation_id: int, user_id: int):
        has_receipt = exists().where(
            MessageReadReceipt.message_id == Message.id,
            MessageReadReceipt.user_id == user_id
        )
        return db.query(Message).filter(
            Message.conversation_id == conversation_id,
            Message.sender_id != user_id,
            Message.is_deleted == False,
            ~has_receipt
        )

    @staticmethod
    def _refresh_last_message(db: Session, conversation: Conversation) -> None:
        """Point the conversation preview at its newest visible message."""
        db.flush()
        latest = db.query(Message).filter(
            Message.conversation_id == conversation.id,
            Message.is_deleted == False,
            Message.message_type != MESSAGE_TYPE_SYSTEM
        ).order_by(desc(Message.created_at), desc(Message.id)).first()

        if latest:
            conversation.set_last_message(latest.text or ATTACHMENT_PREVIEW_TEXT, latest.created_at)
        else:
            conversation.set_last_message(None, None)

    @staticmethod
    def _clean_text(text: Optional[str]) -> Optional[str]:
        if text is None:
            return None
        text = text.strip()
        if not text:
            return None
        if len(text) > MAX_TEXT_LENGTH:
            raise ValidationError(f"Message text cannot exceed {MAX_TEXT_LENGTH} characters")
        return text

    @staticmethod
    def _clean_emoji(emoji: str) -> str:
        emoji = (emoji or "").strip()
        if not emoji or len(emoji) > MAX_EMOJI_LENGTH:
            raise ValidationError(f"Emoji must be between 1 and {MAX_EMOJI_LENGTH} characters")
        return emoji

    @staticmethod
    def _message_to_response(message: Message) -> MessageResponse:
        """Convert Message model to response."""
        return MessageResponse(
            id=message.id,
            conversation_id=message.conversation_id,
            sender_id=message.sender_id,
            sender_name=message.sender.name,
            text=message.text,
            message_type=message.message_type,
            attachments=[AttachmentResponse.model_validate(a) for a in message.attachments],
            reply_to_id=message.reply_to_id,
            reactions=[ReactionResponse(**r) for r in message.reaction_summary()],
            delivery_status=message.delivery_status,
            read_by=[ReadReceiptResponse.model_validate(r) for r in message.read_receipts],
            is_edited=bool(message.is_edited),
            edited_at=message.edited_at,
            is_deleted=bool(message.is_deleted),
            deleted_at=message.deleted_at,
            deleted_by=message.deleted_by,
            created_at=message.created_at,
            updated_at=message.updated_at
        )
