import logging
from sqlalchemy.orm import Session
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from typing import List, Optional
from datetime import datetime, timezone
from supportchat.config import get_settings
from supportchat.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from supportchat.models.conversation import Conversation, direct_key_for, DIRECT_CONVERSATION_TITLE
from supportchat.models.message import Message, MessageAttachment, MessageReaction, MessageReadReceipt
from supportchat.models.user import User, conversation_participants
from supportchat.schemas.conversation import (
    ChannelSummary,
    ConversationCreate,
    ConversationResponse,
    ConversationStats,
    ConversationStatsEntry,
    ConversationUpdate,
)
from supportchat.schemas.user import UserPublic
from supportchat.services.access_guard import AccessGuard
from supportchat.services.message_service import MessageService
from supportchat.utils.security import Identity

logger = logging.getLogger(__name__)
settings = get_settings()

MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500
MAX_PAGE_SIZE = 100


class ConversationService:
    """Service for conversation operations."""

    @staticmethod
    def create_direct_conversation(
        db: Session,
        identity: Identity,
        participant_id: int
    ) -> ConversationResponse:
        """Return the active direct conversation with ``participant_id``, creating it if needed.

        Concurrent callers race on the (tenant_id, direct_key) unique
        constraint; the loser rolls back and returns the winner's row.
        """
        if participant_id == identity.user_id:
            raise ValidationError("Cannot create conversation with yourself")

        other = AccessGuard.get_tenant_user(db, identity, participant_id)
        creator = AccessGuard.get_tenant_user(db, identity, identity.user_id)
        key = direct_key_for([creator.id, other.id])

        existing = ConversationService._find_direct_conversation(db, identity.tenant_id, key)
        if existing:
            logger.info(f"Found existing direct conversation {existing.id}, returning it")
            return ConversationService._conversation_to_response(db, existing, identity.user_id)

        new_conversation = Conversation(
            tenant_id=identity.tenant_id,
            title=DIRECT_CONVERSATION_TITLE,
            created_by=creator.id,
            is_group=False,
            direct_key=key,
            participants=[creator, other]
        )
        db.add(new_conversation)

        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            existing = ConversationService._find_direct_conversation(db, identity.tenant_id, key)
            if not existing:
                raise ConflictError("Direct conversation could not be created, please retry")
            logger.info(f"Lost direct conversation race for pair {key}, returning {existing.id}")
            return ConversationService._conversation_to_response(db, existing, identity.user_id)

        db.refresh(new_conversation)
        logger.info(
            f"Created direct conversation {new_conversation.id} between users "
            f"{creator.id} and {other.id} (tenant {identity.tenant_id})"
        )
        return ConversationService._conversation_to_response(db, new_conversation, identity.user_id)

    @staticmethod
    def create_group_conversation(
        db: Session,
        identity: Identity,
        conversation_data: ConversationCreate
    ) -> ConversationResponse:
        """Create a titled conversation; the creator joins implicitly."""
        title = ConversationService._clean_title(conversation_data.title)
        description = ConversationService._clean_description(conversation_data.description)

        participant_ids = list(dict.fromkeys([identity.user_id] + list(conversation_data.participant_ids)))
        if len(participant_ids) < 2:
            raise ValidationError("A conversation needs at least 2 participants")

        participants = db.query(User).filter(
            User.id.in_(participant_ids),
            User.tenant_id == identity.tenant_id,
            User.is_active == True
        ).all()

        if len(participants) != len(participant_ids):
            found = {p.id for p in participants}
            logger.warning(
                f"Failed to create conversation: participants "
                f"{[pid for pid in participant_ids if pid not in found]} not found in tenant {identity.tenant_id}"
            )
            raise NotFoundError("One or more participants not found")

        new_conversation = Conversation(
            tenant_id=identity.tenant_id,
            title=title,
            description=description,
            created_by=identity.user_id,
            participants=participants
        )
        new_conversation.sync_membership_flags()

        if new_conversation.direct_key and ConversationService._find_direct_conversation(
            db, identity.tenant_id, new_conversation.direct_key
        ):
            raise ConflictError("A direct conversation between these users already exists")

        db.add(new_conversation)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ConflictError("A direct conversation between these users already exists")

        db.refresh(new_conversation)
        logger.info(
            f"Created conversation {new_conversation.id}: title='{new_conversation.title}', "
            f"is_group={new_conversation.is_group}, participants={participant_ids}"
        )
        return ConversationService._conversation_to_response(db, new_conversation, identity.user_id)

    @staticmethod
    def get_conversation(db: Session, identity: Identity, conversation_id: int) -> ConversationResponse:
        conversation = AccessGuard.get_conversation(db, identity, conversation_id)
        return ConversationService._conversation_to_response(db, conversation, identity.user_id)

    @staticmethod
    def get_user_conversations(
        db: Session,
        identity: Identity,
        page: int = 1,
        page_size: Optional[int] = None
    ) -> List[ConversationResponse]:
        """Active conversations of the caller, most recent activity first."""
        if page_size is None:
            page_size = settings.CONVERSATION_PAGE_SIZE
        if page < 1:
            raise ValidationError("page must be at least 1")
        if page_size < 1 or page_size > MAX_PAGE_SIZE:
            raise ValidationError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")

        conversations = ConversationService._member_conversations(db, identity).order_by(
            Conversation.last_message_at.desc().nulls_last(),
            Conversation.created_at.desc(),
            Conversation.id.desc()
        ).offset((page - 1) * page_size).limit(page_size).all()

        logger.debug(f"Retrieved {len(conversations)} conversation(s) for user {identity.user_id}")
        return [
            ConversationService._conversation_to_response(db, conv, identity.user_id)
            for conv in conversations
        ]

    @staticmethod
    def search_conversations(db: Session, identity: Identity, term: str) -> List[ConversationResponse]:
        """Match ``term`` against title and description of the caller's conversations."""
        term = (term or "").strip().lower()
        if not term:
            raise ValidationError("Search query is required")

        conversations = ConversationService._member_conversations(db, identity).filter(
            func.lower(Conversation.title).contains(term, autoescape=True)
            | func.lower(Conversation.description).contains(term, autoescape=True)
        ).order_by(
            Conversation.last_message_at.desc().nulls_last(),
            Conversation.id.desc()
        ).all()

        return [
            ConversationService._conversation_to_response(db, conv, identity.user_id)
            for conv in conversations
        ]

    @staticmethod
    def get_channels(db: Session, identity: Identity) -> List[ChannelSummary]:
        """Group conversations the caller belongs to."""
        channels = ConversationService._member_conversations(db, identity).filter(
            Conversation.is_group == True
        ).order_by(
            Conversation.last_message_at.desc().nulls_last(),
            Conversation.id.desc()
        ).all()

        return [
            ChannelSummary(
                id=channel.id,
                title=channel.title,
                description=channel.description,
                participants_count=len(channel.participants),
                unread_count=MessageService.get_unread_count(db, channel.id, identity.user_id),
                last_message_at=channel.last_message_at
            )
            for channel in channels
        ]

    @staticmethod
    def get_conversation_stats(db: Session, identity: Identity) -> ConversationStats:
        """Count the caller's active conversations by kind."""
        sizes = db.query(
            conversation_participants.c.conversation_id.label("conversation_id"),
            func.count(conversation_participants.c.user_id).label("size")
        ).group_by(conversation_participants.c.conversation_id).subquery()

        member_of = select(conversation_participants.c.conversation_id).where(
            conversation_participants.c.user_id == identity.user_id
        )

        rows = db.query(
            Conversation.is_group,
            func.count(Conversation.id),
            func.avg(sizes.c.size)
        ).join(sizes, sizes.c.conversation_id == Conversation.id).filter(
            Conversation.tenant_id == identity.tenant_id,
            Conversation.is_active == True,
            Conversation.id.in_(member_of)
        ).group_by(Conversation.is_group).order_by(Conversation.is_group).all()

        entries = [
            ConversationStatsEntry(is_group=bool(is_group), count=count, avg_participants=float(avg or 0))
            for is_group, count, avg in rows
        ]
        return ConversationStats(total=sum(e.count for e in entries), stats=entries)

    @staticmethod
    def update_conversation(
        db: Session,
        identity: Identity,
        conversation_id: int,
        update: ConversationUpdate
    ) -> ConversationResponse:
        """Apply the allow-listed fields of ``update``."""
        conversation = AccessGuard.get_conversation(db, identity, conversation_id)
        update_data = update.model_dump(exclude_unset=True)

        if "title" in update_data:
            conversation.title = ConversationService._clean_title(update_data["title"])
        if "description" in update_data:
            conversation.description = ConversationService._clean_description(update_data["description"])
        if "avatar" in update_data:
            conversation.avatar = update_data["avatar"] or None
        if update_data.get("allow_new_members") is not None:
            conversation.allow_new_members = update_data["allow_new_members"]

        db.commit()
        db.refresh(conversation)
        logger.info(
            f"User {identity.user_id} updated conversation {conversation.id}: {sorted(update_data)}"
        )
        return ConversationService._conversation_to_response(db, conversation, identity.user_id)

    @staticmethod
    def add_participant(
        db: Session,
        identity: Identity,
        conversation_id: int,
        user_id: int
    ) -> ConversationResponse:
        conversation = AccessGuard.get_conversation(db, identity, conversation_id)

        if (
            not conversation.allow_new_members
            and conversation.created_by != identity.user_id
            and not identity.is_admin
        ):
            raise PermissionDeniedError("This conversation does not accept new members")

        new_participant = AccessGuard.get_tenant_user(db, identity, user_id)

        if conversation.has_participant(user_id):
            raise ConflictError("User is already a participant")

        conversation.participants.append(new_participant)
        conversation.sync_membership_flags()
        db.commit()
        db.refresh(conversation)

        logger.info(
            f"User {user_id} added to conversation {conversation.id} by user {identity.user_id} "
            f"(participants={len(conversation.participants)}, is_group={conversation.is_group})"
        )
        return ConversationService._conversation_to_response(db, conversation, identity.user_id)

    @staticmethod
    def remove_participant(
        db: Session,
        identity: Identity,
        conversation_id: int,
        user_id: int
    ) -> ConversationResponse:
        """Remove a member: users may leave, administrators may remove anyone."""
        conversation = AccessGuard.get_conversation(db, identity, conversation_id, allow_admin=True)

        if user_id != identity.user_id and not identity.is_admin:
            raise PermissionDeniedError("Access denied. You can only remove yourself from conversations.")

        if not conversation.has_participant(user_id):
            raise NotFoundError("User is not a participant in this conversation")

        if len(conversation.participants) <= 2:
            raise InvalidStateError("A conversation must keep at least 2 participants")

        if conversation.created_by == user_id:
            conversation.created_by = ConversationService._next_owner(db, conversation.id, user_id)

        conversation.participants = [p for p in conversation.participants if p.id != user_id]
        conversation.sync_membership_flags()

        if conversation.direct_key:
            existing = ConversationService._find_direct_conversation(
                db, conversation.tenant_id, conversation.direct_key
            )
            if existing and existing.id != conversation.id:
                db.rollback()
                raise ConflictError("The remaining users already share a direct conversation")

        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ConflictError("The remaining users already share a direct conversation")

        db.refresh(conversation)
        logger.info(
            f"User {user_id} removed from conversation {conversation.id} by user {identity.user_id} "
            f"(participants={len(conversation.participants)}, is_group={conversation.is_group})"
        )
        return ConversationService._conversation_to_response(db, conversation, identity.user_id)

    @staticmethod
    def set_muted(
        db: Session,
        identity: Identity,
        conversation_id: int,
        muted: bool,
        until: Optional[datetime] = None
    ) -> ConversationResponse:
        """Mute or unmute notifications for the caller, optionally until ``until``."""
        conversation = AccessGuard.get_conversation(db, identity, conversation_id)

        if until is not None and until.tzinfo is not None:
            until = until.astimezone(timezone.utc).replace(tzinfo=None)
        if muted and until is not None and until <= datetime.utcnow():
            raise ValidationError("Mute expiry must be in the future")

        db.execute(
            conversation_participants.update()
            .where(
                (conversation_participants.c.user_id == identity.user_id) &
                (conversation_participants.c.conversation_id == conversation.id)
            )
            .values(muted=muted, muted_until=until if muted else None)
        )
        db.commit()

        logger.info(f"User {identity.user_id} set muted={muted} on conversation {conversation.id} until {until}")
        return ConversationService._conversation_to_response(db, conversation, identity.user_id)

    @staticmethod
    def delete_conversation(db: Session, identity: Identity, conversation_id: int) -> None:
        """Soft delete: the conversation disappears from listings, messages stay."""
        conversation = AccessGuard.get_conversation(db, identity, conversation_id, require_member=False)

        can_delete = (
            identity.is_admin
            or conversation.created_by == identity.user_id
            or (not conversation.is_group and conversation.has_participant(identity.user_id))
        )
        if not can_delete:
            raise PermissionDeniedError("Access denied. You cannot delete this conversation.")

        conversation.is_active = False
        conversation.direct_key = None
        db.commit()
        logger.info(f"Conversation {conversation.id} deactivated by user {identity.user_id}")

    @staticmethod
    def hard_delete_conversation(db: Session, identity: Identity, conversation_id: int) -> int:
        """Permanently remove a group conversation and all its messages.

        Returns the number of messages removed.
        """
        conversation = AccessGuard.get_conversation(
            db, identity, conversation_id, require_member=False, include_inactive=True
        )

        if not identity.is_admin and conversation.created_by != identity.user_id:
            raise PermissionDeniedError("Only the creator or an administrator can permanently delete this conversation")

        if not conversation.is_group:
            raise InvalidStateError("Only group conversations can be permanently deleted")

        message_ids = select(Message.id).where(Message.conversation_id == conversation.id)
        db.query(MessageReadReceipt).filter(
            MessageReadReceipt.message_id.in_(message_ids)
        ).delete(synchronize_session=False)
        db.query(MessageReaction).filter(
            MessageReaction.message_id.in_(message_ids)
        ).delete(synchronize_session=False)
        db.query(MessageAttachment).filter(
            MessageAttachment.message_id.in_(message_ids)
        ).delete(synchronize_session=False)
        deleted_messages = db.query(Message).filter(
            Message.conversation_id == conversation.id
        ).delete(synchronize_session=False)
        db.execute(
            conversation_participants.delete().where(
                conversation_participants.c.conversation_id == conversation.id
            )
        )
        db.query(Conversation).filter(Conversation.id == conversation.id).delete(synchronize_session=False)
        db.commit()

        logger.info(
            f"Conversation {conversation_id} permanently deleted by user {identity.user_id} "
            f"({deleted_messages} message(s) removed)"
        )
        return deleted_messages

    @staticmethod
    def _member_conversations(db: Session, identity: Identity):
        return db.query(Conversation).join(
            conversation_participants,
            conversation_participants.c.conversation_id == Conversation.id
        ).filter(
            conversation_participants.c.user_id == identity.user_id,
            Conversation.tenant_id == identity.tenant_id,
            Conversation.is_active == True
        )

    @staticmethod
    def _find_direct_conversation(db: Session, tenant_id: int, direct_key: str) -> Optional[Conversation]:
        return db.query(Conversation).filter(
            Conversation.tenant_id == tenant_id,
            Conversation.direct_key == direct_key,
            Conversation.is_active == True
        ).first()

    @staticmethod
    def _next_owner(db: Session, conversation_id: int, leaving_user_id: int) -> int:
        """Earliest-joined member other than ``leaving_user_id``."""
        row = db.execute(
            conversation_participants.select()
            .where(
                (conversation_participants.c.conversation_id == conversation_id) &
                (conversation_participants.c.user_id != leaving_user_id)
            )
            .order_by(conversation_participants.c.joined_at, conversation_participants.c.user_id)
        ).first()
        return row.user_id

    @staticmethod
    def _membership_row(db: Session, conversation_id: int, user_id: int):
        return db.execute(
            conversation_participants.select().where(
                (conversation_participants.c.user_id == user_id) &
                (conversation_participants.c.conversation_id == conversation_id)
            )
        ).fetchone()

    @staticmethod
    def _clean_title(title: Optional[str]) -> str:
        title = (title or "").strip()
        if not title or len(title) > MAX_TITLE_LENGTH:
            raise ValidationError(f"Title must be between 1 and {MAX_TITLE_LENGTH} characters")
        return title

    @staticmethod
    def _clean_description(description: Optional[str]) -> Optional[str]:
        if description is None:
            return None
        description = description.strip()
        if len(description) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError(f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters")
        return description or None

    @staticmethod
    def _conversation_to_response(
        db: Session,
        conversation: Conversation,
        user_id: Optional[int] = None
    ) -> ConversationResponse:
        """Convert Conversation model to response for ``user_id``."""
        unread_count = 0
        is_muted = False
        muted_until = None
        if user_id:
            unread_count = MessageService.get_unread_count(db, conversation.id, user_id)
            membership = ConversationService._membership_row(db, conversation.id, user_id)
            if membership and membership.muted:
                muted_until = membership.muted_until
                is_muted = muted_until is None or muted_until > datetime.utcnow()

        return ConversationResponse(
            id=conversation.id,
            tenant_id=conversation.tenant_id,
            title=conversation.title,
            description=conversation.description,
            avatar=conversation.avatar,
            is_group=conversation.is_group,
            is_active=conversation.is_active,
            allow_new_members=conversation.allow_new_members,
            created_by=conversation.created_by,
            participants=[UserPublic.model_validate(p) for p in conversation.participants],
            last_message=conversation.last_message,
            last_message_at=conversation.last_message_at,
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
            unread_count=unread_count,
            is_muted=is_muted,
            muted_until=muted_until if is_muted else None
        )
