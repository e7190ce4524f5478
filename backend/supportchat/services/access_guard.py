"""Tenant isolation and membership checks shared by the chat services.

Every lookup is scoped to the caller's tenant. A record in another tenant is
reported exactly like a missing one so existence never leaks across tenants.
Administrators may skip the membership check only where a caller passes
``allow_admin=True`` (delete and moderation paths), never for reads.
"""

import logging
from sqlalchemy.orm import Session
from supportchat.errors import NotFoundError, PermissionDeniedError
from supportchat.models.conversation import Conversation
from supportchat.models.message import Message
from supportchat.models.user import User
from supportchat.utils.security import Identity

logger = logging.getLogger(__name__)


class AccessGuard:
    """Load records on behalf of a caller, enforcing tenant and membership rules."""

    @staticmethod
    def get_conversation(
        db: Session,
        identity: Identity,
        conversation_id: int,
        require_member: bool = True,
        allow_admin: bool = False,
        include_inactive: bool = False
    ) -> Conversation:
        conversation = db.query(Conversation).filter(
            Conversation.id == conversation_id,
            Conversation.tenant_id == identity.tenant_id
        ).first()

        if not conversation or (not include_inactive and not conversation.is_active):
            logger.warning(
                f"Conversation {conversation_id} not visible to user {identity.user_id} "
                f"(tenant {identity.tenant_id})"
            )
            raise NotFoundError("Conversation not found")

        if require_member and not conversation.has_participant(identity.user_id):
            if allow_admin and identity.is_admin:
                logger.info(
                    f"Administrator {identity.user_id} acting on conversation {conversation_id} "
                    f"without membership"
                )
                return conversation
            logger.warning(
                f"User {identity.user_id} denied access to conversation {conversation_id}: not a participant"
            )
            raise PermissionDeniedError("You are not a participant in this conversation")

        return conversation

    @staticmethod
    def get_message(
        db: Session,
        identity: Identity,
        message_id: int,
        require_member: bool = True,
        allow_admin: bool = False
    ) -> Message:
        message = db.query(Message).filter(
            Message.id == message_id,
            Message.tenant_id == identity.tenant_id
        ).first()

        if not message:
            logger.warning(f"Message {message_id} not visible to user {identity.user_id}")
            raise NotFoundError("Message not found")

        # Messages of an inactive or invisible conversation are invisible too.
        AccessGuard.get_conversation(
            db,
            identity,
            message.conversation_id,
            require_member=require_member,
            allow_admin=allow_admin
        )
        return message

    @staticmethod
    def get_tenant_user(db: Session, identity: Identity, user_id: int) -> User:
        """Return an active user of the caller's tenant."""
        user = db.query(User).filter(
            User.id == user_id,
            User.tenant_id == identity.tenant_id,
            User.is_active == True
        ).first()

        if not user:
            logger.warning(f"User {user_id} not found in tenant {identity.tenant_id}")
            raise NotFoundError("User not found")
        return user
