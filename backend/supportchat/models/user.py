from sqlalchemy import Column, Integer, String, Boolean, DateTime, Table, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime
from supportchat.database import Base


ROLE_ADMIN = "admin"
ROLE_AGENT = "agent"
ROLE_MEMBER = "member"
USER_ROLES = (ROLE_ADMIN, ROLE_AGENT, ROLE_MEMBER)


# Association table for conversation participants with per-user settings
conversation_participants = Table(
    'conversation_participants',
    Base.metadata,
    Column('user_id', Integer, ForeignKey('users.id'), primary_key=True),
    Column('conversation_id', Integer, ForeignKey('conversations.id', ondelete='CASCADE'), primary_key=True),
    Column('joined_at', DateTime, default=datetime.utcnow),
    Column('muted', Boolean, default=False, nullable=False),
    Column('muted_until', DateTime, nullable=True),
    Index('ix_conversation_participants_user', 'user_id'),
)


class User(Base):
    """Directory record for a tenant member.

    Credentials live with the external directory; this row only carries what
    the chat core needs to check membership and roles.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=True, index=True)
    role = Column(String(20), default=ROLE_MEMBER, nullable=False)
    avatar = Column(String(500), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    tenant = relationship("Tenant", back_populates="users")
    conversations = relationship(
        "Conversation",
        secondary=conversation_participants,
        back_populates="participants"
    )

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def __repr__(self):
        return f"<User {self.id} ({self.role}) tenant={self.tenant_id}>"
