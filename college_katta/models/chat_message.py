"""Chat message model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from college_katta.database import Base
from college_katta.models.user import utcnow


GENERAL_TOPIC = "general"


class ChatMessage(Base):
    """An append-only message posted to a chat topic."""
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, index=True)
    topic = Column(String(128), nullable=False, index=True)
    content = Column(Text, nullable=False, default="")
    attachment_name = Column(String(255), nullable=True)
    attachment_type = Column(String(100), nullable=True)
    attachment_content = Column(Text, nullable=True)
    sender_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    sender = relationship("User", back_populates="chat_messages", lazy="joined")
    reactions = relationship(
        "MessageReaction",
        back_populates="message",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="MessageReaction.id",
    )


class MessageReaction(Base):
    """One user's emoji reaction to a message."""
    __tablename__ = "message_reactions"
    __table_args__ = (UniqueConstraint("message_id", "user_id", name="uq_message_reaction_user"),)

    id = Column(Integer, primary_key=True)
    message_id = Column(Integer, ForeignKey("chat_messages.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    emoji = Column(String(32), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    message = relationship("ChatMessage", back_populates="reactions")
    user = relationship("User", lazy="joined")
