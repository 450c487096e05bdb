"""Message and feedback models."""
from datetime import datetime, timezone
from sqlalchemy import (
    Column, String, DateTime, Text, Integer, Boolean, ForeignKey, Enum, Uuid,
    UniqueConstraint, func,
)
from sqlalchemy.orm import relationship
from uuid import uuid4
from .conversations import Base
import enum


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageRole(enum.Enum):
    """Author of a chat message."""
    USER = "user"
    ASSISTANT = "assistant"


class Message(Base):
    """
    SQLAlchemy model for chat messages.

    Messages are append-only. ``created_at`` is stamped client-side with
    microsecond precision so ordering inside a conversation is stable.
    """
    __tablename__ = "messages"

    id = Column(Uuid, primary_key=True, default=uuid4, index=True)
    conversation_id = Column(Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(Enum(MessageRole, values_callable=lambda e: [m.value for m in e]), nullable=False)
    content = Column(Text, nullable=False)
    reference = Column(Text, nullable=True)  # extracted [REF] annotation, assistant messages only
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)

    conversation = relationship("Conversation", back_populates="messages")
    feedback = relationship("MessageFeedback", cascade="all, delete-orphan")


class MessageFeedback(Base):
    """Thumbs up/down rating a user left on an assistant message."""
    __tablename__ = "message_feedback"
    __table_args__ = (UniqueConstraint("message_id", "user_id", name="uq_feedback_message_user"),)

    id = Column(Uuid, primary_key=True, default=uuid4)
    message_id = Column(Uuid, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    rating = Column(Integer, nullable=False)
    is_incorrect = Column(Boolean, default=False, nullable=False)
    comment = Column(String(1000), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
