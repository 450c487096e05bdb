"""Conversation model mapping a user's chat to a remote assistant thread."""
from sqlalchemy import Column, String, DateTime, ForeignKey, Uuid, func
from sqlalchemy.orm import declarative_base, relationship
from uuid import uuid4

Base = declarative_base()


class Conversation(Base):
    """
    SQLAlchemy model for conversations.

    ``thread_id`` holds the provider's opaque thread identifier. It starts
    out NULL and is written at most once, through a conditional update
    (see ConversationService.set_thread_id_if_absent).
    """
    __tablename__ = "conversations"

    id = Column(Uuid, primary_key=True, default=uuid4, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False, default="New conversation")
    thread_id = Column(String(128), nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    last_message_at = Column(DateTime(timezone=True), server_default=func.now())
    downloaded_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Message.created_at",
    )
