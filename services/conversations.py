"""Conversation service: conversation rows, thread bookkeeping and message history."""
import re
import logging
import threading
from datetime import datetime, timezone
from typing import Optional, List
from uuid import UUID

from sqlalchemy import desc, update
from sqlalchemy.orm import Session

from errors import ConversationBusyError, ConversationNotFoundError
from models import Conversation, Message, MessageRole, MessageFeedback
from schemas.conversations import ConversationCreate, ConversationUpdate, FeedbackCreate

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New conversation"
TITLE_MAX_CHARS = 50


def derive_title(first_message: Optional[str]) -> str:
    """Short title from the opening message, or the default."""
    if not first_message:
        return DEFAULT_TITLE
    text = re.sub(r"\s+", " ", first_message).strip()
    if not text:
        return DEFAULT_TITLE
    if len(text) <= TITLE_MAX_CHARS:
        return text
    return text[:TITLE_MAX_CHARS].rstrip() + "..."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BusyRegistry:
    """In-flight sends, keyed by conversation. A second send is rejected, not queued."""

    def __init__(self):
        self._busy = set()
        self._lock = threading.Lock()

    def acquire(self, key: str) -> bool:
        with self._lock:
            if key in self._busy:
                return False
            self._busy.add(key)
            return True

    def release(self, key: str) -> None:
        with self._lock:
            self._busy.discard(key)

    def is_busy(self, key: str) -> bool:
        with self._lock:
            return key in self._busy

    def ensure_free(self, key: str) -> None:
        if self.is_busy(key):
            raise self._busy_error(key)

    def claim(self, key: str) -> None:
        if not self.acquire(key):
            raise self._busy_error(key)

    @staticmethod
    def _busy_error(key: str) -> ConversationBusyError:
        return ConversationBusyError(
            "A message is already being processed for this conversation",
            conversation_id=key,
        )


busy_conversations = BusyRegistry()


class ConversationService:
    """Service class for conversation and message operations."""

    @staticmethod
    def create_conversation(db: Session, user_id: UUID, conversation_data: Optional[ConversationCreate] = None) -> Conversation:
        """Create a new conversation for a user."""
        title = conversation_data.title if conversation_data and conversation_data.title else DEFAULT_TITLE
        db_conversation = Conversation(user_id=user_id, title=title)

        db.add(db_conversation)
        db.commit()
        db.refresh(db_conversation)

        logger.info(f"Created conversation {db_conversation.id} for user {user_id}")
        return db_conversation

    @staticmethod
    def get_conversation(db: Session, conversation_id: UUID, user_id: Optional[UUID] = None) -> Optional[Conversation]:
        """Retrieve a conversation by ID."""
        query = db.query(Conversation).filter(Conversation.id == conversation_id)

        if user_id:
            query = query.filter(Conversation.user_id == user_id)

        return query.first()

    @staticmethod
    def ensure_conversation(db: Session, user_id: UUID, conversation_id: Optional[UUID], first_message: str) -> Conversation:
        """
        Return the caller's conversation, creating one when none is given.

        Never touches the remote thread; that is created lazily on first send
        and stored through ``set_thread_id_if_absent``.
        """
        if conversation_id:
            conversation = ConversationService.get_conversation(db, conversation_id, user_id)
            if not conversation:
                raise ConversationNotFoundError(
                    "Conversation not found",
                    details="It may have been deleted",
                    conversation_id=str(conversation_id),
                )
            return conversation

        return ConversationService.create_conversation(
            db, user_id, ConversationCreate(title=derive_title(first_message))
        )

    @staticmethod
    def set_thread_id_if_absent(db: Session, conversation_id: UUID, thread_id: str) -> str:
        """
        Store ``thread_id`` only if the conversation has none yet.

        Returns the thread id that is persisted after the call. When another
        writer got there first, that writer's id is returned and ours is left
        unused.
        """
        result = db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id, Conversation.thread_id.is_(None))
            .values(thread_id=thread_id)
            .execution_options(synchronize_session=False)
        )
        db.commit()

        if result.rowcount == 1:
            logger.info(f"Conversation {conversation_id} bound to thread {thread_id}")
            return thread_id

        stored = db.query(Conversation.thread_id).filter(Conversation.id == conversation_id).scalar()
        if stored is None:
            raise ConversationNotFoundError("Conversation not found", conversation_id=str(conversation_id))
        logger.warning(f"Conversation {conversation_id} already bound to thread {stored}; discarding {thread_id}")
        return stored

    @staticmethod
    def append_message(
        db: Session,
        conversation_id: UUID,
        user_id: UUID,
        role: MessageRole,
        content: str,
        reference: Optional[str] = None,
    ) -> Message:
        """Append a message and bump the conversation's activity timestamp."""
        message = Message(
            conversation_id=conversation_id,
            user_id=user_id,
            role=role,
            content=content,
            reference=reference,
        )
        db.add(message)
        db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(last_message_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        db.commit()
        db.refresh(message)

        return message

    @staticmethod
    def list_messages(db: Session, conversation_id: UUID) -> List[Message]:
        """Messages of a conversation, oldest first."""
        return db.query(Message).filter(
            Message.conversation_id == conversation_id
        ).order_by(
            Message.created_at.asc()
        ).all()

    @staticmethod
    def get_user_conversations(db: Session, user_id: UUID, skip: int = 0, limit: int = 20) -> List[Conversation]:
        """Retrieve all conversations for a user, most recently active first."""
        return db.query(Conversation).filter(
            Conversation.user_id == user_id
        ).order_by(
            desc(Conversation.last_message_at), desc(Conversation.created_at)
        ).offset(skip).limit(limit).all()

    @staticmethod
    def update_conversation(db: Session, conversation_id: UUID, user_id: UUID, conversation_update: ConversationUpdate) -> Optional[Conversation]:
        """Rename a conversation."""
        conversation = ConversationService.get_conversation(db, conversation_id, user_id)

        if not conversation:
            return None

        conversation.title = conversation_update.title.strip()

        db.commit()
        db.refresh(conversation)

        return conversation

    @staticmethod
    def delete_conversation(db: Session, conversation_id: UUID, user_id: UUID) -> bool:
        """Delete a conversation and its messages."""
        conversation = ConversationService.get_conversation(db, conversation_id, user_id)

        if not conversation:
            return False

        db.delete(conversation)
        db.commit()

        return True

    @staticmethod
    def delete_user_conversations(db: Session, user_id: UUID) -> int:
        """Delete every conversation a user owns. Returns how many were removed."""
        conversations = db.query(Conversation).filter(Conversation.user_id == user_id).all()
        for conversation in conversations:
            db.delete(conversation)
        db.commit()

        return len(conversations)

    @staticmethod
    def build_transcript(conversation: Conversation, messages: List[Message], now: Optional[datetime] = None) -> str:
        """Plain-text export of a conversation."""
        now = now or _utcnow()
        lines = [
            f"Chat: {conversation.title}",
            f"Date: {now.strftime('%B')} {now.day}, {now.year}",
            "",
            "-" * 50,
            "",
        ]
        for message in messages:
            created = message.created_at
            timestamp = f"{created.hour % 12 or 12}:{created.strftime('%M %p')}"
            speaker = "SkyGuide" if message.role == MessageRole.ASSISTANT else "You"
            lines.append(f"[{timestamp}] {speaker}:")
            lines.append(message.content)
            if message.reference:
                lines.append(f"Reference: {message.reference}")
            lines.append("")

        return "\n".join(lines) + "\n"

    @staticmethod
    def mark_downloaded(db: Session, conversation: Conversation) -> Conversation:
        """Stamp ``downloaded_at``."""
        conversation.downloaded_at = _utcnow()
        db.commit()
        db.refresh(conversation)

        return conversation

    @staticmethod
    def record_feedback(db: Session, message_id: UUID, user_id: UUID, feedback: FeedbackCreate) -> Optional[MessageFeedback]:
        """
        Upsert a rating on an assistant message in one of the user's conversations.

        Returns None when the message is not found, not owned by the user or
        not authored by the assistant.
        """
        message = db.query(Message).join(Conversation).filter(
            Message.id == message_id,
            Conversation.user_id == user_id,
        ).first()

        if not message or message.role != MessageRole.ASSISTANT:
            return None

        existing = db.query(MessageFeedback).filter(
            MessageFeedback.message_id == message_id,
            MessageFeedback.user_id == user_id,
        ).first()

        if existing:
            existing.rating = feedback.rating
            existing.is_incorrect = feedback.is_incorrect
            existing.comment = feedback.comment
            record = existing
        else:
            record = MessageFeedback(
                message_id=message_id,
                user_id=user_id,
                rating=feedback.rating,
                is_incorrect=feedback.is_incorrect,
                comment=feedback.comment,
            )
            db.add(record)

        db.commit()
        db.refresh(record)

        return record
