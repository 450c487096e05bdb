"""
Tests for conversation bookkeeping: thread binding, history, transcripts, feedback.
"""
from datetime import datetime, timezone
from uuid import uuid4

import pytest

from errors import ConversationBusyError, ConversationNotFoundError
from models import Conversation, MessageRole
from schemas.conversations import FeedbackCreate
from services.conversations import BusyRegistry, ConversationService, derive_title

from conftest import make_user


class TestDeriveTitle:
    def test_short_message_kept(self):
        assert derive_title("What is the reserve call-out policy?") == "What is the reserve call-out policy?"

    def test_long_message_truncated(self):
        title = derive_title("x" * 80)
        assert title == "x" * 50 + "..."

    def test_whitespace_collapsed(self):
        assert derive_title("  vacation \n  bidding  ") == "vacation bidding"

    def test_empty(self):
        assert derive_title("") == "New conversation"
        assert derive_title("   ") == "New conversation"


class TestEnsureConversation:
    def test_creates_when_absent(self, db, user):
        conversation = ConversationService.ensure_conversation(db, user.id, None, "How is overtime paid?")

        assert conversation.id is not None
        assert conversation.thread_id is None
        assert conversation.title == "How is overtime paid?"

    def test_returns_existing(self, db, user):
        existing = ConversationService.create_conversation(db, user.id)

        found = ConversationService.ensure_conversation(db, user.id, existing.id, "anything")

        assert found.id == existing.id
        assert db.query(Conversation).count() == 1

    def test_unknown_id_raises(self, db, user):
        with pytest.raises(ConversationNotFoundError):
            ConversationService.ensure_conversation(db, user.id, uuid4(), "anything")

    def test_other_users_conversation_is_not_found(self, db, user):
        other = make_user(db, username="other")
        theirs = ConversationService.create_conversation(db, other.id)

        with pytest.raises(ConversationNotFoundError):
            ConversationService.ensure_conversation(db, user.id, theirs.id, "anything")


class TestSetThreadIdIfAbsent:
    """The stored thread id is written at most once."""

    def test_first_write_wins(self, db, user):
        conversation = ConversationService.create_conversation(db, user.id)

        assert ConversationService.set_thread_id_if_absent(db, conversation.id, "thread_a") == "thread_a"
        assert ConversationService.set_thread_id_if_absent(db, conversation.id, "thread_b") == "thread_a"

        db.expire_all()
        assert ConversationService.get_conversation(db, conversation.id).thread_id == "thread_a"

    def test_missing_conversation(self, db):
        with pytest.raises(ConversationNotFoundError):
            ConversationService.set_thread_id_if_absent(db, uuid4(), "thread_a")


class TestMessages:
    def test_append_and_list_in_order(self, db, user):
        conversation = ConversationService.create_conversation(db, user.id)

        ConversationService.append_message(db, conversation.id, user.id, MessageRole.USER, "question")
        ConversationService.append_message(
            db, conversation.id, user.id, MessageRole.ASSISTANT, "answer", reference="Section 1, Page 2: q",
        )

        messages = ConversationService.list_messages(db, conversation.id)
        assert [m.role for m in messages] == [MessageRole.USER, MessageRole.ASSISTANT]
        assert messages[1].reference == "Section 1, Page 2: q"

    def test_delete_cascades(self, db, user):
        conversation = ConversationService.create_conversation(db, user.id)
        ConversationService.append_message(db, conversation.id, user.id, MessageRole.USER, "question")

        assert ConversationService.delete_conversation(db, conversation.id, user.id)
        assert ConversationService.list_messages(db, conversation.id) == []

    def test_delete_user_conversations(self, db, user):
        ConversationService.create_conversation(db, user.id)
        ConversationService.create_conversation(db, user.id)

        assert ConversationService.delete_user_conversations(db, user.id) == 2
        assert ConversationService.get_user_conversations(db, user.id) == []


class TestTranscript:
    def test_layout(self, db, user):
        conversation = ConversationService.create_conversation(db, user.id)
        conversation.title = "Reserve rules"
        question = ConversationService.append_message(db, conversation.id, user.id, MessageRole.USER, "Call-out time?")
        answer = ConversationService.append_message(
            db, conversation.id, user.id, MessageRole.ASSISTANT, "15 minutes.", reference="Section 12.3, Page 45: q",
        )
        question.created_at = datetime(2024, 3, 5, 9, 7, tzinfo=timezone.utc)
        answer.created_at = datetime(2024, 3, 5, 14, 30, tzinfo=timezone.utc)

        transcript = ConversationService.build_transcript(
            conversation, [question, answer], now=datetime(2024, 3, 5, tzinfo=timezone.utc),
        )

        assert transcript.startswith("Chat: Reserve rules\nDate: March 5, 2024\n")
        assert "[9:07 AM] You:\nCall-out time?" in transcript
        assert "[2:30 PM] SkyGuide:\n15 minutes.\nReference: Section 12.3, Page 45: q" in transcript


class TestFeedback:
    def _answer(self, db, user):
        conversation = ConversationService.create_conversation(db, user.id)
        question = ConversationService.append_message(db, conversation.id, user.id, MessageRole.USER, "q")
        answer = ConversationService.append_message(db, conversation.id, user.id, MessageRole.ASSISTANT, "a")
        return question, answer

    def test_upsert(self, db, user):
        _, answer = self._answer(db, user)

        first = ConversationService.record_feedback(db, answer.id, user.id, FeedbackCreate(rating=1))
        second = ConversationService.record_feedback(
            db, answer.id, user.id, FeedbackCreate(rating=-1, is_incorrect=True, comment="wrong section"),
        )

        assert first.id == second.id
        assert second.rating == -1
        assert second.is_incorrect is True

    def test_user_messages_cannot_be_rated(self, db, user):
        question, _ = self._answer(db, user)

        assert ConversationService.record_feedback(db, question.id, user.id, FeedbackCreate(rating=1)) is None

    def test_other_users_cannot_rate(self, db, user):
        _, answer = self._answer(db, user)
        other = make_user(db, username="other")

        assert ConversationService.record_feedback(db, answer.id, other.id, FeedbackCreate(rating=1)) is None


class TestBusyRegistry:
    def test_second_claim_rejected(self):
        registry = BusyRegistry()
        registry.claim("c1")

        with pytest.raises(ConversationBusyError):
            registry.claim("c1")

        registry.release("c1")
        registry.claim("c1")
        assert registry.is_busy("c1")

    def test_keys_are_independent(self):
        registry = BusyRegistry()
        registry.claim("c1")

        assert registry.acquire("c2")
