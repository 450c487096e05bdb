"""
Message relay: the per-message entry point of the chat pathway.

Wraps the relay graph with the concerns that sit outside the state machine:
one send at a time per conversation, session lifetime for streaming, and
the initial state built from the request.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from config import Settings
from dtos.chat_request import ChatRequest
from errors import ConversationBusyError, relay_failure_response
from graph import RelayContext, RelayState, relay_graph
from logging_config import log_message_in
from models import User
from services.assistant import AssistantClient
from services.conversations import BusyRegistry, busy_conversations
from services.retry import compute_max_retries
from services.sanitizer import Citation, parse_reference
from utils import create_sse_stream, format_sse

logger = logging.getLogger(__name__)


@dataclass
class RelayResult:
    """Outcome of a non-streaming relay."""
    response: str
    conversation_id: Optional[UUID] = None
    reference: Optional[str] = None
    message_id: Optional[UUID] = None
    blocked: bool = False

    @property
    def citation(self) -> Optional[Citation]:
        return parse_reference(self.reference)


class MessageRelay:
    """Relays one user message to the assistant and back."""

    def __init__(
        self,
        client: AssistantClient,
        settings: Settings,
        graph=relay_graph,
        busy: BusyRegistry = busy_conversations,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.settings = settings
        self.graph = graph
        self.busy = busy
        self.sleep = sleep

    def _initial_state(self, request: ChatRequest, user: User) -> RelayState:
        log_message_in(
            logger,
            request.content,
            conversation=request.conversation_id,
            plan=request.subscription_plan,
            priority=bool(request.priority),
            stream=bool(request.stream),
            retries=request.retry_count,
        )
        return {
            "content": request.content,
            "user_id": user.id,
            "conversation_id": request.conversation_id,
            "assistant_id": request.assistant_id,
            "stream": bool(request.stream),
            "max_retries": compute_max_retries(request.retry_count),
        }

    def _config(self, db: Session) -> dict:
        context = RelayContext(db=db, client=self.client, settings=self.settings, sleep=self.sleep)
        return {"configurable": {"context": context}}

    def _key(self, request: ChatRequest) -> Optional[str]:
        # A brand-new conversation cannot have a concurrent send yet.
        if request.conversation_id is None:
            return None
        return str(request.conversation_id)

    async def respond(self, db: Session, request: ChatRequest, user: User) -> RelayResult:
        """Relay a message and wait for the complete answer."""
        key = self._key(request)
        if key:
            self.busy.claim(key)
        try:
            state = await self.graph.ainvoke(self._initial_state(request, user), config=self._config(db))
        except Exception:
            db.rollback()
            raise
        finally:
            if key:
                self.busy.release(key)

        return RelayResult(
            response=state.get("response", ""),
            conversation_id=state.get("conversation_id"),
            reference=state.get("reference"),
            message_id=state.get("assistant_message_id"),
            blocked=state.get("status") == "blocked",
        )

    def stream(self, session_factory: sessionmaker, request: ChatRequest, user: User) -> AsyncIterator[str]:
        """
        Relay a message and return its SSE frames.

        A conversation that is already busy is refused here, before the
        response starts. The claim is held from the first frame until the
        frames end; frames that are never iterated hold nothing.
        """
        key = self._key(request)
        if key:
            self.busy.ensure_free(key)
        state = self._initial_state(request, user)

        async def frames() -> AsyncIterator[str]:
            if key:
                try:
                    self.busy.claim(key)
                except ConversationBusyError as e:
                    _, body = relay_failure_response(e)
                    body["conversationId"] = key
                    yield format_sse("error", body)
                    return

            db = session_factory()
            try:
                async for frame in create_sse_stream(self.graph, state, self._config(db)):
                    yield frame
            finally:
                db.close()
                if key:
                    self.busy.release(key)

        return frames()
