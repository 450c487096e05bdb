"""
Message relay state machine.

gate -> (blocked: END | ensure_conversation) -> ensure_thread -> post_message
     -> run -> sanitize -> persist -> END

Dependencies (database session, provider client, settings) travel in
``config["configurable"]["context"]`` as a RelayContext; nothing is read from
module globals inside the nodes.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypedDict
from uuid import UUID

from langchain_core.runnables import RunnableConfig
from langgraph.graph import StateGraph, START, END
from langgraph.types import StreamWriter
from sqlalchemy.orm import Session

from config import Settings
from errors import EmptyResponseError
from logging_config import log_message_out
from models import MessageRole
from services.access import ChatAccessService
from services.assistant import ASSISTANT_INSTRUCTIONS, REFERENCE_REQUEST_SUFFIX, AssistantClient
from services.content_gate import GUIDANCE_MESSAGE, is_off_topic
from services.conversations import ConversationService
from services.retry import is_transient, with_retry
from services.sanitizer import sanitize

logger = logging.getLogger(__name__)


class RelayState(TypedDict, total=False):
    # input
    content: str
    user_id: UUID
    conversation_id: Optional[UUID]
    assistant_id: Optional[str]
    stream: bool
    max_retries: int
    # progress
    status: str  # "blocked" | "done"
    thread_id: Optional[str]
    user_message_id: Optional[UUID]
    raw_response: str
    # output
    response: str
    reference: Optional[str]
    assistant_message_id: Optional[UUID]


@dataclass
class RelayContext:
    """Everything one relay run needs, passed explicitly instead of read from ambient state."""
    db: Session
    client: AssistantClient
    settings: Settings
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep)

    def retry(self, operation: Callable[[], Awaitable[Any]], max_retries: int):
        return with_retry(
            operation,
            max_retries=max_retries,
            initial_delay=self.settings.retry_initial_delay,
            should_retry=is_transient,
            sleep=self.sleep,
        )


def _context(config: RunnableConfig) -> RelayContext:
    return config["configurable"]["context"]


def gate(state: RelayState):
    """Turn away off-topic questions before anything is written or sent."""
    if is_off_topic(state["content"]):
        logger.info("Content appears to be non-contract related. Providing guidance response.")
        return {"status": "blocked", "response": GUIDANCE_MESSAGE, "reference": None}
    return {}


def route_after_gate(state: RelayState) -> str:
    return "blocked" if state.get("status") == "blocked" else "continue"


def ensure_conversation(state: RelayState, config: RunnableConfig):
    """Make sure a conversation exists and store the user's message before any remote call."""
    ctx = _context(config)
    conversation = ConversationService.ensure_conversation(
        ctx.db, state["user_id"], state.get("conversation_id"), state["content"]
    )
    user_message = ConversationService.append_message(
        ctx.db, conversation.id, state["user_id"], MessageRole.USER, state["content"]
    )
    return {
        "conversation_id": conversation.id,
        "thread_id": conversation.thread_id,
        "user_message_id": user_message.id,
    }


async def ensure_thread(state: RelayState, config: RunnableConfig):
    """Create the remote thread on first use and bind it with create-if-absent semantics."""
    if state.get("thread_id"):
        logger.info(f"Going to use thread: {state['thread_id']}")
        return {}

    ctx = _context(config)
    handle = await ctx.retry(ctx.client.create_thread, state["max_retries"])
    logger.info(f"Thread created: {handle.id}")

    thread_id = ConversationService.set_thread_id_if_absent(ctx.db, state["conversation_id"], handle.id)
    if thread_id != handle.id:
        await handle.dispose()

    return {"thread_id": thread_id}


async def post_message(state: RelayState, config: RunnableConfig):
    ctx = _context(config)
    content = state["content"] + REFERENCE_REQUEST_SUFFIX
    await ctx.retry(lambda: ctx.client.post_message(state["thread_id"], content), state["max_retries"])
    logger.info("Message added to thread")
    return {}


async def run_assistant(state: RelayState, config: RunnableConfig, writer: StreamWriter):
    """Run the assistant; in streaming mode forward each chunk through the stream writer."""
    ctx = _context(config)
    thread_id = state["thread_id"]
    assistant_id = state.get("assistant_id")
    max_retries = state["max_retries"]

    if not state.get("stream"):
        raw = await ctx.client.run_to_completion(
            thread_id,
            assistant_id,
            ASSISTANT_INSTRUCTIONS,
            poll_interval=ctx.settings.run_poll_interval,
            timeout=ctx.settings.run_poll_timeout,
            call=lambda op: ctx.retry(op, max_retries),
        )
        return {"raw_response": raw}

    run_stream = await ctx.retry(
        lambda: ctx.client.open_run_stream(thread_id, assistant_id, ASSISTANT_INSTRUCTIONS),
        max_retries,
    )
    chunks = []
    async for text in run_stream.text_deltas():
        chunks.append(text)
        writer({"delta": text})

    return {"raw_response": "".join(chunks)}


def sanitize_response(state: RelayState):
    result = sanitize(state.get("raw_response", ""))
    if not result.main_content and not result.reference:
        raise EmptyResponseError("Assistant returned an empty response", thread_id=state.get("thread_id"))
    return {"response": result.main_content, "reference": result.reference}


def persist(state: RelayState, config: RunnableConfig):
    """Store the assistant message and count the query."""
    ctx = _context(config)
    message = ConversationService.append_message(
        ctx.db,
        state["conversation_id"],
        state["user_id"],
        MessageRole.ASSISTANT,
        state["response"],
        reference=state.get("reference"),
    )
    ChatAccessService.record_query(ctx.db, state["user_id"])
    log_message_out(
        logger,
        conversation_id=str(state["conversation_id"]),
        length=len(state["response"]),
        has_reference=bool(state.get("reference")),
    )
    return {"assistant_message_id": message.id, "status": "done"}


relay_graph_builder = (
    StateGraph(RelayState)
    .add_node("gate", gate)
    .add_node("ensure_conversation", ensure_conversation)
    .add_node("ensure_thread", ensure_thread)
    .add_node("post_message", post_message)
    .add_node("run", run_assistant)
    .add_node("sanitize", sanitize_response)
    .add_node("persist", persist)
    .add_edge(START, "gate")
    .add_conditional_edges("gate", route_after_gate, {"blocked": END, "continue": "ensure_conversation"})
    .add_edge("ensure_conversation", "ensure_thread")
    .add_edge("ensure_thread", "post_message")
    .add_edge("post_message", "run")
    .add_edge("run", "sanitize")
    .add_edge("sanitize", "persist")
    .add_edge("persist", END)
)

relay_graph = relay_graph_builder.compile()
