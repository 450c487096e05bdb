"""Server-sent-event helpers for streaming relay output to the browser."""
import json
import logging
from typing import Any, AsyncIterator, Dict

from errors import relay_failure_response
from services.sanitizer import parse_reference

logger = logging.getLogger(__name__)


def format_sse(event: str, data: Dict[str, Any]) -> str:
    """One SSE frame."""
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


def done_payload(state: Dict[str, Any]) -> Dict[str, Any]:
    """Client-facing summary of a finished relay run."""
    citation = parse_reference(state.get("reference"))
    conversation_id = state.get("conversation_id")
    message_id = state.get("assistant_message_id")
    return {
        "response": state.get("response", ""),
        "reference": state.get("reference"),
        "citation": citation.to_dict() if citation else None,
        "conversationId": str(conversation_id) if conversation_id else None,
        "messageId": str(message_id) if message_id else None,
        "blocked": state.get("status") == "blocked",
    }


async def create_sse_stream(graph, input_data: Dict[str, Any], config: Dict[str, Any]) -> AsyncIterator[str]:
    """
    Run the relay graph and translate its output into SSE frames.

    Emits ``delta`` for every chunk the run node writes, then a single
    ``done`` with the sanitized answer. A failure at any step becomes one
    ``error`` frame carrying the user-facing notice.
    """
    final_state: Dict[str, Any] = {}
    try:
        async for mode, chunk in graph.astream(input_data, config=config, stream_mode=["custom", "values"]):
            if mode == "custom":
                yield format_sse("delta", {"content": chunk.get("delta", "")})
            elif mode == "values":
                final_state = chunk
    except Exception as e:
        logger.error(f"Error in chat-completion stream: {e}", exc_info=True)
        _, body = relay_failure_response(e)
        body["conversationId"] = str(final_state["conversation_id"]) if final_state.get("conversation_id") else None
        yield format_sse("error", body)
        return

    yield format_sse("done", done_payload(final_state))
