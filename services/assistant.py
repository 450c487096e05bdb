"""
Assistant provider adapter.

Maps a conversation onto the provider's thread / message / run REST
primitives. Every raw call is folded into a tagged ``Ok`` / ``Err`` result at
this boundary; callers use ``unwrap()`` to get the payload or a
``ProviderError`` carrying the provider's status and body.
"""
import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Generic, Optional, TypeVar, Union

import httpx
from pydantic import ValidationError

from config import Settings
from errors import EmptyResponseError, ProviderError, RunFailedError, RunTimeoutError
from logging_config import log_provider
from schemas.assistant import (
    MessageDeltaEvent,
    MessageList,
    MessageObject,
    RunObject,
    ThreadObject,
    error_message,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

ASSISTANT_INSTRUCTIONS = """You are a union contract expert. When answering questions, you must:
1. Only answer questions directly related to union contract terms, policies, or provisions
2. Include specific references from the contract in this exact format:
   [REF]Section X.X, Page Y: Exact quote from contract[/REF]
3. If no specific reference exists, clearly state this
4. If the question is not related to the contract, politely redirect the user to focus on contract-related topics
5. Keep responses focused and accurate
6. Format all contract references consistently using the [REF] tags"""

REFERENCE_REQUEST_SUFFIX = (
    "\n\nPlease include the specific section and page number from the contract that supports "
    "your answer, formatted like this: [REF]Section X.X, Page Y: Exact quote from contract[/REF]. "
    "If no specific reference exists for this query, please state that clearly in the reference section."
)

RUN_FAILURE_EVENTS = {"thread.run.failed", "thread.run.cancelled", "thread.run.expired", "thread.run.incomplete"}


# ---------------------------------------------------------------------------
# Tagged results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProviderFailure:
    """Why a provider call failed. ``status`` is None for transport errors."""
    operation: str
    status: Optional[int]
    body: str


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    reason: ProviderFailure

    def unwrap(self):
        failure = self.reason
        logger.error(f"Provider call {failure.operation} failed (status={failure.status}): {failure.body}")
        raise ProviderError(
            f"Failed to {failure.operation.replace('_', ' ')}",
            status=failure.status,
            body=failure.body,
            operation=failure.operation,
        )


Result = Union[Ok[T], Err]


# ---------------------------------------------------------------------------
# Resource handles
# ---------------------------------------------------------------------------

@dataclass
class ThreadHandle:
    """
    An owned reference to a provider thread.

    Threads are created lazily and never explicitly closed today;
    ``dispose`` is the hook for cleaning them up once that is required.
    """
    id: str
    disposed: bool = field(default=False, compare=False)

    async def dispose(self) -> None:
        self.disposed = True
        logger.debug(f"Thread handle {self.id} released (remote thread left in place)")


class RunStream:
    """An open streaming run. Iterate ``text_deltas()`` for answer chunks."""

    def __init__(self, response: httpx.Response, thread_id: str):
        self._response = response
        self.thread_id = thread_id
        self.run_id: Optional[str] = None

    async def events(self) -> AsyncIterator[tuple]:
        """Yield ``(event, data)`` pairs parsed from the server-sent-event body."""
        event = None
        data_lines = []
        async for line in self._response.aiter_lines():
            if line == "":
                if event is not None or data_lines:
                    yield event, "\n".join(data_lines)
                event, data_lines = None, []
                continue
            if line.startswith(":"):
                continue
            name, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]
            if name == "event":
                event = value
            elif name == "data":
                data_lines.append(value)
        if event is not None or data_lines:
            yield event, "\n".join(data_lines)

    async def text_deltas(self) -> AsyncIterator[str]:
        """Yield text chunks until the run finishes; raise if it ends badly."""
        try:
            async for event, data in self.events():
                if data == "[DONE]" or event == "done":
                    return
                payload = _loads(data)

                if event == "thread.run.created" and isinstance(payload, dict):
                    self.run_id = payload.get("id")
                    log_provider(logger, "run_started", thread=self.thread_id, run=self.run_id)
                elif event == "thread.message.delta":
                    try:
                        text = MessageDeltaEvent.model_validate(payload).text
                    except ValidationError:
                        logger.warning(f"Skipping malformed delta event: {data[:200]}")
                        continue
                    if text:
                        yield text
                elif event in RUN_FAILURE_EVENTS:
                    run = RunObject.model_validate(payload)
                    reason = run.last_error.message if run.last_error else None
                    logger.error(f"Run {run.id} ended with {run.status}: {reason}")
                    raise RunFailedError("Assistant run did not complete", status=run.status, details=reason)
                elif event == "error":
                    logger.error(f"Provider stream error: {data}")
                    raise ProviderError("Assistant stream failed", status=None, body=error_message(payload))
                elif event == "thread.run.completed":
                    log_provider(logger, "run_completed", thread=self.thread_id, run=self.run_id)
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        await self._response.aclose()


async def _direct(operation: Callable[[], Awaitable[T]]) -> T:
    return await operation()


CallWrapper = Callable[[Callable[[], Awaitable[Any]]], Awaitable[Any]]


def _loads(data: str) -> Any:
    try:
        return json.loads(data)
    except (TypeError, ValueError):
        return data


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class AssistantClient:
    """Async client for the provider's threads API."""

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.default_assistant_id = settings.openai_assistant_id
        self._owns_client = http_client is None
        self.http = http_client or httpx.AsyncClient(
            base_url=settings.openai_api_base,
            timeout=httpx.Timeout(settings.openai_timeout, connect=10.0),
        )
        self.headers = {
            "Authorization": f"Bearer {settings.openai_api_key}",
            "Content-Type": "application/json",
            "OpenAI-Beta": settings.openai_beta_header,
        }

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http.aclose()

    def _url(self, path: str) -> str:
        # Absolute URL so an injected client without base_url still works.
        return f"{self.settings.openai_api_base}{path}"

    async def _request(self, operation: str, method: str, path: str, **kwargs) -> Result[Dict[str, Any]]:
        try:
            response = await self.http.request(method, self._url(path), headers=self.headers, **kwargs)
        except httpx.HTTPError as e:
            return Err(ProviderFailure(operation, None, f"{type(e).__name__}: {e}"))

        if response.is_error:
            return Err(ProviderFailure(operation, response.status_code, response.text))

        try:
            return Ok(response.json())
        except ValueError:
            return Err(ProviderFailure(operation, response.status_code, f"Invalid JSON: {response.text[:500]}"))

    def _assistant(self, assistant_id: Optional[str]) -> str:
        resolved = assistant_id or self.default_assistant_id
        if not resolved:
            raise ProviderError("No assistant configured", status=None, body="OPENAI_ASSISTANT_ID is not set")
        return resolved

    async def create_thread(self) -> ThreadHandle:
        log_provider(logger, "create_thread")
        payload = (await self._request("create_thread", "POST", "/threads", json={})).unwrap()
        thread = ThreadObject.model_validate(payload)
        return ThreadHandle(id=thread.id)

    async def post_message(self, thread_id: str, content: str) -> MessageObject:
        log_provider(logger, "post_message", thread=thread_id, chars=len(content))
        payload = (await self._request(
            "add_message_to_thread", "POST", f"/threads/{thread_id}/messages",
            json={"role": "user", "content": content},
        )).unwrap()
        return MessageObject.model_validate(payload)

    async def create_run(self, thread_id: str, assistant_id: Optional[str] = None,
                         instructions: Optional[str] = None) -> RunObject:
        body = {"assistant_id": self._assistant(assistant_id)}
        if instructions:
            body["instructions"] = instructions
        log_provider(logger, "create_run", thread=thread_id, assistant=body["assistant_id"])
        payload = (await self._request("run_assistant", "POST", f"/threads/{thread_id}/runs", json=body)).unwrap()
        return RunObject.model_validate(payload)

    async def get_run(self, thread_id: str, run_id: str) -> RunObject:
        payload = (await self._request("check_run_status", "GET", f"/threads/{thread_id}/runs/{run_id}")).unwrap()
        return RunObject.model_validate(payload)

    async def list_messages(self, thread_id: str, limit: int = 20) -> list:
        payload = (await self._request(
            "retrieve_messages", "GET", f"/threads/{thread_id}/messages",
            params={"order": "desc", "limit": limit},
        )).unwrap()
        return MessageList.model_validate(payload).data

    async def latest_assistant_text(self, thread_id: str) -> str:
        """Text of the most recent assistant-authored message on the thread."""
        messages = await self.list_messages(thread_id)
        assistant_messages = [m for m in messages if m.role == "assistant"]
        if not assistant_messages:
            raise EmptyResponseError("No assistant response found on thread", thread_id=thread_id)
        latest = max(assistant_messages, key=lambda m: m.created_at)
        return latest.text

    async def wait_for_run(self, thread_id: str, run_id: str, poll_interval: float, timeout: float,
                           clock=time.monotonic, sleep=asyncio.sleep,
                           call: Optional[CallWrapper] = None) -> RunObject:
        """Poll a run until it reaches a terminal status or ``timeout`` seconds pass."""
        call = call or _direct
        deadline = clock() + timeout
        while True:
            run = await call(lambda: self.get_run(thread_id, run_id))
            if run.is_terminal:
                return run
            if clock() >= deadline:
                raise RunTimeoutError(
                    "Assistant run timed out",
                    details=f"Run still {run.status} after {timeout:.0f}s",
                    run_id=run_id,
                )
            await sleep(poll_interval)

    async def run_to_completion(self, thread_id: str, assistant_id: Optional[str] = None,
                                instructions: Optional[str] = None, *, poll_interval: float = 1.0,
                                timeout: float = 120.0, call: Optional[CallWrapper] = None) -> str:
        """
        Non-streaming path: start a run, poll it, and return the answer text.

        ``call`` wraps each individual remote call (run creation, every
        status poll, message retrieval), typically with the retry wrapper.
        """
        call = call or _direct
        run = await call(lambda: self.create_run(thread_id, assistant_id, instructions))
        run = await self.wait_for_run(thread_id, run.id, poll_interval, timeout, call=call)
        if run.status != "completed":
            reason = run.last_error.message if run.last_error else None
            logger.error(f"Run {run.id} ended with {run.status}: {reason}")
            raise RunFailedError("Assistant run did not complete", status=run.status, details=reason)
        log_provider(logger, "run_completed", thread=thread_id, run=run.id)
        return await call(lambda: self.latest_assistant_text(thread_id))

    async def open_run_stream(self, thread_id: str, assistant_id: Optional[str] = None,
                              instructions: Optional[str] = None) -> RunStream:
        """Start a streaming run. The stream is open once this returns."""
        body = {"assistant_id": self._assistant(assistant_id), "stream": True}
        if instructions:
            body["instructions"] = instructions
        log_provider(logger, "open_run_stream", thread=thread_id, assistant=body["assistant_id"])

        request = self.http.build_request("POST", self._url(f"/threads/{thread_id}/runs"),
                                          headers=self.headers, json=body)
        try:
            response = await self.http.send(request, stream=True)
        except httpx.HTTPError as e:
            return Err(ProviderFailure("run_assistant_stream", None, f"{type(e).__name__}: {e}")).unwrap()

        if response.is_error:
            body_text = (await response.aread()).decode("utf-8", errors="replace")
            await response.aclose()
            return Err(ProviderFailure("run_assistant_stream", response.status_code, body_text)).unwrap()

        return RunStream(response, thread_id)
