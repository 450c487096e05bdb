"""
Tests for the provider adapter against a MockTransport-backed fake.
"""
import asyncio
from dataclasses import replace

import httpx
import pytest

from errors import EmptyResponseError, ErrorCode, ProviderError, RunFailedError, RunTimeoutError
from services.assistant import AssistantClient, Err, Ok, ProviderFailure, ThreadHandle

from conftest import THREAD_RUN, THREAD_RUNS, THREADS, delta_event, sse_body


class TestResults:
    def test_ok_unwraps_value(self):
        assert Ok({"id": "thread_1"}).unwrap() == {"id": "thread_1"}

    def test_err_raises_provider_error(self):
        with pytest.raises(ProviderError) as exc_info:
            Err(ProviderFailure("create_thread", 503, "upstream down")).unwrap()

        error = exc_info.value
        assert error.message == "Failed to create thread"
        assert error.status == 503
        assert error.body == "upstream down"


class TestThreadHandle:
    def test_dispose_is_idempotent(self):
        handle = ThreadHandle("thread_1")

        asyncio.run(handle.dispose())
        asyncio.run(handle.dispose())

        assert handle.disposed


class TestRequests:
    def test_create_thread(self, assistant_client, provider):
        handle = asyncio.run(assistant_client.create_thread())

        assert handle.id == "thread_1"
        assert provider.count("POST", THREADS) == 1

    def test_headers(self, settings):
        seen = {}

        def handler(request):
            seen.update(request.headers)
            return httpx.Response(200, json={"id": "thread_9"})

        client = AssistantClient(settings, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        asyncio.run(client.create_thread())

        assert seen["authorization"] == "Bearer sk-test"
        assert seen["openai-beta"] == "assistants=v2"

    def test_error_carries_status_and_body(self, assistant_client, provider):
        provider.fail_status = 400

        with pytest.raises(ProviderError) as exc_info:
            asyncio.run(assistant_client.post_message("thread_1", "hello"))

        assert exc_info.value.status == 400
        assert "provider exploded" in exc_info.value.body

    def test_transport_failure_has_no_status(self, settings):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        client = AssistantClient(settings, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        with pytest.raises(ProviderError) as exc_info:
            asyncio.run(client.create_thread())

        assert exc_info.value.status is None
        assert exc_info.value.code == ErrorCode.PROVIDER_NETWORK_ERROR

    def test_missing_assistant_id(self, settings, provider):
        client = AssistantClient(
            replace(settings, openai_assistant_id=""),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(provider.handler)),
        )

        with pytest.raises(ProviderError):
            asyncio.run(client.create_run("thread_1"))
        assert provider.requests == []


class TestRunToCompletion:
    def test_returns_latest_assistant_text(self, assistant_client, provider):
        text = asyncio.run(assistant_client.run_to_completion("thread_1", poll_interval=0, timeout=5))

        assert text == provider.answer
        assert provider.count("POST", THREAD_RUNS) == 1

    def test_failed_run(self, assistant_client, provider):
        provider.run_status = "failed"

        with pytest.raises(RunFailedError) as exc_info:
            asyncio.run(assistant_client.run_to_completion("thread_1", poll_interval=0, timeout=5))

        assert exc_info.value.status == "failed"
        assert exc_info.value.details == "run broke"

    def test_empty_thread(self, settings):
        def handler(request):
            return httpx.Response(200, json={"data": []})

        client = AssistantClient(settings, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        with pytest.raises(EmptyResponseError):
            asyncio.run(client.latest_assistant_text("thread_1"))


class TestWaitForRun:
    def test_times_out(self, assistant_client, provider):
        provider.run_status = "in_progress"
        ticks = iter([0.0, 1.0, 2.0, 3.0, 4.0])

        async def no_sleep(_):
            return None

        with pytest.raises(RunTimeoutError):
            asyncio.run(assistant_client.wait_for_run(
                "thread_1", "run_1", poll_interval=1.0, timeout=2.5, clock=lambda: next(ticks), sleep=no_sleep,
            ))

    def test_returns_terminal_run(self, assistant_client, provider):
        run = asyncio.run(assistant_client.wait_for_run("thread_1", "run_1", poll_interval=0, timeout=1))

        assert run.status == "completed"

    def test_polls_go_through_call_wrapper(self, assistant_client, provider):
        provider.fail_once("GET", THREAD_RUN, 503)
        wrapped = []

        async def retry_once(operation):
            wrapped.append(operation)
            try:
                return await operation()
            except ProviderError:
                return await operation()

        run = asyncio.run(assistant_client.wait_for_run(
            "thread_1", "run_1", poll_interval=0, timeout=1, call=retry_once,
        ))

        assert run.status == "completed"
        assert len(wrapped) == 1
        assert provider.count("GET", THREAD_RUN) == 2


class TestRunStream:
    async def _collect(self, client):
        stream = await client.open_run_stream("thread_1")
        return [chunk async for chunk in stream.text_deltas()]

    def test_yields_text_chunks(self, assistant_client, provider):
        provider.chunks = ["Reserve ", "call-out ", "is 15 minutes."]

        chunks = asyncio.run(self._collect(assistant_client))

        assert chunks == ["Reserve ", "call-out ", "is 15 minutes."]

    def test_failed_run_event(self, settings):
        body = sse_body([
            delta_event("partial"),
            ("thread.run.failed", {"id": "run_1", "status": "failed", "last_error": {"message": "quota"}}),
        ])

        def handler(request):
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body)

        client = AssistantClient(settings, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        with pytest.raises(RunFailedError):
            asyncio.run(self._collect(client))

    def test_error_event(self, settings):
        body = sse_body([("error", {"error": {"message": "server overloaded"}})])

        def handler(request):
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body)

        client = AssistantClient(settings, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        with pytest.raises(ProviderError) as exc_info:
            asyncio.run(self._collect(client))
        assert exc_info.value.body == "server overloaded"

    def test_http_error_before_stream(self, assistant_client, provider):
        provider.fail_status = 500

        with pytest.raises(ProviderError) as exc_info:
            asyncio.run(self._collect(assistant_client))
        assert exc_info.value.status == 500
