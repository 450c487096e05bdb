"""
Shared pytest fixtures: a throwaway SQLite database, a fake assistant
provider behind httpx.MockTransport, and a TestClient wired to both.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import json
import re

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from config import Settings, get_settings
from database import get_db, get_session_factory
from main import app, get_assistant_client
from models import Base, User
from services.assistant import AssistantClient
from services.auth import AuthService

API_BASE = "https://provider.test/v1"

THREADS = re.compile(r"^/v1/threads$")
THREAD_MESSAGES = re.compile(r"^/v1/threads/(?P<thread>[^/]+)/messages$")
THREAD_RUNS = re.compile(r"^/v1/threads/(?P<thread>[^/]+)/runs$")
THREAD_RUN = re.compile(r"^/v1/threads/(?P<thread>[^/]+)/runs/(?P<run>[^/]+)$")

DEFAULT_ANSWER = (
    "Reserve crew members must answer a call-out within 15 minutes. "
    "[REF]Section 12.3, Page 45: A reserve shall respond within fifteen (15) minutes.[/REF]"
)


def sse_body(events):
    """Encode ``(event, payload)`` pairs the way the provider streams them."""
    frames = []
    for event, payload in events:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        frames.append(f"event: {event}\ndata: {data}\n\n")
    return "".join(frames).encode("utf-8")


def delta_event(text, message_id="msg_a"):
    return ("thread.message.delta", {
        "id": message_id,
        "object": "thread.message.delta",
        "delta": {"content": [{"index": 0, "type": "text", "text": {"value": text}}]},
    })


class FakeProvider:
    """
    In-memory stand-in for the provider's threads API.

    Records every request; ``fail_status`` makes every call fail with that
    status, ``run_status`` sets the status reported for polled runs.
    ``fail_once(method, pattern, status)`` fails only the next matching call.
    """

    def __init__(self, answer=DEFAULT_ANSWER, chunks=None):
        self.answer = answer
        self.chunks = chunks
        self.fail_status = None
        self.run_status = "completed"
        self.requests = []
        self.posted_messages = []
        self.thread_count = 0
        self.failures = []

    def fail_once(self, method, pattern, status):
        self.failures.append((method, pattern, status))

    def count(self, method, pattern):
        return sum(1 for m, path, _ in self.requests if m == method and pattern.match(path))

    def _stream(self, thread_id):
        chunks = self.chunks if self.chunks is not None else [self.answer]
        events = [("thread.run.created", {"id": "run_1", "thread_id": thread_id, "status": "queued"})]
        events += [delta_event(chunk) for chunk in chunks]
        events.append(("thread.run.completed", {"id": "run_1", "thread_id": thread_id, "status": "completed"}))
        events.append(("done", "[DONE]"))
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=sse_body(events))

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, path, body))

        if self.fail_status:
            return httpx.Response(self.fail_status, json={"error": {"message": "provider exploded"}})
        for failure in self.failures:
            method, pattern, status = failure
            if request.method == method and pattern.match(path):
                self.failures.remove(failure)
                return httpx.Response(status, json={"error": {"message": "provider hiccup"}})

        if request.method == "POST" and THREADS.match(path):
            self.thread_count += 1
            return httpx.Response(200, json={"id": f"thread_{self.thread_count}", "object": "thread"})

        match = THREAD_MESSAGES.match(path)
        if match and request.method == "POST":
            self.posted_messages.append(body["content"])
            return httpx.Response(200, json={
                "id": f"msg_u{len(self.posted_messages)}", "role": "user", "created_at": 1,
                "content": [{"type": "text", "text": {"value": body["content"], "annotations": []}}],
            })
        if match and request.method == "GET":
            return httpx.Response(200, json={"object": "list", "data": [
                {"id": "msg_a", "role": "assistant", "created_at": 2,
                 "content": [{"type": "text", "text": {"value": self.answer, "annotations": []}}]},
                {"id": "msg_u1", "role": "user", "created_at": 1,
                 "content": [{"type": "text", "text": {"value": "question", "annotations": []}}]},
            ]})

        match = THREAD_RUNS.match(path)
        if match and request.method == "POST":
            if body.get("stream"):
                return self._stream(match.group("thread"))
            return httpx.Response(200, json={"id": "run_1", "thread_id": match.group("thread"), "status": "queued"})

        match = THREAD_RUN.match(path)
        if match and request.method == "GET":
            return httpx.Response(200, json={
                "id": match.group("run"), "thread_id": match.group("thread"), "status": self.run_status,
                "last_error": {"code": "server_error", "message": "run broke"} if self.run_status == "failed" else None,
            })

        return httpx.Response(404, json={"error": {"message": f"no route for {request.method} {path}"}})


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        openai_api_key="sk-test",
        openai_assistant_id="asst_test",
        openai_api_base=API_BASE,
        retry_initial_delay=0.0,
        run_poll_interval=0.0,
        run_poll_timeout=5.0,
    )


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def assistant_client(settings, provider):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(provider.handler))
    return AssistantClient(settings, http_client=http_client)


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'skyguide.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def make_user(db, username="crew", **fields):
    user = User(
        email=f"{username}@example.com",
        username=username,
        hashed_password=AuthService.hash_password("secret123"),
        **fields,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def user(db):
    return make_user(db)


@pytest.fixture
def auth_headers(user):
    return {"Authorization": f"Bearer {AuthService.create_access_token(user.id)}"}


@pytest.fixture
def client(settings, provider, session_factory):
    def override_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    def override_assistant_client():
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(provider.handler))
        return AssistantClient(settings, http_client=http_client)

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_assistant_client] = override_assistant_client
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
