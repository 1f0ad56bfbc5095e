import pathlib
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import pytest
from fastapi import FastAPI, Request

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from dealerflow.agents.providers import Completion
from dealerflow.agents.replies import ReplyGenerator
from dealerflow.app_logging import init_logging
from dealerflow.channels.base import DeliveryError
from dealerflow.config import Settings
from dealerflow.conversations.orchestrator import MessageOrchestrator
from dealerflow.conversations.repository import InMemoryConversationRepository

# Wednesday 2025-03-12, 10:00 in New York.
FIXED_NOW = datetime(2025, 3, 12, 14, 0, tzinfo=timezone.utc)


class FakeProvider:
    """Completion provider returning scripted results in order."""

    def __init__(self, *results: Any) -> None:
        self.results = list(results) or [Completion(text="Happy to help! Which model?")]
        self.calls: list[tuple[list, str]] = []

    def complete(self, messages, system_prompt):
        self.calls.append((list(messages), system_prompt))
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        if isinstance(result, str):
            return Completion(text=result, input_tokens=12, output_tokens=8, model="fake")
        return result


@dataclass
class RecordingDispatcher:
    jobs: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    fail: bool = False

    def enqueue(self, queue_name: str, payload: Mapping[str, Any], options=None) -> None:
        if self.fail:
            raise ConnectionError("broker unavailable")
        self.jobs.append((queue_name, dict(payload)))

    def queues(self) -> list[str]:
        return [name for name, _ in self.jobs]

    def payloads(self, queue_name: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.jobs if name == queue_name]


@dataclass
class RecordingDelivery:
    sent: list[tuple[str, str, str, dict[str, Any]]] = field(default_factory=list)
    fail: bool = False

    def send(self, channel: str, destination: str, text: str, **options: Any) -> None:
        if self.fail:
            raise DeliveryError(channel, "provider down")
        self.sent.append((channel, destination, text, options))

    def deliver(self, channel: str, destination: str, text: str, **options: Any) -> bool:
        try:
            self.send(channel, destination, text, **options)
        except DeliveryError:
            return False
        return True


@pytest.fixture
def settings() -> Settings:
    return Settings(default_timezone="America/New_York")


@pytest.fixture
def store() -> InMemoryConversationRepository:
    return InMemoryConversationRepository()


@pytest.fixture
def dealership(store):
    return store.add_dealership(
        "Sunrise Motors",
        phone="+15550001111",
        hours="Mon-Sat 9am-6pm",
        notification_email="sales@sunrise.example",
    )


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def delivery() -> RecordingDelivery:
    return RecordingDelivery()


@pytest.fixture
def orchestrator(store, delivery, dispatcher, provider, settings) -> MessageOrchestrator:
    return MessageOrchestrator(
        store,
        delivery,
        dispatcher,
        ReplyGenerator(provider, sleep=lambda _: None),
        settings=settings,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def app_factory(monkeypatch):
    def _create_app(log_dir: str, log_request_bodies: bool = False):
        """Create a FastAPI app with logging initialised."""
        monkeypatch.setenv("LOG_DIR", str(log_dir))
        if log_request_bodies:
            monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
        app = FastAPI()

        @app.post("/echo")
        async def echo(request: Request):
            return await request.json()

        @app.post("/form")
        async def form(request: Request):
            data = await request.form()
            return dict(data)

        init_logging(app)
        return app

    return _create_app


class FakeConn:
    """Stand-in for a psycopg connection that records transaction calls."""

    def __init__(self) -> None:
        self.events: list[str] = []

    def commit(self) -> None:
        self.events.append("commit")

    def rollback(self) -> None:
        self.events.append("rollback")

    def close(self) -> None:
        self.events.append("close")


@pytest.fixture
def api_client(monkeypatch, tmp_path, store, delivery, dispatcher, provider, settings):
    """TestClient whose routers run against the in-memory store."""

    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    from fastapi.testclient import TestClient

    from dealerflow.core.rate_limit import limiter
    from dealerflow.main import app
    from dealerflow.routers import agent, chat, conversations, dashboard, webhooks

    conn = FakeConn()
    for module in (agent, chat, conversations, dashboard, webhooks):
        monkeypatch.setattr(module, "_get_conn", lambda: conn)
        monkeypatch.setattr(module, "PostgresConversationRepository", lambda _conn: store)

    def _orchestrator(_store, *, dispatcher):
        return MessageOrchestrator(
            store,
            delivery,
            dispatcher,
            ReplyGenerator(provider, sleep=lambda _: None),
            settings=settings,
            clock=lambda: FIXED_NOW,
        )

    for module in (chat, webhooks):
        monkeypatch.setattr(module, "create_orchestrator", _orchestrator)
    for module in (agent, chat, webhooks):
        monkeypatch.setattr(module, "default_dispatcher", lambda: dispatcher)
    monkeypatch.setattr(conversations, "ChannelReplyDelivery", lambda _adapters: delivery)
    limiter.reset()

    client = TestClient(app)
    client.conn = conn
    return client
