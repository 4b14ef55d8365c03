"""Shared test fixtures for the relay tests."""
import json

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketState

from app import app
from backend import RelayBackend


class FakeClock:
    """Manually advanced clock, in epoch seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """Stand-in for a Starlette WebSocket that records what the relay does with it."""

    def __init__(self, fail_sends: bool = False, on_send=None):
        self.fail_sends = fail_sends
        self.on_send = on_send
        self.accepted = False
        self.sent = []
        self.closed = None
        self.client_state = WebSocketState.CONNECTING
        self.application_state = WebSocketState.CONNECTING

    async def accept(self):
        self.accepted = True
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    async def send_text(self, data):
        if self.fail_sends:
            raise RuntimeError("connection reset")
        message = json.loads(data)
        self.sent.append(message)
        if self.on_send is not None:
            await self.on_send(message)

    async def close(self, code=1000, reason=None):
        self.closed = (code, reason)
        self.application_state = WebSocketState.DISCONNECTED

    def messages(self, message_type=None):
        if message_type is None:
            return list(self.sent)
        return [m for m in self.sent if m.get("type") == message_type]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend(clock):
    """A fresh relay with small limits and a fake clock."""
    return RelayBackend(
        rate_limit=3,
        rate_window_ms=1000,
        room_ttl_seconds=60,
        cleanup_interval_seconds=3600,
        clock=clock,
    )


@pytest.fixture
def make_transport():
    def factory(**kwargs):
        return FakeTransport(**kwargs)
    return factory


@pytest.fixture
def join(backend, make_transport):
    """Connect a fake transport to ``room_id`` and return the joined connection."""
    async def _join(room_id, **kwargs):
        transport = make_transport(**kwargs)
        connection = await backend.lifecycle.on_connect(transport, f"/room/{room_id}", "")
        assert connection is not None
        return connection
    return _join


@pytest.fixture
def api_client():
    """TestClient running the app's lifespan, shared event loop for all sockets."""
    with TestClient(app) as client:
        yield client
