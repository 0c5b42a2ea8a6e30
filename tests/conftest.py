"""
Shared test configuration and fixtures.

Provides in-process fakes for the request/reply transport, the realtime
connection and the event sink, so client behaviour can be tested without
a backend.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

import pytest

from hackterm_sync.config import SyncConfig
from hackterm_sync.events import SyncEvent, SyncEventType
from hackterm_sync.exceptions import TransportError
from hackterm_sync.identity import MemoryCredentialStore, Session
from hackterm_sync.transport import HttpResponse

logger = logging.getLogger(__name__)


@dataclass
class RecordedCall:
    method: str
    path: str
    json_body: dict[str, Any] | None
    token: str | None


class FakeHttpTransport:
    """
    Request/reply transport double.

    Responses are looked up by (method, path); anything unregistered gets
    `default`. Setting `hold` to an unset asyncio.Event parks every request
    until the event is set, which keeps a gated call pending.
    """

    def __init__(self):
        self.calls: list[RecordedCall] = []
        self.responses: dict[tuple[str, str], HttpResponse] = {}
        self.default = HttpResponse(200, {"success": True})
        self.error: Exception | None = None
        self.hold: asyncio.Event | None = None
        self.reachable = True
        self.probe_count = 0
        self.closed = False

    def respond(self, method: str, path: str, status: int, body: dict[str, Any] | None = None):
        self.responses[(method, path)] = HttpResponse(status, body or {})

    async def request(self, method, path, *, json_body=None, token=None) -> HttpResponse:
        self.calls.append(RecordedCall(method, path, json_body, token))
        if self.hold is not None:
            await self.hold.wait()
        if self.error is not None:
            raise TransportError(path, self.error)
        return self.responses.get((method, path), self.default)

    async def probe(self) -> bool:
        self.probe_count += 1
        return self.reachable

    async def ws_connect(self, url):
        raise TransportError(url, ConnectionRefusedError("no realtime backend"))

    async def close(self) -> None:
        self.closed = True


class FakeConnection:
    """Realtime connection double fed from a queue."""

    def __init__(self):
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self.fail_sends = False
        # When set, close() waits for it, like a slow close handshake
        self.close_hold: asyncio.Event | None = None
        self._inbox: asyncio.Queue = asyncio.Queue()

    @property
    def sent_types(self) -> list[str]:
        return [m["type"] for m in self.sent]

    def push(self, message: dict[str, Any]) -> None:
        self._inbox.put_nowait(json.dumps(message))

    def push_raw(self, raw: str) -> None:
        self._inbox.put_nowait(raw)

    def drop(self) -> None:
        """Simulate the peer closing the socket."""
        self._inbox.put_nowait(None)

    async def send_json(self, data: dict[str, Any]) -> None:
        if self.fail_sends or self.closed:
            raise TransportError("ws://fake/ws", ConnectionResetError("socket closed"))
        self.sent.append(data)

    async def receive(self) -> str | None:
        return await self._inbox.get()

    async def close(self) -> None:
        if self.close_hold is not None:
            await self.close_hold.wait()
        self.closed = True


class FakeConnector:
    """Connector double handing out FakeConnections."""

    def __init__(self):
        self.urls: list[str] = []
        self.connections: list[FakeConnection] = []
        self.fail = False

    async def __call__(self, url: str) -> FakeConnection:
        self.urls.append(url)
        if self.fail:
            raise TransportError(url, ConnectionRefusedError("refused"))
        conn = FakeConnection()
        self.connections.append(conn)
        return conn

    @property
    def latest(self) -> FakeConnection:
        return self.connections[-1]


class RecordingSink:
    """EventSink that keeps every event."""

    def __init__(self):
        self.events: list[SyncEvent] = []

    def emit(self, event: SyncEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: SyncEventType) -> list[SyncEvent]:
        return [e for e in self.events if e.event_type is event_type]


async def settle(rounds: int = 10) -> None:
    """Let background tasks run until they block."""
    for _ in range(rounds):
        await asyncio.sleep(0)


SIGNED_IN = Session(
    registered=True,
    handle="NEO",
    contact_id="555-0199",
    recovery_code="ABCD-EFGH-IJKL",
    session_token="abc123",
)


@pytest.fixture
def config(tmp_path) -> SyncConfig:
    return SyncConfig(api_url="http://backend.test/api", credentials_dir=tmp_path)


@pytest.fixture
def transport() -> FakeHttpTransport:
    return FakeHttpTransport()


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def store() -> MemoryCredentialStore:
    return MemoryCredentialStore(client_id="client-1")


@pytest.fixture
def signed_in_store() -> MemoryCredentialStore:
    return MemoryCredentialStore(session=SIGNED_IN, client_id="client-1")
