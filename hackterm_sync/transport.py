"""
aiohttp transports.

HttpTransport performs request/reply calls against the REST API and opens
realtime WebSocket connections, sharing one ClientSession. Transport
failures surface as TransportError; response bodies that are not JSON
objects decode to {}.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import aiohttp

from .exceptions import TransportError

logger = logging.getLogger(__name__)

SESSION_TOKEN_HEADER = "X-Session-Token"


@dataclass(frozen=True)
class HttpResponse:
    """A completed request/reply call."""

    status: int
    body: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Only status 200 counts as success."""
        return self.status == 200

    @property
    def error_code(self) -> str | None:
        """Backend-supplied reason code, if any."""
        code = self.body.get("error")
        return code if isinstance(code, str) and code else None


def parse_body(text: str) -> dict[str, Any]:
    """Decode a response body, treating anything but a JSON object as empty."""
    if not text:
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        logger.debug(f"Ignoring non-JSON response body: {text[:100]!r}")
        return {}
    return data if isinstance(data, dict) else {}


class RealtimeConnection(Protocol):
    """A connected realtime socket as seen by the realtime channel."""

    async def send_json(self, data: dict[str, Any]) -> None: ...

    async def receive(self) -> str | None:
        """Next text frame, or None once the socket has closed."""
        ...

    async def close(self) -> None: ...


class WebSocketConnection:
    """RealtimeConnection over an aiohttp client WebSocket."""

    def __init__(self, ws: aiohttp.ClientWebSocketResponse, url: str) -> None:
        self._ws = ws
        self.url = url

    async def send_json(self, data: dict[str, Any]) -> None:
        try:
            await self._ws.send_str(json.dumps(data))
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            raise TransportError(self.url, e) from e

    async def receive(self) -> str | None:
        while True:
            msg = await self._ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                return msg.data
            if msg.type == aiohttp.WSMsgType.BINARY:
                return msg.data.decode("utf-8", errors="replace")
            if msg.type == aiohttp.WSMsgType.ERROR:
                raise TransportError(self.url, self._ws.exception())
            if msg.type in (
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSING,
                aiohttp.WSMsgType.CLOSED,
            ):
                return None
            # Control frames (PING/PONG) are answered by aiohttp itself

    async def close(self) -> None:
        if not self._ws.closed:
            await self._ws.close()


class HttpTransport:
    """Request/reply client for the backend REST API.

    Example:
        >>> transport = HttpTransport("http://localhost:3000/api", timeout=5.0)
        >>> response = await transport.request("GET", "/status")
        >>> response.ok
        True
        >>> await transport.close()
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            base_url: API base URL, e.g. http://localhost:3000/api
            timeout: Total timeout for one request/reply call, also used
                for the WebSocket opening handshake
            session: Optional pre-built ClientSession (not closed by close())
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        token: str | None = None,
    ) -> HttpResponse:
        """Perform one request/reply call.

        Args:
            method: HTTP method
            path: Path below base_url, already percent-encoded
            json_body: Optional JSON object body
            token: Session token, sent as the X-Session-Token header

        Raises:
            TransportError: On timeout, refused connection or DNS failure
        """
        url = f"{self.base_url}{path}"
        headers = {SESSION_TOKEN_HEADER: token} if token else {}
        session = await self._ensure_session()

        try:
            async with session.request(method, url, json=json_body, headers=headers) as resp:
                text = await resp.text()
                logger.debug(f"{method} {path} -> {resp.status}")
                return HttpResponse(resp.status, parse_body(text))
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(url, e) from e

    async def probe(self) -> bool:
        """Reachability probe: GET /status answered with 200."""
        try:
            response = await self.request("GET", "/status")
        except TransportError as e:
            logger.debug(f"Status probe failed: {e.details.get('cause', e.message)}")
            return False
        return response.ok

    async def ws_connect(self, url: str) -> WebSocketConnection:
        """Open a realtime WebSocket connection.

        Raises:
            TransportError: If the handshake fails or times out
        """
        session = await self._ensure_session()
        try:
            ws = await asyncio.wait_for(session.ws_connect(url), timeout=self.timeout)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(url, e) from e
        return WebSocketConnection(ws, url)

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
