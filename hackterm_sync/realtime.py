"""
Realtime channel.

A persistent WebSocket used once a session token exists and the backend
is reachable. Each connection attempt walks the phases

    DISCONNECTED -> CONNECTING -> OPEN -> AUTHENTICATED -> CLOSING -> DISCONNECTED

sending the auth message as soon as the socket opens and nothing else
until the backend answers `auth_ok`. Dropped or failed attempts are
retried with a doubling delay, reset whenever an attempt authenticates.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from .config import SyncConfig
from .exceptions import ProtocolError, TransportError
from .logging_utils import SyncLoggerAdapter
from .protocol import (
    Acknowledgment,
    AuthMessage,
    AuthOk,
    ErrorNotice,
    InboundMessage,
    OutboundMessage,
    PingMessage,
    Pong,
    UnknownMessage,
    decode_message,
)
from .transport import RealtimeConnection

logger = logging.getLogger(__name__)

Connector = Callable[[str], Awaitable[RealtimeConnection]]


class RealtimePhase(Enum):
    """Lifecycle phase of the realtime channel."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    AUTHENTICATED = "authenticated"
    CLOSING = "closing"


class RealtimeChannel:
    """Authenticated realtime connection with keepalive and reconnect.

    Callbacks:
        on_authenticated(AuthOk): the backend accepted the session token
        on_disconnected(): a connection that had opened is gone; fired
            exactly once per such connection
        on_message(InboundMessage): inbound pushes for the application
            (file changes, sync payloads, version history, scene echoes,
            error notices), in delivery order

    Example:
        >>> channel = RealtimeChannel(
        ...     url="ws://localhost:3000/ws",
        ...     connector=transport.ws_connect,
        ...     token_provider=lambda: session.session_token,
        ...     can_connect=lambda: supervisor.is_online,
        ... )
        >>> channel.on_message = handle_push
        >>> channel.connect()
        >>> await channel.send(FileDeleteMessage(path="C:\\\\notes.txt"))
        >>> await channel.disconnect()
    """

    def __init__(
        self,
        url: str,
        connector: Connector,
        token_provider: Callable[[], str],
        can_connect: Callable[[], bool] | None = None,
        config: SyncConfig | None = None,
    ) -> None:
        """Initialize the channel.

        Args:
            url: WebSocket address
            connector: Async callable opening a RealtimeConnection to a URL
            token_provider: Returns the current session token ("" if none)
            can_connect: Extra precondition for (re)connecting, e.g. "online"
            config: Reconnect and keepalive settings (defaults if None)
        """
        cfg = config or SyncConfig()
        self.url = url
        self.initial_delay = cfg.reconnect_initial_delay
        self.max_delay = cfg.reconnect_max_delay
        self.keepalive_interval = cfg.keepalive_interval

        self._connector = connector
        self._token_provider = token_provider
        self._can_connect = can_connect or (lambda: True)

        self._phase = RealtimePhase.DISCONNECTED
        self.reconnect_delay = self.initial_delay
        self._conn: RealtimeConnection | None = None
        self._last_activity = time.monotonic()

        # Set by disconnect(), cleared by connect(); suppresses reconnects
        self._stopped = False

        self._reader_task: asyncio.Task[None] | None = None
        self._keepalive_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None

        # Callbacks
        self.on_authenticated: Callable[[AuthOk], None] | None = None
        self.on_disconnected: Callable[[], None] | None = None
        self.on_message: Callable[[InboundMessage], None] | None = None

        self._log = SyncLoggerAdapter(logger, lambda: {"realtime_url": self.url})

    @property
    def phase(self) -> RealtimePhase:
        return self._phase

    @property
    def is_authenticated(self) -> bool:
        return self._phase is RealtimePhase.AUTHENTICATED

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def connect(self) -> bool:
        """Start a connection attempt in the background.

        Only starts when the channel is DISCONNECTED, a session token is
        present and the can_connect precondition holds.

        Returns:
            True if an attempt was started
        """
        if self._phase is not RealtimePhase.DISCONNECTED:
            return False
        token = self._token_provider()
        if not token:
            self._log.debug("Not connecting: no session token")
            return False
        if not self._can_connect():
            self._log.debug("Not connecting: precondition not met")
            return False

        self._stopped = False
        self._cancel_reconnect()
        self._phase = RealtimePhase.CONNECTING
        self._reader_task = asyncio.create_task(self._run(token))
        self._log.info(f"Connecting to {self.url}")
        return True

    async def disconnect(self) -> None:
        """Close the channel and stop reconnecting. Idempotent."""
        self._stopped = True
        self._cancel_reconnect()

        task = self._reader_task
        if task is None or task.done():
            return

        # A closing attempt is left to finish so the phase and the
        # disconnect notification are settled by _close_connection
        if self._phase is not RealtimePhase.CLOSING:
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def send(self, message: OutboundMessage) -> bool:
        """Send a message on an authenticated channel.

        Returns:
            False if the channel is not AUTHENTICATED or the send failed
        """
        if self._phase is not RealtimePhase.AUTHENTICATED:
            self._log.debug(f"Dropping {message.type}: channel is {self._phase.value}")
            return False
        return await self._send_raw(message)

    async def _send_raw(self, message: OutboundMessage) -> bool:
        conn = self._conn
        if conn is None:
            return False
        try:
            await conn.send_json(message.to_dict())
        except TransportError as e:
            self._log.warning(f"Failed to send {message.type}: {e.details.get('cause', e.message)}")
            return False
        self._touch()
        return True

    async def _run(self, token: str) -> None:
        """One connection attempt, from connect to close."""
        reached_open = False
        try:
            try:
                self._conn = await self._connector(self.url)
            except TransportError as e:
                self._log.warning(f"Realtime connect failed: {e.details.get('cause', e.message)}")
                return

            self._phase = RealtimePhase.OPEN
            reached_open = True
            self._touch()

            if not await self._send_raw(AuthMessage(token=token)):
                return
            self._keepalive_task = asyncio.create_task(self._keepalive_loop())

            while True:
                raw = await self._conn.receive()
                if raw is None:
                    self._log.info("Realtime connection closed by peer")
                    break
                self._touch()
                self._dispatch(raw)
        except TransportError as e:
            self._log.warning(f"Realtime connection error: {e.details.get('cause', e.message)}")
        finally:
            await self._close_connection(reached_open)

    async def _close_connection(self, reached_open: bool) -> None:
        self._phase = RealtimePhase.CLOSING
        conn, self._conn = self._conn, None
        try:
            await self._stop_keepalive()
            if conn is not None:
                try:
                    await conn.close()
                except Exception as e:
                    self._log.debug(f"Error while closing realtime connection: {e}")
        finally:
            self._phase = RealtimePhase.DISCONNECTED

            if reached_open:
                self._log.info("Realtime channel disconnected")
                self._invoke(self.on_disconnected)

            if not self._stopped:
                self._schedule_reconnect()

    async def _stop_keepalive(self) -> None:
        task, self._keepalive_task = self._keepalive_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _schedule_reconnect(self) -> None:
        delay = self.reconnect_delay
        self.reconnect_delay = min(self.reconnect_delay * 2, self.max_delay)
        self._log.info(f"Reconnecting in {delay:.0f}s")
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._reconnect_task = None
        if self._stopped or self._phase is not RealtimePhase.DISCONNECTED:
            return
        if not self.connect():
            # The supervisor's next online transition starts the next attempt
            self._log.debug("Reconnect skipped: offline or no session token")

    def _cancel_reconnect(self) -> None:
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None

    async def _keepalive_loop(self) -> None:
        """Ping after keepalive_interval seconds without traffic.

        A missing pong is not treated as fatal; the transport's own close
        and error signals decide when the connection is gone.
        """
        while True:
            remaining = self.keepalive_interval - (time.monotonic() - self._last_activity)
            if remaining > 0:
                await asyncio.sleep(remaining)
                continue
            if self._phase is RealtimePhase.AUTHENTICATED:
                await self._send_raw(PingMessage())
            self._touch()

    def _touch(self) -> None:
        self._last_activity = time.monotonic()

    def _dispatch(self, raw: str) -> None:
        try:
            message = decode_message(raw)
        except ProtocolError as e:
            self._log.warning(f"Ignoring undecodable frame: {e.reason}")
            return

        if isinstance(message, AuthOk):
            if self._phase is RealtimePhase.OPEN:
                self._phase = RealtimePhase.AUTHENTICATED
                self.reconnect_delay = self.initial_delay
                self._log.info(f"Realtime channel authenticated as {message.handle}")
                self._invoke(self.on_authenticated, message)
            return

        if isinstance(message, Pong):
            return
        if isinstance(message, UnknownMessage):
            self._log.debug(f"Ignoring unknown message type {message.message_type!r}")
            return
        if isinstance(message, Acknowledgment):
            self._log.debug(f"Backend acknowledged {message.ack_type} {message.path or ''}")
            return
        if isinstance(message, ErrorNotice):
            self._log.warning(f"Backend error {message.code}: {message.message}")

        self._invoke(self.on_message, message)

    def _invoke(self, callback: Callable[..., None] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            self._log.exception("Realtime callback failed")
