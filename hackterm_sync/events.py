"""
Sync events and the observer interface they are delivered through.

The client is constructed with an EventSink and reports every outcome
that happens after a call returns (transitions, inbound pushes, async
request results) as a SyncEvent.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class SyncEventType(Enum):
    """Types of sync events."""

    # Connectivity and channel lifecycle
    CONNECTIVITY_CHANGED = "connectivity_changed"
    REALTIME_CONNECTED = "realtime_connected"
    REALTIME_DISCONNECTED = "realtime_disconnected"

    # Identity
    REGISTRATION_SUCCEEDED = "registration_succeeded"
    REGISTRATION_FAILED = "registration_failed"
    RECOVERY_SUCCEEDED = "recovery_succeeded"
    RECOVERY_FAILED = "recovery_failed"
    HANDLE_AVAILABILITY = "handle_availability"
    EMAIL_AVAILABILITY = "email_availability"
    LOGGED_OUT = "logged_out"

    # Remote filesystem pushes
    REMOTE_FILE_CHANGED = "remote_file_changed"
    REMOTE_FILE_DELETED = "remote_file_deleted"
    SYNC_DATA = "sync_data"
    FILESYSTEM_RECEIVED = "filesystem_received"

    # Version history
    VERSIONS_RECEIVED = "versions_received"
    VERSION_RESTORED = "version_restored"

    # Opaque scene configuration echoes
    SCENE_MESSAGE = "scene_message"

    # Failures
    SERVER_ERROR = "server_error"
    OPERATION_FAILED = "operation_failed"


@dataclass
class SyncEvent:
    """An event delivered to the application."""

    event_type: SyncEventType
    data: dict[str, Any] = field(default_factory=dict)
    reason: str | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())


class EventSink(Protocol):
    """Observer the client reports events to."""

    def emit(self, event: SyncEvent) -> None: ...


class CallbackEventSink:
    """EventSink that fans events out to registered callbacks.

    Example:
        >>> sink = CallbackEventSink()
        >>> sink.subscribe(SyncEventType.REMOTE_FILE_CHANGED, lambda e: print(e.data["path"]))
        >>> client = SyncClient(config, store, sink)

    A callback that raises is logged and does not stop delivery to the
    remaining callbacks.
    """

    def __init__(self) -> None:
        self._callbacks: dict[SyncEventType | None, list[Callable[[SyncEvent], None]]] = (
            defaultdict(list)
        )

    def subscribe(
        self,
        event_type: SyncEventType | None,
        callback: Callable[[SyncEvent], None],
    ) -> None:
        """Register a callback for one event type, or for all when None."""
        self._callbacks[event_type].append(callback)

    def unsubscribe(
        self,
        event_type: SyncEventType | None,
        callback: Callable[[SyncEvent], None],
    ) -> None:
        if callback in self._callbacks.get(event_type, []):
            self._callbacks[event_type].remove(callback)

    def emit(self, event: SyncEvent) -> None:
        for callback in [*self._callbacks.get(event.event_type, []), *self._callbacks.get(None, [])]:
            try:
                callback(event)
            except Exception:
                logger.exception(f"Event callback failed for {event.event_type.value}")
