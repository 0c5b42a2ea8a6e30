"""
HackTerm Sync

Client-side synchronization for the HackTerm backend.

Provides:
- Connectivity supervision with adaptive probe intervals
- Session identity (register, recover, availability checks, logout)
- An authenticated realtime channel with keepalive and reconnect
- Filesystem mutations over the realtime channel, with a single-flight
  request/reply fallback
- Version history and restore

Usage:

    >>> from hackterm_sync import CallbackEventSink, FileCredentialStore, SyncClient, SyncConfig
    >>> config = SyncConfig.from_environment()
    >>> sink = CallbackEventSink()
    >>> async with SyncClient(config, FileCredentialStore(config.credentials_dir), sink) as client:
    ...     if not client.is_authenticated:
    ...         await client.register("NEO")
    ...     await client.create_or_update_file("C:\\\\readme.txt", "follow the white rabbit")
"""

from .client import SyncClient
from .config import SyncConfig
from .connectivity import ConnectionState, ConnectivitySupervisor

# Events
from .events import CallbackEventSink, EventSink, SyncEvent, SyncEventType

# Exceptions
from .exceptions import (
    ConfigurationError,
    CredentialStoreError,
    ProtocolError,
    SyncClientError,
    TransportError,
)
from .gate import PendingRequest, RequestGate, RequestKind

# Identity module
from .identity import CredentialStore, FileCredentialStore, MemoryCredentialStore, Session

# Realtime envelope
from .protocol import InboundMessage, OutboundMessage, RemoteFile, VersionRecord, decode_message
from .realtime import RealtimeChannel, RealtimePhase
from .results import OperationResult, OperationStatus
from .transport import HttpResponse, HttpTransport

__version__ = "0.1.0"

__all__ = [
    # Facade
    "SyncClient",
    "SyncConfig",
    "OperationResult",
    "OperationStatus",
    # Components
    "ConnectivitySupervisor",
    "ConnectionState",
    "RequestGate",
    "RequestKind",
    "PendingRequest",
    "RealtimeChannel",
    "RealtimePhase",
    "HttpTransport",
    "HttpResponse",
    # Events
    "CallbackEventSink",
    "EventSink",
    "SyncEvent",
    "SyncEventType",
    # Identity
    "Session",
    "CredentialStore",
    "FileCredentialStore",
    "MemoryCredentialStore",
    # Protocol
    "InboundMessage",
    "OutboundMessage",
    "RemoteFile",
    "VersionRecord",
    "decode_message",
    # Exceptions
    "SyncClientError",
    "TransportError",
    "ProtocolError",
    "CredentialStoreError",
    "ConfigurationError",
]
