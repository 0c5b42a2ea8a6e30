"""
Realtime message envelope.

Every realtime frame is a JSON object `{"type": ..., ...payload}`. Frames
are decoded once, at the channel boundary, into one dataclass per message
type; anything unrecognised becomes an UnknownMessage that the channel
logs and drops.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

from .exceptions import ProtocolError

# =============================================================================
# Outbound Messages
# =============================================================================


@dataclass(frozen=True)
class OutboundMessage:
    """Base class for messages the client sends."""

    type: ClassVar[str] = ""

    def payload(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire envelope."""
        return {"type": self.type, **self.payload()}


@dataclass(frozen=True)
class AuthMessage(OutboundMessage):
    type: ClassVar[str] = "auth"
    token: str = ""

    def payload(self) -> dict[str, Any]:
        return {"token": self.token}


@dataclass(frozen=True)
class PingMessage(OutboundMessage):
    type: ClassVar[str] = "ping"


@dataclass(frozen=True)
class FileChangeMessage(OutboundMessage):
    """Create or update a file. Path is the natural key."""

    type: ClassVar[str] = "file_change"
    path: str = ""
    content: str | bytes | None = None
    file_type: str = "file"
    program: str | None = None
    metadata: dict[str, Any] | None = None

    def payload(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "path": self.path,
            "content": encode_content(self.content),
            "file_type": self.file_type,
        }
        if self.program is not None:
            data["program"] = self.program
        if self.metadata is not None:
            data["metadata"] = self.metadata
        return data


@dataclass(frozen=True)
class FileDeleteMessage(OutboundMessage):
    type: ClassVar[str] = "file_delete"
    path: str = ""

    def payload(self) -> dict[str, Any]:
        return {"path": self.path}


@dataclass(frozen=True)
class MkdirMessage(OutboundMessage):
    type: ClassVar[str] = "mkdir"
    path: str = ""

    def payload(self) -> dict[str, Any]:
        return {"path": self.path}


@dataclass(frozen=True)
class RmdirMessage(OutboundMessage):
    type: ClassVar[str] = "rmdir"
    path: str = ""

    def payload(self) -> dict[str, Any]:
        return {"path": self.path}


@dataclass(frozen=True)
class RequestSyncMessage(OutboundMessage):
    """Ask for a full snapshot, or for changes since a server timestamp (ms)."""

    type: ClassVar[str] = "request_sync"
    since: int | None = None

    def payload(self) -> dict[str, Any]:
        return {"since": self.since} if self.since is not None else {}


@dataclass(frozen=True)
class SceneUpdateMessage(OutboundMessage):
    """Opaque scene configuration, stored by the backend as-is."""

    type: ClassVar[str] = "scene_update"
    config: dict[str, Any] = field(default_factory=dict)
    config_name: str = "default"

    def payload(self) -> dict[str, Any]:
        return {"config": self.config, "config_name": self.config_name}


@dataclass(frozen=True)
class SceneLoadMessage(OutboundMessage):
    type: ClassVar[str] = "scene_load"
    config_name: str = "default"

    def payload(self) -> dict[str, Any]:
        return {"config_name": self.config_name}


def encode_content(content: str | bytes | None) -> str | None:
    """File content travels as text; bytes must be valid UTF-8.

    Raises:
        UnicodeDecodeError: bytes that are not UTF-8
    """
    if isinstance(content, bytes):
        return content.decode("utf-8")
    return content


# =============================================================================
# Inbound Records
# =============================================================================


@dataclass(frozen=True)
class RemoteFile:
    """One entry of a full-sync snapshot."""

    path: str
    file_type: str = "file"
    content: str | None = None
    content_hash: str | None = None
    file_size: int = 0
    program: str | None = None
    metadata: dict[str, Any] | None = None
    updated_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemoteFile:
        return cls(
            path=str(data.get("path", "")),
            file_type=str(data.get("type") or data.get("file_type") or "file"),
            content=data.get("content"),
            content_hash=data.get("content_hash"),
            file_size=_as_int(data.get("file_size")),
            program=data.get("program"),
            metadata=_as_dict_or_none(data.get("metadata")),
            updated_at=data.get("updated_at"),
        )


@dataclass(frozen=True)
class VersionRecord:
    """A historical version of a file. Immutable once returned by the backend."""

    version: int
    timestamp: str | None = None
    file_type: str = "file"
    content_hash: str | None = None
    file_size: int = 0
    content: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VersionRecord:
        return cls(
            version=_as_int(data.get("version")),
            timestamp=data.get("created_at") or data.get("timestamp"),
            file_type=str(data.get("type") or "file"),
            content_hash=data.get("content_hash"),
            file_size=_as_int(data.get("file_size")),
            content=data.get("content"),
        )


# =============================================================================
# Inbound Messages
# =============================================================================


@dataclass(frozen=True)
class AuthOk:
    handle: str = ""
    player_id: int | str | None = None


@dataclass(frozen=True)
class Pong:
    timestamp: int | None = None


@dataclass(frozen=True)
class ErrorNotice:
    code: str = "UNKNOWN"
    message: str = ""


@dataclass(frozen=True)
class FileChanged:
    path: str
    content: str | None = None
    file_type: str = "file"
    program: str | None = None
    metadata: dict[str, Any] | None = None
    content_hash: str | None = None


@dataclass(frozen=True)
class FileDeleted:
    path: str


@dataclass(frozen=True)
class Acknowledgment:
    """`*_ok` confirmation of an earlier mutation. Informational only."""

    ack_type: str
    path: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SyncData:
    files: tuple[RemoteFile, ...] = ()
    server_time: int | None = None


@dataclass(frozen=True)
class VersionsData:
    path: str
    current: dict[str, Any] | None = None
    versions: tuple[VersionRecord, ...] = ()


@dataclass(frozen=True)
class VersionRestored:
    path: str
    restored_version: int


@dataclass(frozen=True)
class SceneMessage:
    """Scene/editor configuration echo, forwarded verbatim."""

    scene_type: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UnknownMessage:
    message_type: str
    payload: dict[str, Any] = field(default_factory=dict)


InboundMessage = Union[
    AuthOk,
    Pong,
    ErrorNotice,
    FileChanged,
    FileDeleted,
    Acknowledgment,
    SyncData,
    VersionsData,
    VersionRestored,
    SceneMessage,
    UnknownMessage,
]


def decode_message(raw: str | bytes) -> InboundMessage:
    """Decode one realtime frame.

    Raises:
        ProtocolError: If the frame is not a JSON object
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"invalid JSON: {e.msg}", raw) from e
    if not isinstance(data, dict):
        raise ProtocolError("envelope is not an object", raw)
    return decode_envelope(data)


def decode_envelope(data: dict[str, Any]) -> InboundMessage:
    """Map a parsed envelope onto its message variant."""
    message_type = data.get("type")
    if not isinstance(message_type, str):
        return UnknownMessage("", data)

    if message_type == "auth_ok":
        return AuthOk(handle=str(data.get("handle") or ""), player_id=data.get("player_id"))
    if message_type == "pong":
        return Pong(timestamp=data.get("timestamp"))
    if message_type == "error":
        return ErrorNotice(
            code=str(data.get("code") or "UNKNOWN"),
            message=str(data.get("message") or ""),
        )
    if message_type == "file_changed":
        return FileChanged(
            path=str(data.get("path", "")),
            content=data.get("content"),
            file_type=str(data.get("file_type") or "file"),
            program=data.get("program"),
            metadata=_as_dict_or_none(data.get("metadata")),
            content_hash=data.get("content_hash"),
        )
    if message_type == "file_deleted":
        return FileDeleted(path=str(data.get("path", "")))
    if message_type == "sync_data":
        files = data.get("files")
        return SyncData(
            files=tuple(RemoteFile.from_dict(f) for f in _as_list(files) if isinstance(f, dict)),
            server_time=data.get("server_time"),
        )
    if message_type == "versions_data":
        return VersionsData(
            path=str(data.get("path", "")),
            current=_as_dict_or_none(data.get("current")),
            versions=tuple(
                VersionRecord.from_dict(v)
                for v in _as_list(data.get("versions"))
                if isinstance(v, dict)
            ),
        )
    if message_type == "version_restored":
        return VersionRestored(
            path=str(data.get("path", "")),
            restored_version=_as_int(data.get("restored_version")),
        )
    # scene_update_ok is a scene echo first, an acknowledgment second
    if message_type.startswith("scene_"):
        return SceneMessage(scene_type=message_type, payload=data)
    if message_type.endswith("_ok"):
        return Acknowledgment(ack_type=message_type, path=data.get("path"), payload=data)
    return UnknownMessage(message_type, data)


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _as_dict_or_none(value: Any) -> dict[str, Any] | None:
    return value if isinstance(value, dict) else None
