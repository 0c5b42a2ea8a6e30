"""
Sync client.

SyncClient is the single entry point the application talks to. It owns
the connectivity supervisor, the request gate and the realtime channel,
and routes every operation to whichever transport currently applies:

- mutations go over the realtime channel when it is authenticated and
  fall back to a gated request/reply call otherwise
- version history, restore and the legacy filesystem calls are
  request/reply only
- resync and scene messages are realtime only

Outcomes that arrive after a call returns are reported to the injected
EventSink.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Coroutine
from dataclasses import asdict
from typing import Any
from urllib.parse import quote

from .config import SyncConfig
from .connectivity import ConnectionState, ConnectivitySupervisor
from .events import EventSink, SyncEvent, SyncEventType
from .exceptions import CredentialStoreError, TransportError
from .gate import RequestGate, RequestKind
from .identity import CredentialStore, Session
from .logging_utils import SyncLoggerAdapter
from .protocol import (
    AuthOk,
    ErrorNotice,
    FileChanged,
    FileChangeMessage,
    FileDeleted,
    FileDeleteMessage,
    InboundMessage,
    MkdirMessage,
    OutboundMessage,
    RequestSyncMessage,
    RmdirMessage,
    SceneLoadMessage,
    SceneMessage,
    SceneUpdateMessage,
    SyncData,
    VersionRestored,
    VersionsData,
    decode_envelope,
)
from .realtime import Connector, RealtimeChannel, RealtimePhase
from .results import (
    REASON_OFFLINE,
    REASON_INVALID_CONTENT,
    REASON_MALFORMED_RESPONSE,
    REASON_REQUEST_FAILED,
    REASON_REQUEST_IN_PROGRESS,
    REASON_TRANSPORT_ERROR,
    OperationResult,
    OperationStatus,
)
from .transport import HttpResponse, HttpTransport

logger = logging.getLogger(__name__)

# Availability reasons
REASON_TAKEN = "taken"
REASON_CHECK_FAILED = "request_failed"


class SyncClient:
    """Facade over connectivity, identity and filesystem sync.

    Example:
        >>> store = FileCredentialStore(config.credentials_dir)
        >>> sink = CallbackEventSink()
        >>> sink.subscribe(SyncEventType.REMOTE_FILE_CHANGED, on_remote_change)
        >>> async with SyncClient(config, store, sink) as client:
        ...     await client.register("NEO")
        ...     await client.create_or_update_file("C:\\\\readme.txt", "wake up")
    """

    def __init__(
        self,
        config: SyncConfig | None,
        credential_store: CredentialStore,
        event_sink: EventSink,
        *,
        transport: HttpTransport | None = None,
        connector: Connector | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Client settings (defaults if None)
            credential_store: Where the session and client id are persisted
            event_sink: Receives every SyncEvent
            transport: Request/reply transport (built from config if None)
            connector: Opens realtime connections (transport.ws_connect if None)
        """
        self.config = config or SyncConfig()
        self._store = credential_store
        self._sink = event_sink
        self._transport = transport or HttpTransport(
            self.config.api_url, timeout=self.config.request_timeout
        )

        self._session = Session()
        self._client_id = ""
        self._gate = RequestGate()
        self._background: set[asyncio.Task[Any]] = set()
        self._log = SyncLoggerAdapter(
            logger, lambda: {"client_id": self._client_id, "handle": self._session.handle}
        )

        self._supervisor = ConnectivitySupervisor(self._transport.probe, self.config)
        self._supervisor.on_transition(self._on_connectivity_changed)

        self._realtime = RealtimeChannel(
            url=self.config.realtime_url,
            connector=connector or self._transport.ws_connect,
            token_provider=lambda: self._session.session_token,
            can_connect=lambda: self._supervisor.is_online,
            config=self.config,
        )
        self._realtime.on_authenticated = self._on_realtime_authenticated
        self._realtime.on_disconnected = self._on_realtime_disconnected
        self._realtime.on_message = self._on_realtime_message

    # =========================================================================
    # Accessors
    # =========================================================================

    @property
    def session(self) -> Session:
        return self._session

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def connection_state(self) -> ConnectionState:
        return self._supervisor.state

    @property
    def is_online(self) -> bool:
        return self._supervisor.is_online

    @property
    def is_authenticated(self) -> bool:
        """True when a session token is held, whether or not the channel is up."""
        return self._session.has_token

    @property
    def realtime_phase(self) -> RealtimePhase:
        return self._realtime.phase

    @property
    def supervisor(self) -> ConnectivitySupervisor:
        return self._supervisor

    @property
    def realtime(self) -> RealtimeChannel:
        return self._realtime

    @property
    def gate(self) -> RequestGate:
        return self._gate

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self, supervise: bool = True) -> None:
        """Load cached credentials and start watching connectivity.

        Args:
            supervise: Run the periodic probe loop. One-shot callers pass
                False and call check_connectivity() themselves.
        """
        try:
            self._session = await self._store.load()
        except CredentialStoreError as e:
            self._log.error(f"Could not load cached credentials, starting signed out: {e}")
            self._session = Session()

        try:
            self._client_id = await self._store.get_client_id()
        except CredentialStoreError as e:
            self._client_id = str(uuid.uuid4())
            self._log.error(f"Could not persist client id, using {self._client_id} for this run: {e}")

        if self._session.has_token:
            self._log.info(f"Loaded session for {self._session.handle}")

        if supervise:
            self._supervisor.start()

    async def stop(self) -> None:
        """Stop probing, close the realtime channel and the HTTP session."""
        await self._supervisor.stop()
        await self._realtime.disconnect()

        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

        await self._transport.close()

    async def __aenter__(self) -> SyncClient:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    async def check_connectivity(self) -> bool:
        """Probe the backend now and return the resulting online state."""
        await self._supervisor.check_now()
        return self._supervisor.is_online

    # =========================================================================
    # Identity
    # =========================================================================

    async def register(self, handle: str, email: str | None = None) -> OperationResult:
        """Register a new handle. Reported via REGISTRATION_SUCCEEDED/FAILED."""
        if not self.is_online:
            self._emit(SyncEventType.REGISTRATION_FAILED, {"handle": handle}, REASON_OFFLINE)
            return OperationResult.offline()

        body: dict[str, Any] = {"handle": handle, "browser_id": self._client_id}
        if email:
            body["email"] = email

        result, response = await self._gated_request(
            RequestKind.REGISTER, "POST", "/register", json_body=body
        )
        return await self._finish_identity_call(
            result,
            response,
            recovery_code="",
            success_event=SyncEventType.REGISTRATION_SUCCEEDED,
            failure_event=SyncEventType.REGISTRATION_FAILED,
        )

    async def recover(self, recovery_code: str) -> OperationResult:
        """Restore an existing identity from its recovery code."""
        code = recovery_code.strip().upper()
        if not self.is_online:
            self._emit(SyncEventType.RECOVERY_FAILED, {}, REASON_OFFLINE)
            return OperationResult.offline()

        result, response = await self._gated_request(
            RequestKind.RECOVER,
            "POST",
            "/recover",
            json_body={"recovery_code": code, "browser_id": self._client_id},
        )
        return await self._finish_identity_call(
            result,
            response,
            recovery_code=code,
            success_event=SyncEventType.RECOVERY_SUCCEEDED,
            failure_event=SyncEventType.RECOVERY_FAILED,
        )

    async def _finish_identity_call(
        self,
        result: OperationResult,
        response: HttpResponse | None,
        recovery_code: str,
        success_event: SyncEventType,
        failure_event: SyncEventType,
    ) -> OperationResult:
        if result.status is OperationStatus.REQUEST_IN_PROGRESS:
            self._emit(failure_event, {}, REASON_REQUEST_IN_PROGRESS)
            return result

        payload = response.body if response is not None else {}
        if result.ok and payload.get("success") and payload.get("session_token"):
            session = Session.from_registration(payload, recovery_code=recovery_code)
            await self._adopt_session(session)
            self._emit(success_event, payload)
            return result

        if result.ok:
            # 200 without a usable identity
            result = OperationResult.failed(
                response.error_code if response is not None else None, payload
            )
        self._emit(failure_event, result.data, result.reason)
        return result

    async def _adopt_session(self, session: Session) -> None:
        """Swap in a new identity, persist it and (re)connect the channel."""
        self._session = session
        try:
            await self._store.save(session)
        except CredentialStoreError as e:
            self._log.error(f"Session for {session.handle} is active but was not cached: {e}")

        if self._realtime.phase is not RealtimePhase.DISCONNECTED:
            await self._realtime.disconnect()
        self._realtime.connect()

    async def check_handle(self, handle: str) -> OperationResult:
        """Ask whether a handle is free. Reported via HANDLE_AVAILABILITY."""
        return await self._check_availability(
            RequestKind.CHECK_HANDLE,
            f"/player/{quote(handle, safe='')}",
            SyncEventType.HANDLE_AVAILABILITY,
            {"handle": handle},
        )

    async def check_email(self, email: str) -> OperationResult:
        """Ask whether a contact email is free. Reported via EMAIL_AVAILABILITY."""
        return await self._check_availability(
            RequestKind.CHECK_EMAIL,
            f"/email/{quote(email, safe='')}",
            SyncEventType.EMAIL_AVAILABILITY,
            {"email": email},
        )

    async def _check_availability(
        self,
        kind: RequestKind,
        path: str,
        event_type: SyncEventType,
        subject: dict[str, str],
    ) -> OperationResult:
        if not self.is_online:
            return OperationResult.offline()

        result, response = await self._gated_request(kind, "GET", path)
        if result.status is OperationStatus.REQUEST_IN_PROGRESS:
            return result

        if response is None:
            data = {**subject, "available": False, "reason": REASON_CHECK_FAILED}
            self._emit(event_type, data, REASON_CHECK_FAILED)
            return OperationResult.failed(result.reason, data)

        # The lookup endpoints answer 404 for unknown names
        if response.status == 404:
            data = {**subject, "available": True}
            self._emit(event_type, data)
        else:
            data = {**subject, "available": False, "reason": REASON_TAKEN}
            self._emit(event_type, data, REASON_TAKEN)
        return OperationResult.completed(data)

    async def logout(self) -> OperationResult:
        """Drop the identity: channel, in-memory session and cache together."""
        await self._realtime.disconnect()
        handle = self._session.handle
        self._session = Session()
        try:
            await self._store.clear()
        except CredentialStoreError as e:
            self._log.error(f"Signed out, but the credential cache could not be cleared: {e}")
        self._emit(SyncEventType.LOGGED_OUT, {"handle": handle})
        return OperationResult.completed({"handle": handle})

    # =========================================================================
    # Filesystem mutations
    # =========================================================================

    async def create_or_update_file(
        self,
        path: str,
        content: str | bytes | None,
        file_type: str = "file",
        program: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> OperationResult:
        message = FileChangeMessage(
            path=path,
            content=content,
            file_type=file_type,
            program=program,
            metadata=metadata,
        )
        return await self._mutate(message, RequestKind.FILE_WRITE, "POST", "files")

    async def delete_file(self, path: str) -> OperationResult:
        return await self._mutate(
            FileDeleteMessage(path=path), RequestKind.FILE_DELETE, "DELETE", "files", path=path
        )

    async def create_directory(self, path: str) -> OperationResult:
        return await self._mutate(MkdirMessage(path=path), RequestKind.MKDIR, "POST", "dirs")

    async def remove_directory(self, path: str) -> OperationResult:
        return await self._mutate(
            RmdirMessage(path=path), RequestKind.RMDIR, "DELETE", "dirs", path=path
        )

    async def _mutate(
        self,
        message: OutboundMessage,
        kind: RequestKind,
        method: str,
        resource: str,
        *,
        path: str | None = None,
    ) -> OperationResult:
        """Send a mutation over the realtime channel, else the fallback path.

        A mutation is issued at most once per call: a realtime send that
        fails is reported, not retried over request/reply. POST fallbacks
        carry the message payload as their body; DELETE fallbacks put the
        path in the URL.
        """
        if not self._session.has_token:
            self._log.debug(f"Skipping {message.type}: no session token")
            return OperationResult.not_authenticated()

        try:
            payload = message.payload()
        except UnicodeDecodeError as e:
            self._log.warning(f"Not sending {message.type}: content is not UTF-8 ({e.reason})")
            return self._operation_failed(
                kind,
                OperationResult.failed(
                    REASON_INVALID_CONTENT, {"path": getattr(message, "path", ""), "error": str(e)}
                ),
            )

        if self._realtime.is_authenticated:
            if await self._realtime.send(message):
                return OperationResult.sent()
            return self._operation_failed(
                kind, OperationResult.failed(REASON_TRANSPORT_ERROR, payload)
            )

        if not self.is_online:
            self._log.debug(f"Skipping {message.type}: offline")
            return OperationResult.offline()

        result, _ = await self._gated_request(
            kind,
            method,
            self._token_path(resource, path),
            json_body=payload if method == "POST" else None,
            token=self._session.session_token,
        )
        return self._operation_failed(kind, result)

    # =========================================================================
    # Reads
    # =========================================================================

    async def request_sync(self, since: int | None = None) -> OperationResult:
        """Ask for a full snapshot (or changes since `since`). Realtime only.

        The snapshot arrives later as a SYNC_DATA event.
        """
        return await self._send_realtime_only(RequestSyncMessage(since=since))

    async def fetch_versions(self, path: str) -> OperationResult:
        """Fetch a file's version history. Reported via VERSIONS_RECEIVED."""
        skipped = self._fallback_precondition()
        if skipped is not None:
            return skipped

        result, response = await self._gated_request(
            RequestKind.VERSIONS,
            "GET",
            self._token_path("versions", path),
            token=self._session.session_token,
        )
        if result.ok and response is not None:
            if not isinstance(response.body.get("versions"), list):
                result = self._malformed(RequestKind.VERSIONS, response)
            else:
                message = decode_envelope({**response.body, "type": "versions_data", "path": path})
                if isinstance(message, VersionsData):
                    self._emit_versions(message)
        return self._operation_failed(RequestKind.VERSIONS, result)

    async def restore_version(self, path: str, version: int) -> OperationResult:
        """Restore a file to an earlier version. Reported via VERSION_RESTORED."""
        skipped = self._fallback_precondition()
        if skipped is not None:
            return skipped

        result, response = await self._gated_request(
            RequestKind.RESTORE,
            "POST",
            f"{self._token_path('versions', path)}/restore/{int(version)}",
            token=self._session.session_token,
        )
        if result.ok and response is not None:
            body = response.body
            restored = body.get("restored_version", version if body.get("success") else None)
            if isinstance(restored, int) and not isinstance(restored, bool):
                self._emit(
                    SyncEventType.VERSION_RESTORED, {"path": path, "restored_version": restored}
                )
            else:
                result = self._malformed(RequestKind.RESTORE, response)
        return self._operation_failed(RequestKind.RESTORE, result)

    async def fetch_filesystem(self) -> OperationResult:
        """Download the whole remote filesystem. Reported via FILESYSTEM_RECEIVED."""
        skipped = self._fallback_precondition()
        if skipped is not None:
            return skipped

        result, response = await self._gated_request(
            RequestKind.FETCH_FILESYSTEM,
            "GET",
            self._token_path("filesystem"),
            token=self._session.session_token,
        )
        if result.ok and response is not None:
            filesystem = response.body.get("filesystem")
            if isinstance(filesystem, dict):
                self._emit(
                    SyncEventType.FILESYSTEM_RECEIVED,
                    {"filesystem": filesystem, "server_time": response.body.get("server_time")},
                )
            else:
                result = self._malformed(RequestKind.FETCH_FILESYSTEM, response)
        return self._operation_failed(RequestKind.FETCH_FILESYSTEM, result)

    async def push_filesystem(self, filesystem: dict[str, Any]) -> OperationResult:
        """Replace the whole remote filesystem (legacy full sync)."""
        skipped = self._fallback_precondition()
        if skipped is not None:
            return skipped

        result, _ = await self._gated_request(
            RequestKind.PUSH_FILESYSTEM,
            "PUT",
            self._token_path("filesystem"),
            json_body={"filesystem": filesystem},
            token=self._session.session_token,
        )
        return self._operation_failed(RequestKind.PUSH_FILESYSTEM, result)

    # =========================================================================
    # Scene configuration
    # =========================================================================

    async def send_scene_update(
        self, config: dict[str, Any], config_name: str = "default"
    ) -> OperationResult:
        return await self._send_realtime_only(
            SceneUpdateMessage(config=config, config_name=config_name)
        )

    async def request_scene_load(self, config_name: str = "default") -> OperationResult:
        return await self._send_realtime_only(SceneLoadMessage(config_name=config_name))

    async def _send_realtime_only(self, message: OutboundMessage) -> OperationResult:
        if not self._session.has_token:
            return OperationResult.not_authenticated()
        if not self._realtime.is_authenticated:
            if not self.is_online:
                return OperationResult.offline()
            self._log.debug(f"Skipping {message.type}: realtime channel not authenticated")
            return OperationResult.not_authenticated()
        if await self._realtime.send(message):
            return OperationResult.sent()
        return OperationResult.failed(REASON_TRANSPORT_ERROR)

    # =========================================================================
    # Request/reply plumbing
    # =========================================================================

    def _fallback_precondition(self) -> OperationResult | None:
        if not self._session.has_token:
            return OperationResult.not_authenticated()
        if not self.is_online:
            return OperationResult.offline()
        return None

    def _token_path(self, resource: str, path: str | None = None) -> str:
        url = f"/{resource}/{quote(self._session.session_token, safe='')}"
        if path is not None:
            url += f"/{quote(path, safe='')}"
        return url

    async def _gated_request(
        self,
        kind: RequestKind,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        token: str | None = None,
    ) -> tuple[OperationResult, HttpResponse | None]:
        """Run one request/reply call through the gate.

        Returns:
            The outcome, and the response when one arrived
        """
        if not self._gate.try_acquire(kind):
            return OperationResult.busy(), None

        try:
            response = await self._transport.request(
                method, path, json_body=json_body, token=token
            )
        except TransportError as e:
            self._log.warning(f"{kind.value} request failed: {e.details.get('cause', e.message)}")
            return OperationResult.failed(REASON_TRANSPORT_ERROR, {"endpoint": e.endpoint}), None
        finally:
            self._gate.release()

        if response.ok:
            return OperationResult.completed(response.body), response

        self._log.info(
            f"{kind.value} rejected with status {response.status}: {response.error_code}"
        )
        return (
            OperationResult.failed(
                response.error_code or REASON_REQUEST_FAILED,
                {"status": response.status, **response.body},
            ),
            response,
        )

    def _malformed(self, kind: RequestKind, response: HttpResponse) -> OperationResult:
        """A 200 whose body (empty when it wasn't JSON) lacks the expected fields."""
        self._log.warning(f"{kind.value} returned an unusable body: {sorted(response.body)}")
        return OperationResult.failed(
            REASON_MALFORMED_RESPONSE, {"status": response.status, **response.body}
        )

    def _operation_failed(self, kind: RequestKind, result: OperationResult) -> OperationResult:
        """Report FAILED results as OPERATION_FAILED events; pass every result through."""
        if result.status is OperationStatus.FAILED:
            self._emit(
                SyncEventType.OPERATION_FAILED,
                {"operation": kind.value, **result.data},
                result.reason,
            )
        return result

    # =========================================================================
    # Supervisor and channel callbacks
    # =========================================================================

    def _on_connectivity_changed(self, online: bool) -> None:
        self._emit(SyncEventType.CONNECTIVITY_CHANGED, {"online": online})
        if online:
            if self._session.has_token and self._realtime.phase is RealtimePhase.DISCONNECTED:
                self._realtime.connect()
        else:
            self._spawn(self._realtime.disconnect())

    def _on_realtime_authenticated(self, message: AuthOk) -> None:
        self._emit(
            SyncEventType.REALTIME_CONNECTED,
            {"handle": message.handle, "player_id": message.player_id},
        )

    def _on_realtime_disconnected(self) -> None:
        self._emit(SyncEventType.REALTIME_DISCONNECTED)

    def _on_realtime_message(self, message: InboundMessage) -> None:
        if isinstance(message, FileChanged):
            self._emit(SyncEventType.REMOTE_FILE_CHANGED, asdict(message))
        elif isinstance(message, FileDeleted):
            self._emit(SyncEventType.REMOTE_FILE_DELETED, asdict(message))
        elif isinstance(message, SyncData):
            self._emit(SyncEventType.SYNC_DATA, asdict(message))
        elif isinstance(message, VersionsData):
            self._emit_versions(message)
        elif isinstance(message, VersionRestored):
            self._emit(SyncEventType.VERSION_RESTORED, asdict(message))
        elif isinstance(message, SceneMessage):
            self._emit(SyncEventType.SCENE_MESSAGE, dict(message.payload))
        elif isinstance(message, ErrorNotice):
            self._emit(SyncEventType.SERVER_ERROR, asdict(message), message.code)
        else:
            self._log.debug(f"No event for realtime message {type(message).__name__}")

    def _emit_versions(self, message: VersionsData) -> None:
        self._emit(SyncEventType.VERSIONS_RECEIVED, asdict(message))

    def _emit(
        self,
        event_type: SyncEventType,
        data: dict[str, Any] | None = None,
        reason: str | None = None,
    ) -> None:
        try:
            self._sink.emit(SyncEvent(event_type=event_type, data=data or {}, reason=reason))
        except Exception:
            self._log.exception(f"Event sink failed for {event_type.value}")

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
