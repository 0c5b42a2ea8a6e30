"""Tests for the SyncClient facade."""

from __future__ import annotations

import asyncio
import logging

import pytest

from hackterm_sync.client import SyncClient
from hackterm_sync.events import SyncEventType
from hackterm_sync.exceptions import CredentialStoreError
from hackterm_sync.identity import MemoryCredentialStore, Session
from hackterm_sync.realtime import RealtimePhase
from hackterm_sync.results import OperationStatus

from conftest import SIGNED_IN, settle

WS_URL = "ws://backend.test/ws"


@pytest.fixture
async def make_client(config, transport, connector, sink):
    """Build started clients (without the probe loop) and stop them afterwards."""
    clients: list[SyncClient] = []

    async def factory(store) -> SyncClient:
        client = SyncClient(config, store, sink, transport=transport, connector=connector)
        await client.start(supervise=False)
        clients.append(client)
        return client

    yield factory

    for client in clients:
        await client.stop()


async def authenticate(client: SyncClient, connector):
    """Go online and complete the realtime handshake."""
    await client.check_connectivity()
    await settle()
    conn = connector.latest
    conn.push({"type": "auth_ok", "handle": client.session.handle})
    await settle()
    assert client.realtime_phase is RealtimePhase.AUTHENTICATED
    return conn


class TestLifecycle:
    """start, stop and connectivity wiring."""

    @pytest.mark.asyncio
    async def test_start_loads_session_and_client_id(self, make_client, signed_in_store) -> None:
        client = await make_client(signed_in_store)

        assert client.session == SIGNED_IN
        assert client.is_authenticated
        assert client.client_id == "client-1"
        assert client.is_online is False

    @pytest.mark.asyncio
    async def test_log_records_carry_identity(self, make_client, signed_in_store, caplog) -> None:
        with caplog.at_level(logging.INFO, logger="hackterm_sync.client"):
            await make_client(signed_in_store)

        record = next(r for r in caplog.records if r.getMessage() == "Loaded session for NEO")
        assert record.client_id == "client-1"
        assert record.handle == "NEO"

    @pytest.mark.asyncio
    async def test_unreadable_cache_starts_signed_out(self, make_client) -> None:
        class BrokenStore(MemoryCredentialStore):
            async def load(self) -> Session:
                raise CredentialStoreError("load", "/nowhere/credentials.json")

        client = await make_client(BrokenStore(client_id="client-1"))

        assert client.session == Session()
        assert client.is_authenticated is False

    @pytest.mark.asyncio
    async def test_going_online_connects_realtime(
        self, make_client, signed_in_store, connector, sink
    ) -> None:
        client = await make_client(signed_in_store)
        assert await client.check_connectivity() is True
        await settle()

        assert connector.urls == [WS_URL]
        assert connector.latest.sent == [{"type": "auth", "token": "abc123"}]
        assert sink.of_type(SyncEventType.CONNECTIVITY_CHANGED)[0].data == {"online": True}

    @pytest.mark.asyncio
    async def test_going_online_without_token_does_not_connect(
        self, make_client, store, connector
    ) -> None:
        client = await make_client(store)
        await client.check_connectivity()
        await settle()

        assert connector.urls == []
        assert client.realtime_phase is RealtimePhase.DISCONNECTED

    @pytest.mark.asyncio
    async def test_going_offline_disconnects_realtime(
        self, make_client, signed_in_store, connector, transport, sink
    ) -> None:
        client = await make_client(signed_in_store)
        await authenticate(client, connector)

        transport.reachable = False
        assert await client.check_connectivity() is False
        await settle()

        assert client.realtime_phase is RealtimePhase.DISCONNECTED
        assert len(sink.of_type(SyncEventType.REALTIME_CONNECTED)) == 1
        assert len(sink.of_type(SyncEventType.REALTIME_DISCONNECTED)) == 1
        online_flags = [e.data["online"] for e in sink.of_type(SyncEventType.CONNECTIVITY_CHANGED)]
        assert online_flags == [True, False]

    @pytest.mark.asyncio
    async def test_stop_closes_transport(self, config, transport, connector, sink, store) -> None:
        async with SyncClient(config, store, sink, transport=transport, connector=connector):
            pass

        assert transport.closed


class TestRegistration:
    """register and recover."""

    @pytest.mark.asyncio
    async def test_successful_registration(
        self, make_client, store, transport, connector, sink
    ) -> None:
        payload = {"success": True, "handle": "NEO", "session_token": "abc123"}
        transport.respond("POST", "/register", 200, payload)
        client = await make_client(store)
        await client.check_connectivity()

        result = await client.register("NEO")
        await settle()

        assert result.status is OperationStatus.COMPLETED
        assert client.session == Session(registered=True, handle="NEO", session_token="abc123")
        assert store.session == client.session
        assert transport.calls[-1].json_body == {"handle": "NEO", "browser_id": "client-1"}
        assert connector.urls == [WS_URL]
        assert connector.latest.sent[0] == {"type": "auth", "token": "abc123"}
        events = sink.of_type(SyncEventType.REGISTRATION_SUCCEEDED)
        assert len(events) == 1
        assert events[0].data == payload

    @pytest.mark.asyncio
    async def test_registration_keeps_contact_and_recovery_code(
        self, make_client, store, transport
    ) -> None:
        transport.respond(
            "POST",
            "/register",
            200,
            {
                "success": True,
                "handle": "TRINITY",
                "phone_number": "555-0142",
                "recovery_code": "WXYZ-1234-ABCD",
                "session_token": "tok",
            },
        )
        client = await make_client(store)
        await client.check_connectivity()

        await client.register("trinity", email="t@example.com")

        assert client.session.contact_id == "555-0142"
        assert client.session.recovery_code == "WXYZ-1234-ABCD"
        assert transport.calls[-1].json_body["email"] == "t@example.com"

    @pytest.mark.asyncio
    async def test_registration_offline_reports_reason(
        self, make_client, store, transport, sink
    ) -> None:
        transport.reachable = False
        client = await make_client(store)
        await client.check_connectivity()

        result = await client.register("NEO")

        assert result.status is OperationStatus.SKIPPED_OFFLINE
        assert transport.calls == []
        events = sink.of_type(SyncEventType.REGISTRATION_FAILED)
        assert events[0].reason == "OFFLINE"

    @pytest.mark.asyncio
    async def test_registration_rejected(self, make_client, store, transport, sink) -> None:
        transport.respond(
            "POST",
            "/register",
            400,
            {"success": False, "error": "HANDLE_TAKEN", "message": "Handle already in use"},
        )
        client = await make_client(store)
        await client.check_connectivity()

        result = await client.register("NEO")

        assert result.status is OperationStatus.FAILED
        assert result.reason == "HANDLE_TAKEN"
        assert client.session == Session()
        assert store.save_count == 0
        assert sink.of_type(SyncEventType.REGISTRATION_FAILED)[0].reason == "HANDLE_TAKEN"

    @pytest.mark.asyncio
    async def test_registration_without_token_is_a_failure(
        self, make_client, store, transport, sink
    ) -> None:
        transport.respond("POST", "/register", 200, {"success": True, "handle": "NEO"})
        client = await make_client(store)
        await client.check_connectivity()

        result = await client.register("NEO")

        assert result.status is OperationStatus.FAILED
        assert result.reason == "REQUEST_FAILED"
        assert client.is_authenticated is False

    @pytest.mark.asyncio
    async def test_transport_failure_releases_gate(
        self, make_client, store, transport, sink
    ) -> None:
        client = await make_client(store)
        await client.check_connectivity()
        transport.error = TimeoutError("timed out")

        result = await client.register("NEO")

        assert result.status is OperationStatus.FAILED
        assert result.reason == "TRANSPORT_ERROR"
        assert client.gate.is_busy is False
        assert sink.of_type(SyncEventType.REGISTRATION_FAILED)[0].reason == "TRANSPORT_ERROR"

    @pytest.mark.asyncio
    async def test_recover_normalizes_code_and_keeps_it(
        self, make_client, store, transport, sink
    ) -> None:
        transport.respond(
            "POST",
            "/recover",
            200,
            {"success": True, "handle": "NEO", "phone_number": "555-0199", "session_token": "t2"},
        )
        client = await make_client(store)
        await client.check_connectivity()

        result = await client.recover("  abcd-efgh-ijkl ")

        assert result.ok
        assert transport.calls[-1].json_body == {
            "recovery_code": "ABCD-EFGH-IJKL",
            "browser_id": "client-1",
        }
        assert client.session.recovery_code == "ABCD-EFGH-IJKL"
        assert client.session.session_token == "t2"
        assert len(sink.of_type(SyncEventType.RECOVERY_SUCCEEDED)) == 1

    @pytest.mark.asyncio
    async def test_recover_replaces_live_channel(
        self, make_client, signed_in_store, transport, connector
    ) -> None:
        transport.respond(
            "POST", "/recover", 200, {"success": True, "handle": "MORPHEUS", "session_token": "t3"}
        )
        client = await make_client(signed_in_store)
        old = await authenticate(client, connector)

        await client.recover("WXYZ-1234-ABCD")
        await settle()

        assert old.closed
        assert len(connector.connections) == 2
        assert connector.latest.sent[0] == {"type": "auth", "token": "t3"}

    @pytest.mark.asyncio
    async def test_recover_offline(self, make_client, store, transport, sink) -> None:
        transport.reachable = False
        client = await make_client(store)

        result = await client.recover("ABCD-EFGH-IJKL")

        assert result.status is OperationStatus.SKIPPED_OFFLINE
        assert sink.of_type(SyncEventType.RECOVERY_FAILED)[0].reason == "OFFLINE"


class TestAvailability:
    """Handle and email checks."""

    @pytest.mark.asyncio
    async def test_handle_not_found_is_available(
        self, make_client, store, transport, sink
    ) -> None:
        transport.respond("GET", "/player/NEO", 404, {"error": "NOT_FOUND"})
        client = await make_client(store)
        await client.check_connectivity()

        result = await client.check_handle("NEO")

        assert result.status is OperationStatus.COMPLETED
        event = sink.of_type(SyncEventType.HANDLE_AVAILABILITY)[0]
        assert event.data == {"handle": "NEO", "available": True}
        assert event.reason is None

    @pytest.mark.parametrize("status", [200, 400, 500])
    @pytest.mark.asyncio
    async def test_any_other_status_is_taken(
        self, make_client, store, transport, sink, status
    ) -> None:
        transport.respond("GET", "/player/NEO", status, {"handle": "NEO"})
        client = await make_client(store)
        await client.check_connectivity()

        await client.check_handle("NEO")

        event = sink.of_type(SyncEventType.HANDLE_AVAILABILITY)[0]
        assert event.data["available"] is False
        assert event.reason == "taken"

    @pytest.mark.asyncio
    async def test_check_failure_is_not_available(
        self, make_client, store, transport, sink
    ) -> None:
        client = await make_client(store)
        await client.check_connectivity()
        transport.error = ConnectionRefusedError("refused")

        result = await client.check_handle("NEO")

        assert result.status is OperationStatus.FAILED
        event = sink.of_type(SyncEventType.HANDLE_AVAILABILITY)[0]
        assert event.data["available"] is False
        assert event.reason == "request_failed"

    @pytest.mark.asyncio
    async def test_email_is_percent_encoded(self, make_client, store, transport, sink) -> None:
        transport.respond("GET", "/email/neo%40example.com", 404)
        client = await make_client(store)
        await client.check_connectivity()

        await client.check_email("neo@example.com")

        assert transport.calls[-1].path == "/email/neo%40example.com"
        event = sink.of_type(SyncEventType.EMAIL_AVAILABILITY)[0]
        assert event.data == {"email": "neo@example.com", "available": True}

    @pytest.mark.asyncio
    async def test_checks_require_online(self, make_client, store, transport) -> None:
        client = await make_client(store)

        result = await client.check_handle("NEO")

        assert result.status is OperationStatus.SKIPPED_OFFLINE
        assert transport.calls == []


class TestMutations:
    """File and directory mutations on both paths."""

    @pytest.mark.asyncio
    async def test_no_token_means_no_transport_call(
        self, make_client, store, transport, connector
    ) -> None:
        client = await make_client(store)
        await client.check_connectivity()

        results = [
            await client.create_or_update_file("a.txt", "hello"),
            await client.delete_file("a.txt"),
            await client.create_directory("docs"),
            await client.remove_directory("docs"),
        ]

        assert all(r.status is OperationStatus.SKIPPED_NOT_AUTHENTICATED for r in results)
        assert transport.calls == []
        assert connector.connections == []

    @pytest.mark.asyncio
    async def test_realtime_path_when_authenticated(
        self, make_client, signed_in_store, transport, connector
    ) -> None:
        client = await make_client(signed_in_store)
        conn = await authenticate(client, connector)

        results = [
            await client.create_or_update_file("C:\\a.txt", "hello", program="notepad"),
            await client.delete_file("C:\\b.txt"),
            await client.create_directory("C:\\docs"),
            await client.remove_directory("C:\\old"),
        ]

        assert all(r.status is OperationStatus.SENT_REALTIME for r in results)
        assert conn.sent[1:] == [
            {
                "type": "file_change",
                "path": "C:\\a.txt",
                "content": "hello",
                "file_type": "file",
                "program": "notepad",
            },
            {"type": "file_delete", "path": "C:\\b.txt"},
            {"type": "mkdir", "path": "C:\\docs"},
            {"type": "rmdir", "path": "C:\\old"},
        ]
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_non_utf8_content_fails_without_sending(
        self, make_client, signed_in_store, transport, connector, sink
    ) -> None:
        client = await make_client(signed_in_store)
        conn = await authenticate(client, connector)

        realtime = await client.create_or_update_file("C:\\img.bin", b"\xff\xfe\x00raw")
        conn.drop()
        await settle()
        assert client.realtime_phase is RealtimePhase.DISCONNECTED
        fallback = await client.create_or_update_file("C:\\img.bin", b"\x89PNG\xff")

        for result in (realtime, fallback):
            assert result.status is OperationStatus.FAILED
            assert result.reason == "INVALID_CONTENT"
            assert result.data["path"] == "C:\\img.bin"
        assert conn.sent_types == ["auth"]
        assert transport.calls == []
        failures = sink.of_type(SyncEventType.OPERATION_FAILED)
        assert [e.data["operation"] for e in failures] == ["file_write", "file_write"]

    @pytest.mark.asyncio
    async def test_fallback_when_channel_not_authenticated(
        self, make_client, signed_in_store, transport
    ) -> None:
        client = await make_client(signed_in_store)
        await client.check_connectivity()

        await client.create_or_update_file("C:\\a.txt", "hello")
        await client.delete_file("C:\\a b.txt")
        await client.create_directory("C:\\docs")
        await client.remove_directory("C:\\docs")

        calls = [(c.method, c.path) for c in transport.calls]
        assert calls == [
            ("POST", "/files/abc123"),
            ("DELETE", "/files/abc123/C%3A%5Ca%20b.txt"),
            ("POST", "/dirs/abc123"),
            ("DELETE", "/dirs/abc123/C%3A%5Cdocs"),
        ]
        assert transport.calls[0].json_body == {
            "path": "C:\\a.txt",
            "content": "hello",
            "file_type": "file",
        }
        assert transport.calls[2].json_body == {"path": "C:\\docs"}
        assert all(c.token == "abc123" for c in transport.calls)

    @pytest.mark.asyncio
    async def test_offline_mutation_is_skipped(
        self, make_client, signed_in_store, transport
    ) -> None:
        client = await make_client(signed_in_store)

        result = await client.delete_file("a.txt")

        assert result.status is OperationStatus.SKIPPED_OFFLINE
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_fallback_rejection_is_reported(
        self, make_client, signed_in_store, transport, sink
    ) -> None:
        transport.respond(
            "POST", "/dirs/abc123", 400, {"success": False, "error": "MISSING_PATH"}
        )
        client = await make_client(signed_in_store)
        await client.check_connectivity()

        result = await client.create_directory("")

        assert result.status is OperationStatus.FAILED
        assert result.reason == "MISSING_PATH"
        event = sink.of_type(SyncEventType.OPERATION_FAILED)[0]
        assert event.data["operation"] == "mkdir"
        assert event.reason == "MISSING_PATH"

    @pytest.mark.asyncio
    async def test_failed_realtime_send_is_not_retried(
        self, make_client, signed_in_store, transport, connector
    ) -> None:
        client = await make_client(signed_in_store)
        conn = await authenticate(client, connector)
        conn.fail_sends = True

        result = await client.delete_file("a.txt")

        assert result.status is OperationStatus.FAILED
        assert result.reason == "TRANSPORT_ERROR"
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_mutation_rejected_while_request_pending(
        self, make_client, signed_in_store, transport
    ) -> None:
        client = await make_client(signed_in_store)
        await client.check_connectivity()
        transport.hold = asyncio.Event()

        pending = asyncio.create_task(client.create_directory("a"))
        await settle()
        result = await client.create_directory("b")

        assert result.status is OperationStatus.REQUEST_IN_PROGRESS
        transport.hold.set()
        assert (await pending).ok
        assert len(transport.calls) == 1


class TestReads:
    """Resync, version history and the legacy filesystem calls."""

    @pytest.mark.asyncio
    async def test_request_sync_is_realtime_only(
        self, make_client, signed_in_store, transport, connector
    ) -> None:
        client = await make_client(signed_in_store)
        await client.check_connectivity()
        await settle()

        skipped = await client.request_sync()
        assert skipped.status is OperationStatus.SKIPPED_NOT_AUTHENTICATED
        assert transport.calls == []

        conn = connector.latest
        conn.push({"type": "auth_ok", "handle": "NEO"})
        await settle()

        assert (await client.request_sync(since=1700000000000)).status is (
            OperationStatus.SENT_REALTIME
        )
        assert conn.sent[-1] == {"type": "request_sync", "since": 1700000000000}

    @pytest.mark.asyncio
    async def test_versions_pending_blocks_restore(
        self, make_client, signed_in_store, transport
    ) -> None:
        client = await make_client(signed_in_store)
        await client.check_connectivity()
        transport.hold = asyncio.Event()

        fetch = asyncio.create_task(client.fetch_versions("C:\\a.txt"))
        await settle()
        restore = await client.restore_version("C:\\a.txt", 2)

        assert restore.status is OperationStatus.REQUEST_IN_PROGRESS
        assert [c.path for c in transport.calls] == ["/versions/abc123/C%3A%5Ca.txt"]

        transport.hold.set()
        await fetch
        assert client.gate.is_busy is False

    @pytest.mark.asyncio
    async def test_fetch_versions_emits_history(
        self, make_client, signed_in_store, transport, sink
    ) -> None:
        transport.respond(
            "GET",
            "/versions/abc123/a.txt",
            200,
            {
                "path": "a.txt",
                "current": {"content_hash": "h3", "file_size": 5},
                "versions": [
                    {"version": 2, "type": "file", "content_hash": "h2", "created_at": "t2"},
                    {"version": 1, "type": "file", "content_hash": "h1", "created_at": "t1"},
                ],
            },
        )
        client = await make_client(signed_in_store)
        await client.check_connectivity()

        result = await client.fetch_versions("a.txt")

        assert result.status is OperationStatus.COMPLETED
        event = sink.of_type(SyncEventType.VERSIONS_RECEIVED)[0]
        assert event.data["path"] == "a.txt"
        assert [v["version"] for v in event.data["versions"]] == [2, 1]
        assert event.data["versions"][0]["timestamp"] == "t2"
        assert transport.calls[-1].token == "abc123"

    @pytest.mark.asyncio
    async def test_restore_version(self, make_client, signed_in_store, transport, sink) -> None:
        transport.respond(
            "POST",
            "/versions/abc123/a.txt/restore/3",
            200,
            {"success": True, "path": "a.txt", "restored_version": 3},
        )
        client = await make_client(signed_in_store)
        await client.check_connectivity()

        result = await client.restore_version("a.txt", 3)

        assert result.ok
        event = sink.of_type(SyncEventType.VERSION_RESTORED)[0]
        assert event.data == {"path": "a.txt", "restored_version": 3}

    @pytest.mark.parametrize(
        "body",
        [{}, {"success": True}, {"versions": "not-a-list"}],
        ids=["empty", "no-versions", "wrong-shape"],
    )
    @pytest.mark.asyncio
    async def test_fetch_versions_unusable_body_fails(
        self, make_client, signed_in_store, transport, sink, body
    ) -> None:
        transport.respond("GET", "/versions/abc123/a.txt", 200, body)
        client = await make_client(signed_in_store)
        await client.check_connectivity()

        result = await client.fetch_versions("a.txt")

        assert result.status is OperationStatus.FAILED
        assert result.reason == "MALFORMED_RESPONSE"
        assert sink.of_type(SyncEventType.VERSIONS_RECEIVED) == []
        assert sink.of_type(SyncEventType.OPERATION_FAILED)[0].data["operation"] == "versions"

    @pytest.mark.asyncio
    async def test_fetch_versions_empty_history_is_not_malformed(
        self, make_client, signed_in_store, transport, sink
    ) -> None:
        transport.respond("GET", "/versions/abc123/a.txt", 200, {"versions": []})
        client = await make_client(signed_in_store)
        await client.check_connectivity()

        assert (await client.fetch_versions("a.txt")).ok
        assert sink.of_type(SyncEventType.VERSIONS_RECEIVED)[0].data["versions"] == []

    @pytest.mark.parametrize(
        "body", [{}, {"restored_version": "three"}], ids=["empty", "wrong-shape"]
    )
    @pytest.mark.asyncio
    async def test_restore_unusable_body_fails(
        self, make_client, signed_in_store, transport, sink, body
    ) -> None:
        transport.respond("POST", "/versions/abc123/a.txt/restore/3", 200, body)
        client = await make_client(signed_in_store)
        await client.check_connectivity()

        result = await client.restore_version("a.txt", 3)

        assert result.reason == "MALFORMED_RESPONSE"
        assert sink.of_type(SyncEventType.VERSION_RESTORED) == []
        assert sink.of_type(SyncEventType.OPERATION_FAILED)[0].data["operation"] == "restore"

    @pytest.mark.asyncio
    async def test_restore_success_without_version_echo(
        self, make_client, signed_in_store, transport, sink
    ) -> None:
        transport.respond("POST", "/versions/abc123/a.txt/restore/3", 200, {"success": True})
        client = await make_client(signed_in_store)
        await client.check_connectivity()

        assert (await client.restore_version("a.txt", 3)).ok
        assert sink.of_type(SyncEventType.VERSION_RESTORED)[0].data["restored_version"] == 3

    @pytest.mark.parametrize(
        "body", [{}, {"success": True, "filesystem": []}], ids=["empty", "wrong-shape"]
    )
    @pytest.mark.asyncio
    async def test_fetch_filesystem_unusable_body_fails(
        self, make_client, signed_in_store, transport, sink, body
    ) -> None:
        transport.respond("GET", "/filesystem/abc123", 200, body)
        client = await make_client(signed_in_store)
        await client.check_connectivity()

        result = await client.fetch_filesystem()

        assert result.status is OperationStatus.FAILED
        assert result.reason == "MALFORMED_RESPONSE"
        assert sink.of_type(SyncEventType.FILESYSTEM_RECEIVED) == []

    @pytest.mark.asyncio
    async def test_history_calls_need_token_and_connectivity(
        self, make_client, store, signed_in_store, transport
    ) -> None:
        signed_out = await make_client(store)
        assert (await signed_out.fetch_versions("a.txt")).status is (
            OperationStatus.SKIPPED_NOT_AUTHENTICATED
        )

        offline = await make_client(signed_in_store)
        assert (await offline.restore_version("a.txt", 1)).status is (
            OperationStatus.SKIPPED_OFFLINE
        )
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_fetch_filesystem(self, make_client, signed_in_store, transport, sink) -> None:
        filesystem = {"C:\\a.txt": {"type": "file", "content": "A"}}
        transport.respond(
            "GET",
            "/filesystem/abc123",
            200,
            {"success": True, "handle": "NEO", "filesystem": filesystem, "server_time": 99},
        )
        client = await make_client(signed_in_store)
        await client.check_connectivity()

        await client.fetch_filesystem()

        event = sink.of_type(SyncEventType.FILESYSTEM_RECEIVED)[0]
        assert event.data == {"filesystem": filesystem, "server_time": 99}

    @pytest.mark.asyncio
    async def test_push_filesystem(self, make_client, signed_in_store, transport) -> None:
        client = await make_client(signed_in_store)
        await client.check_connectivity()
        filesystem = {"C:\\a.txt": {"type": "file", "content": "A"}}

        result = await client.push_filesystem(filesystem)

        assert result.ok
        assert transport.calls[-1].method == "PUT"
        assert transport.calls[-1].path == "/filesystem/abc123"
        assert transport.calls[-1].json_body == {"filesystem": filesystem}


class TestScene:
    """Opaque scene configuration messages."""

    @pytest.mark.asyncio
    async def test_scene_messages_need_authenticated_channel(
        self, make_client, signed_in_store, connector
    ) -> None:
        client = await make_client(signed_in_store)

        assert (await client.send_scene_update({"bloom": 1})).status is (
            OperationStatus.SKIPPED_OFFLINE
        )

        conn = await authenticate(client, connector)
        assert (await client.send_scene_update({"bloom": 1}, "night")).ok
        assert (await client.request_scene_load("night")).ok
        assert conn.sent[-2:] == [
            {"type": "scene_update", "config": {"bloom": 1}, "config_name": "night"},
            {"type": "scene_load", "config_name": "night"},
        ]

    @pytest.mark.asyncio
    async def test_scene_echo_forwarded_verbatim(
        self, make_client, signed_in_store, connector, sink
    ) -> None:
        client = await make_client(signed_in_store)
        conn = await authenticate(client, connector)

        echo = {"type": "scene_update_ok", "config_name": "night", "extra": [1, 2]}
        conn.push(echo)
        await settle()

        assert sink.of_type(SyncEventType.SCENE_MESSAGE)[0].data == echo


class TestInboundEvents:
    """Realtime pushes delivered as events."""

    @pytest.mark.asyncio
    async def test_pushes_become_events(
        self, make_client, signed_in_store, connector, sink
    ) -> None:
        client = await make_client(signed_in_store)
        conn = await authenticate(client, connector)

        conn.push({"type": "file_changed", "path": "a.txt", "content": "x", "file_type": "file"})
        conn.push({"type": "file_deleted", "path": "b.txt"})
        conn.push({"type": "sync_data", "files": [{"path": "c.txt"}], "server_time": 5})
        conn.push({"type": "version_restored", "path": "a.txt", "restored_version": 1})
        conn.push({"type": "error", "code": "INVALID_PATH", "message": "bad path"})
        await settle()

        changed = sink.of_type(SyncEventType.REMOTE_FILE_CHANGED)[0]
        assert changed.data["path"] == "a.txt"
        assert changed.data["content"] == "x"
        assert sink.of_type(SyncEventType.REMOTE_FILE_DELETED)[0].data == {"path": "b.txt"}
        sync = sink.of_type(SyncEventType.SYNC_DATA)[0]
        assert sync.data["files"][0]["path"] == "c.txt"
        assert sync.data["server_time"] == 5
        assert sink.of_type(SyncEventType.VERSION_RESTORED)[0].data["restored_version"] == 1
        error = sink.of_type(SyncEventType.SERVER_ERROR)[0]
        assert error.reason == "INVALID_PATH"
        assert error.data["message"] == "bad path"

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_break_client(
        self, config, transport, connector, signed_in_store
    ) -> None:
        class ExplodingSink:
            def emit(self, event) -> None:
                raise RuntimeError("ui bug")

        client = SyncClient(
            config, signed_in_store, ExplodingSink(), transport=transport, connector=connector
        )
        await client.start(supervise=False)
        try:
            assert await client.check_connectivity() is True
        finally:
            await client.stop()


class TestLogout:
    """logout."""

    @pytest.mark.asyncio
    async def test_logout_clears_everything(
        self, make_client, signed_in_store, connector, transport, sink
    ) -> None:
        client = await make_client(signed_in_store)
        conn = await authenticate(client, connector)

        result = await client.logout()

        assert result.ok
        assert client.session == Session()
        assert signed_in_store.session == Session()
        assert conn.closed
        assert client.realtime_phase is RealtimePhase.DISCONNECTED
        assert sink.of_type(SyncEventType.LOGGED_OUT)[0].data == {"handle": "NEO"}

        after = await client.create_or_update_file("a.txt", "x")
        assert after.status is OperationStatus.SKIPPED_NOT_AUTHENTICATED
        assert transport.calls == []
