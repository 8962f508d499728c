"""Tests for the bridge-backed connection handles."""

from __future__ import annotations

import asyncio
import base64
import json
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from websockets.exceptions import ConnectionClosedError, InvalidURI

from pairbot.config import Settings
from pairbot.errors import TransportClosedError, TransportError, TransportTimeoutError
from pairbot.storage import CredentialBlob
from pairbot.transport import (
    BridgeConnection,
    BridgeConnectionFactory,
    ConnectionStatus,
    ConnectionUpdate,
    CredentialsUpdate,
    DisconnectReason,
    MessagesUpsert,
    parse_bridge_event,
)
from pairbot.transport.bridge import _encode_content

MESSAGE = {
    "key": {"remoteJid": "15550100000@s.whatsapp.net", "fromMe": False, "id": "ABC123"},
    "message": {"conversation": ".ping"},
    "pushName": "Alice",
}


class FakeWebSocket:
    """In-memory stand-in for a bridge WebSocket.

    ``results`` maps a call method to (ok, data); matching calls are
    answered immediately with a result frame.
    """

    def __init__(self, results: dict[str, tuple[bool, Any]] | None = None) -> None:
        self.results = results or {}
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._incoming: asyncio.Queue[Any] = asyncio.Queue()

    def push(self, frame: dict[str, Any] | str) -> None:
        self._incoming.put_nowait(json.dumps(frame) if isinstance(frame, dict) else frame)

    def end(self) -> None:
        self._incoming.put_nowait(None)

    def fail(self, exc: BaseException) -> None:
        self._incoming.put_nowait(exc)

    def __aiter__(self) -> FakeWebSocket:
        return self

    async def __anext__(self) -> str:
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item

    async def send(self, raw: str) -> None:
        frame = json.loads(raw)
        self.sent.append(frame)
        if frame.get("type") == "call" and frame["method"] in self.results:
            ok, data = self.results[frame["method"]]
            reply: dict[str, Any] = {"type": "result", "id": frame["id"], "ok": ok}
            reply["data" if ok else "error"] = data
            self.push(reply)

    async def close(self) -> None:
        self.closed = True
        self.end()

    def calls(self) -> list[dict[str, Any]]:
        return [frame for frame in self.sent if frame.get("type") == "call"]


def _connect(ws: FakeWebSocket, **kwargs: Any) -> BridgeConnection:
    conn = BridgeConnection("alice", ws, **kwargs)
    conn.start_reader()
    return conn


async def _collect(conn: BridgeConnection) -> list[Any]:
    return [event async for event in conn.events()]


class TestParseBridgeEvent:
    """Tests for frame -> event translation."""

    def test_open(self) -> None:
        event = parse_bridge_event({"type": "connection.update", "connection": "open"})
        assert event == ConnectionUpdate(ConnectionStatus.OPEN)

    def test_close_with_status(self) -> None:
        event = parse_bridge_event(
            {"type": "connection.update", "connection": "close", "statusCode": "401", "error": "logged out"}
        )
        assert isinstance(event, ConnectionUpdate)
        assert event.status_code == DisconnectReason.LOGGED_OUT
        assert event.terminal
        assert event.error == "logged out"

    def test_update_without_connection_state(self) -> None:
        assert parse_bridge_event({"type": "connection.update", "qr": "2@abc"}) is None

    def test_creds(self) -> None:
        event = parse_bridge_event(
            {"type": "creds.update", "creds": {"me": {"id": "x"}}, "keys": {"pre-key:1": None}}
        )
        assert event == CredentialsUpdate(creds={"me": {"id": "x"}}, keys={"pre-key:1": None})

    def test_messages_drop_malformed(self) -> None:
        event = parse_bridge_event(
            {"type": "messages.upsert", "upsertType": "notify", "messages": [MESSAGE, {"key": 5}]}
        )
        assert isinstance(event, MessagesUpsert)
        assert event.is_notify
        assert len(event.messages) == 1
        assert event.messages[0].body == ".ping"

    @pytest.mark.parametrize("frame", [{"type": "result", "id": "1"}, {"type": "qr"}, {}])
    def test_non_events(self, frame: dict[str, Any]) -> None:
        assert parse_bridge_event(frame) is None


class TestEncodeContent:
    """Tests for outgoing message encoding."""

    def test_bytes_become_base64(self) -> None:
        encoded = _encode_content({"image": b"\xff\xd8", "caption": "hi"})
        assert encoded == {"image": {"base64": base64.b64encode(b"\xff\xd8").decode()}, "caption": "hi"}

    def test_plain_content_unchanged(self) -> None:
        content = {"react": {"text": "👍", "key": {"id": "1"}}}
        assert _encode_content(content) == content


class TestBridgeConnection:
    """Tests for BridgeConnection."""

    @pytest.mark.asyncio
    async def test_events_in_order_until_close(self) -> None:
        ws = FakeWebSocket()
        conn = _connect(ws)
        ws.push({"type": "connection.update", "connection": "connecting"})
        ws.push({"type": "creds.update", "creds": {"a": 1}})
        ws.push({"type": "connection.update", "connection": "open"})
        ws.push({"type": "connection.update", "connection": "close", "statusCode": 515})

        events = await asyncio.wait_for(_collect(conn), 1.0)

        assert [type(e).__name__ for e in events] == [
            "ConnectionUpdate",
            "CredentialsUpdate",
            "ConnectionUpdate",
            "ConnectionUpdate",
        ]
        assert events[-1].status_code == DisconnectReason.RESTART_REQUIRED
        await conn.terminate()

    @pytest.mark.asyncio
    async def test_invalid_frames_are_skipped(self) -> None:
        ws = FakeWebSocket()
        conn = _connect(ws)
        ws.push("not json")
        ws.push("[1, 2]")
        ws.push({"type": "connection.update", "connection": "close"})

        events = await asyncio.wait_for(_collect(conn), 1.0)

        assert len(events) == 1
        await conn.terminate()

    @pytest.mark.asyncio
    async def test_socket_drop_emits_close(self) -> None:
        ws = FakeWebSocket()
        conn = _connect(ws)
        ws.fail(ConnectionClosedError(None, None))

        events = await asyncio.wait_for(_collect(conn), 1.0)

        assert len(events) == 1
        assert events[0].status is ConnectionStatus.CLOSE
        assert events[0].status_code == DisconnectReason.CONNECTION_CLOSED
        assert conn.closed

    @pytest.mark.asyncio
    async def test_stream_end_emits_close(self) -> None:
        ws = FakeWebSocket()
        conn = _connect(ws)
        ws.end()

        events = await asyncio.wait_for(_collect(conn), 1.0)

        assert events[0].status is ConnectionStatus.CLOSE
        assert not events[0].terminal

    @pytest.mark.asyncio
    async def test_send_message_encodes_media(self) -> None:
        ws = FakeWebSocket(results={"sendMessage": (True, {"id": "M1"})})
        conn = _connect(ws)

        await conn.send_message("x@s.whatsapp.net", {"image": b"abc", "caption": "menu"})

        (call,) = ws.calls()
        assert call["method"] == "sendMessage"
        assert call["params"] == {
            "jid": "x@s.whatsapp.net",
            "content": {"image": {"base64": "YWJj"}, "caption": "menu"},
        }
        await conn.terminate()

    @pytest.mark.asyncio
    async def test_call_results_do_not_wait_for_event_consumer(self) -> None:
        """Results are resolved by the reader even while events sit unconsumed."""
        ws = FakeWebSocket(results={"requestPairingCode": (True, "ABCD-EFGH")})
        conn = _connect(ws)
        ws.push({"type": "connection.update", "connection": "connecting"})

        code = await asyncio.wait_for(conn.request_pairing_code("15550100000"), 1.0)

        assert code == "ABCD-EFGH"
        assert ws.calls()[0]["params"] == {"phone": "15550100000"}
        await conn.terminate()

    @pytest.mark.asyncio
    async def test_call_failure(self) -> None:
        ws = FakeWebSocket(results={"logout": (False, "not connected")})
        conn = _connect(ws)

        with pytest.raises(TransportError, match="not connected"):
            await conn.logout()
        await conn.terminate()

    @pytest.mark.asyncio
    async def test_call_timeout(self) -> None:
        ws = FakeWebSocket()
        conn = _connect(ws, request_timeout=0.05)

        with pytest.raises(TransportTimeoutError):
            await conn.send_presence("available")
        await conn.terminate()

    @pytest.mark.asyncio
    async def test_pending_call_fails_when_socket_drops(self) -> None:
        ws = FakeWebSocket()
        conn = _connect(ws)
        call = asyncio.create_task(conn.logout())
        await asyncio.sleep(0.01)

        ws.fail(ConnectionClosedError(None, None))

        with pytest.raises(TransportClosedError):
            await asyncio.wait_for(call, 1.0)

    @pytest.mark.asyncio
    async def test_call_after_terminate(self) -> None:
        ws = FakeWebSocket()
        conn = _connect(ws)
        await conn.terminate()

        with pytest.raises(TransportClosedError):
            await conn.send_presence("available")

    @pytest.mark.asyncio
    async def test_terminate_is_idempotent(self) -> None:
        ws = FakeWebSocket()
        conn = _connect(ws)

        await conn.terminate()
        await conn.terminate()

        assert ws.closed
        assert await asyncio.wait_for(_collect(conn), 1.0) == []

    @pytest.mark.asyncio
    async def test_profile_picture_url(self) -> None:
        ws = FakeWebSocket(results={"profilePictureUrl": (True, None)})
        conn = _connect(ws)

        assert await conn.profile_picture_url("x@s.whatsapp.net") is None
        assert ws.calls()[0]["params"] == {"jid": "x@s.whatsapp.net", "type": "image"}
        await conn.terminate()

    @pytest.mark.asyncio
    async def test_empty_pairing_code_is_an_error(self) -> None:
        ws = FakeWebSocket(results={"requestPairingCode": (True, "")})
        conn = _connect(ws)

        with pytest.raises(TransportError, match="empty pairing code"):
            await conn.request_pairing_code("15550100000")
        await conn.terminate()

    @pytest.mark.asyncio
    async def test_profile_status_skipped_when_unsupported(self) -> None:
        ws = FakeWebSocket()
        conn = _connect(ws, supports_profile_status=False)

        await conn.update_profile_status("online")

        assert ws.calls() == []
        await conn.terminate()


class TestBridgeConnectionFactory:
    """Tests for BridgeConnectionFactory."""

    @pytest.mark.asyncio
    async def test_create_sends_auth_and_session_start(self) -> None:
        ws = FakeWebSocket()
        factory = BridgeConnectionFactory("ws://bridge:3001", token="secret", options={"browser": ["a"]})
        blob = CredentialBlob(creds={"me": {"id": "x"}}, keys={"k": 1})

        with patch("websockets.connect", new=AsyncMock(return_value=ws)) as connect:
            conn = await factory.create("alice", blob, pairing=True)

        connect.assert_awaited_once()
        assert connect.await_args.args == ("ws://bridge:3001",)
        assert ws.sent == [
            {"type": "auth", "token": "secret"},
            {
                "type": "session.start",
                "session": "alice",
                "pairing": True,
                "creds": {"me": {"id": "x"}},
                "keys": {"k": 1},
                "options": {"browser": ["a"]},
            },
        ]
        assert conn.session_id == "alice"
        await conn.terminate()

    @pytest.mark.asyncio
    async def test_no_auth_frame_without_token(self) -> None:
        ws = FakeWebSocket()
        factory = BridgeConnectionFactory("ws://bridge:3001")

        with patch("websockets.connect", new=AsyncMock(return_value=ws)):
            conn = await factory.create("alice", CredentialBlob())

        assert [frame["type"] for frame in ws.sent] == ["session.start"]
        await conn.terminate()

    @pytest.mark.asyncio
    async def test_unreachable_bridge(self) -> None:
        factory = BridgeConnectionFactory("ws://bridge:3001")

        with patch("websockets.connect", new=AsyncMock(side_effect=ConnectionRefusedError("refused"))):
            with pytest.raises(TransportError, match="Cannot reach bridge"):
                await factory.create("alice", CredentialBlob())

    @pytest.mark.asyncio
    async def test_bad_url(self) -> None:
        factory = BridgeConnectionFactory("nope")

        with patch("websockets.connect", new=AsyncMock(side_effect=InvalidURI("nope", "bad scheme"))):
            with pytest.raises(TransportError):
                await factory.create("alice", CredentialBlob())

    @pytest.mark.asyncio
    async def test_connect_timeout(self) -> None:
        factory = BridgeConnectionFactory("ws://bridge:3001", connect_timeout=0.1)

        with patch("websockets.connect", new=AsyncMock(side_effect=TimeoutError())):
            with pytest.raises(TransportTimeoutError):
                await factory.create("alice", CredentialBlob())

    def test_from_settings(self, settings: Settings) -> None:
        factory = BridgeConnectionFactory.from_settings(settings)

        assert factory.url == settings.bridge_url
        assert factory.request_timeout == settings.request_timeout
        assert factory.options["browser"][1] == settings.browser_name
