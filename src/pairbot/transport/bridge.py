"""Connection handles backed by the protocol bridge.

The bridge is a separate process that speaks the messaging service's
web protocol and exposes each session over its own WebSocket as JSON
frames:

    client -> bridge
        {"type": "auth", "token": ...}                  (when a token is configured)
        {"type": "session.start", "session", "pairing", "creds", "keys", "options"}
        {"type": "call", "id", "method", "params"}

    bridge -> client
        {"type": "connection.update", "connection", "statusCode", "error"}
        {"type": "creds.update", "creds", "keys"}
        {"type": "messages.upsert", "upsertType", "messages"}
        {"type": "result", "id", "ok", "data" | "error"}

A reader task drains the socket for the handle's whole lifetime: call
results resolve their pending futures directly, everything else is queued
for ``events()``. Calls therefore never wait behind the event consumer.
"""

from __future__ import annotations

import asyncio
import base64
import itertools
import json
import logging
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from pairbot.errors import TransportClosedError, TransportError, TransportTimeoutError
from pairbot.transport.events import (
    ConnectionEvent,
    ConnectionStatus,
    ConnectionUpdate,
    CredentialsUpdate,
    DisconnectReason,
    MessagesUpsert,
    closed_event,
    parse_messages,
)

if TYPE_CHECKING:
    from pairbot.config import Settings
    from pairbot.storage import CredentialBlob

logger = logging.getLogger(__name__)

_STREAM_END = object()


def parse_bridge_event(data: dict[str, Any]) -> ConnectionEvent | None:
    """Translate one decoded bridge frame into a connection event.

    Returns:
        The event, or None for frames that are not events (results, unknown types)
    """
    frame_type = data.get("type")

    if frame_type == "connection.update":
        connection = data.get("connection")
        try:
            status = ConnectionStatus(connection)
        except ValueError:
            logger.debug(f"Ignoring connection update without state: {connection!r}")
            return None
        status_code = data.get("statusCode")
        return ConnectionUpdate(
            status=status,
            status_code=int(status_code) if status_code is not None else None,
            error=data.get("error"),
        )

    if frame_type == "creds.update":
        return CredentialsUpdate(creds=data.get("creds") or {}, keys=data.get("keys") or {})

    if frame_type == "messages.upsert":
        return MessagesUpsert(
            upsert_type=data.get("upsertType", ""),
            messages=parse_messages(data.get("messages") or []),
        )

    return None


def _encode_content(content: dict[str, Any]) -> dict[str, Any]:
    # Binary media travels as {"base64": ...}; the bridge turns it back into a buffer
    return {
        key: {"base64": base64.b64encode(value).decode("ascii")}
        if isinstance(value, bytes | bytearray)
        else value
        for key, value in content.items()
    }


class BridgeConnection:
    """ConnectionHandle over one bridge WebSocket.

    Example:
        ```python
        conn = await factory.create("alice", store.load("alice"))
        async for event in conn.events():
            ...
        ```
    """

    def __init__(
        self,
        session_id: str,
        ws: Any,
        request_timeout: float = 30.0,
        supports_profile_status: bool = True,
    ) -> None:
        self.session_id = session_id
        self._ws = ws
        self._request_timeout = request_timeout
        self._supports_profile_status = supports_profile_status
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._pending: dict[str, asyncio.Future[Any]] = {}
        self._ids = itertools.count(1)
        self._reader: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def supports_profile_status(self) -> bool:
        return self._supports_profile_status

    @property
    def closed(self) -> bool:
        return self._closed

    def start_reader(self) -> None:
        if self._reader is None:
            self._reader = asyncio.create_task(
                self._read_loop(), name=f"bridge-reader-{self.session_id}"
            )

    async def events(self) -> AsyncIterator[ConnectionEvent]:
        while True:
            item = await self._queue.get()
            if item is _STREAM_END:
                return
            yield item
            if isinstance(item, ConnectionUpdate) and item.status is ConnectionStatus.CLOSE:
                return

    async def _read_loop(self) -> None:
        saw_close = False
        try:
            async for raw in self._ws:
                try:
                    data = json.loads(raw)
                except (json.JSONDecodeError, TypeError):
                    logger.warning(f"Invalid JSON from bridge: {str(raw)[:100]}")
                    continue
                if not isinstance(data, dict):
                    continue

                if data.get("type") == "result":
                    self._resolve(data)
                    continue

                event = parse_bridge_event(data)
                if event is None:
                    logger.debug(f"Ignoring bridge frame of type {data.get('type')!r}")
                    continue
                self._queue.put_nowait(event)
                if isinstance(event, ConnectionUpdate) and event.status is ConnectionStatus.CLOSE:
                    saw_close = True
                    break
        except ConnectionClosed as e:
            if not self._closed:
                logger.warning(f"Bridge socket closed for session '{self.session_id}': {e}")
                self._queue.put_nowait(
                    closed_event(error=str(e), status_code=DisconnectReason.CONNECTION_CLOSED)
                )
                saw_close = True
        except (OSError, WebSocketException) as e:
            if not self._closed:
                logger.warning(f"Bridge transport error for session '{self.session_id}': {e}")
                self._queue.put_nowait(closed_event(error=str(e)))
                saw_close = True
        finally:
            if not saw_close and not self._closed:
                self._queue.put_nowait(
                    closed_event(
                        error="bridge stream ended",
                        status_code=DisconnectReason.CONNECTION_CLOSED,
                    )
                )
            self._closed = True
            self._fail_pending(TransportClosedError("Bridge connection closed"))
            self._queue.put_nowait(_STREAM_END)

    def _resolve(self, data: dict[str, Any]) -> None:
        future = self._pending.get(str(data.get("id")))
        if future is None or future.done():
            logger.debug(f"Result for unknown call id {data.get('id')!r}")
            return
        if data.get("ok"):
            future.set_result(data.get("data"))
        else:
            future.set_exception(TransportError(str(data.get("error") or "bridge call failed")))

    def _fail_pending(self, exc: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(exc)
        self._pending.clear()

    async def _call(self, method: str, params: dict[str, Any], timeout: float | None = None) -> Any:
        """Invoke a bridge method and wait for its result.

        Raises:
            TransportClosedError: If the connection is closed
            TransportTimeoutError: If no result arrives in time
            TransportError: If the bridge reports a failure
        """
        if self._closed:
            raise TransportClosedError(f"Connection for session '{self.session_id}' is closed")

        call_id = str(next(self._ids))
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[call_id] = future
        try:
            await self._ws.send(
                json.dumps({"type": "call", "id": call_id, "method": method, "params": params})
            )
            return await asyncio.wait_for(future, timeout or self._request_timeout)
        except TimeoutError as e:
            raise TransportTimeoutError(f"{method} timed out") from e
        except ConnectionClosed as e:
            raise TransportClosedError(f"{method}: bridge connection closed") from e
        finally:
            self._pending.pop(call_id, None)

    async def send_message(self, jid: str, content: dict[str, Any]) -> None:
        await self._call("sendMessage", {"jid": jid, "content": _encode_content(content)})

    async def send_presence(self, presence: str, jid: str | None = None) -> None:
        params: dict[str, Any] = {"type": presence}
        if jid:
            params["jid"] = jid
        await self._call("sendPresenceUpdate", params)

    async def update_profile_status(self, text: str) -> None:
        if not self._supports_profile_status:
            return
        await self._call("updateProfileStatus", {"status": text})

    async def profile_picture_url(self, jid: str) -> str | None:
        url = await self._call("profilePictureUrl", {"jid": jid, "type": "image"})
        return url or None

    async def request_pairing_code(self, phone: str) -> str:
        code = await self._call("requestPairingCode", {"phone": phone})
        if not code:
            raise TransportError("Bridge returned an empty pairing code")
        return str(code)

    async def logout(self) -> None:
        await self._call("logout", {})

    async def terminate(self) -> None:
        if self._closed and self._reader is None:
            return
        self._closed = True
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
        self._reader = None
        self._fail_pending(TransportClosedError("Connection terminated"))
        try:
            await self._ws.close()
        except (OSError, WebSocketException) as e:
            logger.debug(f"Error closing bridge socket for '{self.session_id}': {e}")
        self._queue.put_nowait(_STREAM_END)


class BridgeConnectionFactory:
    """Opens one bridge WebSocket per connection handle."""

    def __init__(
        self,
        url: str,
        token: str = "",
        connect_timeout: float = 30.0,
        request_timeout: float = 30.0,
        options: dict[str, Any] | None = None,
    ) -> None:
        self.url = url
        self.token = token
        self.connect_timeout = connect_timeout
        self.request_timeout = request_timeout
        self.options = options or {}

    @classmethod
    def from_settings(cls, settings: Settings) -> BridgeConnectionFactory:
        return cls(
            url=settings.bridge_url,
            token=settings.bridge_token,
            connect_timeout=settings.connect_timeout,
            request_timeout=settings.request_timeout,
            options={"browser": ["pairbot", settings.browser_name, "1.0"]},
        )

    async def create(
        self,
        session_id: str,
        blob: CredentialBlob,
        *,
        pairing: bool = False,
    ) -> BridgeConnection:
        """Connect to the bridge and start a protocol session.

        Raises:
            TransportTimeoutError: If the bridge does not accept in time
            TransportError: If the bridge is unreachable
        """
        logger.debug(f"Connecting session '{session_id}' to bridge at {self.url} (pairing={pairing})")
        try:
            ws = await websockets.connect(
                self.url, open_timeout=self.connect_timeout, max_size=None
            )
        except TimeoutError as e:
            raise TransportTimeoutError(f"Bridge at {self.url} did not accept in time") from e
        except (OSError, WebSocketException) as e:
            raise TransportError(f"Cannot reach bridge at {self.url}: {e}") from e

        try:
            if self.token:
                await ws.send(json.dumps({"type": "auth", "token": self.token}))
            await ws.send(
                json.dumps(
                    {
                        "type": "session.start",
                        "session": session_id,
                        "pairing": pairing,
                        "creds": blob.creds,
                        "keys": blob.keys,
                        "options": self.options,
                    }
                )
            )
        except WebSocketException as e:
            await ws.close()
            raise TransportClosedError(f"Bridge closed during session start: {e}") from e

        conn = BridgeConnection(session_id, ws, request_timeout=self.request_timeout)
        conn.start_reader()
        return conn
