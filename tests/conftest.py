"""Pytest configuration and shared fixtures for pairbot tests.

Fixtures:
- settings: Settings rooted in a temporary data directory (no .env, no env leakage)
- store: CredentialStore on the temporary sessions directory
- factory: FakeFactory producing scriptable FakeConnection handles
- media: FakeMediaClient serving canned image bytes
- background: BackgroundTasks runner
- dispatcher: CommandDispatcher wired to the fakes
- manager: SessionManager wired to the fakes (shut down after the test)

Helpers:
- FakeConnection.open()/close()/receive()/creds() push events into the stream
- wait_until(predicate) polls until the event task has caught up
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from pairbot.commands import CommandDispatcher
from pairbot.config import Settings
from pairbot.errors import TransportClosedError, TransportError
from pairbot.models import InboundMessage
from pairbot.session import BackgroundTasks, ReconnectPolicy, SessionManager
from pairbot.storage import CredentialBlob, CredentialStore
from pairbot.transport import (
    ConnectionEvent,
    ConnectionStatus,
    ConnectionUpdate,
    CredentialsUpdate,
    MessagesUpsert,
    closed_event,
)

_END = object()

JPEG_BYTES = b"\xff\xd8\xff\xe0fake-jpeg"


class FakeConnection:
    """Scriptable connection handle.

    Tests push events with open()/close()/receive()/creds(); every request
    the code under test makes is recorded.
    """

    def __init__(
        self,
        session_id: str,
        *,
        pairing: bool = False,
        supports_profile_status: bool = True,
        pairing_code: str = "ABCD-EFGH",
        profile_urls: dict[str, str | None] | None = None,
        logout_error: Exception | None = None,
        logout_delay: float = 0.0,
        send_error: Exception | None = None,
    ) -> None:
        self.session_id = session_id
        self.pairing = pairing
        self._supports_profile_status = supports_profile_status
        self.pairing_code = pairing_code
        self.profile_urls = profile_urls or {}
        self.logout_error = logout_error
        self.logout_delay = logout_delay
        self.send_error = send_error
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self.presence: list[str] = []
        self.statuses: list[str] = []
        self.pairing_requests: list[str] = []
        self.logout_calls = 0
        self.terminated = False

    @property
    def supports_profile_status(self) -> bool:
        return self._supports_profile_status

    # Event injection

    def emit(self, event: ConnectionEvent) -> None:
        self._queue.put_nowait(event)

    def open(self) -> None:
        self.emit(ConnectionUpdate(ConnectionStatus.OPEN))

    def connecting(self) -> None:
        self.emit(ConnectionUpdate(ConnectionStatus.CONNECTING))

    def close(self, status_code: int | None = None, error: str | None = None) -> None:
        self.emit(closed_event(error=error, status_code=status_code))

    def creds(self, creds: dict[str, Any] | None = None, keys: dict[str, Any] | None = None) -> None:
        self.emit(CredentialsUpdate(creds=creds or {}, keys=keys or {}))

    def receive(self, *messages: InboundMessage, upsert_type: str = "notify") -> None:
        self.emit(MessagesUpsert(upsert_type=upsert_type, messages=tuple(messages)))

    # ConnectionHandle

    async def events(self) -> AsyncIterator[ConnectionEvent]:
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            yield item
            if isinstance(item, ConnectionUpdate) and item.status is ConnectionStatus.CLOSE:
                return

    async def send_message(self, jid: str, content: dict[str, Any]) -> None:
        if self.terminated:
            raise TransportClosedError("terminated")
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((jid, content))

    async def send_presence(self, presence: str, jid: str | None = None) -> None:
        self.presence.append(presence)

    async def update_profile_status(self, text: str) -> None:
        if self._supports_profile_status:
            self.statuses.append(text)

    async def profile_picture_url(self, jid: str) -> str | None:
        return self.profile_urls.get(jid)

    async def request_pairing_code(self, phone: str) -> str:
        self.pairing_requests.append(phone)
        return self.pairing_code

    async def logout(self) -> None:
        self.logout_calls += 1
        if self.logout_delay:
            await asyncio.sleep(self.logout_delay)
        if self.logout_error is not None:
            raise self.logout_error

    async def terminate(self) -> None:
        if not self.terminated:
            self.terminated = True
            self._queue.put_nowait(_END)

    # Helpers

    def texts(self) -> list[str]:
        return [content["text"] for _, content in self.sent if "text" in content]

    def reactions(self) -> list[dict[str, Any]]:
        return [content["react"] for _, content in self.sent if "react" in content]


class FakeFactory:
    """ConnectionFactory producing FakeConnections.

    Set ``failures`` to make the next N create() calls raise TransportError.
    """

    def __init__(self, **connection_kwargs: Any) -> None:
        self.connection_kwargs = connection_kwargs
        self.created: list[FakeConnection] = []
        self.blobs: list[CredentialBlob] = []
        self.create_calls = 0
        self.failures = 0

    async def create(
        self, session_id: str, blob: CredentialBlob, *, pairing: bool = False
    ) -> FakeConnection:
        self.create_calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise TransportError("bridge down")
        conn = FakeConnection(session_id, pairing=pairing, **self.connection_kwargs)
        self.created.append(conn)
        self.blobs.append(blob)
        return conn

    def for_session(self, session_id: str, *, pairing: bool = False) -> list[FakeConnection]:
        return [c for c in self.created if c.session_id == session_id and c.pairing == pairing]

    def last(self, session_id: str, *, pairing: bool = False) -> FakeConnection:
        return self.for_session(session_id, pairing=pairing)[-1]


class FakeMediaClient:
    """MediaClient stand-in: URL -> bytes, or an exception to raise."""

    def __init__(self, responses: dict[str, bytes | Exception] | None = None) -> None:
        self.responses = responses or {}
        self.fetched: list[str] = []
        self.closed = False

    async def fetch(self, url: str) -> bytes:
        self.fetched.append(url)
        result = self.responses.get(url, JPEG_BYTES)
        if isinstance(result, Exception):
            raise result
        return result

    async def aclose(self) -> None:
        self.closed = True


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll predicate until it holds; fail the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not met before timeout")
        await asyncio.sleep(0.005)


async def settle(manager: SessionManager, rounds: int = 5) -> None:
    """Let event tasks and background tasks run to quiescence."""
    for _ in range(rounds):
        await asyncio.sleep(0)
    await manager.background.wait_idle()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        data_dir=tmp_path / "data",
        auto_react="👍",
        auto_status_text="pairbot online",
        owner_number="",
        menu_image_url="https://img.example/menu.png",
        bot_name="Test Bot",
        reconnect_base_delay=0.01,
        reconnect_max_delay=1.0,
        logout_timeout=0.5,
    )


@pytest.fixture
def store(settings: Settings) -> CredentialStore:
    return CredentialStore(settings.sessions_dir)


@pytest.fixture
def factory() -> FakeFactory:
    return FakeFactory()


@pytest.fixture
def media() -> FakeMediaClient:
    return FakeMediaClient()


@pytest.fixture
def background() -> BackgroundTasks:
    return BackgroundTasks()


@pytest.fixture
def dispatcher(
    settings: Settings, media: FakeMediaClient, background: BackgroundTasks
) -> CommandDispatcher:
    return CommandDispatcher.from_settings(settings, media, background)  # type: ignore[arg-type]


ManagerBuilder = Callable[..., SessionManager]


@pytest.fixture
def make_manager(
    store: CredentialStore,
    factory: FakeFactory,
    dispatcher: CommandDispatcher,
    background: BackgroundTasks,
    media: FakeMediaClient,
) -> ManagerBuilder:
    """Build a SessionManager on the fakes; keyword arguments override defaults."""

    def build(**overrides: Any) -> SessionManager:
        kwargs: dict[str, Any] = {
            "store": store,
            "factory": factory,
            "dispatcher": dispatcher,
            "background": background,
            "policy": ReconnectPolicy(base_delay=0.01, max_delay=0.05, jitter=0.0),
            "media": media,
            "auto_status_text": "pairbot online",
            "logout_timeout": 0.5,
            "pairing_timeout": 5.0,
        }
        kwargs.update(overrides)
        return SessionManager(**kwargs)

    return build


@pytest_asyncio.fixture
async def manager(make_manager: ManagerBuilder) -> AsyncIterator[SessionManager]:
    mgr = make_manager()
    yield mgr
    await mgr.shutdown()
