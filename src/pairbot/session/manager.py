"""Session manager: lifecycle, reconnects and the control operations.

Each started session gets one event task. The task consumes the events
of its current connection handle strictly in order and, when that handle
closes, decides whether to open a new one. Everything a session does
(credential persistence, state transitions, command dispatch) happens in
that task, so events of one session never race each other while
different sessions run concurrently.

State machine per session:

    connecting --open--> connected --close--> closed --(recoverable)--> connecting
                                                  \\--(logged out / deleted)--> terminal

Example:
    ```python
    manager = SessionManager.from_settings(get_settings())
    code, session_id = await manager.pair("+1 555 010 0000")
    await manager.start(session_id)
    manager.get_state(session_id)      # SessionState.CONNECTING / CONNECTED ...
    await manager.logout(session_id)   # logs out and deletes credentials
    await manager.shutdown()
    ```
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any

from pairbot.errors import PairbotError, PairingError, SessionError, TransportError
from pairbot.session.background import BackgroundTasks
from pairbot.session.registry import SessionRecord, SessionRegistry, SessionState
from pairbot.session.supervisor import ReconnectPolicy
from pairbot.session.validation import normalize_phone, require_session_id, sanitize_session_id
from pairbot.storage import CredentialStore, StorageError
from pairbot.transport.events import (
    ConnectionStatus,
    ConnectionUpdate,
    CredentialsUpdate,
    DisconnectReason,
    MessagesUpsert,
    closed_event,
)
from pairbot.utils.logging import set_session_context

if TYPE_CHECKING:
    from pairbot.commands import CommandDispatcher, MediaClient
    from pairbot.config import Settings
    from pairbot.transport import ConnectionFactory, ConnectionHandle

logger = logging.getLogger(__name__)

DEFAULT_LOGOUT_TIMEOUT = 10.0
DEFAULT_PAIRING_TIMEOUT = 180.0


class SessionManager:
    """Owns every session and the control operations on them.

    Thread-safety:
        All methods must be called from the same event loop. Start and
        delete of one session are serialized by that session's lock, so a
        slow bridge call never holds up other sessions. Registry writes are
        serialized by the registry's own lock.
    """

    def __init__(
        self,
        *,
        store: CredentialStore,
        factory: ConnectionFactory,
        dispatcher: CommandDispatcher | None = None,
        background: BackgroundTasks | None = None,
        policy: ReconnectPolicy | None = None,
        media: MediaClient | None = None,
        auto_status_text: str = "",
        owner_jid: str | None = None,
        logout_timeout: float = DEFAULT_LOGOUT_TIMEOUT,
        pairing_timeout: float = DEFAULT_PAIRING_TIMEOUT,
    ) -> None:
        """Initialize SessionManager.

        Args:
            store: Credential store (one namespace per session id)
            factory: Creates connection handles
            dispatcher: Handles inbound messages (None disables commands)
            background: Runner for fire-and-forget side effects
            policy: Reconnect policy
            media: Media client closed on shutdown
            auto_status_text: Profile status set on every open (empty disables)
            owner_jid: Chat notified with the menu on every open
            logout_timeout: Upper bound for the logout call in delete
            pairing_timeout: How long a pairing connection is kept alive
        """
        self._store = store
        self._factory = factory
        self._dispatcher = dispatcher
        self._background = background or BackgroundTasks()
        self._policy = policy or ReconnectPolicy()
        self._media = media
        self._auto_status_text = auto_status_text
        self._owner_jid = owner_jid
        self._logout_timeout = logout_timeout
        self._pairing_timeout = pairing_timeout
        self._registry = SessionRegistry()
        self._session_locks: dict[str, asyncio.Lock] = {}
        self._pairing: dict[str, tuple[ConnectionHandle, asyncio.Task[None]]] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        factory: ConnectionFactory | None = None,
        media: MediaClient | None = None,
    ) -> SessionManager:
        """Wire a manager (store, bridge factory, dispatcher) from settings."""
        from pairbot.commands import CommandDispatcher, MediaClient
        from pairbot.transport import BridgeConnectionFactory

        background = BackgroundTasks()
        media = media or MediaClient(timeout=settings.media_timeout)
        return cls(
            store=CredentialStore(settings.sessions_dir),
            factory=factory or BridgeConnectionFactory.from_settings(settings),
            dispatcher=CommandDispatcher.from_settings(settings, media, background),
            background=background,
            policy=ReconnectPolicy(
                base_delay=settings.reconnect_base_delay,
                max_delay=settings.reconnect_max_delay,
            ),
            media=media,
            auto_status_text=settings.auto_status_text,
            owner_jid=settings.owner_jid,
            logout_timeout=settings.logout_timeout,
            pairing_timeout=settings.pairing_timeout,
        )

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    @property
    def background(self) -> BackgroundTasks:
        return self._background

    # ------------------------------------------------------------------
    # Control operations
    # ------------------------------------------------------------------

    async def pair(self, phone: str | None, session_id: str | None = None) -> tuple[str, str]:
        """Request a pairing code that links a new device to phone's account.

        The pairing connection stays open in the background (at most
        ``pairing_timeout`` seconds) so the service can finish linking;
        its credential updates are persisted under session_id. The session
        is not started.

        Args:
            phone: Account phone number, any formatting
            session_id: Session to store credentials under (default: the digits of phone)

        Returns:
            (pairing code, session id)

        Raises:
            SessionValidationError: If phone is not 8-15 digits
            PairingError: If the connection or the code request fails
        """
        digits = normalize_phone(phone)
        sid = sanitize_session_id(session_id.strip()) if session_id and session_id.strip() else digits

        try:
            blob = self._store.load(sid)
        except StorageError as e:
            raise PairingError(f"Cannot prepare credentials for '{sid}': {e}") from e

        # A new request replaces any pairing still in flight for this id
        await self._stop_pairing(sid)

        try:
            handle = await self._factory.create(sid, blob, pairing=True)
        except TransportError as e:
            raise PairingError(f"Could not open pairing connection: {e}") from e

        task = asyncio.create_task(self._run_pairing(sid, handle), name=f"pairing-{sid}")
        self._pairing[sid] = (handle, task)

        try:
            code = await handle.request_pairing_code(digits)
        except PairbotError as e:
            await self._stop_pairing(sid)
            raise PairingError(f"Pairing code request failed: {e}") from e

        logger.info(f"Pairing code issued for session '{sid}'")
        return code, sid

    async def start(self, session_id: str | None) -> ConnectionHandle | None:
        """Start a session, or attach to it if it is already running.

        A session counts as running while its event task is alive, which
        includes the time it spends waiting to reconnect.

        Returns:
            The session's current connection handle, or None if the running
            session is between handles (waiting to reconnect)

        Raises:
            SessionValidationError: If session_id is missing or unsafe
            SessionError: If credentials cannot be loaded or the bridge is unreachable
        """
        sid = require_session_id(session_id)

        async with self._lock_for(sid):
            record = self._registry.get(sid)
            if record is not None and record.is_live:
                logger.debug(f"Session '{sid}' already running, attaching")
                return record.connection

            try:
                blob = self._store.load(sid)
            except StorageError as e:
                raise SessionError(f"Cannot load credentials for '{sid}': {e}") from e

            try:
                handle = await self._factory.create(sid, blob)
            except TransportError as e:
                raise SessionError(f"Failed to start session '{sid}': {e}") from e

            task = asyncio.create_task(self._run_session(sid, handle), name=f"session-{sid}")
            await self._registry.put(
                SessionRecord(id=sid, state=SessionState.CONNECTING, connection=handle, task=task)
            )

        logger.info(f"Session '{sid}' started (registered={blob.is_registered})")
        return handle

    async def logout(self, session_id: str | None) -> None:
        """Log a session out and delete its credentials permanently.

        Raises:
            SessionValidationError: If session_id is missing or unsafe
            SessionError: If the credentials cannot be deleted
        """
        sid = require_session_id(session_id)
        await self.delete(sid)

    async def delete(self, session_id: str) -> None:
        """Tear a session down and delete its credential namespace.

        Logout is attempted first with a bounded timeout; its failure does
        not stop the teardown. Any in-flight pairing for the id is ended too.
        """
        async with self._lock_for(session_id):
            record = self._registry.get(session_id)
            if record is not None:
                await self._registry.update(session_id, stopping=True)
                handle = record.connection
                if handle is not None:
                    try:
                        await asyncio.wait_for(handle.logout(), timeout=self._logout_timeout)
                    except TimeoutError:
                        logger.warning(f"Logout of '{session_id}' timed out")
                    except (PairbotError, OSError) as e:
                        logger.warning(f"Logout of '{session_id}' failed: {e}")
                    await self._terminate_quietly(handle)
                await self._cancel_task(record.task)
                await self._registry.remove(session_id)

            await self._stop_pairing(session_id)

            try:
                self._store.delete(session_id)
            except StorageError as e:
                raise SessionError(f"Failed to delete credentials for '{session_id}': {e}") from e

        logger.info(f"Session '{session_id}' logged out and deleted")

    def get_state(self, session_id: str) -> SessionState:
        """Current state, or STOPPED if the session is not in the registry."""
        record = self._registry.get(session_id)
        return record.state if record is not None else SessionState.STOPPED

    def snapshot(self, session_id: str) -> SessionRecord | None:
        return self._registry.get(session_id)

    def list_ids(self) -> list[str]:
        """Ids on disk plus ids in the registry, deduplicated and sorted."""
        return sorted(set(self._store.list_ids()) | set(self._registry.ids()))

    def list_sessions(self) -> list[dict[str, Any]]:
        return [{"id": sid, "state": self.get_state(sid).value} for sid in self.list_ids()]

    def pairing_in_progress(self, session_id: str) -> bool:
        return session_id in self._pairing

    async def shutdown(self) -> None:
        """Stop every session and pairing without logging out."""
        for record in self._registry.records():
            await self._registry.update(record.id, stopping=True)
            await self._cancel_task(record.task)
            if record.connection is not None:
                await self._terminate_quietly(record.connection)
            await self._registry.remove(record.id)

        for sid in list(self._pairing):
            await self._stop_pairing(sid)

        await self._background.cancel_all()
        if self._media is not None:
            await self._media.aclose()
        logger.info("Session manager shut down")

    # ------------------------------------------------------------------
    # Event tasks
    # ------------------------------------------------------------------

    async def _run_session(self, session_id: str, handle: ConnectionHandle) -> None:
        set_session_context(session_id)
        try:
            await self._supervise(session_id, handle)
        except Exception as e:
            logger.exception(f"Event task of '{session_id}' failed, session stopped")
            record = self._registry.get(session_id)
            if record is not None and record.connection is not None:
                await self._terminate_quietly(record.connection)
            await self._registry.update(
                session_id, state=SessionState.CLOSED, connection=None, last_error=str(e)
            )

    async def _supervise(self, session_id: str, handle: ConnectionHandle) -> None:
        while True:
            update = await self._consume(session_id, handle)
            await self._terminate_quietly(handle)

            record = await self._registry.update(
                session_id,
                state=SessionState.CLOSED,
                connection=None,
                last_error=update.error,
                last_status_code=update.status_code,
            )
            if record is None:
                return

            decision = self._policy.decide(
                update, record.reconnect_attempts, stopping=record.stopping
            )
            if not decision.reconnect:
                logger.info(f"Session '{session_id}' closed ({decision.reason}), not reconnecting")
                return

            logger.info(
                f"Session '{session_id}' closed ({decision.reason}), "
                f"reconnecting in {decision.delay:.1f}s"
            )
            if decision.delay > 0:
                await asyncio.sleep(decision.delay)

            new_handle = await self._reopen(session_id)
            if new_handle is None:
                return
            handle = new_handle

    async def _consume(self, session_id: str, handle: ConnectionHandle) -> ConnectionUpdate:
        """Process events until the handle closes.

        Returns:
            The close update (synthesized if the stream ends or fails without one)
        """
        try:
            async for event in handle.events():
                if isinstance(event, CredentialsUpdate):
                    self._persist_credentials(session_id, event)
                elif isinstance(event, MessagesUpsert):
                    if self._dispatcher is not None:
                        await self._dispatcher.handle_upsert(handle, event)
                elif isinstance(event, ConnectionUpdate):
                    if event.status is ConnectionStatus.OPEN:
                        await self._on_open(session_id, handle)
                    elif event.status is ConnectionStatus.CONNECTING:
                        await self._registry.update(session_id, state=SessionState.CONNECTING)
                    else:
                        return event
        except TransportError as e:
            logger.warning(f"Event stream of '{session_id}' failed: {e}")
            return closed_event(error=str(e))
        except Exception as e:
            # Handling the event failed; drop this handle and reconnect
            logger.exception(f"Processing an event of '{session_id}' failed")
            return closed_event(error=f"event handling failed: {e}")
        return closed_event(error="event stream ended", status_code=DisconnectReason.CONNECTION_CLOSED)

    async def _reopen(self, session_id: str) -> ConnectionHandle | None:
        """Open a new handle, backing off while the bridge is unreachable.

        Returns:
            The new handle, or None if the session was deleted meanwhile
        """
        while True:
            record = self._registry.get(session_id)
            if record is None or record.stopping:
                return None
            attempts = record.reconnect_attempts + 1
            await self._registry.update(
                session_id, state=SessionState.CONNECTING, reconnect_attempts=attempts
            )

            try:
                blob = self._store.load(session_id)
                handle = await self._factory.create(session_id, blob)
            except (TransportError, StorageError) as e:
                delay = self._policy.delay_for(attempts)
                logger.warning(
                    f"Reconnect {attempts} of '{session_id}' failed: {e}; retrying in {delay:.1f}s"
                )
                await self._registry.update(session_id, state=SessionState.CLOSED, last_error=str(e))
                await asyncio.sleep(delay)
                continue

            record = await self._registry.update(session_id, connection=handle)
            if record is None or record.stopping:
                await self._terminate_quietly(handle)
                return None
            return handle

    async def _on_open(self, session_id: str, handle: ConnectionHandle) -> None:
        await self._registry.update(
            session_id,
            state=SessionState.CONNECTED,
            reconnect_attempts=0,
            last_error=None,
            last_status_code=None,
        )
        logger.info(f"Session '{session_id}' connected")

        self._background.spawn(handle.send_presence("available"), f"presence:{session_id}")
        if self._auto_status_text:
            self._background.spawn(self._set_profile_status(handle), f"status:{session_id}")
        if self._owner_jid and self._dispatcher is not None:
            self._background.spawn(
                self._dispatcher.send_menu(handle, self._owner_jid), f"notify-owner:{session_id}"
            )

    async def _set_profile_status(self, handle: ConnectionHandle) -> None:
        if handle.supports_profile_status:
            await handle.update_profile_status(self._auto_status_text)

    def _persist_credentials(self, session_id: str, update: CredentialsUpdate) -> None:
        try:
            self._store.apply_update(session_id, update.as_update())
        except StorageError as e:
            logger.error(f"Failed to persist credentials for '{session_id}': {e}")

    async def _run_pairing(self, session_id: str, handle: ConnectionHandle) -> None:
        set_session_context(session_id)
        try:
            async with asyncio.timeout(self._pairing_timeout):
                async for event in handle.events():
                    if isinstance(event, CredentialsUpdate):
                        self._persist_credentials(session_id, event)
                    elif isinstance(event, ConnectionUpdate) and event.status is ConnectionStatus.CLOSE:
                        logger.info(
                            f"Pairing connection for '{session_id}' closed "
                            f"(status={event.status_code})"
                        )
                        break
        except TimeoutError:
            logger.info(f"Pairing window for '{session_id}' expired")
        except TransportError as e:
            logger.warning(f"Pairing connection for '{session_id}' failed: {e}")
        finally:
            await self._terminate_quietly(handle)
            entry = self._pairing.get(session_id)
            if entry is not None and entry[0] is handle:
                del self._pairing[session_id]

    async def _stop_pairing(self, session_id: str) -> None:
        entry = self._pairing.pop(session_id, None)
        if entry is None:
            return
        handle, task = entry
        await self._cancel_task(task)
        await self._terminate_quietly(handle)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        return self._session_locks.setdefault(session_id, asyncio.Lock())

    async def _cancel_task(self, task: asyncio.Task[None] | None) -> None:
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _terminate_quietly(self, handle: ConnectionHandle) -> None:
        try:
            await handle.terminate()
        except (PairbotError, OSError) as e:
            logger.debug(f"Terminating handle of '{handle.session_id}' failed: {e}")
