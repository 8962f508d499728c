"""Registry of live sessions.

Records are immutable snapshots. Every transition builds a new record
with ``dataclasses.replace`` and swaps it in under the registry lock, so
a reader never sees a half-updated session.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pairbot.transport import ConnectionHandle

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """State machine for session lifecycle."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"
    STOPPED = "stopped"


@dataclass(frozen=True)
class SessionRecord:
    """Snapshot of one session.

    Attributes:
        id: Session id (also the credential namespace)
        state: Current lifecycle state
        connection: Current connection handle, None between handles
        task: The session's event task (owns every handle generation)
        reconnect_attempts: Reconnects since the last successful open
        last_error: Error text of the most recent close
        last_status_code: Status code of the most recent close
        stopping: Set once a delete has begun; the event task will not reconnect
        updated_at: Time of the last transition
    """

    id: str
    state: SessionState = SessionState.CONNECTING
    connection: ConnectionHandle | None = None
    task: asyncio.Task[None] | None = None
    reconnect_attempts: int = 0
    last_error: str | None = None
    last_status_code: int | None = None
    stopping: bool = False
    updated_at: float = dataclasses.field(default_factory=time.time)

    @property
    def is_live(self) -> bool:
        """True while the event task runs (connected, connecting or backing off)."""
        return self.task is not None and not self.task.done()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "state": self.state.value,
            "reconnect_attempts": self.reconnect_attempts,
            "last_error": self.last_error,
            "last_status_code": self.last_status_code,
            "updated_at": self.updated_at,
        }


class SessionRegistry:
    """Mapping of session id to its current SessionRecord.

    Example:
        ```python
        registry = SessionRegistry()
        await registry.put(SessionRecord(id="alice"))
        await registry.update("alice", state=SessionState.CONNECTED)
        registry.get("alice").state   # SessionState.CONNECTED
        ```
    """

    def __init__(self) -> None:
        self._records: dict[str, SessionRecord] = {}
        self._lock = asyncio.Lock()

    def get(self, session_id: str) -> SessionRecord | None:
        return self._records.get(session_id)

    def ids(self) -> list[str]:
        return list(self._records)

    def records(self) -> list[SessionRecord]:
        return list(self._records.values())

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    async def put(self, record: SessionRecord) -> None:
        async with self._lock:
            self._records[record.id] = record

    async def update(self, session_id: str, **changes: Any) -> SessionRecord | None:
        """Replace a record with a copy carrying ``changes``.

        Returns:
            The new record, or None if the session is not registered
        """
        async with self._lock:
            current = self._records.get(session_id)
            if current is None:
                return None
            new = dataclasses.replace(current, updated_at=time.time(), **changes)
            self._records[session_id] = new
        if new.state != current.state:
            logger.debug(f"Session '{session_id}': {current.state.value} -> {new.state.value}")
        return new

    async def remove(self, session_id: str) -> SessionRecord | None:
        async with self._lock:
            return self._records.pop(session_id, None)
