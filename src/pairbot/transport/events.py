"""Events emitted by a connection handle.

A handle produces a single ordered stream of these. The session manager
consumes it with one task per handle, so a credential update is always
persisted before the next event of the same stream is looked at.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any

from pydantic import ValidationError

from pairbot.models import InboundMessage

logger = logging.getLogger(__name__)


class DisconnectReason(IntEnum):
    """Status codes carried by a ``close`` update."""

    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    TIMED_OUT = 408
    CONNECTION_REPLACED = 440
    MULTIDEVICE_MISMATCH = 411
    FORBIDDEN = 403
    LOGGED_OUT = 401
    BAD_SESSION = 500
    RESTART_REQUIRED = 515
    UNAVAILABLE_SERVICE = 503


def is_terminal(status_code: int | None) -> bool:
    """True if a close with this status code must not be retried.

    Only an explicit logout by the remote service is terminal; every other
    code (including an unknown or missing one) is recoverable.
    """
    return status_code == DisconnectReason.LOGGED_OUT


class ConnectionStatus(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSE = "close"


@dataclass(frozen=True)
class ConnectionUpdate:
    """Lifecycle transition of the underlying connection."""

    status: ConnectionStatus
    status_code: int | None = None
    error: str | None = None

    @property
    def terminal(self) -> bool:
        return self.status is ConnectionStatus.CLOSE and is_terminal(self.status_code)


@dataclass(frozen=True)
class CredentialsUpdate:
    """New credential material to persist.

    ``keys`` maps key names to values; ``None`` means the key was removed.
    """

    creds: dict[str, Any] = field(default_factory=dict)
    keys: dict[str, Any] = field(default_factory=dict)

    def as_update(self) -> dict[str, Any]:
        return {"creds": self.creds, "keys": self.keys}


@dataclass(frozen=True)
class MessagesUpsert:
    """Batch of inbound messages.

    Only ``notify`` upserts are live traffic; ``append`` carries history sync.
    """

    upsert_type: str
    messages: tuple[InboundMessage, ...] = ()

    @property
    def is_notify(self) -> bool:
        return self.upsert_type == "notify"


ConnectionEvent = ConnectionUpdate | CredentialsUpdate | MessagesUpsert


def closed_event(error: str | None = None, status_code: int | None = None) -> ConnectionUpdate:
    return ConnectionUpdate(ConnectionStatus.CLOSE, status_code=status_code, error=error)


def parse_messages(raw_messages: list[Any]) -> tuple[InboundMessage, ...]:
    """Validate raw message dicts, dropping (and logging) malformed ones."""
    parsed = []
    for raw in raw_messages:
        try:
            parsed.append(InboundMessage.model_validate(raw))
        except ValidationError as e:
            logger.debug(f"Dropping malformed message: {e.error_count()} validation errors")
    return tuple(parsed)
