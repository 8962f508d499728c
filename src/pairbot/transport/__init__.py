"""Transport layer: connection handles and the events they emit."""

from pairbot.transport.base import ConnectionFactory, ConnectionHandle
from pairbot.transport.bridge import BridgeConnection, BridgeConnectionFactory, parse_bridge_event
from pairbot.transport.events import (
    ConnectionEvent,
    ConnectionStatus,
    ConnectionUpdate,
    CredentialsUpdate,
    DisconnectReason,
    MessagesUpsert,
    closed_event,
    is_terminal,
)

__all__ = [
    "BridgeConnection",
    "BridgeConnectionFactory",
    "ConnectionEvent",
    "ConnectionFactory",
    "ConnectionHandle",
    "ConnectionStatus",
    "ConnectionUpdate",
    "CredentialsUpdate",
    "DisconnectReason",
    "MessagesUpsert",
    "closed_event",
    "is_terminal",
    "parse_bridge_event",
]
