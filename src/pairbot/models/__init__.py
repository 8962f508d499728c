"""Domain models for pairbot.

Models:
    InboundMessage: Chat message forwarded by the protocol bridge
    MessageKey: Identity of a message within a chat
    MessageContent: Text-bearing parts of a message
"""

from .message import (
    GROUP_SUFFIX,
    USER_SUFFIX,
    ContextInfo,
    ExtendedTextMessage,
    InboundMessage,
    MediaMessage,
    MessageContent,
    MessageKey,
)

__all__ = [
    "ContextInfo",
    "ExtendedTextMessage",
    "GROUP_SUFFIX",
    "InboundMessage",
    "MediaMessage",
    "MessageContent",
    "MessageKey",
    "USER_SUFFIX",
]
