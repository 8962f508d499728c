"""Inbound chat message model.

The bridge forwards protocol messages as camelCase JSON. Only the parts
the command dispatcher reads are modelled; everything else is ignored.
"""

from __future__ import annotations

import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

GROUP_SUFFIX = "@g.us"
USER_SUFFIX = "@s.whatsapp.net"


class _BridgeModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class MessageKey(_BridgeModel):
    """Identifies a message within a chat.

    Attributes:
        remote_jid: Chat the message belongs to (user or group JID).
        from_me: True when the message was sent by this session's account.
        id: Message id assigned by the service.
        participant: Sender inside a group chat (absent in private chats).
    """

    remote_jid: str = ""
    from_me: bool = False
    id: str = ""
    participant: str | None = None

    def to_payload(self) -> dict[str, Any]:
        """Key in the bridge's wire format (used to reference the message)."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ContextInfo(_BridgeModel):
    mentioned_jid: list[str] = Field(default_factory=list)


class ExtendedTextMessage(_BridgeModel):
    text: str | None = None
    context_info: ContextInfo | None = None


class MediaMessage(_BridgeModel):
    caption: str | None = None


class MessageContent(_BridgeModel):
    conversation: str | None = None
    extended_text_message: ExtendedTextMessage | None = None
    image_message: MediaMessage | None = None
    video_message: MediaMessage | None = None


class InboundMessage(_BridgeModel):
    """One message from a ``messages.upsert`` event.

    Example:
        >>> msg = InboundMessage.model_validate({
        ...     "key": {"remoteJid": "15550100000@s.whatsapp.net", "fromMe": False, "id": "A1"},
        ...     "message": {"conversation": ".ping"},
        ... })
        >>> msg.body
        '.ping'
    """

    key: MessageKey
    message: MessageContent | None = None
    push_name: str | None = None

    @property
    def remote_jid(self) -> str:
        return self.key.remote_jid

    @property
    def is_group(self) -> bool:
        return self.key.remote_jid.endswith(GROUP_SUFFIX)

    @property
    def body(self) -> str:
        """Plain text of the message.

        First non-empty of: conversation text, extended text, image caption,
        video caption. Empty string when the message carries none of them.
        """
        content = self.message
        if content is None:
            return ""
        candidates = (
            content.conversation,
            content.extended_text_message.text if content.extended_text_message else None,
            content.image_message.caption if content.image_message else None,
            content.video_message.caption if content.video_message else None,
        )
        for text in candidates:
            if text:
                return text
        return ""

    @property
    def mentioned_jids(self) -> list[str]:
        content = self.message
        if content is None or content.extended_text_message is None:
            return []
        context = content.extended_text_message.context_info
        return list(context.mentioned_jid) if context else []

    @classmethod
    def fake(
        cls,
        text: str | None = None,
        remote_jid: str | None = None,
        from_me: bool = False,
        participant: str | None = None,
        mentions: list[str] | None = None,
    ) -> InboundMessage:
        """Create a fake InboundMessage for testing.

        Args:
            text: Message text (default: "hello"). Sent as extended text when
                mentions are given, otherwise as plain conversation text.
            remote_jid: Chat JID (default: a private chat).
            from_me: Whether the message is self-sent.
            participant: Group sender JID.
            mentions: Mentioned JIDs.

        Returns:
            InboundMessage instance with test data.
        """
        text = text if text is not None else "hello"
        if mentions:
            content: dict[str, Any] = {
                "extendedTextMessage": {
                    "text": text,
                    "contextInfo": {"mentionedJid": mentions},
                }
            }
        else:
            content = {"conversation": text}
        key: dict[str, Any] = {
            "remoteJid": remote_jid or f"15550100000{USER_SUFFIX}",
            "fromMe": from_me,
            "id": uuid.uuid4().hex[:20].upper(),
        }
        if participant:
            key["participant"] = participant
        return cls.model_validate({"key": key, "message": content, "pushName": "Tester"})
