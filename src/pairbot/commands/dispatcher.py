"""Chat command dispatcher.

Every ``notify`` message a session receives passes through here, in the
session's event task:

1. private chats get an auto-reaction (fire-and-forget)
2. the text body is extracted and checked for the command prefix
3. the first token (minus the prefix) selects a handler

Commands:
    ping  reply "pong"
    menu  reply with the menu image and the command list
    dp    save someone's profile photo to the downloads directory
"""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pairbot.errors import MediaFetchError, PairbotError, ProfilePhotoError
from pairbot.models import USER_SUFFIX, InboundMessage
from pairbot.storage import FileStorage

if TYPE_CHECKING:
    from pairbot.commands.media import MediaClient
    from pairbot.config import Settings
    from pairbot.session.background import BackgroundTasks
    from pairbot.transport import ConnectionHandle, MessagesUpsert

logger = logging.getLogger(__name__)

MENU_FETCH_FAILED = "Menu image fetch failed. Please check MENU_IMAGE_URL."

CommandHandler = Callable[["ConnectionHandle", InboundMessage, list[str]], Awaitable[None]]


def build_menu_text(bot_name: str, prefix: str = ".") -> str:
    return "\n".join(
        [
            f"🧿 *{bot_name}*",
            "",
            "Commands:",
            f"• {prefix}menu - show this menu",
            f"• {prefix}ping - health check",
            f"• {prefix}dp @user | {prefix}dp <number> - save profile photo",
            "",
            "Auto: presence, reactions",
        ]
    )


def parse_command(body: str, prefix: str = ".") -> tuple[str, list[str]] | None:
    """Split a message body into (command, args).

    Returns:
        None if the body is not a command. The command keeps its case.
    """
    if not body.startswith(prefix):
        return None
    tokens = body.strip().split()
    if not tokens or not tokens[0].startswith(prefix):
        return None
    return tokens[0][len(prefix) :], tokens[1:]


def resolve_dp_target(msg: InboundMessage, args: list[str]) -> str:
    """Pick whose profile photo ``dp`` fetches.

    First @-mention, else the first argument as a phone number, else the
    group member who sent the command, else the chat itself.
    """
    mentions = msg.mentioned_jids
    if mentions:
        return mentions[0]
    if args:
        digits = re.sub(r"\D", "", args[0])
        if digits:
            return f"{digits}{USER_SUFFIX}"
    return msg.key.participant or msg.remote_jid


def dp_file_name(jid: str) -> str:
    """Flat file name for jid's profile photo.

    jid may come from a remote mention, so path separators and leading
    dots are replaced and the name always stays inside the downloads dir.
    """
    name = re.sub(r"[^A-Za-z0-9._-]", "_", jid)
    return re.sub(r"^\.+", "_", name) + ".jpg"


class CommandDispatcher:
    """Routes inbound messages to command handlers.

    The dispatcher holds no per-session state; the handle a message arrived
    on is passed with it, so one dispatcher serves every session.
    """

    def __init__(
        self,
        *,
        media: MediaClient,
        background: BackgroundTasks,
        downloads_dir: Path,
        prefix: str = ".",
        auto_react: str = "",
        menu_image_url: str = "",
        bot_name: str = "pairbot",
        storage: FileStorage | None = None,
    ) -> None:
        self.media = media
        self.background = background
        self.downloads_dir = downloads_dir
        self.prefix = prefix
        self.auto_react = auto_react
        self.menu_image_url = menu_image_url
        self.menu_text = build_menu_text(bot_name, prefix)
        self._storage = storage or FileStorage()
        self._handlers: dict[str, CommandHandler] = {
            "ping": self._cmd_ping,
            "menu": self._cmd_menu,
            "dp": self._cmd_dp,
        }

    @classmethod
    def from_settings(
        cls, settings: Settings, media: MediaClient, background: BackgroundTasks
    ) -> CommandDispatcher:
        return cls(
            media=media,
            background=background,
            downloads_dir=settings.downloads_dir,
            prefix=settings.command_prefix,
            auto_react=settings.auto_react,
            menu_image_url=settings.menu_image_url,
            bot_name=settings.bot_name,
        )

    @property
    def commands(self) -> list[str]:
        return sorted(self._handlers)

    async def handle_upsert(self, handle: ConnectionHandle, upsert: MessagesUpsert) -> None:
        if not upsert.is_notify:
            return
        for msg in upsert.messages:
            await self.handle_message(handle, msg)

    async def handle_message(self, handle: ConnectionHandle, msg: InboundMessage) -> None:
        """Process one inbound message. Never raises."""
        if msg.key.from_me or not msg.remote_jid:
            return

        if not msg.is_group and self.auto_react:
            self.background.spawn(
                handle.send_message(
                    msg.remote_jid,
                    {"react": {"text": self.auto_react, "key": msg.key.to_payload()}},
                ),
                f"react:{handle.session_id}",
            )

        parsed = parse_command(msg.body, self.prefix)
        if parsed is None:
            return
        command, args = parsed

        handler = self._handlers.get(command)
        if handler is None:
            logger.debug(f"Ignoring unknown command {command!r}")
            return

        logger.info(f"Command '{command}' in session '{handle.session_id}'")
        try:
            await handler(handle, msg, args)
        except Exception:
            logger.exception(f"Command '{command}' failed")

    async def send_menu(self, handle: ConnectionHandle, jid: str) -> None:
        """Send the menu image with the command list as caption.

        Raises:
            MediaFetchError: If the menu image cannot be downloaded
            TransportError: If sending fails
        """
        image = await self.media.fetch(self.menu_image_url)
        await handle.send_message(jid, {"image": image, "caption": self.menu_text})

    async def _reply(self, handle: ConnectionHandle, jid: str, content: dict[str, Any]) -> None:
        try:
            await handle.send_message(jid, content)
        except PairbotError as e:
            logger.warning(f"Reply in session '{handle.session_id}' failed: {e}")

    async def _cmd_ping(self, handle: ConnectionHandle, msg: InboundMessage, args: list[str]) -> None:
        await self._reply(handle, msg.remote_jid, {"text": "pong"})

    async def _cmd_menu(self, handle: ConnectionHandle, msg: InboundMessage, args: list[str]) -> None:
        try:
            await self.send_menu(handle, msg.remote_jid)
        except MediaFetchError as e:
            logger.warning(f"Menu image fetch failed: {e}")
            await self._reply(handle, msg.remote_jid, {"text": MENU_FETCH_FAILED})
        except PairbotError as e:
            logger.warning(f"Menu send failed: {e}")

    async def _cmd_dp(self, handle: ConnectionHandle, msg: InboundMessage, args: list[str]) -> None:
        target = resolve_dp_target(msg, args)
        try:
            file_name = await self._save_profile_photo(handle, target)
        except (PairbotError, OSError) as e:
            await self._reply(handle, msg.remote_jid, {"text": f"❌ Could not fetch DP: {e}"})
            return
        await self._reply(handle, msg.remote_jid, {"text": f"✅ DP saved: {file_name}"})

    async def _save_profile_photo(self, handle: ConnectionHandle, jid: str) -> str:
        """Download jid's profile photo into the downloads directory.

        Returns:
            Name of the saved file

        Raises:
            ProfilePhotoError: If the account has no profile photo
            MediaFetchError: If the download fails
            StorageError: If the file cannot be written
        """
        url = await handle.profile_picture_url(jid)
        if not url:
            raise ProfilePhotoError("No profile photo")
        data = await self.media.fetch(url)
        file_name = dp_file_name(jid)
        self._storage.save(self.downloads_dir / file_name, data)
        logger.info(f"Saved profile photo {file_name} ({len(data)} bytes)")
        return file_name
