"""Chat commands handled by every session."""

from pairbot.commands.dispatcher import (
    MENU_FETCH_FAILED,
    CommandDispatcher,
    build_menu_text,
    dp_file_name,
    parse_command,
    resolve_dp_target,
)
from pairbot.commands.media import MediaClient

__all__ = [
    "MENU_FETCH_FAILED",
    "CommandDispatcher",
    "MediaClient",
    "build_menu_text",
    "dp_file_name",
    "parse_command",
    "resolve_dp_target",
]
