"""Session lifecycle: registry, reconnect policy and the session manager."""

from pairbot.session.background import BackgroundTasks
from pairbot.session.manager import SessionManager
from pairbot.session.registry import SessionRecord, SessionRegistry, SessionState
from pairbot.session.supervisor import ReconnectDecision, ReconnectPolicy
from pairbot.session.validation import normalize_phone, require_session_id, sanitize_session_id

__all__ = [
    "BackgroundTasks",
    "ReconnectDecision",
    "ReconnectPolicy",
    "SessionManager",
    "SessionRecord",
    "SessionRegistry",
    "SessionState",
    "normalize_phone",
    "require_session_id",
    "sanitize_session_id",
]
