"""Validation utilities for session operations."""

from __future__ import annotations

import re

from pairbot.errors import SessionValidationError

MIN_PHONE_DIGITS = 8
MAX_PHONE_DIGITS = 15
MAX_SESSION_ID_LENGTH = 64


def normalize_phone(phone: str | None) -> str:
    """Reduce a phone number to digits and check its length.

    Args:
        phone: User-provided number in any format ("+1 (555) 010-0000")

    Returns:
        Digits only

    Raises:
        SessionValidationError: If fewer than 8 or more than 15 digits remain
    """
    digits = re.sub(r"\D", "", phone or "")
    if not MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
        raise SessionValidationError("Invalid phone. Use full international format, digits only.")
    return digits


def sanitize_session_id(session_id: str) -> str:
    """Sanitize a session id to prevent path traversal.

    Args:
        session_id: User-provided session id

    Returns:
        Sanitized id (alphanumeric, underscore, hyphen only)

    Raises:
        SessionValidationError: If the id is empty after sanitization
    """
    sanitized = re.sub(r"[^a-zA-Z0-9_-]", "", session_id)
    if not sanitized:
        raise SessionValidationError(
            "Session id must contain at least one alphanumeric character"
        )
    return sanitized[:MAX_SESSION_ID_LENGTH]


def require_session_id(session_id: str | None) -> str:
    """Validate a required session id (start/logout).

    Unlike pairing, an id that needs sanitizing is rejected rather than
    rewritten, so a logout can never hit a different namespace.

    Raises:
        SessionValidationError: If missing, blank or not a safe id
    """
    if session_id is None or not session_id.strip():
        raise SessionValidationError("sessionId required")
    session_id = session_id.strip()
    if sanitize_session_id(session_id) != session_id:
        raise SessionValidationError(
            "Invalid sessionId. Use letters, digits, underscore or hyphen (max 64)."
        )
    return session_id
