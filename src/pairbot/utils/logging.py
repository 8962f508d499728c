"""Logging utilities with sanitization, correlation IDs and session context.

This module provides:
- Log sanitization to mask phone numbers, JIDs, pairing codes and tokens
- Correlation ID support for tracking HTTP requests through the system
- Session context so every line logged by a session's event task names it
- SanitizingFormatter for complete output sanitization including exceptions
- JSONFormatter for structured JSON logging (log aggregators)
"""

from __future__ import annotations

import contextvars
import json
import logging
import re
import uuid
from datetime import UTC, datetime
from typing import Any, ClassVar

correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)

session_id_context: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "session_id", default=None
)

# Shared by LogSanitizer, SanitizingFormatter and JSONFormatter.
# JIDs go first so their digits are masked together with the server part.
SENSITIVE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    # User JIDs (<digits>[:device]@s.whatsapp.net)
    (re.compile(r"\b\d{6,}(?::\d+)?@s\.whatsapp\.net\b"), "***JID***@s.whatsapp.net"),
    # Pairing codes as logged by the bridge ("ABCD-EFGH" or "ABCDEFGH")
    (re.compile(r"(pairing[_ ]?code)['\"]?\s*[:=]\s*['\"]?([A-Z0-9]{4}-?[A-Z0-9]{4})"), r"\1=***CODE***"),
    # Bridge / API tokens
    (
        re.compile(r"(token|api[_-]?key)['\"]?\s*[:=]\s*['\"]?([A-Za-z0-9_\-\.]{12,})"),
        r"\1=***TOKEN***",
    ),
    # Phone numbers (international format)
    (re.compile(r"\+?[1-9]\d{9,14}"), "***PHONE***"),
    # Authorization headers
    (re.compile(r"(Authorization|Bearer)\s*:\s*([A-Za-z0-9_\-\.=]+)"), r"\1: ***AUTH***"),
    # Base64 key material (noiseKey, signedIdentityKey, ...)
    (re.compile(r"[A-Za-z0-9+/]{40,}={0,2}"), "***KEY***"),
]


def sanitize_text(text: str) -> str:
    """Apply all sanitization patterns to text."""
    for pattern, replacement in SENSITIVE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


class LogSanitizer(logging.Filter):
    """Filter that sanitizes msg and args of every record.

    Exception tracebacks are sanitized later by SanitizingFormatter.
    """

    PATTERNS: ClassVar[list[tuple[re.Pattern[str], str]]] = SENSITIVE_PATTERNS

    def filter(self, record: logging.LogRecord) -> bool:
        if record.msg:
            record.msg = sanitize_text(str(record.msg))

        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._sanitize_value(v) for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(self._sanitize_value(arg) for arg in record.args)

        return True

    def _sanitize_value(self, value: Any) -> Any:
        if isinstance(value, str):
            return sanitize_text(value)
        elif isinstance(value, dict):
            return {k: self._sanitize_value(v) for k, v in value.items()}
        elif isinstance(value, list | tuple):
            return type(value)(self._sanitize_value(item) for item in value)
        return value


class SanitizingFormatter(logging.Formatter):
    """Formatter that sanitizes the final formatted output.

    Catches sensitive data that only appears at format time: exception
    messages, stack traces and reprs of bridge payloads.
    """

    def format(self, record: logging.LogRecord) -> str:
        return sanitize_text(super().format(record))


class CorrelationIDFilter(logging.Filter):
    """Adds ``record.correlation_id`` (the HTTP request id, or "-")."""

    def filter(self, record: logging.LogRecord) -> bool:
        cid = correlation_id.get()
        record.correlation_id = cid if cid else "-"
        return True


class SessionContextFilter(logging.Filter):
    """Adds ``record.session_id`` (the session whose event task is logging, or "-")."""

    def filter(self, record: logging.LogRecord) -> bool:
        sid = session_id_context.get()
        record.session_id = sid if sid else "-"
        return True


def get_correlation_id() -> str | None:
    return correlation_id.get()


def set_correlation_id(cid: str) -> None:
    correlation_id.set(cid)


def clear_correlation_id() -> None:
    correlation_id.set(None)


def generate_correlation_id() -> str:
    """Generate a new 16-character correlation ID."""
    return uuid.uuid4().hex[:16]


def set_session_context(session_id: str | None) -> contextvars.Token[str | None]:
    """Bind a session id to the current task's logging context.

    asyncio tasks copy the context at creation, so binding inside a
    session task does not leak into other sessions.

    Returns:
        Token for resetting the context
    """
    return session_id_context.set(session_id)


def get_session_context() -> str | None:
    return session_id_context.get()


class JSONFormatter(logging.Formatter):
    """Formatter that outputs one JSON object per line.

    Each entry includes timestamp, level, logger, message, correlation_id,
    session_id (if bound) and any ``extra`` fields passed by the caller.
    """

    _STANDARD_ATTRS = frozenset(
        {
            "name",
            "msg",
            "args",
            "created",
            "filename",
            "funcName",
            "levelname",
            "levelno",
            "lineno",
            "module",
            "msecs",
            "pathname",
            "process",
            "processName",
            "relativeCreated",
            "stack_info",
            "exc_info",
            "exc_text",
            "thread",
            "threadName",
            "taskName",
            "correlation_id",
            "session_id",
            "message",
        }
    )

    def __init__(self, sanitize: bool = True) -> None:
        super().__init__()
        self.sanitize = sanitize

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "correlation_id"):
            log_entry["correlation_id"] = record.correlation_id

        if getattr(record, "session_id", "-") != "-":
            log_entry["session_id"] = record.session_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in self._STANDARD_ATTRS and not key.startswith("_"):
                try:
                    json.dumps(value)
                    log_entry[key] = value
                except (TypeError, ValueError):
                    log_entry[key] = str(value)

        if self.sanitize:
            log_entry = self._sanitize_dict(log_entry)

        return json.dumps(log_entry, ensure_ascii=False, default=str)

    def _sanitize_dict(self, data: dict[str, Any]) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for key, value in data.items():
            if isinstance(value, str):
                result[key] = sanitize_text(value)
            elif isinstance(value, dict):
                result[key] = self._sanitize_dict(dict(value))
            elif isinstance(value, list):
                result[key] = [
                    sanitize_text(item) if isinstance(item, str) else item for item in value
                ]
            else:
                result[key] = value
        return result
