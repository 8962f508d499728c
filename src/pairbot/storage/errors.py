"""Storage layer exceptions."""

from __future__ import annotations

from pairbot.errors import PairbotError


class StorageError(PairbotError):
    """Base exception for credential and download storage."""


class StorageNotFoundError(StorageError):
    """Raised when a file or namespace does not exist."""


class StoragePermissionError(StorageError):
    """Raised when the filesystem denies access."""


class StorageCorruptedError(StorageError):
    """Raised when a stored credential blob cannot be decoded."""
