"""Durable storage for session credentials and downloaded media.

Example:
    ```python
    from pairbot.storage import CredentialStore

    store = CredentialStore(settings.sessions_dir)
    blob = store.load("alice")
    store.apply_update("alice", {"creds": {"me": {"id": "123@s.whatsapp.net"}}})
    ```
"""

from __future__ import annotations

from pairbot.storage.credentials import CredentialBlob, CredentialStore
from pairbot.storage.errors import (
    StorageCorruptedError,
    StorageError,
    StorageNotFoundError,
    StoragePermissionError,
)
from pairbot.storage.file import FileStorage

__all__ = [
    "CredentialBlob",
    "CredentialStore",
    "FileStorage",
    "StorageCorruptedError",
    "StorageError",
    "StorageNotFoundError",
    "StoragePermissionError",
]
