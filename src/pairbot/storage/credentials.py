"""Per-session credential namespaces on disk.

Each session id owns one directory under the sessions root:

    <sessions_dir>/<session_id>/creds.json
    <sessions_dir>/<session_id>/keys/<key-name>.json

The layout mirrors what the protocol bridge hands us: a ``creds`` object
that is patched on every update and a flat map of signal keys where a
``null`` value means "delete this key".
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pairbot.storage.errors import StorageCorruptedError, StorageError, StorageNotFoundError
from pairbot.storage.file import FileStorage, secure_delete_file

logger = logging.getLogger(__name__)

CREDS_FILE = "creds.json"
KEYS_DIR = "keys"

_SAFE_NAME = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


@dataclass
class CredentialBlob:
    """Credential material for one session."""

    creds: dict[str, Any] = field(default_factory=dict)
    keys: dict[str, Any] = field(default_factory=dict)

    @property
    def is_registered(self) -> bool:
        """True once the remote service has linked an identity to these creds."""
        return bool(self.creds.get("me"))

    def to_payload(self) -> dict[str, Any]:
        return {"creds": self.creds, "keys": self.keys}


def _key_file_name(key: str) -> str:
    # Key names contain ':' and '/' (e.g. "session-123@s.whatsapp.net:1")
    return re.sub(r"[^A-Za-z0-9_.@-]", "_", key) + ".json"


class CredentialStore:
    """Durable key-value blob store, one namespace per session id.

    Writes are atomic (via FileStorage) and synchronous; callers apply
    updates in event order and never batch them.

    Example:
        ```python
        store = CredentialStore(Path("data/sessions"))
        blob = store.load("alice")          # creates an empty namespace if absent
        store.apply_update("alice", {"creds": {"registered": True}})
        store.list_ids()                    # ["alice"]
        store.delete("alice")
        ```
    """

    def __init__(self, root: Path, storage: FileStorage | None = None) -> None:
        self.root = root
        self._storage = storage or FileStorage()

    def _namespace(self, session_id: str) -> Path:
        if not _SAFE_NAME.match(session_id):
            raise StorageError(f"Invalid credential namespace: {session_id!r}")
        return self.root / session_id

    def exists(self, session_id: str) -> bool:
        return self._storage.exists(self._namespace(session_id))

    def list_ids(self) -> list[str]:
        """All session ids that have a namespace on disk."""
        return [name for name in self._storage.list_dirs(self.root) if _SAFE_NAME.match(name)]

    def load(self, session_id: str) -> CredentialBlob:
        """Load the blob for a session, creating an empty namespace if needed.

        Raises:
            StorageCorruptedError: If a stored file is not valid JSON
            StorageError: If the filesystem operation fails
        """
        namespace = self._namespace(session_id)
        self._storage.ensure_dir(namespace / KEYS_DIR)

        blob = CredentialBlob()
        creds_path = namespace / CREDS_FILE
        if self._storage.exists(creds_path):
            blob.creds = self._read_json(creds_path)

        for key_path in sorted((namespace / KEYS_DIR).glob("*.json")):
            entry = self._read_json(key_path)
            if "key" not in entry or "value" not in entry:
                raise StorageCorruptedError(f"Invalid key file {key_path}: missing key or value")
            blob.keys[entry["key"]] = entry["value"]

        logger.debug(
            f"Loaded credentials for session '{session_id}' "
            f"(registered={blob.is_registered}, keys={len(blob.keys)})"
        )
        return blob

    def apply_update(self, session_id: str, update: dict[str, Any]) -> None:
        """Persist one credential-update event.

        ``update["creds"]`` is merged into the stored creds object;
        ``update["keys"]`` maps key names to new values, ``None`` deleting
        the key.

        Raises:
            StorageCorruptedError: If creds or keys is not a mapping
            StorageError: If the write fails
        """
        namespace = self._namespace(session_id)

        creds_patch = update.get("creds")
        keys_patch = update.get("keys") or {}
        if creds_patch and not isinstance(creds_patch, dict):
            raise StorageCorruptedError(f"Malformed credential update for '{session_id}': creds")
        if not isinstance(keys_patch, dict):
            raise StorageCorruptedError(f"Malformed credential update for '{session_id}': keys")

        if creds_patch:
            creds_path = namespace / CREDS_FILE
            current: dict[str, Any] = {}
            if self._storage.exists(creds_path):
                current = self._read_json(creds_path)
            current.update(creds_patch)
            self._write_json(creds_path, current)

        for key, value in keys_patch.items():
            key_path = namespace / KEYS_DIR / _key_file_name(key)
            if value is None:
                secure_delete_file(key_path)
            else:
                self._write_json(key_path, {"key": key, "value": value})

    def delete(self, session_id: str) -> bool:
        """Permanently remove a session namespace.

        Returns:
            True if a namespace existed and was removed
        """
        namespace = self._namespace(session_id)
        if not self._storage.exists(namespace):
            return False

        secure_delete_file(namespace / CREDS_FILE)
        try:
            self._storage.delete(namespace)
        except StorageNotFoundError:
            return False
        logger.info(f"Deleted credential namespace for session '{session_id}'")
        return True

    def _read_json(self, path: Path) -> dict[str, Any]:
        content = self._storage.load(path)
        try:
            data = json.loads(content.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise StorageCorruptedError(f"Invalid credential file {path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageCorruptedError(f"Invalid credential file {path}: not a JSON object")
        return data

    def _write_json(self, path: Path, data: Any) -> None:
        try:
            content = json.dumps(data, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Cannot serialize credentials to {path}: {e}") from e
        self._storage.save(path, content)
