"""File-based storage with atomic writes."""

from __future__ import annotations

import atexit
import contextlib
import logging
import os
import shutil
import tempfile
from pathlib import Path

from pairbot.storage.errors import (
    StorageError,
    StorageNotFoundError,
    StoragePermissionError,
)

logger = logging.getLogger(__name__)


# Temp files still on disk if the process dies between write and rename
_temp_files_registry: set[Path] = set()


def _cleanup_temp_files() -> None:
    """Remove temp files left behind by interrupted writes."""
    for temp_path in list(_temp_files_registry):
        try:
            if temp_path.exists():
                temp_path.unlink()
                logger.debug(f"Cleaned up temp file on exit: {temp_path}")
        except OSError as e:
            logger.warning(f"Failed to cleanup temp file {temp_path}: {e}")


atexit.register(_cleanup_temp_files)


def cleanup_orphaned_temp_files(directory: Path, pattern: str = ".*.tmp") -> int:
    """Remove temp files left by a previous crash.

    Called once at startup for the sessions directory, where every
    credential write goes through a temp file.

    Args:
        directory: Directory to search recursively
        pattern: Glob pattern for temp files

    Returns:
        Number of files removed
    """
    if not directory.is_dir():
        return 0

    cleaned_count = 0
    try:
        for temp_file in directory.rglob(pattern):
            if temp_file.is_file():
                try:
                    temp_file.unlink()
                    logger.info(f"Cleaned up orphaned temp file: {temp_file}")
                    cleaned_count += 1
                except OSError as e:
                    logger.warning(f"Failed to clean up temp file {temp_file}: {e}")
    except OSError as e:
        logger.warning(f"Error scanning directory {directory} for temp files: {e}")

    return cleaned_count


def secure_delete_file(file_path: Path) -> None:
    """Overwrite a file with zeros before unlinking it.

    Used for credential material so that deleted sessions do not leave
    key bytes behind in freed blocks.

    Args:
        file_path: File to delete
    """
    if not file_path.is_file():
        return

    try:
        file_size = file_path.stat().st_size
        with file_path.open("r+b") as f:
            f.write(b"\x00" * file_size)
            f.flush()
            os.fsync(f.fileno())
        file_path.unlink()
    except OSError as e:
        logger.warning(f"Failed to securely delete {file_path}, falling back to unlink: {e}")
        file_path.unlink(missing_ok=True)


class FileStorage:
    """File system storage with atomic write operations.

    Writes go to a temp file in the target directory and are renamed
    into place, so a reader never sees a half-written credential blob.

    Example:
        ```python
        storage = FileStorage()
        storage.save(path, b"...")
        data = storage.load(path)
        storage.delete(path.parent)
        ```
    """

    def save(self, path: Path, content: bytes | str) -> None:
        """Atomically write content to path.

        Args:
            path: Destination path
            content: Content to save

        Raises:
            StoragePermissionError: If write permission denied
            StorageError: If operation fails
        """
        content_bytes = content.encode("utf-8") if isinstance(content, str) else content

        self.ensure_dir(path.parent)

        tmp_path = None
        try:
            with tempfile.NamedTemporaryFile(
                mode="wb",
                dir=path.parent,
                delete=False,
                prefix=f".{path.name}.",
                suffix=".tmp",
            ) as tmp_file:
                tmp_path = Path(tmp_file.name)
                _temp_files_registry.add(tmp_path)

                tmp_file.write(content_bytes)
                tmp_file.flush()
                os.fsync(tmp_file.fileno())

            tmp_path.replace(path)
            _temp_files_registry.discard(tmp_path)
            logger.debug(f"Saved {len(content_bytes)} bytes to {path}")

        except PermissionError as e:
            raise StoragePermissionError(f"Cannot write to {path}: permission denied") from e
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}") from e
        finally:
            if tmp_path is not None:
                _temp_files_registry.discard(tmp_path)
                if tmp_path.exists():
                    with contextlib.suppress(OSError):
                        tmp_path.unlink()

    def load(self, path: Path) -> bytes:
        """Read a file.

        Raises:
            StorageNotFoundError: If file doesn't exist
            StoragePermissionError: If read permission denied
            StorageError: If operation fails
        """
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise StorageNotFoundError(f"File not found: {path}") from e
        except PermissionError as e:
            raise StoragePermissionError(f"Cannot read {path}: permission denied") from e
        except OSError as e:
            raise StorageError(f"Failed to read {path}: {e}") from e

    def delete(self, path: Path) -> None:
        """Delete a file or a directory tree.

        Raises:
            StorageNotFoundError: If path doesn't exist
            StoragePermissionError: If delete permission denied
            StorageError: If operation fails
        """
        if not path.exists():
            raise StorageNotFoundError(f"Path not found: {path}")

        try:
            if path.is_dir():
                shutil.rmtree(path)
                logger.debug(f"Deleted directory {path}")
            else:
                path.unlink()
                logger.debug(f"Deleted file {path}")
        except PermissionError as e:
            raise StoragePermissionError(f"Cannot delete {path}: permission denied") from e
        except OSError as e:
            raise StorageError(f"Failed to delete {path}: {e}") from e

    def exists(self, path: Path) -> bool:
        return path.exists()

    def list_dirs(self, directory: Path) -> list[str]:
        """Names of the immediate subdirectories of directory (sorted).

        A missing directory yields an empty list.
        """
        if not directory.is_dir():
            return []
        try:
            return sorted(p.name for p in directory.iterdir() if p.is_dir())
        except PermissionError as e:
            raise StoragePermissionError(f"Cannot list {directory}: permission denied") from e
        except OSError as e:
            raise StorageError(f"Failed to list {directory}: {e}") from e

    def ensure_dir(self, path: Path) -> None:
        """Create directory (and parents) if needed.

        Raises:
            StoragePermissionError: If create permission denied
            StorageError: If operation fails
        """
        try:
            path.mkdir(parents=True, exist_ok=True)
        except PermissionError as e:
            raise StoragePermissionError(
                f"Cannot create directory {path}: permission denied"
            ) from e
        except OSError as e:
            raise StorageError(f"Failed to create directory {path}: {e}") from e
