"""Object storage collaborator for the evidence pipeline.

Evidence bytes live outside the record store. The pipeline only needs
two operations: fetch the bytes behind a key, and store bytes to get a
key back.
"""

import uuid
from pathlib import Path
from typing import Protocol, Union

from ..exceptions import StorageError

__all__ = ["ObjectStorage", "LocalObjectStorage"]


class ObjectStorage(Protocol):
    """Protocol for object storage backends."""

    def fetch_bytes(self, key: str) -> bytes:
        """Return the bytes stored under ``key``."""
        ...

    def store_bytes(self, data: bytes, filename: str) -> str:
        """Store ``data`` and return the key it can be fetched with."""
        ...


class LocalObjectStorage:
    """Object storage backed by a local directory.

    Keys are paths relative to ``base_dir``. Stored files get a random
    prefix so two uploads with the same name never collide.

    Attributes:
        base_dir: Root directory of the store
    """

    def __init__(self, base_dir: Union[str, Path]) -> None:
        self.base_dir: Path = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _resolve(self, key: str) -> Path:
        path = (self.base_dir / key).resolve()
        if self.base_dir.resolve() not in path.parents:
            raise StorageError(f"Storage key escapes the store: {key}")
        return path

    def fetch_bytes(self, key: str) -> bytes:
        """Read the object stored under ``key``.

        Raises:
            StorageError: If the key is unknown or unreadable
        """
        path = self._resolve(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise StorageError(f"Object not found: {key}")
        except OSError as e:
            raise StorageError(f"Storage read error for {key}: {str(e)}")

    def store_bytes(self, data: bytes, filename: str) -> str:
        """Write ``data`` to the store.

        Args:
            data: Object content
            filename: Original file name, kept as the key suffix

        Returns:
            Storage key of the new object

        Raises:
            StorageError: If the object cannot be written
        """
        safe_name = Path(filename).name or "upload"
        key = f"{uuid.uuid4().hex}_{safe_name}"
        try:
            self._resolve(key).write_bytes(data)
        except OSError as e:
            raise StorageError(f"Storage write error for {filename}: {str(e)}")
        return key
