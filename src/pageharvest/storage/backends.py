"""
Key/value JSON storage backends.

Both backends satisfy ``pageharvest.protocols.StorageBackend``. Keys are
slash-separated relative paths such as ``raw/paintings/page_001-100.json``.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional

import structlog

from pageharvest.errors import StorageError
from pageharvest.utils.atomic import atomic_write_json, read_json_file


def validate_key(key: str) -> str:
    """Reject keys that could escape the storage root."""
    path = PurePosixPath(key)
    if not key or path.is_absolute() or ".." in path.parts or "\\" in key:
        raise StorageError(f"Invalid storage key: {key!r}", key=key)
    return key


class LocalStorage:
    """Filesystem backend. Every write is atomic, blocking I/O runs in a worker thread."""

    def __init__(self, root_dir: Path):
        self.root_dir = Path(root_dir)
        self.logger = structlog.get_logger(self.__class__.__name__)

    def path_for(self, key: str) -> Path:
        return self.root_dir.joinpath(*PurePosixPath(validate_key(key)).parts)

    async def exists(self, key: str) -> bool:
        path = self.path_for(key)
        return await asyncio.to_thread(path.is_file)

    async def write_json(self, key: str, value: Any) -> None:
        path = self.path_for(key)
        try:
            await asyncio.to_thread(atomic_write_json, path, value)
        except (OSError, ValueError) as e:
            self.logger.error("Storage write failed", key=key, error=str(e))
            raise StorageError(f"Failed to write {key}: {e}", key=key) from e

    async def read_json(self, key: str) -> Optional[Any]:
        path = self.path_for(key)
        try:
            return await asyncio.to_thread(read_json_file, path)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.error("Storage read failed", key=key, error=str(e))
            raise StorageError(f"Failed to read {key}: {e}", key=key) from e

    def __repr__(self) -> str:
        return f"LocalStorage(root_dir={str(self.root_dir)!r})"


class MemoryStorage:
    """In-process backend for tests and dry runs.

    Values are round-tripped through JSON so callers see the same types a real
    backend would return, and later mutation of a written object has no effect.
    """

    def __init__(self) -> None:
        self._blobs: Dict[str, str] = {}
        self.writes: List[str] = []

    async def exists(self, key: str) -> bool:
        return validate_key(key) in self._blobs

    async def write_json(self, key: str, value: Any) -> None:
        validate_key(key)
        try:
            self._blobs[key] = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Failed to write {key}: {e}", key=key) from e
        self.writes.append(key)

    async def read_json(self, key: str) -> Optional[Any]:
        blob = self._blobs.get(validate_key(key))
        return None if blob is None else json.loads(blob)

    def keys(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self._blobs if k.startswith(prefix))

    def snapshot(self) -> Dict[str, Any]:
        return {key: json.loads(blob) for key, blob in self._blobs.items()}


def create_storage(backend: str, root_dir: Optional[Path] = None):
    """Build a backend by name, as used by configuration."""
    if backend == "local":
        return LocalStorage(root_dir or Path("./data"))
    if backend == "memory":
        return MemoryStorage()
    raise ValueError(f"Unknown storage backend: {backend}")
