"""
In-memory object storage implementation for testing.

Invariants:
    - All data is lost on process exit
    - Behaves like the S3 backend for missing keys (ObjectNotFoundError)

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with ObjectStorage protocol
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Dict, List

from ..errors import StorageError
from .base import ObjectNotFoundError, PathLike

logger = logging.getLogger(__name__)


class InMemoryObjectStorage:
    """In-memory implementation of ObjectStorage for testing.

    Example:
        >>> storage = InMemoryObjectStorage()
        >>> await storage.upload(path, "backups/x/Cab.json")
        >>> storage.keys()
        ['backups/x/Cab.json']
    """

    def __init__(self, prefix: str = "backups") -> None:
        self._prefix = prefix
        self._objects: Dict[str, bytes] = {}
        self._failing_keys: Dict[str, Exception] = {}
        self._lock = asyncio.Lock()
        self.upload_count = 0
        self.download_count = 0

    @property
    def prefix(self) -> str:
        return self._prefix

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""

    async def close(self) -> None:
        """Nothing to release; data is kept until the object is dropped."""

    async def upload(self, local_path: PathLike, key: str) -> None:
        self._raise_injected(key)
        try:
            content = Path(local_path).read_bytes()
        except OSError as e:
            raise StorageError(f"Cannot read {local_path}: {e}", location=str(local_path)) from e
        async with self._lock:
            self._objects[key] = content
            self.upload_count += 1

    async def read_bytes(self, key: str) -> bytes:
        self._raise_injected(key)
        async with self._lock:
            if key not in self._objects:
                raise ObjectNotFoundError(key)
            return self._objects[key]

    async def download(self, key: str, local_path: PathLike) -> None:
        content = await self.read_bytes(key)
        target = Path(local_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = target.with_name(target.name + ".part")
        tmp_path.write_bytes(content)
        os.replace(tmp_path, target)
        self.download_count += 1

    async def list_keys(self, prefix: str) -> List[str]:
        async with self._lock:
            return sorted(key for key in self._objects if key.startswith(prefix))

    async def delete_prefix(self, prefix: str) -> int:
        async with self._lock:
            doomed = [key for key in self._objects if key.startswith(prefix)]
            for key in doomed:
                del self._objects[key]
        return len(doomed)

    def _raise_injected(self, key: str) -> None:
        for suffix, error in self._failing_keys.items():
            if key.endswith(suffix):
                raise error

    # Testing helpers

    def inject_failure(self, key_suffix: str, error: Exception | None = None) -> None:
        """Fail uploads and downloads of keys ending with key_suffix."""
        self._failing_keys[key_suffix] = error or StorageError(
            f"Injected failure for {key_suffix}", location=key_suffix
        )

    def clear_failures(self) -> None:
        self._failing_keys.clear()

    def keys(self) -> List[str]:
        return sorted(self._objects)

    def get(self, key: str) -> bytes | None:
        return self._objects.get(key)

    def put(self, key: str, content: bytes) -> None:
        self._objects[key] = content
