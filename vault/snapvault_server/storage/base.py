"""
Base protocol for the remote object storage gateway.

Every backup is mirrored to object storage under a key namespaced by backup
id. This module defines the ObjectStorage protocol that all backends must
implement, together with the key scheme shared by every caller.

Key scheme:
    <prefix>/<backup_id>/<collection>.json
    <prefix>/<backup_id>/metadata.json

Invariants:
    - upload() returns only after the object is stored
    - download() never leaves a partial local file behind
    - Missing objects raise ObjectNotFoundError, other failures StorageError

How to change safely:
    - Protocol changes require updating all implementations
    - Never change the key scheme without a migration for old backups
"""

from __future__ import annotations

from abc import abstractmethod
from pathlib import Path
from typing import List, Protocol, TYPE_CHECKING, Union, runtime_checkable

from ..errors import StorageError

if TYPE_CHECKING:
    from ..config import ServerConfig

PathLike = Union[str, Path]

METADATA_FILENAME = "metadata.json"
COLLECTION_SUFFIX = ".json"


class ObjectNotFoundError(StorageError):
    """The requested object does not exist in object storage."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Object not found: {key}", location=key)
        self.key = key


def backup_prefix(prefix: str, backup_id: str) -> str:
    """Key prefix holding every object of one backup (trailing slash included)."""
    return f"{prefix.rstrip('/')}/{backup_id}/"


def collection_key(prefix: str, backup_id: str, collection: str) -> str:
    return f"{backup_prefix(prefix, backup_id)}{collection}{COLLECTION_SUFFIX}"


def metadata_key(prefix: str, backup_id: str) -> str:
    return f"{backup_prefix(prefix, backup_id)}{METADATA_FILENAME}"


@runtime_checkable
class ObjectStorage(Protocol):
    """Protocol for object storage backends.

    Example:
        >>> storage = S3ObjectStorage(s3_config)
        >>> await storage.connect()
        >>> await storage.upload("backups/2024-01-01-02-00-00/Cab.json",
        ...                      "backups/2024-01-01-02-00-00/Cab.json")
    """

    @property
    @abstractmethod
    def prefix(self) -> str:
        """Key prefix under which backups are stored."""
        ...

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection to the backend."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        ...

    @abstractmethod
    async def upload(self, local_path: PathLike, key: str) -> None:
        """Upload a local file.

        Raises:
            StorageError: If the file cannot be read or the upload fails
        """
        ...

    @abstractmethod
    async def download(self, key: str, local_path: PathLike) -> None:
        """Download an object to a local file, creating parent directories.

        Raises:
            ObjectNotFoundError: If the object does not exist
            StorageError: For other failures
        """
        ...

    @abstractmethod
    async def read_bytes(self, key: str) -> bytes:
        """Return an object's content.

        Raises:
            ObjectNotFoundError: If the object does not exist
        """
        ...

    @abstractmethod
    async def list_keys(self, prefix: str) -> List[str]:
        """List every key that starts with prefix, sorted."""
        ...

    @abstractmethod
    async def delete_prefix(self, prefix: str) -> int:
        """Delete every object whose key starts with prefix.

        Returns:
            Number of objects deleted
        """
        ...


def create_object_storage(config: "ServerConfig") -> ObjectStorage:
    """Factory function to create object storage from configuration.

    Args:
        config: Server configuration

    Returns:
        Appropriate ObjectStorage implementation

    Raises:
        ConfigurationError: If backend is not supported
    """
    from ..config import StorageBackend
    from ..errors import ConfigurationError
    from .memory import InMemoryObjectStorage
    from .s3 import S3ObjectStorage

    if config.storage.backend == StorageBackend.S3:
        return S3ObjectStorage(config.s3)
    elif config.storage.backend == StorageBackend.MEMORY:
        return InMemoryObjectStorage(prefix=config.s3.backup_prefix)
    else:
        raise ConfigurationError(f"Unsupported storage backend: {config.storage.backend}")
