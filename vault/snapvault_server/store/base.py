"""
Base protocol for the primary document store.

The backup engine only needs three operations per collection: read every
document, remove every document, and insert a batch of documents. Documents
are opaque key-value mappings; the engine never inspects their fields.

Invariants:
    - list_all returns a snapshot of the collection at call time
    - delete_all followed by bulk_insert is a full replace, not a merge
    - bulk_insert of an empty sequence is a no-op

How to change safely:
    - Protocol changes require updating all implementations
    - Add new methods as optional with default implementations
"""

from __future__ import annotations

from abc import abstractmethod
from typing import (
    Any,
    Dict,
    List,
    Protocol,
    Sequence,
    TYPE_CHECKING,
    runtime_checkable,
)

if TYPE_CHECKING:
    from ..config import StoreConfig

Document = Dict[str, Any]


@runtime_checkable
class DocumentStore(Protocol):
    """Protocol for primary data store backends.

    Example:
        >>> store = SqliteDocumentStore("/var/lib/snapvault")
        >>> await store.connect()
        >>> docs = await store.list_all("Customer")
        >>> await store.delete_all("Customer")
        >>> await store.bulk_insert("Customer", docs)
    """

    @abstractmethod
    async def connect(self) -> None:
        """Prepare the backend for use.

        Raises:
            StorageError: If the backend cannot be reached
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        ...

    @abstractmethod
    async def list_all(self, collection: str) -> List[Document]:
        """Return every document of a collection.

        Unknown collections are empty.

        Raises:
            StorageError: If the read fails
        """
        ...

    @abstractmethod
    async def delete_all(self, collection: str) -> int:
        """Remove every document of a collection.

        Returns:
            Number of documents removed

        Raises:
            StorageError: If the delete fails
        """
        ...

    @abstractmethod
    async def bulk_insert(self, collection: str, documents: Sequence[Document]) -> int:
        """Insert a batch of documents.

        Returns:
            Number of documents inserted

        Raises:
            ValidationError: If documents is not a sequence of mappings
            StorageError: If the write fails
        """
        ...

    @abstractmethod
    async def count(self, collection: str) -> int:
        """Number of documents currently in a collection."""
        ...


def ensure_documents(collection: str, documents: Any) -> List[Document]:
    """Check that documents is a sequence of mappings.

    Raises:
        ValidationError: If the payload has the wrong shape
    """
    from ..errors import ValidationError

    if not isinstance(documents, (list, tuple)):
        raise ValidationError(
            f"Cannot insert into {collection}: expected a list of documents, "
            f"got {type(documents).__name__}"
        )
    for index, doc in enumerate(documents):
        if not isinstance(doc, dict):
            raise ValidationError(
                f"Cannot insert into {collection}: item {index} is "
                f"{type(doc).__name__}, expected an object"
            )
    return list(documents)


def create_document_store(config: "StoreConfig") -> DocumentStore:
    """Factory function to create a document store from configuration.

    Args:
        config: Store configuration

    Returns:
        Appropriate DocumentStore implementation

    Raises:
        ConfigurationError: If backend is not supported
    """
    from ..config import StoreBackend
    from ..errors import ConfigurationError
    from .memory import InMemoryDocumentStore
    from .sqlite import SqliteDocumentStore

    if config.backend == StoreBackend.SQLITE:
        return SqliteDocumentStore(
            data_dir=config.data_dir,
            wal_mode=config.wal_mode,
            busy_timeout_ms=config.busy_timeout_ms,
        )
    elif config.backend == StoreBackend.MEMORY:
        return InMemoryDocumentStore()
    else:
        raise ConfigurationError(f"Unsupported store backend: {config.backend}")
