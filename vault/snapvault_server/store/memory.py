"""
In-memory document store implementation for testing.

This module provides a simple in-memory primary store for:
- Unit tests
- Integration tests
- Local development without a database

Invariants:
    - All data is lost on process exit
    - Documents are deep-copied on the way in and out
    - Safe for concurrent access from multiple coroutines

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with DocumentStore protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections import defaultdict
from typing import Dict, List, Sequence

from ..errors import StorageError
from .base import Document, ensure_documents

logger = logging.getLogger(__name__)


class InMemoryDocumentStore:
    """In-memory implementation of DocumentStore for testing.

    Failures can be injected per collection and operation to exercise the
    partial-failure paths of backup and restore.

    Example:
        >>> store = InMemoryDocumentStore()
        >>> await store.bulk_insert("Cab", [{"plate": "AB-123"}])
        >>> store.inject_failure("Cab", "list_all", RuntimeError("boom"))
    """

    def __init__(self) -> None:
        self._collections: Dict[str, List[Document]] = defaultdict(list)
        self._failures: Dict[tuple[str, str], Exception] = {}
        self._lock = asyncio.Lock()
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryDocumentStore connected")

    async def close(self) -> None:
        """Close and clear all data."""
        self._connected = False
        self._collections.clear()
        logger.debug("InMemoryDocumentStore closed")

    async def list_all(self, collection: str) -> List[Document]:
        self._raise_injected(collection, "list_all")
        async with self._lock:
            return copy.deepcopy(self._collections.get(collection, []))

    async def delete_all(self, collection: str) -> int:
        self._raise_injected(collection, "delete_all")
        async with self._lock:
            removed = len(self._collections.get(collection, []))
            self._collections[collection] = []
        return removed

    async def bulk_insert(self, collection: str, documents: Sequence[Document]) -> int:
        self._raise_injected(collection, "bulk_insert")
        docs = ensure_documents(collection, documents)
        async with self._lock:
            self._collections[collection].extend(copy.deepcopy(docs))
        return len(docs)

    async def count(self, collection: str) -> int:
        return len(self._collections.get(collection, []))

    def _raise_injected(self, collection: str, operation: str) -> None:
        error = self._failures.get((collection, operation))
        if error is not None:
            raise error

    # Testing helpers

    def inject_failure(self, collection: str, operation: str, error: Exception | None = None) -> None:
        """Make every future call of ``operation`` on ``collection`` raise.

        Args:
            collection: Collection name
            operation: One of list_all, delete_all, bulk_insert
            error: Exception to raise (defaults to a StorageError)
        """
        self._failures[(collection, operation)] = error or StorageError(
            f"Injected {operation} failure", location=collection
        )

    def clear_failures(self) -> None:
        """Remove all injected failures (testing helper)."""
        self._failures.clear()

    def seed(self, collection: str, documents: Sequence[Document]) -> None:
        """Replace a collection's contents synchronously (testing helper)."""
        self._collections[collection] = copy.deepcopy(list(documents))

    def snapshot(self, collection: str) -> List[Document]:
        """Return a copy of a collection's contents (testing helper)."""
        return copy.deepcopy(self._collections.get(collection, []))
