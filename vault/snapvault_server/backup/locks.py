"""
Per-collection mutual exclusion.

Backups and restores that touch the same collection are serialized so a
restore never replaces documents while a backup of that collection is
reading them, and vice versa. Different collections proceed in parallel.
Locks are process-local.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class CollectionLocks:
    """Registry of one asyncio.Lock per collection name.

    Example:
        >>> locks = CollectionLocks()
        >>> async with locks.hold("Ride"):
        ...     await store.delete_all("Ride")
    """

    def __init__(self) -> None:
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @asynccontextmanager
    async def hold(self, collection: str) -> AsyncIterator[None]:
        async with self._locks[collection]:
            yield

    def is_locked(self, collection: str) -> bool:
        lock = self._locks.get(collection)
        return lock is not None and lock.locked()
