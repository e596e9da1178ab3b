"""
SQLite document store for SnapVault.

Stores every collection in a single SQLite database as JSON payload rows.
This is the production primary store for single-node deployments and the
reference implementation of the DocumentStore protocol.

Invariants:
    - Insertion order is preserved per collection (rowid order)
    - delete_all and bulk_insert each run in a single transaction
    - Payloads are stored verbatim as JSON text

How to change safely:
    - Schema migrations must be backward compatible
    - Use transactions for all write operations

Table schema:
    documents:
        - id INTEGER PRIMARY KEY AUTOINCREMENT
        - collection TEXT
        - payload_json TEXT
        - INDEX on (collection, id)
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Sequence

from ..errors import StorageError
from .base import Document, ensure_documents

logger = logging.getLogger(__name__)


class SqliteDocumentStore:
    """SQLite-backed implementation of DocumentStore.

    Thread safety:
        Each operation opens its own connection and runs in the default
        executor, so the event loop is never blocked by SQLite.

    Example:
        >>> store = SqliteDocumentStore("/var/lib/snapvault")
        >>> await store.connect()
        >>> await store.bulk_insert("Ride", [{"from": "A", "to": "B"}])
    """

    DB_FILENAME = "documents.db"

    def __init__(
        self,
        data_dir: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the document store.

        Args:
            data_dir: Directory for the SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.data_dir = Path(data_dir)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.DB_FILENAME

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection to the document database."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS documents (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                collection TEXT NOT NULL,
                payload_json TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_documents_collection
                ON documents(collection, id);
        """)

    async def _run(self, func: Any, *args: Any) -> Any:
        try:
            return await asyncio.get_event_loop().run_in_executor(None, func, *args)
        except sqlite3.Error as e:
            raise StorageError(f"SQLite error: {e}", location=str(self.db_path)) from e

    async def connect(self) -> None:
        """Create the database file and schema if they don't exist."""

        def _init() -> None:
            with self._get_connection() as conn:
                self._create_schema(conn)

        await self._run(_init)
        logger.info(f"Document store ready: {self.db_path}")

    async def close(self) -> None:
        """Nothing to release; connections are per-operation."""

    async def list_all(self, collection: str) -> list[Document]:
        def _list() -> list[Document]:
            with self._get_connection() as conn:
                rows = conn.execute(
                    "SELECT payload_json FROM documents WHERE collection = ? ORDER BY id",
                    (collection,),
                ).fetchall()
            return [json.loads(row[0]) for row in rows]

        return await self._run(_list)

    async def delete_all(self, collection: str) -> int:
        def _delete() -> int:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    cursor = conn.execute(
                        "DELETE FROM documents WHERE collection = ?", (collection,)
                    )
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise
                return cursor.rowcount

        return await self._run(_delete)

    async def bulk_insert(self, collection: str, documents: Sequence[Document]) -> int:
        docs = ensure_documents(collection, documents)
        if not docs:
            return 0

        def _insert() -> int:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    conn.executemany(
                        "INSERT INTO documents (collection, payload_json) VALUES (?, ?)",
                        [(collection, json.dumps(doc, default=str)) for doc in docs],
                    )
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise
            return len(docs)

        return await self._run(_insert)

    async def count(self, collection: str) -> int:
        def _count() -> int:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT COUNT(*) FROM documents WHERE collection = ?", (collection,)
                ).fetchone()
            return int(row[0])

        return await self._run(_count)
