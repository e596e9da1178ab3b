"""
Collection backup executor for SnapVault.

The executor snapshots a set of collections into a fresh backup directory
and mirrors every file to object storage:

    for each collection (concurrently):
        read all documents -> write <collection>.json -> upload
    then:
        compute status -> write metadata.json -> upload

Invariants:
    - A failure in one collection never aborts the others
    - Each collection's pipeline runs sequentially (bounded memory)
    - Only directory creation and metadata persistence are fatal; a fatal
      failure yields status=failed with no collections, it is not raised

How to change safely:
    - Keep file names and remote keys stable (restore depends on them)
    - Test partial-failure scenarios before changing the fan-out
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence

from ..errors import CatastrophicError, SnapVaultError
from ..storage import ObjectStorage, collection_key, metadata_key
from ..store import DocumentStore
from .files import check_collection_name, write_json_file
from .locks import CollectionLocks
from .metadata import (
    BackupMetadata,
    BackupMetadataStore,
    BackupSource,
    BackupStatus,
    CollectionBackupResult,
    compute_status,
    format_backup_id,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def describe_error(error: BaseException) -> str:
    return str(error) or type(error).__name__


@dataclass
class _CollectionOutcome:
    result: CollectionBackupResult
    size_bytes: int = 0


class BackupExecutor:
    """Creates backups of collections.

    Attributes:
        store: Primary document store
        storage: Object storage for the remote copy
        metadata_store: Local backup tree
        known_collections: Collections backed up when none are requested

    Example:
        >>> executor = BackupExecutor(store, storage, metadata_store, ["Cab", "Ride"])
        >>> metadata = await executor.create_backup()
        >>> metadata.status
        <BackupStatus.COMPLETED: 'completed'>
    """

    def __init__(
        self,
        store: DocumentStore,
        storage: ObjectStorage,
        metadata_store: BackupMetadataStore,
        known_collections: Sequence[str],
        locks: CollectionLocks | None = None,
        max_concurrent: int = 4,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the executor.

        Args:
            store: Primary document store
            storage: Object storage backend
            metadata_store: Backup metadata store
            known_collections: Default collections to back up
            locks: Shared per-collection locks
            max_concurrent: Maximum collections processed at once
            clock: Source of the backup creation time
        """
        self.store = store
        self.storage = storage
        self.metadata_store = metadata_store
        self.known_collections = list(known_collections)
        self.locks = locks or CollectionLocks()
        self.clock = clock
        self._semaphore = asyncio.Semaphore(max_concurrent)

    async def create_backup(self, collections: Sequence[str] | None = None) -> BackupMetadata:
        """Back up the given collections (all known collections by default).

        Args:
            collections: Collection names, None for every known collection

        Returns:
            Metadata describing the run; status reports partial failures
        """
        requested = list(dict.fromkeys(self.known_collections if collections is None else collections))
        created_at = self.clock()

        try:
            backup_id, backup_dir = await self.metadata_store.create_backup_dir(created_at)
        except SnapVaultError as e:
            logger.error(f"Backup failed before start: {e}", exc_info=True)
            return BackupMetadata(
                id=format_backup_id(created_at),
                created_at=created_at,
                status=BackupStatus.FAILED,
                errors=[describe_error(e)],
            )

        logger.info(
            "Starting backup",
            extra={"backup_id": backup_id, "collections": requested},
        )

        outcomes = await asyncio.gather(
            *(self._backup_collection(backup_id, backup_dir, name) for name in requested)
        )

        succeeded = [o.result.collection for o in outcomes if o.result.success]
        errors = [f"{o.result.collection}: {o.result.error}" for o in outcomes if not o.result.success]

        metadata = BackupMetadata(
            id=backup_id,
            created_at=created_at,
            collections=succeeded,
            size_bytes=sum(o.size_bytes for o in outcomes),
            status=compute_status(requested, succeeded, errors),
            errors=errors,
            source=BackupSource.BOTH,
            results=[o.result for o in outcomes],
        )

        try:
            await self._persist_metadata(metadata)
        except CatastrophicError as e:
            await self._record_catastrophe(metadata, e)

        self._log_outcome(metadata)
        return metadata

    async def _backup_collection(
        self,
        backup_id: str,
        backup_dir: Path,
        name: str,
    ) -> _CollectionOutcome:
        """Read, write and upload one collection; failures are returned, not raised."""
        size_bytes = 0
        async with self.locks.hold(name), self._semaphore:
            try:
                check_collection_name(name)
                documents = await self.store.list_all(name)

                file_path = backup_dir / f"{name}.json"
                size_bytes = await asyncio.get_event_loop().run_in_executor(
                    None, write_json_file, file_path, documents
                )

                await self.storage.upload(
                    file_path, collection_key(self.storage.prefix, backup_id, name)
                )

                return _CollectionOutcome(
                    CollectionBackupResult(
                        collection=name, success=True, record_count=len(documents)
                    ),
                    size_bytes,
                )

            except Exception as e:
                logger.warning(
                    f"Backup of collection {name} failed: {e}",
                    extra={"backup_id": backup_id, "collection": name},
                )
                return _CollectionOutcome(
                    CollectionBackupResult(collection=name, success=False, error=describe_error(e)),
                    size_bytes,
                )

    async def _persist_metadata(self, metadata: BackupMetadata) -> None:
        try:
            path = await self.metadata_store.write(metadata)
            await self.storage.upload(path, metadata_key(self.storage.prefix, metadata.id))
        except SnapVaultError as e:
            raise CatastrophicError(
                f"metadata: {describe_error(e)}", backup_id=metadata.id
            ) from e

    async def _record_catastrophe(self, metadata: BackupMetadata, error: CatastrophicError) -> None:
        logger.error(f"Backup {metadata.id} could not be persisted: {error}", exc_info=True)
        metadata.status = BackupStatus.FAILED
        metadata.collections = []
        metadata.errors.append(error.message)
        metadata.source = BackupSource.LOCAL

        try:
            await self.metadata_store.write(metadata)
        except SnapVaultError as e:
            logger.error(f"Could not record failure of backup {metadata.id}: {e}")

    def _log_outcome(self, metadata: BackupMetadata) -> None:
        for result in metadata.results:
            if result.success:
                logger.info(
                    f"✓ {result.collection}: {result.record_count} records backed up",
                    extra={"backup_id": metadata.id, "collection": result.collection},
                )
            else:
                logger.warning(
                    f"✗ {result.collection}: {result.error}",
                    extra={"backup_id": metadata.id, "collection": result.collection},
                )

        logger.info(
            f"Backup {metadata.id} completed with status: {metadata.status.value}",
            extra={
                "backup_id": metadata.id,
                "status": metadata.status.value,
                "size_bytes": metadata.size_bytes,
                "collections": metadata.collections,
            },
        )
