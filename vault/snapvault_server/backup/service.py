"""
Backup service facade.

BackupService is the single entry point used by the CLI, the HTTP API and
the scheduler. It wires the executor, restore executor, validator and
retention manager around one metadata store and one set of collection
locks, and owns the lifecycle of the primary store and object storage.

Invariants:
    - Restore of an unknown backup raises NotFoundError before any write
    - Retention deletes through delete_backup, the same path as a manual delete
    - Local backups are authoritative; remote metadata is consulted when the
      local copy is missing

How to change safely:
    - Keep the public method signatures stable (CLI and API depend on them)
    - Add new operations here rather than reaching into the executors
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional, Sequence

from ..config import RetentionPolicy, ServerConfig
from ..errors import NotFoundError
from ..storage import ObjectStorage, create_object_storage
from ..store import DocumentStore, create_document_store
from .executor import BackupExecutor
from .locks import CollectionLocks
from .metadata import BackupMetadata, BackupMetadataStore, BackupStatus, is_valid_backup_id
from .restore import RestoreExecutor, RestoreOptions, RestoreResult
from .retention import RetentionManager
from .validator import BackupValidator, ValidationReport

if TYPE_CHECKING:
    from ..scheduler import BackupScheduler

logger = logging.getLogger(__name__)


class BackupService:
    """Create, list, inspect, validate, restore and delete backups.

    Example:
        >>> service = BackupService.from_config(ServerConfig.from_env())
        >>> await service.start()
        >>> metadata = await service.create_backup(["Cab"])
        >>> await service.restore_backup(metadata.id)
        >>> await service.close()
    """

    def __init__(
        self,
        store: DocumentStore,
        storage: ObjectStorage,
        backup_root: str,
        known_collections: Sequence[str],
        max_concurrent: int = 4,
    ) -> None:
        """Initialize the service.

        Args:
            store: Primary document store
            storage: Object storage for the remote copy
            backup_root: Local directory holding the backups
            known_collections: The fixed set of collection names
            max_concurrent: Maximum collections backed up at once
        """
        self.store = store
        self.storage = storage
        self.known_collections = list(known_collections)
        self.locks = CollectionLocks()
        self.metadata_store = BackupMetadataStore(backup_root, storage)
        self.executor = BackupExecutor(
            store,
            storage,
            self.metadata_store,
            self.known_collections,
            locks=self.locks,
            max_concurrent=max_concurrent,
        )
        self.restorer = RestoreExecutor(
            store, storage, self.metadata_store, self.known_collections, locks=self.locks
        )
        self.validator = BackupValidator(self.metadata_store, self.known_collections)
        self.retention = RetentionManager(self.delete_backup)

    @classmethod
    def from_config(
        cls,
        config: ServerConfig,
        store: DocumentStore | None = None,
        storage: ObjectStorage | None = None,
    ) -> BackupService:
        return cls(
            store=store or create_document_store(config.store),
            storage=storage or create_object_storage(config),
            backup_root=config.storage.backup_root,
            known_collections=config.backup.collections,
            max_concurrent=config.backup.max_concurrent,
        )

    async def start(self) -> None:
        await self.store.connect()
        await self.storage.connect()

    async def close(self) -> None:
        await self.storage.close()
        await self.store.close()

    # Operations

    async def create_backup(self, collections: Sequence[str] | None = None) -> BackupMetadata:
        return await self.executor.create_backup(collections)

    async def list_backups(self, include_remote: bool = False) -> list[BackupMetadata]:
        """List backups, newest first."""
        return await self.metadata_store.list_all(include_remote)

    async def get_backup(self, backup_id: str) -> BackupMetadata | None:
        """Return a backup's metadata, hydrating it from object storage if needed."""
        if not is_valid_backup_id(backup_id):
            return None
        metadata = await self.metadata_store.read(backup_id)
        if metadata is None:
            metadata = await self.metadata_store.fetch_remote(backup_id)
        return metadata

    async def require_backup(self, backup_id: str) -> BackupMetadata:
        metadata = await self.get_backup(backup_id)
        if metadata is None:
            raise NotFoundError(backup_id)
        return metadata

    async def validate_backup(self, backup_id: str) -> ValidationReport:
        return await self.validator.validate(backup_id)

    async def restore_backup(
        self,
        backup_id: str,
        options: RestoreOptions | None = None,
    ) -> RestoreResult:
        """Restore collections from a backup.

        Raises:
            NotFoundError: If no metadata exists for the backup
        """
        await self.require_backup(backup_id)
        return await self.restorer.restore(backup_id, options)

    async def delete_backup(self, backup_id: str, delete_remote: bool = False) -> dict[str, Any]:
        """Delete a backup's local files and optionally its remote objects.

        Raises:
            NotFoundError: If there was nothing to delete
        """
        if not is_valid_backup_id(backup_id):
            raise NotFoundError(backup_id)

        local_deleted = await self.metadata_store.delete_local(backup_id)
        remote_deleted = 0
        if delete_remote:
            remote_deleted = await self.metadata_store.delete_remote(backup_id)

        if not local_deleted and not remote_deleted:
            raise NotFoundError(backup_id)

        logger.info(
            f"Deleted backup {backup_id}",
            extra={
                "backup_id": backup_id,
                "local": local_deleted,
                "remote_objects": remote_deleted,
            },
        )
        return {"id": backup_id, "local": local_deleted, "remote_objects": remote_deleted}

    async def prune(self, policy: RetentionPolicy, delete_remote: bool = True) -> list[str]:
        """Apply a retention policy to the local backups."""
        return await self.retention.prune(await self.list_backups(), policy, delete_remote)

    async def status(self, scheduler: Optional[BackupScheduler] = None) -> dict[str, Any]:
        """Summarize stored backups (and the scheduler, when given)."""
        backups = await self.list_backups()
        total_size = sum(b.size_bytes for b in backups)

        summary: dict[str, Any] = {
            "total": len(backups),
            "completed": sum(1 for b in backups if b.status == BackupStatus.COMPLETED),
            "partial": sum(1 for b in backups if b.status == BackupStatus.PARTIAL),
            "failed": sum(1 for b in backups if b.status == BackupStatus.FAILED),
            "total_size_bytes": total_size,
            "total_size_mb": round(total_size / (1024 * 1024), 2),
            "latest": backups[0].summary() if backups else None,
            "collections": list(self.known_collections),
        }
        if scheduler is not None:
            summary["scheduler"] = scheduler.status()
        return summary
