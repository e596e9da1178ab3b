"""
Restore executor for SnapVault.

Rehydrates collections in the primary store from a backup:

    for each requested collection (sequentially):
        read <collection>.json (download it first if the local copy is gone)
        check it is a JSON array (validate_data)
        delete every existing document (delete_existing)
        bulk insert the backed-up documents

Invariants:
    - delete_existing is a destructive full replace, never a merge
    - A failure in one collection does not stop the remaining collections
    - Backup and restore of the same collection never overlap (CollectionLocks)

How to change safely:
    - Keep reading backups written by older versions
    - Never delete documents before the backup file has been parsed
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from ..errors import SnapVaultError, ValidationError
from ..storage import ObjectStorage, collection_key
from ..store import DocumentStore, ensure_documents
from .executor import describe_error
from .files import check_collection_name, read_json_file
from .locks import CollectionLocks
from .metadata import BackupMetadataStore, CollectionBackupResult

logger = logging.getLogger(__name__)


@dataclass
class RestoreOptions:
    """Options for a restore.

    Attributes:
        collections: Collections to restore (None = all known collections)
        delete_existing: Remove current documents before inserting
        validate_data: Require each backup file to hold a JSON array
    """

    collections: Optional[list[str]] = None
    delete_existing: bool = True
    validate_data: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RestoreOptions:
        """Build options from an API request body (camelCase keys)."""
        data = data or {}
        collections = data.get("collections")
        if collections is not None and (
            not isinstance(collections, list) or not all(isinstance(c, str) for c in collections)
        ):
            raise ValidationError("collections must be a list of strings")
        return cls(
            collections=collections,
            delete_existing=bool(data.get("deleteExisting", True)),
            validate_data=bool(data.get("validateData", True)),
        )


@dataclass
class RestoreResult:
    """Result of a restore.

    Attributes:
        success: True iff every requested collection was restored
        results: Per-collection outcomes in request order
    """

    success: bool
    results: list[CollectionBackupResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "results": [r.to_dict() for r in self.results]}


class RestoreExecutor:
    """Restores collections from a backup.

    Example:
        >>> restorer = RestoreExecutor(store, storage, metadata_store, ["Cab"])
        >>> result = await restorer.restore("2024-01-01-02-00-00")
        >>> result.success
        True
    """

    def __init__(
        self,
        store: DocumentStore,
        storage: ObjectStorage,
        metadata_store: BackupMetadataStore,
        known_collections: Sequence[str],
        locks: CollectionLocks | None = None,
    ) -> None:
        self.store = store
        self.storage = storage
        self.metadata_store = metadata_store
        self.known_collections = list(known_collections)
        self.locks = locks or CollectionLocks()

    async def restore(self, backup_id: str, options: RestoreOptions | None = None) -> RestoreResult:
        """Restore collections from a backup.

        The caller is responsible for checking that the backup exists.

        Args:
            backup_id: Backup to restore from
            options: Restore options

        Returns:
            RestoreResult with one entry per requested collection
        """
        options = options or RestoreOptions()
        collections = (
            self.known_collections if options.collections is None else options.collections
        )
        collections = list(dict.fromkeys(collections))

        try:
            backup_dir = self.metadata_store.backup_dir(backup_id)
            await asyncio.get_event_loop().run_in_executor(
                None, lambda: backup_dir.mkdir(parents=True, exist_ok=True)
            )
        except (OSError, SnapVaultError) as e:
            logger.error(f"Restore of {backup_id} failed: {e}", exc_info=True)
            return RestoreResult(
                success=False,
                results=[CollectionBackupResult(collection="all", success=False, error=describe_error(e))],
            )

        logger.info(
            "Starting restore",
            extra={
                "backup_id": backup_id,
                "collections": collections,
                "delete_existing": options.delete_existing,
            },
        )

        results = []
        for name in collections:
            async with self.locks.hold(name):
                results.append(await self._restore_collection(backup_id, name, options))

        success = all(r.success for r in results)
        logger.info(
            f"Restore from {backup_id} finished: {'success' if success else 'with errors'}",
            extra={"backup_id": backup_id, "success": success},
        )
        return RestoreResult(success=success, results=results)

    async def _restore_collection(
        self,
        backup_id: str,
        name: str,
        options: RestoreOptions,
    ) -> CollectionBackupResult:
        try:
            check_collection_name(name)
            data = await self._load_collection(backup_id, name)

            if options.validate_data and not isinstance(data, list):
                raise ValidationError("Invalid data format: expected array")
            documents = ensure_documents(name, data)

            if options.delete_existing:
                await self.store.delete_all(name)

            count = await self.store.bulk_insert(name, documents)
            logger.info(
                f"✓ Restored {name}: {count} records",
                extra={"backup_id": backup_id, "collection": name},
            )
            return CollectionBackupResult(collection=name, success=True, record_count=count)

        except Exception as e:
            logger.error(
                f"✗ Failed to restore {name}: {e}",
                extra={"backup_id": backup_id, "collection": name},
            )
            return CollectionBackupResult(collection=name, success=False, error=describe_error(e))

    async def _load_collection(self, backup_id: str, name: str) -> Any:
        """Read a collection file, hydrating it from object storage once if missing."""
        path = self.metadata_store.collection_path(backup_id, name)
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, read_json_file, path)
        except FileNotFoundError:
            logger.info(
                f"Downloading {name} from object storage",
                extra={"backup_id": backup_id, "collection": name},
            )
            await self.storage.download(collection_key(self.storage.prefix, backup_id, name), path)
            return await loop.run_in_executor(None, read_json_file, path)
