"""
Backup metadata model and store.

Each backup lives in its own directory under the backup root:

    <backup_root>/<backup_id>/
        <collection>.json     one JSON array per collection
        metadata.json         BackupMetadata for the run

and is mirrored to object storage under <prefix>/<backup_id>/.

Backup ids are the UTC creation time formatted as YYYY-MM-DD-HH-MM-SS. When
two backups start within the same second, the second one receives a
zero-padded suffix (-001, -002, ...). Directory creation is atomic, so
concurrent runs never share a directory, and lexical order of ids equals
chronological order.

Invariants:
    - status == completed <=> no errors and every requested collection succeeded
    - status == failed <=> no collection succeeded
    - Metadata is the sole source of truth for list/validate/restore

How to change safely:
    - Add new metadata fields with defaults, don't remove existing ones
    - from_dict must keep reading files written by older versions
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Sequence

from ..errors import StorageError, ValidationError
from ..storage import (
    METADATA_FILENAME,
    ObjectNotFoundError,
    ObjectStorage,
    backup_prefix,
    metadata_key,
)
from .files import read_json_file, write_json_file

logger = logging.getLogger(__name__)

ID_FORMAT = "%Y-%m-%d-%H-%M-%S"
_ID_PATTERN = re.compile(r"^(\d{4}-\d{2}-\d{2}-\d{2}-\d{2}-\d{2})(?:-(\d{3}))?$")
_MAX_ID_SUFFIX = 999


class BackupStatus(str, Enum):
    """Outcome of a backup run."""

    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class BackupSource(str, Enum):
    """Where a backup's files are known to exist."""

    LOCAL = "local"
    REMOTE = "remote"
    BOTH = "both"


def format_backup_id(created_at: datetime, suffix: int = 0) -> str:
    base = created_at.astimezone(timezone.utc).strftime(ID_FORMAT)
    return f"{base}-{suffix:03d}" if suffix else base


def is_valid_backup_id(backup_id: str) -> bool:
    return bool(_ID_PATTERN.match(backup_id or ""))


def parse_backup_id(backup_id: str) -> datetime | None:
    """Recover the creation time encoded in a backup id."""
    match = _ID_PATTERN.match(backup_id or "")
    if not match:
        return None
    return datetime.strptime(match.group(1), ID_FORMAT).replace(tzinfo=timezone.utc)


def compute_status(
    requested: Sequence[str],
    succeeded: Sequence[str],
    errors: Sequence[str],
) -> BackupStatus:
    """Derive the backup status from what was asked for and what worked."""
    if not succeeded:
        return BackupStatus.FAILED
    if not errors and len(succeeded) == len(requested):
        return BackupStatus.COMPLETED
    return BackupStatus.PARTIAL


@dataclass
class CollectionBackupResult:
    """Per-collection outcome of a backup or restore.

    Attributes:
        collection: Collection name
        success: Whether the collection was processed
        record_count: Number of documents written (on success)
        error: Failure reason (on failure)
    """

    collection: str
    success: bool
    record_count: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"collection": self.collection, "success": self.success}
        if self.record_count is not None:
            data["recordCount"] = self.record_count
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class BackupMetadata:
    """Identifies one snapshot.

    Attributes:
        id: Backup id (sortable creation time)
        created_at: Creation timestamp (UTC)
        collections: Collections that succeeded, in request order
        size_bytes: Sum of local collection file sizes
        status: completed, partial or failed
        errors: One "<collection>: <message>" entry per failure
        source: Where the backup's files are known to exist
        results: Per-collection outcomes of the run that created this backup;
            not persisted, empty for metadata read back from disk or storage
    """

    id: str
    created_at: datetime
    collections: list[str] = field(default_factory=list)
    size_bytes: int = 0
    status: BackupStatus = BackupStatus.COMPLETED
    errors: list[str] = field(default_factory=list)
    source: BackupSource = BackupSource.BOTH
    results: list[CollectionBackupResult] = field(default_factory=list, compare=False, repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "date": self.created_at.isoformat(),
            "collections": list(self.collections),
            "size": self.size_bytes,
            "status": self.status.value,
            "errors": list(self.errors),
            "source": self.source.value,
        }

    @classmethod
    def from_dict(cls, data: Any) -> BackupMetadata:
        """Parse metadata.json content.

        Raises:
            ValidationError: If required fields are missing or malformed
        """
        if not isinstance(data, dict):
            raise ValidationError("Metadata must be a JSON object")
        try:
            created_at = datetime.fromisoformat(str(data["date"]).replace("Z", "+00:00"))
            if created_at.tzinfo is None:
                created_at = created_at.replace(tzinfo=timezone.utc)
            collections = data.get("collections") or []
            errors = data.get("errors") or []
            if not isinstance(collections, list) or not isinstance(errors, list):
                raise ValueError("collections and errors must be lists")
            return cls(
                id=str(data["id"]),
                created_at=created_at,
                collections=[str(c) for c in collections],
                size_bytes=int(data.get("size", 0)),
                status=BackupStatus(data.get("status", BackupStatus.COMPLETED.value)),
                errors=[str(e) for e in errors],
                source=BackupSource(data.get("source", BackupSource.LOCAL.value)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Malformed backup metadata: {e}") from e

    def summary(self) -> dict[str, Any]:
        return {"id": self.id, "date": self.created_at.isoformat(), "status": self.status.value}


class BackupMetadataStore:
    """Persists, reads, lists and deletes backups and their metadata.

    Local directories are authoritative; object storage is consulted for
    remote listings and to hydrate backups whose local copy was evicted.

    Example:
        >>> store = BackupMetadataStore("./backups", storage)
        >>> backup_id, path = await store.create_backup_dir(datetime.now(timezone.utc))
        >>> await store.write(metadata)
        >>> await store.list_local()
    """

    def __init__(self, backup_root: str | Path, storage: ObjectStorage) -> None:
        self.root = Path(backup_root)
        self.storage = storage

    # Paths

    def backup_dir(self, backup_id: str) -> Path:
        if not is_valid_backup_id(backup_id):
            raise ValidationError(f"Invalid backup id: {backup_id!r}")
        return self.root / backup_id

    def metadata_path(self, backup_id: str) -> Path:
        return self.backup_dir(backup_id) / METADATA_FILENAME

    def collection_path(self, backup_id: str, collection: str) -> Path:
        return self.backup_dir(backup_id) / f"{collection}.json"

    # Creation

    async def create_backup_dir(self, created_at: datetime) -> tuple[str, Path]:
        """Atomically create a fresh directory for a new backup.

        Raises:
            StorageError: If no directory can be created
        """

        def _create() -> tuple[str, Path]:
            self.root.mkdir(parents=True, exist_ok=True)
            for suffix in range(_MAX_ID_SUFFIX + 1):
                backup_id = format_backup_id(created_at, suffix)
                path = self.root / backup_id
                try:
                    path.mkdir()
                except FileExistsError:
                    continue
                return backup_id, path
            raise StorageError(
                f"Too many backups started at {format_backup_id(created_at)}",
                location=str(self.root),
            )

        try:
            return await asyncio.get_event_loop().run_in_executor(None, _create)
        except OSError as e:
            raise StorageError(
                f"Cannot create backup directory: {e}", location=str(self.root)
            ) from e

    async def write(self, metadata: BackupMetadata) -> Path:
        """Write metadata.json for a backup.

        Raises:
            StorageError: If the file cannot be written
        """
        path = self.metadata_path(metadata.id)
        try:
            await asyncio.get_event_loop().run_in_executor(
                None, write_json_file, path, metadata.to_dict()
            )
        except OSError as e:
            raise StorageError(f"Cannot write metadata: {e}", location=str(path)) from e
        return path

    # Reads

    async def read(self, backup_id: str) -> BackupMetadata | None:
        """Read local metadata, or None when the backup has no local metadata.

        Raises:
            ValidationError: If the metadata file exists but is malformed
        """
        if not is_valid_backup_id(backup_id):
            return None
        path = self.metadata_path(backup_id)
        try:
            data = await asyncio.get_event_loop().run_in_executor(None, read_json_file, path)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Cannot read metadata: {e}", location=str(path)) from e
        return BackupMetadata.from_dict(data)

    async def fetch_remote(self, backup_id: str) -> BackupMetadata | None:
        """Hydrate a backup's metadata from object storage into the local tree."""
        if not is_valid_backup_id(backup_id):
            return None
        key = metadata_key(self.storage.prefix, backup_id)
        try:
            await self.storage.download(key, self.metadata_path(backup_id))
        except ObjectNotFoundError:
            return None
        logger.info("Hydrated backup metadata from object storage", extra={"backup_id": backup_id})
        return await self.read(backup_id)

    async def list_local(self) -> list[BackupMetadata]:
        """List local backups, newest first.

        Directories without readable metadata are reported as failed
        backups so that retention can still prune them.
        """

        def _scan() -> list[BackupMetadata]:
            if not self.root.exists():
                return []
            backups = []
            for entry in self.root.iterdir():
                if not entry.is_dir():
                    continue
                created_at = parse_backup_id(entry.name)
                if created_at is None:
                    continue
                try:
                    metadata = BackupMetadata.from_dict(
                        read_json_file(entry / METADATA_FILENAME)
                    )
                except FileNotFoundError:
                    metadata = BackupMetadata(
                        id=entry.name,
                        created_at=created_at,
                        status=BackupStatus.FAILED,
                        errors=["metadata: missing"],
                    )
                except (OSError, ValidationError) as e:
                    metadata = BackupMetadata(
                        id=entry.name,
                        created_at=created_at,
                        status=BackupStatus.FAILED,
                        errors=[f"metadata: {e}"],
                    )
                metadata.source = BackupSource.LOCAL
                backups.append(metadata)
            return backups

        try:
            backups = await asyncio.get_event_loop().run_in_executor(None, _scan)
        except OSError as e:
            raise StorageError(f"Cannot list backups: {e}", location=str(self.root)) from e
        return sort_newest_first(backups)

    async def list_remote(self) -> list[BackupMetadata]:
        """List backups present in object storage, newest first."""
        prefix = self.storage.prefix.rstrip("/") + "/"
        backups = []
        for key in await self.storage.list_keys(prefix):
            if not key.endswith("/" + METADATA_FILENAME):
                continue
            try:
                content = await self.storage.read_bytes(key)
                metadata = BackupMetadata.from_dict(_loads(content))
            except (StorageError, ValidationError) as e:
                logger.warning(f"Skipping unreadable remote metadata {key}: {e}")
                continue
            metadata.source = BackupSource.REMOTE
            backups.append(metadata)
        return sort_newest_first(backups)

    async def list_all(self, include_remote: bool = False) -> list[BackupMetadata]:
        """List backups, merging the remote listing when requested."""
        local = await self.list_local()
        if not include_remote:
            return local

        merged = {backup.id: backup for backup in local}
        for remote in await self.list_remote():
            existing = merged.get(remote.id)
            if existing is None:
                merged[remote.id] = remote
            else:
                existing.source = BackupSource.BOTH
        return sort_newest_first(list(merged.values()))

    # Deletion

    async def delete_local(self, backup_id: str) -> bool:
        """Remove a backup directory. Returns False if there was nothing to remove."""
        path = self.backup_dir(backup_id)

        def _remove() -> bool:
            if not path.exists():
                return False
            shutil.rmtree(path)
            return True

        try:
            return await asyncio.get_event_loop().run_in_executor(None, _remove)
        except OSError as e:
            raise StorageError(f"Cannot delete {path}: {e}", location=str(path)) from e

    async def delete_remote(self, backup_id: str) -> int:
        """Remove every remote object of a backup. Returns the object count."""
        if not is_valid_backup_id(backup_id):
            raise ValidationError(f"Invalid backup id: {backup_id!r}")
        return await self.storage.delete_prefix(backup_prefix(self.storage.prefix, backup_id))


def sort_newest_first(backups: list[BackupMetadata]) -> list[BackupMetadata]:
    return sorted(backups, key=lambda b: (b.created_at, b.id), reverse=True)


def _loads(content: bytes) -> Any:
    try:
        return json.loads(content.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValidationError(f"Invalid metadata JSON: {e}") from e
