"""
Backup engine for SnapVault.

Snapshots named collections into per-backup directories mirrored to object
storage, and restores, validates and prunes them.

Invariants:
    - Partial failure is data (status=partial), never an exception
    - Backup and restore of the same collection never overlap in one process

How to change safely:
    - Keep the on-disk layout and metadata.json format readable by older versions
    - Route every deletion through BackupService.delete_backup
"""

from .executor import BackupExecutor
from .locks import CollectionLocks
from .metadata import (
    BackupMetadata,
    BackupMetadataStore,
    BackupSource,
    BackupStatus,
    CollectionBackupResult,
    compute_status,
    format_backup_id,
    is_valid_backup_id,
    parse_backup_id,
)
from .restore import RestoreExecutor, RestoreOptions, RestoreResult
from .retention import RetentionManager, select_for_pruning
from .service import BackupService
from .validator import BackupValidator, CollectionValidation, ValidationReport

__all__ = [
    # Service facade
    "BackupService",
    # Metadata
    "BackupMetadata",
    "BackupMetadataStore",
    "BackupSource",
    "BackupStatus",
    "CollectionBackupResult",
    "compute_status",
    "format_backup_id",
    "is_valid_backup_id",
    "parse_backup_id",
    # Executors
    "BackupExecutor",
    "RestoreExecutor",
    "RestoreOptions",
    "RestoreResult",
    "BackupValidator",
    "ValidationReport",
    "CollectionValidation",
    # Retention
    "RetentionManager",
    "select_for_pruning",
    # Concurrency
    "CollectionLocks",
]
