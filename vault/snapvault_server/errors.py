"""
Error types for SnapVault.

This module defines the exception taxonomy used across the service:
- SnapVaultError: Base exception
- ConfigurationError: Invalid schedule expression, missing credentials
- NotFoundError: Unknown backup id
- ValidationError: Malformed snapshot content
- StorageError: Local filesystem or object storage failure
- CatastrophicError: Backup directory or metadata could not be persisted

Partial failures (some but not all collections succeeded) are never raised.
They are reported as data through BackupMetadata.status.

Invariants:
    - All errors inherit from SnapVaultError
    - Every error carries a stable code for API responses
    - Error messages never include credentials
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class SnapVaultError(Exception):
    """Base exception for all SnapVault errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "SNAPVAULT_ERROR"
        self.details = details or {}


class ConfigurationError(SnapVaultError):
    """Configuration is invalid or incomplete.

    Raised when:
    - A schedule expression is not a valid five-field cron expression
    - Object storage is selected without a bucket or with partial credentials
    - A backend name is unknown
    """

    def __init__(self, message: str, setting: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            details={"setting": setting},
        )
        self.setting = setting


class NotFoundError(SnapVaultError):
    """No metadata exists for the requested backup id."""

    def __init__(self, backup_id: str) -> None:
        super().__init__(
            f"Backup {backup_id} not found",
            code="NOT_FOUND",
            details={"backup_id": backup_id},
        )
        self.backup_id = backup_id


class ValidationError(SnapVaultError):
    """Snapshot content is malformed.

    Raised when:
    - A collection file does not hold a JSON array
    - A metadata file is missing required fields
    """

    def __init__(self, message: str, errors: Optional[list[str]] = None) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"errors": errors or []},
        )
        self.errors = errors or []


class StorageError(SnapVaultError):
    """Local filesystem, primary store or object storage operation failed."""

    def __init__(self, message: str, location: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="STORAGE_ERROR",
            details={"location": location},
        )
        self.location = location


class CatastrophicError(SnapVaultError):
    """The backup directory or its metadata could not be persisted.

    This is the only failure that aborts a whole backup run. The executor
    converts it into a failed BackupMetadata instead of propagating it.
    """

    def __init__(self, message: str, backup_id: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="CATASTROPHIC_ERROR",
            details={"backup_id": backup_id},
        )
        self.backup_id = backup_id
