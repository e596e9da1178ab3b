"""
Structural integrity checks for backups.

A backup is valid when its directory exists, its metadata parses, and every
known collection has a file holding a JSON array. Record contents are never
inspected. Validation is read-only.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from ..errors import SnapVaultError
from .executor import describe_error
from .files import read_json_file
from .metadata import BackupMetadataStore

logger = logging.getLogger(__name__)


@dataclass
class CollectionValidation:
    valid: bool
    record_count: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"valid": self.valid}
        if self.record_count is not None:
            data["recordCount"] = self.record_count
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class ValidationReport:
    """Result of validating one backup.

    Attributes:
        valid: True iff there are no top-level errors and every collection is valid
        errors: Top-level problems (missing directory, missing metadata)
        collections: Per-collection results keyed by collection name
    """

    valid: bool
    errors: list[str] = field(default_factory=list)
    collections: dict[str, CollectionValidation] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": list(self.errors),
            "collections": {name: c.to_dict() for name, c in self.collections.items()},
        }


class BackupValidator:
    """Checks that a local backup is structurally intact.

    Example:
        >>> validator = BackupValidator(metadata_store, ["Cab", "Ride"])
        >>> report = await validator.validate("2024-01-01-02-00-00")
        >>> report.valid
        True
    """

    def __init__(self, metadata_store: BackupMetadataStore, known_collections: Sequence[str]) -> None:
        self.metadata_store = metadata_store
        self.known_collections = list(known_collections)

    async def validate(self, backup_id: str) -> ValidationReport:
        loop = asyncio.get_event_loop()

        try:
            backup_dir = self.metadata_store.backup_dir(backup_id)
        except SnapVaultError as e:
            return ValidationReport(valid=False, errors=[describe_error(e)])

        if not await loop.run_in_executor(None, backup_dir.is_dir):
            return ValidationReport(valid=False, errors=["Backup directory not found"])

        errors = []
        try:
            if await self.metadata_store.read(backup_id) is None:
                errors.append("Metadata file not found")
        except SnapVaultError as e:
            errors.append(f"Metadata file invalid: {describe_error(e)}")

        collections = {}
        for name in self.known_collections:
            collections[name] = await self._validate_collection(backup_id, name)

        valid = not errors and all(c.valid for c in collections.values())
        logger.info(
            f"Validated backup {backup_id}: {'valid' if valid else 'invalid'}",
            extra={"backup_id": backup_id, "valid": valid},
        )
        return ValidationReport(valid=valid, errors=errors, collections=collections)

    async def _validate_collection(self, backup_id: str, name: str) -> CollectionValidation:
        path = self.metadata_store.collection_path(backup_id, name)
        try:
            data = await asyncio.get_event_loop().run_in_executor(None, read_json_file, path)
        except FileNotFoundError:
            return CollectionValidation(valid=False, error=f"File not found: {path.name}")
        except (OSError, SnapVaultError) as e:
            return CollectionValidation(valid=False, error=describe_error(e))

        if not isinstance(data, list):
            return CollectionValidation(valid=False, error="Invalid format: not an array")
        return CollectionValidation(valid=True, record_count=len(data))
