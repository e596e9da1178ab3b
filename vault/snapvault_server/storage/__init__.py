"""
Object storage gateway for SnapVault.

Holds the remote copy of every backup:
- S3 / MinIO through aiobotocore (production)
- In-memory (for testing)

Invariants:
    - Keys are namespaced by backup id: <prefix>/<backup_id>/<file>
    - Missing objects raise ObjectNotFoundError

How to change safely:
    - New backends must implement the ObjectStorage protocol
    - Keep the key scheme stable across releases
"""

from .base import (
    METADATA_FILENAME,
    ObjectNotFoundError,
    ObjectStorage,
    backup_prefix,
    collection_key,
    create_object_storage,
    metadata_key,
)
from .memory import InMemoryObjectStorage
from .s3 import S3ObjectStorage

__all__ = [
    # Protocol and helpers
    "ObjectStorage",
    "ObjectNotFoundError",
    "METADATA_FILENAME",
    "backup_prefix",
    "collection_key",
    "metadata_key",
    # Factory
    "create_object_storage",
    # Implementations
    "S3ObjectStorage",
    "InMemoryObjectStorage",
]
