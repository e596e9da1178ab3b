"""
Primary data store abstraction for SnapVault.

This module provides a pluggable document store interface supporting:
- SQLite (single-node deployments)
- In-memory (for testing)

Invariants:
    - Documents are opaque mappings; the backup engine never reads fields
    - Every backend offers the same full-replace restore semantics

How to change safely:
    - New backends must implement the DocumentStore protocol
    - Test restore round-trips against every backend
"""

from .base import Document, DocumentStore, create_document_store, ensure_documents
from .memory import InMemoryDocumentStore
from .sqlite import SqliteDocumentStore

__all__ = [
    # Protocol and types
    "DocumentStore",
    "Document",
    "ensure_documents",
    # Factory
    "create_document_store",
    # Implementations
    "SqliteDocumentStore",
    "InMemoryDocumentStore",
]
