"""
SnapVault Server - collection snapshot, restore and retention service.

This package snapshots a fixed set of named document collections from a
primary data store into durable storage and can later restore, validate,
list, prune and schedule those snapshots:
- Local directory tree as the first copy of every snapshot
- S3-compatible object storage as the durable second copy
- Cron-driven scheduler with age/count retention

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────────┐
    │  CLI / HTTP │────▶│   Backup    │────▶│    Executor /   │
    │  Scheduler  │     │   Service   │     │ Restore/Validate│
    └─────────────┘     └──────┬──────┘     └────────┬────────┘
                               │                     │
                               ▼            ┌────────┼─────────┐
                        ┌─────────────┐     ▼        ▼         ▼
                        │  Retention  │  ┌──────┐ ┌───────┐ ┌──────┐
                        │   Manager   │  │Store │ │ Local │ │  S3  │
                        └─────────────┘  └──────┘ └───────┘ └──────┘

Invariants:
    - Backup metadata is the sole source of truth for listing and restore
    - One failed collection never aborts the others
    - Metadata is written once per backup

How to change safely:
    - Add new metadata fields, don't remove existing ones
    - Keep the local layout and remote key scheme stable
    - Test restore against old backups before format changes

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
