"""
SnapVault Test Suite.

This package contains:
- unit/: Unit tests (no external dependencies)
- integration/: Integration tests (backup/restore round-trips, CLI, HTTP API)
"""
