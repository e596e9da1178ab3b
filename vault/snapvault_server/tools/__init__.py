"""Command-line tools for SnapVault."""
