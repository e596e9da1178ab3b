"""HTTP API for SnapVault."""

from .http_server import create_http_app

__all__ = ["create_http_app"]
