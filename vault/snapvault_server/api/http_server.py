"""
HTTP server implementation for SnapVault.

This module provides a REST API over BackupService:

    POST   /v1/backups                  create a backup
    GET    /v1/backups                  list backups (?remote=true)
    GET    /v1/backups/status           status summary
    GET    /v1/backups/{id}             backup details
    GET    /v1/backups/{id}/validate    structural validation
    POST   /v1/backups/{id}/restore     restore (collections, deleteExisting, validateData)
    DELETE /v1/backups/{id}             delete (?deleteRemote=true)
    GET    /v1/health                   liveness

Invariants:
    - Responses are JSON envelopes with a "success" field
    - NotFoundError maps to 404, ValidationError to 400, anything else to 500

How to change safely:
    - Keep the response envelopes stable (scripts parse them)
    - Version the API if breaking changes are needed
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Optional

from aiohttp import web

from ..backup import BackupStatus, RestoreOptions
from ..errors import NotFoundError, SnapVaultError, ValidationError

if TYPE_CHECKING:
    from ..backup import BackupService
    from ..scheduler import BackupScheduler

logger = logging.getLogger(__name__)

_ERROR_STATUS = {NotFoundError: 404, ValidationError: 400}


def create_http_app(
    service: BackupService,
    scheduler: Optional[BackupScheduler] = None,
) -> web.Application:
    """Create an HTTP application for SnapVault.

    Args:
        service: BackupService instance
        scheduler: Scheduler whose state is included in the status summary

    Returns:
        aiohttp Application instance
    """
    app = web.Application()

    app.router.add_post("/v1/backups", lambda r: handle_create(r, service))
    app.router.add_get("/v1/backups", lambda r: handle_list(r, service))
    app.router.add_get("/v1/backups/status", lambda r: handle_status(r, service, scheduler))
    app.router.add_get("/v1/backups/{backup_id}", lambda r: handle_get(r, service))
    app.router.add_get("/v1/backups/{backup_id}/validate", lambda r: handle_validate(r, service))
    app.router.add_post("/v1/backups/{backup_id}/restore", lambda r: handle_restore(r, service))
    app.router.add_delete("/v1/backups/{backup_id}", lambda r: handle_delete(r, service))
    app.router.add_get("/v1/health", handle_health)

    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except SnapVaultError as e:
            status = _ERROR_STATUS.get(type(e), 500)
            if status == 500:
                logger.error(f"HTTP handler error: {e}", exc_info=True)
            return web.json_response(
                {"success": False, "error": e.message, "error_code": e.code, "details": e.details},
                status=status,
            )
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return web.json_response(
                {"success": False, "error": str(e), "error_code": "INTERNAL"},
                status=500,
            )

    app.middlewares.append(error_middleware)

    return app


def _query_flag(request: web.Request, name: str) -> bool:
    return request.query.get(name, "false").lower() in ("true", "1", "yes")


async def _json_body(request: web.Request) -> dict[str, Any]:
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except json.JSONDecodeError:
        raise ValidationError("Invalid JSON body")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


async def handle_create(request: web.Request, service: BackupService) -> web.Response:
    """Handle POST /v1/backups - Create a backup."""
    body = await _json_body(request)
    collections = body.get("collections")
    if collections is not None and (
        not isinstance(collections, list) or not all(isinstance(c, str) for c in collections)
    ):
        raise ValidationError("collections must be a list of strings")

    metadata = await service.create_backup(collections)
    return web.json_response(
        {
            "success": metadata.status != BackupStatus.FAILED,
            "message": f"Backup {metadata.id} created with status {metadata.status.value}",
            "backup": metadata.to_dict(),
        },
        status=201,
    )


async def handle_list(request: web.Request, service: BackupService) -> web.Response:
    """Handle GET /v1/backups - List backups."""
    backups = await service.list_backups(include_remote=_query_flag(request, "remote"))
    return web.json_response(
        {"success": True, "count": len(backups), "backups": [b.to_dict() for b in backups]}
    )


async def handle_get(request: web.Request, service: BackupService) -> web.Response:
    """Handle GET /v1/backups/{backup_id} - Backup details."""
    metadata = await service.require_backup(request.match_info["backup_id"])
    return web.json_response({"success": True, "backup": metadata.to_dict()})


async def handle_validate(request: web.Request, service: BackupService) -> web.Response:
    """Handle GET /v1/backups/{backup_id}/validate - Validate a backup."""
    backup_id = request.match_info["backup_id"]
    report = await service.validate_backup(backup_id)
    return web.json_response({"success": True, "backup_id": backup_id, "validation": report.to_dict()})


async def handle_restore(request: web.Request, service: BackupService) -> web.Response:
    """Handle POST /v1/backups/{backup_id}/restore - Restore a backup."""
    backup_id = request.match_info["backup_id"]
    options = RestoreOptions.from_dict(await _json_body(request))

    result = await service.restore_backup(backup_id, options)
    message = (
        f"Backup {backup_id} restored successfully"
        if result.success
        else f"Backup {backup_id} restored with errors"
    )
    return web.json_response({**result.to_dict(), "message": message})


async def handle_delete(request: web.Request, service: BackupService) -> web.Response:
    """Handle DELETE /v1/backups/{backup_id} - Delete a backup."""
    backup_id = request.match_info["backup_id"]
    deleted = await service.delete_backup(backup_id, delete_remote=_query_flag(request, "deleteRemote"))
    return web.json_response(
        {"success": True, "message": f"Backup {backup_id} deleted successfully", "deleted": deleted}
    )


async def handle_status(
    request: web.Request,
    service: BackupService,
    scheduler: Optional[BackupScheduler],
) -> web.Response:
    """Handle GET /v1/backups/status - Status summary."""
    summary = await service.status(scheduler)
    return web.json_response({"success": True, "status": summary})


async def handle_health(request: web.Request) -> web.Response:
    """Handle GET /v1/health - Health check."""
    return web.json_response({"healthy": True})
