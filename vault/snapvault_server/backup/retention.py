"""
Retention pruning for SnapVault.

Selection is a pure function over metadata listings:

    sort ascending by creation time
    too_old  = backups created before now - days
    kept     = the rest
    overflow = the oldest len(kept) - max_count entries of kept
    prune    = too_old + overflow (deduplicated)

Deletion goes through the same path as a manual delete. A backup that
fails to delete is logged and skipped; pruning never raises.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Iterable

from ..config import RetentionPolicy
from .metadata import BackupMetadata

logger = logging.getLogger(__name__)

DeleteBackup = Callable[[str, bool], Awaitable[object]]


def select_for_pruning(
    backups: Iterable[BackupMetadata],
    policy: RetentionPolicy,
    now: datetime | None = None,
) -> list[str]:
    """Return the ids of backups the policy evicts, oldest first."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=policy.days)

    ordered = sorted(backups, key=lambda b: (b.created_at, b.id))
    too_old = [b for b in ordered if b.created_at < cutoff]
    kept = [b for b in ordered if b.created_at >= cutoff]

    overflow = []
    if len(kept) > policy.max_count:
        overflow = kept[: len(kept) - policy.max_count]

    selected = {b.id: b for b in too_old + overflow}
    return [b.id for b in sorted(selected.values(), key=lambda b: (b.created_at, b.id))]


class RetentionManager:
    """Applies a retention policy by deleting evicted backups.

    Example:
        >>> manager = RetentionManager(service.delete_backup)
        >>> deleted = await manager.prune(await service.list_backups(), RetentionPolicy(days=30))
    """

    def __init__(self, delete_backup: DeleteBackup) -> None:
        self._delete_backup = delete_backup

    async def prune(
        self,
        backups: Iterable[BackupMetadata],
        policy: RetentionPolicy,
        delete_remote: bool = True,
        now: datetime | None = None,
    ) -> list[str]:
        """Delete every backup the policy evicts.

        Returns:
            Ids that were actually deleted
        """
        candidates = select_for_pruning(backups, policy, now)
        if not candidates:
            logger.debug("Retention: nothing to prune")
            return []

        logger.info(
            f"Retention: pruning {len(candidates)} backups",
            extra={"backup_ids": candidates, "days": policy.days, "max_count": policy.max_count},
        )

        deleted = []
        for backup_id in candidates:
            try:
                await self._delete_backup(backup_id, delete_remote)
            except Exception as e:
                logger.error(
                    f"Failed to delete backup {backup_id}: {e}",
                    extra={"backup_id": backup_id},
                )
                continue
            logger.info(f"Deleted old backup: {backup_id}", extra={"backup_id": backup_id})
            deleted.append(backup_id)

        return deleted
