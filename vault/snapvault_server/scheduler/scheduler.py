"""
Cron-driven backup scheduler.

On every fire the scheduler creates a backup of the configured collections
and then applies the retention policy:

    sleep until next fire time (APScheduler CronTrigger)
    if the previous run is still in flight: skip this tick
    else: create_backup(collections) -> prune(retention)

Invariants:
    - Runs never overlap (scheduled or manual)
    - A failed run is logged; the schedule keeps running
    - stop() cancels future fires only, an in-flight run always completes
    - Each instance is independent; there is no process-wide scheduler

How to change safely:
    - Keep crontab weekday numbering (0 = Sunday) for stored schedules
    - Test non-overlap before changing the tick handling
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from apscheduler.triggers.cron import CronTrigger

from ..config import SchedulerConfig
from ..errors import ConfigurationError
from .helpers import describe_schedule

if TYPE_CHECKING:
    from ..backup import BackupMetadata, BackupService

logger = logging.getLogger(__name__)

_WEEKDAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun")


def _weekday_item(item: str) -> str:
    """Translate one crontab day-of-week item to APScheduler names."""
    if "/" in item:
        return _weekday_step(item)
    if item.isdigit():
        return _WEEKDAYS[int(item)]
    if "-" in item:
        first, last = item.split("-", 1)
        if first.isdigit() and last.isdigit():
            start, end = int(first), int(last)
            if start == 0 and end >= 1:
                return "sun," + ("mon" if end == 1 else f"mon-{_WEEKDAYS[end]}")
            if end == 7 and start >= 1:
                return ("sat" if start == 6 else f"{_WEEKDAYS[start]}-sat") + ",sun"
            return f"{_WEEKDAYS[start]}-{_WEEKDAYS[end]}"
    return item


def _weekday_step(item: str) -> str:
    """Expand a crontab "base/step" day-of-week item into explicit day names."""
    base, step = item.split("/", 1)
    if not step.isdigit() or int(step) == 0:
        raise ValueError(f"Invalid day of week step: {item}")

    if base in ("*", "?"):
        start, end = 0, 7
    elif "-" in base:
        first, last = base.split("-", 1)
        if not (first.isdigit() and last.isdigit()):
            raise ValueError(f"Invalid day of week range: {item}")
        start, end = int(first), int(last)
    elif base.isdigit():
        start, end = int(base), 7
    else:
        raise ValueError(f"Invalid day of week: {item}")

    if start > end or end > 7:
        raise ValueError(f"Invalid day of week range: {item}")

    names: list[str] = []
    for day in range(start, end + 1, int(step)):
        if _WEEKDAYS[day] not in names:
            names.append(_WEEKDAYS[day])
    return ",".join(names)


def _crontab_day_of_week(field: str) -> str:
    if field in ("*", "?"):
        return "*"
    try:
        return ",".join(_weekday_item(item) for item in field.split(","))
    except IndexError:
        raise ValueError(f"Invalid day of week: {field}")


def validate_schedule(schedule: str, timezone_name: str = "UTC") -> CronTrigger:
    """Parse a five-field crontab expression.

    Returns:
        The CronTrigger firing on that schedule

    Raises:
        ConfigurationError: If the expression or timezone is invalid
    """
    parts = (schedule or "").split()
    if len(parts) != 5:
        raise ConfigurationError(
            f"Invalid cron expression: {schedule!r} (expected 5 fields)",
            setting="BACKUP_SCHEDULE",
        )
    try:
        return CronTrigger(
            minute=parts[0],
            hour=parts[1],
            day=parts[2],
            month=parts[3],
            day_of_week=_crontab_day_of_week(parts[4]),
            timezone=timezone_name,
        )
    except (ValueError, LookupError) as e:
        raise ConfigurationError(
            f"Invalid cron expression: {schedule!r} ({e})", setting="BACKUP_SCHEDULE"
        ) from e


class SchedulerState(Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class BackupScheduler:
    """Runs backups and retention on a cron schedule.

    Example:
        >>> scheduler = BackupScheduler(service, SchedulerConfig(enabled=True))
        >>> await scheduler.start()
        >>> scheduler.next_run_time
        datetime.datetime(2024, 1, 2, 2, 0, tzinfo=...)
        >>> await scheduler.stop()
    """

    def __init__(self, service: BackupService, config: SchedulerConfig) -> None:
        self.service = service
        self.config = config
        self.state = SchedulerState.STOPPED
        self.last_run: Optional[dict[str, Any]] = None

        self._trigger: Optional[CronTrigger] = None
        self._timer: Optional[asyncio.Task] = None
        self._run_task: Optional[asyncio.Task] = None
        self._run_lock = asyncio.Lock()
        self._next_run: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self.state == SchedulerState.RUNNING

    @property
    def next_run_time(self) -> Optional[datetime]:
        return self._next_run

    def get_config(self) -> SchedulerConfig:
        return self.config

    # Lifecycle

    async def start(self) -> None:
        """Start firing on the configured schedule.

        Raises:
            ConfigurationError: If the schedule expression is invalid
        """
        if not self.config.enabled:
            logger.info("Backup scheduler is disabled")
            return

        if self.is_running:
            logger.warning("Backup scheduler is already running")
            return

        self._trigger = validate_schedule(self.config.schedule, self.config.timezone)
        self.state = SchedulerState.RUNNING
        self._timer = asyncio.create_task(self._run_timer())

        logger.info(
            f"Backup scheduler started with schedule: {self.config.schedule}",
            extra={
                "schedule": self.config.schedule,
                "description": describe_schedule(self.config.schedule),
                "timezone": self.config.timezone,
            },
        )

    async def stop(self) -> None:
        """Cancel future fires. An in-flight run is left to complete."""
        if self._timer is None:
            return

        timer = self._timer
        self._timer = None
        timer.cancel()
        try:
            await timer
        except asyncio.CancelledError:
            pass

        self.state = SchedulerState.STOPPED
        self._next_run = None
        logger.info("Backup scheduler stopped")

    async def update_config(self, **changes: Any) -> SchedulerConfig:
        """Merge configuration changes, restarting the timer when running.

        Raises:
            ConfigurationError: If the resulting schedule is invalid
        """
        config = self.config.merged(**changes)
        if config.enabled:
            validate_schedule(config.schedule, config.timezone)

        self.config = config
        logger.info("Backup scheduler configuration updated", extra=config.to_dict())

        if self.is_running:
            await self.stop()
            await self.start()
        return self.config

    async def wait_idle(self) -> None:
        """Wait for the in-flight run, if any, to finish."""
        if self._run_task is not None and not self._run_task.done():
            await asyncio.wait([self._run_task])

    # Runs

    async def trigger_backup(self) -> BackupMetadata:
        """Run a backup now, waiting for any in-flight run first.

        Errors propagate to the caller.
        """
        logger.info("Manually triggering backup")
        async with self._run_lock:
            metadata = await self.service.create_backup(self.config.collections)
        logger.info(f"Manual backup completed: {metadata.id} ({metadata.status.value})")
        return metadata

    async def _run_timer(self) -> None:
        assert self._trigger is not None
        previous: Optional[datetime] = None

        while True:
            now = datetime.now(timezone.utc)
            if previous is not None and now <= previous:
                now = previous + timedelta(seconds=1)

            next_run = self._trigger.get_next_fire_time(None, now)
            if next_run is None:
                logger.warning("Backup schedule has no future fire times")
                return

            self._next_run = next_run
            delay = (next_run - datetime.now(timezone.utc)).total_seconds()
            await asyncio.sleep(max(delay, 0))

            previous = next_run
            self._on_tick()

    def _on_tick(self) -> Optional[asyncio.Task]:
        """Start a scheduled run unless one is still in flight."""
        if self._run_lock.locked() or (self._run_task is not None and not self._run_task.done()):
            logger.warning("Previous backup run still in progress, skipping this tick")
            return None

        self._run_task = asyncio.create_task(self._scheduled_run())
        return self._run_task

    async def _scheduled_run(self) -> None:
        async with self._run_lock:
            started_at = datetime.now(timezone.utc)
            logger.info("Running scheduled backup")

            try:
                metadata = await self.service.create_backup(self.config.collections)
            except Exception as e:
                logger.error(f"Scheduled backup failed: {e}", exc_info=True)
                self.last_run = {"started_at": started_at.isoformat(), "error": str(e)}
                return

            logger.info(
                f"Scheduled backup completed: {metadata.id} ({metadata.status.value})",
                extra={"backup_id": metadata.id, "status": metadata.status.value},
            )
            self.last_run = {
                "started_at": started_at.isoformat(),
                "backup_id": metadata.id,
                "status": metadata.status.value,
            }

            try:
                deleted = await self.service.prune(
                    self.config.retention, delete_remote=self.config.delete_remote
                )
            except Exception as e:
                logger.error(f"Error cleaning up old backups: {e}", exc_info=True)
                return

            if deleted:
                logger.info(f"Cleaned up {len(deleted)} old backups", extra={"backup_ids": deleted})
            self.last_run["pruned"] = deleted

    def status(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "enabled": self.config.enabled,
            "schedule": self.config.schedule,
            "description": describe_schedule(self.config.schedule),
            "next_run": self._next_run.isoformat() if self._next_run else None,
            "in_progress": self._run_lock.locked(),
            "last_run": self.last_run,
            "config": self.config.to_dict(),
        }
