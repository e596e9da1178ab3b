"""
Backup CLI tool for SnapVault.

This tool manages backups from the command line:
- create: Back up all or some collections
- list: Show stored backups
- restore: Restore collections from a backup
- validate: Check a backup's structural integrity
- delete: Remove a backup (optionally its remote copy)
- schedule: Inspect or change the backup scheduler

Usage:
    snapvault-backup create --collections Cab Ride
    snapvault-backup list --limit 20 --remote
    snapvault-backup restore 2024-01-01-02-00-00 --force
    snapvault-backup schedule --status

Invariants:
    - Exit code 0 on success, 1 on any error or unknown backup id
    - Destructive commands ask for confirmation unless --force is given
    - One output line per collection with a pass/fail mark

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for scripts
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Sequence

from ..backup import BackupService, BackupStatus, RestoreOptions
from ..config import SchedulerConfig, ServerConfig
from ..errors import SnapVaultError
from ..scheduler import (
    BackupScheduler,
    apply_overrides,
    describe_schedule,
    every_day,
    every_hour,
    every_month,
    every_week,
    load_overrides,
    save_config,
    state_path,
    validate_schedule,
)

logger = logging.getLogger(__name__)

_SCHEDULE_CHOICES = (
    ("Every hour", every_hour()),
    ("Every day at 2 AM", every_day(2)),
    ("Every week on Sunday at 2 AM", every_week(0, 2)),
    ("Every month on the 1st at 2 AM", every_month(1, 2)),
    ("Custom cron expression", None),
)


def format_size(size_bytes: int) -> str:
    """Format a byte count as B/KB/MB/GB."""
    if size_bytes <= 0:
        return "0 B"
    size = float(size_bytes)
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{size:.2f} {unit}"
        size /= 1024
    return f"{size:.2f} GB"


def format_age(created_at: datetime, now: datetime | None = None) -> str:
    seconds = int(((now or datetime.now(timezone.utc)) - created_at).total_seconds())
    if seconds < 60:
        return "just now"
    for unit, length in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= length:
            count = seconds // length
            return f"{count} {unit}{'s' if count != 1 else ''} ago"
    return "just now"


class BackupCLI:
    """CLI commands for backup management.

    Every command returns the process exit code.

    Example:
        >>> cli = BackupCLI(service, config)
        >>> await cli.create(["Cab"])
        0
    """

    def __init__(
        self,
        service: BackupService,
        config: ServerConfig,
        prompt: Callable[[str], str] = input,
    ) -> None:
        self.service = service
        self.config = config
        self.prompt = prompt
        self.state_file = state_path(config.storage.backup_root)

    def _confirm(self, question: str) -> bool:
        answer = self.prompt(f"{question} [y/N] ").strip().lower()
        return answer in ("y", "yes")

    def scheduler_config(self) -> SchedulerConfig:
        """Environment scheduler configuration with persisted overrides applied."""
        return apply_overrides(self.config.scheduler, load_overrides(self.state_file))

    # Commands

    async def create(self, collections: Sequence[str] | None = None, interactive: bool = False) -> int:
        if interactive:
            collections = self._select_collections()

        print("Creating backup...")
        metadata = await self.service.create_backup(collections)

        if metadata.status == BackupStatus.COMPLETED:
            print(f"Backup {metadata.id} created successfully")
        else:
            print(f"Backup {metadata.id} created with status: {metadata.status.value}")

        print("\nBackup Details:")
        print(f"ID: {metadata.id}")
        print(f"Status: {metadata.status.value}")
        print(f"Collections: {', '.join(metadata.collections)}")
        print(f"Size: {format_size(metadata.size_bytes)}")

        if metadata.results:
            print("\nCollection Results:")
            for result in metadata.results:
                if result.success:
                    print(f"  ✓ {result.collection}: {result.record_count} records")
                else:
                    print(f"  ✗ {result.collection}: {result.error}")

        # Failures not tied to a single collection, e.g. metadata persistence
        reported = {f"{r.collection}: {r.error}" for r in metadata.results if not r.success}
        errors = [e for e in metadata.errors if e not in reported]
        if errors:
            print("\nErrors:")
            for error in errors:
                print(f"  ✗ {error}")

        return 1 if metadata.status == BackupStatus.FAILED else 0

    def _select_collections(self) -> list[str] | None:
        known = self.service.known_collections
        print("Collections:")
        for i, name in enumerate(known, 1):
            print(f"  {i}. {name}")
        answer = self.prompt("Select collections to back up (numbers or names, comma-separated) [all]: ")

        selected = []
        for item in (part.strip() for part in answer.split(",")):
            if not item:
                continue
            if item.isdigit() and 1 <= int(item) <= len(known):
                selected.append(known[int(item) - 1])
            else:
                selected.append(item)
        return selected or None

    async def list_backups(self, limit: int = 10, remote: bool = False) -> int:
        backups = await self.service.list_backups(include_remote=remote)
        if not backups:
            print("No backups found")
            return 0

        now = datetime.now(timezone.utc)
        header = f"{'ID':<24} {'Date':<20} {'Age':<16} {'Status':<10} {'Colls':>5} {'Size':>12} {'Source':<7}"
        print(header)
        print("-" * len(header))
        for backup in backups[:limit]:
            print(
                f"{backup.id:<24} "
                f"{backup.created_at.strftime('%Y-%m-%d %H:%M:%S'):<20} "
                f"{format_age(backup.created_at, now):<16} "
                f"{backup.status.value:<10} "
                f"{len(backup.collections):>5} "
                f"{format_size(backup.size_bytes):>12} "
                f"{backup.source.value:<7}"
            )

        if len(backups) > limit:
            print(f"\nShowing {limit} of {len(backups)} backups. Use --limit to see more.")
        return 0

    async def restore(
        self,
        backup_id: str,
        collections: Sequence[str] | None = None,
        delete_existing: bool = True,
        force: bool = False,
    ) -> int:
        backup = await self.service.get_backup(backup_id)
        if backup is None:
            print(f"Backup {backup_id} not found", file=sys.stderr)
            return 1

        print("\nBackup to restore:")
        print(f"ID: {backup.id}")
        print(f"Date: {backup.created_at.strftime('%Y-%m-%d %H:%M:%S')}")
        print(f"Collections: {', '.join(backup.collections)}")
        print(f"Status: {backup.status.value}")

        if not force:
            warning = " This will delete existing data!" if delete_existing else ""
            if not self._confirm(f"Are you sure you want to restore from this backup?{warning}"):
                print("Restore cancelled")
                return 0

        print("Restoring backup...")
        result = await self.service.restore_backup(
            backup_id,
            RestoreOptions(
                collections=list(collections) if collections else None,
                delete_existing=delete_existing,
            ),
        )

        print("Restore completed successfully" if result.success else "Restore completed with errors")
        print("\nRestore Results:")
        for r in result.results:
            message = f"{r.record_count} records restored" if r.success else r.error
            print(f"{'✓' if r.success else '✗'} {r.collection}: {message}")

        return 0 if result.success else 1

    async def validate(self, backup_id: str) -> int:
        print("Validating backup...")
        report = await self.service.validate_backup(backup_id)
        print("Backup is valid" if report.valid else "Backup validation failed")

        if report.errors:
            print("\nErrors:")
            for error in report.errors:
                print(f"  - {error}")

        if report.collections:
            print("\nCollection Validation:")
            for name, status in report.collections.items():
                message = f"{status.record_count} records" if status.valid else status.error
                print(f"{'✓' if status.valid else '✗'} {name}: {message}")

        return 0 if report.valid else 1

    async def delete(self, backup_id: str, remote: bool = False, force: bool = False) -> int:
        if not force and not self._confirm(f"Are you sure you want to delete backup {backup_id}?"):
            print("Delete cancelled")
            return 0

        print("Deleting backup...")
        await self.service.delete_backup(backup_id, delete_remote=remote)
        print(f"Backup {backup_id} deleted successfully")
        return 0

    async def schedule_status(self) -> int:
        config = self.scheduler_config()
        retention = config.retention
        print("\nScheduler Status:")
        print(f"Enabled: {'Yes' if config.enabled else 'No'}")
        print(f"Schedule: {config.schedule} ({describe_schedule(config.schedule)})")
        print(f"Timezone: {config.timezone}")
        print(f"Collections: {', '.join(config.collections) if config.collections else 'All'}")
        print(f"Retention: {retention.days} days / {retention.max_count} backups max")
        print(f"Prune remote copies: {'Yes' if config.delete_remote else 'No'}")

        if config.enabled:
            trigger = validate_schedule(config.schedule, config.timezone)
            next_run = trigger.get_next_fire_time(None, datetime.now(timezone.utc))
            if next_run is not None:
                print(f"Next run: {next_run.isoformat()}")
        return 0

    async def schedule_enable(self, foreground: bool = True) -> int:
        config = self.scheduler_config().merged(enabled=True)
        validate_schedule(config.schedule, config.timezone)
        save_config(self.state_file, config)
        print("Scheduler enabled")

        if foreground:
            await self._run_scheduler(config)
        return 0

    async def schedule_disable(self) -> int:
        config = self.scheduler_config().merged(enabled=False)
        save_config(self.state_file, config)
        print("Scheduler disabled")
        return 0

    async def schedule_configure(self) -> int:
        config = self.scheduler_config()

        print("Select backup schedule:")
        for i, (label, _) in enumerate(_SCHEDULE_CHOICES, 1):
            print(f"  {i}. {label}")
        choice = self.prompt(f"Choice [1-{len(_SCHEDULE_CHOICES)}]: ").strip()
        if not choice.isdigit() or not 1 <= int(choice) <= len(_SCHEDULE_CHOICES):
            print(f"Invalid choice: {choice}", file=sys.stderr)
            return 1

        schedule = _SCHEDULE_CHOICES[int(choice) - 1][1]
        if schedule is None:
            schedule = self.prompt("Enter custom cron expression: ").strip()
        validate_schedule(schedule, config.timezone)

        days = self._prompt_int("Retention period (days)", config.retention.days)
        max_count = self._prompt_int("Maximum number of backups to keep", config.retention.max_count)
        if days is None or max_count is None:
            return 1

        config = config.merged(schedule=schedule, retention={"days": days, "max_count": max_count})
        save_config(self.state_file, config)
        print("Scheduler configuration updated")
        print(f"Schedule: {schedule} ({describe_schedule(schedule)})")
        return 0

    def _prompt_int(self, question: str, default: int) -> int | None:
        answer = self.prompt(f"{question} [{default}]: ").strip()
        if not answer:
            return default
        if not answer.isdigit():
            print(f"Expected a non-negative number, got: {answer}", file=sys.stderr)
            return None
        return int(answer)

    async def _run_scheduler(self, config: SchedulerConfig) -> None:
        scheduler = BackupScheduler(self.service, config)
        stop = asyncio.Event()

        loop = asyncio.get_event_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop.set)

        await scheduler.start()
        print(f"Scheduler running ({describe_schedule(config.schedule)}). Press Ctrl+C to stop.")
        try:
            await stop.wait()
        finally:
            await scheduler.stop()
            await scheduler.wait_idle()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="snapvault-backup", description="SnapVault backup management tool")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # create command
    create_parser = subparsers.add_parser("create", help="Create a new backup")
    create_parser.add_argument("-c", "--collections", nargs="+", help="Specific collections to back up")
    create_parser.add_argument("-i", "--interactive", action="store_true", help="Select collections interactively")

    # list command
    list_parser = subparsers.add_parser("list", help="List available backups")
    list_parser.add_argument("-l", "--limit", type=int, default=10, help="Limit number of results")
    list_parser.add_argument("-r", "--remote", action="store_true", help="Include backups only in object storage")

    # restore command
    restore_parser = subparsers.add_parser("restore", help="Restore from a backup")
    restore_parser.add_argument("backup_id", help="Backup id")
    restore_parser.add_argument("-c", "--collections", nargs="+", help="Specific collections to restore")
    restore_parser.add_argument(
        "-n", "--no-delete", dest="delete_existing", action="store_false", help="Do not delete existing data"
    )
    restore_parser.add_argument("-f", "--force", action="store_true", help="Skip confirmation")

    # validate command
    validate_parser = subparsers.add_parser("validate", help="Validate backup integrity")
    validate_parser.add_argument("backup_id", help="Backup id")

    # delete command
    delete_parser = subparsers.add_parser("delete", help="Delete a backup")
    delete_parser.add_argument("backup_id", help="Backup id")
    delete_parser.add_argument("-r", "--remote", action="store_true", help="Also delete from object storage")
    delete_parser.add_argument("-f", "--force", action="store_true", help="Skip confirmation")

    # schedule command
    schedule_parser = subparsers.add_parser("schedule", help="Manage backup scheduling")
    group = schedule_parser.add_mutually_exclusive_group()
    group.add_argument("-s", "--status", action="store_true", help="Show scheduler status")
    group.add_argument("-e", "--enable", action="store_true", help="Enable and run the scheduler")
    group.add_argument("-d", "--disable", action="store_true", help="Disable the scheduler")
    group.add_argument("-c", "--configure", action="store_true", help="Configure the scheduler interactively")

    return parser


async def run_command(cli: BackupCLI, args: argparse.Namespace) -> int:
    """Dispatch parsed arguments to a BackupCLI command."""
    if args.command == "create":
        return await cli.create(args.collections, args.interactive)
    if args.command == "list":
        return await cli.list_backups(args.limit, args.remote)
    if args.command == "restore":
        return await cli.restore(args.backup_id, args.collections, args.delete_existing, args.force)
    if args.command == "validate":
        return await cli.validate(args.backup_id)
    if args.command == "delete":
        return await cli.delete(args.backup_id, args.remote, args.force)
    if args.command == "schedule":
        if args.enable:
            return await cli.schedule_enable()
        if args.disable:
            return await cli.schedule_disable()
        if args.configure:
            return await cli.schedule_configure()
        return await cli.schedule_status()
    raise ValueError(f"Unknown command: {args.command}")


async def _run(args: argparse.Namespace, config: ServerConfig) -> int:
    service = BackupService.from_config(config)
    await service.start()
    try:
        return await run_command(BackupCLI(service, config), args)
    finally:
        await service.close()


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point for the backup tool."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)

    try:
        config = ServerConfig.from_env()
        exit_code = asyncio.run(_run(args, config))
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        exit_code = 1
    except SnapVaultError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        exit_code = 1
    except Exception as e:
        logger.debug("Unhandled error", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
