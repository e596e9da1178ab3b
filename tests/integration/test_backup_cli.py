"""
Integration tests for the snapvault-backup command line tool.

Tests cover:
- Command output and exit codes through BackupCLI
- Confirmation prompts
- Scheduler configuration persistence
- The main() entry point with environment configuration
"""

from datetime import datetime, timedelta, timezone
import json
import tempfile

import pytest

from vault.snapvault_server.backup import BackupService
from vault.snapvault_server.config import (
    ServerConfig,
    StorageBackend,
    StorageConfig,
    StoreBackend,
    StoreConfig,
)
from vault.snapvault_server.errors import ConfigurationError, NotFoundError
from vault.snapvault_server.scheduler import state_path
from vault.snapvault_server.storage import InMemoryObjectStorage
from vault.snapvault_server.store import InMemoryDocumentStore
from vault.snapvault_server.tools.backup_cli import (
    BackupCLI,
    build_parser,
    format_age,
    format_size,
    main,
)

COLLECTIONS = ("Customer", "Cab", "Ride")


class ScriptedPrompt:
    """Answers prompts from a fixed list and records the questions."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.questions = []

    def __call__(self, question):
        self.questions.append(question)
        return self.answers.pop(0)


class TestFormatting:
    """Tests for output helpers."""

    @pytest.mark.parametrize(
        "size_bytes,expected",
        [(0, "0 B"), (512, "512.00 B"), (2048, "2.00 KB"), (5 * 1024 * 1024, "5.00 MB"), (3 * 1024**3, "3.00 GB")],
    )
    def test_format_size(self, size_bytes, expected):
        assert format_size(size_bytes) == expected

    def test_format_age(self):
        now = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

        assert format_age(now - timedelta(seconds=5), now) == "just now"
        assert format_age(now - timedelta(minutes=1), now) == "1 minute ago"
        assert format_age(now - timedelta(hours=3), now) == "3 hours ago"
        assert format_age(now - timedelta(days=2, hours=5), now) == "2 days ago"


class TestBackupCLI:
    """Tests for BackupCLI commands."""

    @pytest.fixture
    def backup_root(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def config(self, backup_root):
        return ServerConfig(
            storage=StorageConfig(backend=StorageBackend.MEMORY, backup_root=backup_root),
            store=StoreConfig(backend=StoreBackend.MEMORY),
        )

    @pytest.fixture
    def store(self):
        store = InMemoryDocumentStore()
        store.seed("Customer", [{"name": "Ana"}])
        store.seed("Cab", [{"plate": "AB-123"}, {"plate": "CD-456"}])
        store.seed("Ride", [{"from": "A", "to": "B"}])
        return store

    @pytest.fixture
    def service(self, store, backup_root):
        return BackupService(store, InMemoryObjectStorage(), backup_root, COLLECTIONS)

    def make_cli(self, service, config, *answers):
        return BackupCLI(service, config, prompt=ScriptedPrompt(*answers))

    @pytest.mark.asyncio
    async def test_create(self, service, config, capsys):
        cli = self.make_cli(service, config)

        assert await cli.create() == 0

        out = capsys.readouterr().out
        assert "created successfully" in out
        assert "Collections: Customer, Cab, Ride" in out

    @pytest.mark.asyncio
    async def test_create_reports_errors(self, service, config, store, capsys):
        store.inject_failure("Ride", "list_all", RuntimeError("timeout"))
        cli = self.make_cli(service, config)

        assert await cli.create() == 0

        out = capsys.readouterr().out
        assert "status: partial" in out
        assert "✗ Ride: timeout" in out
        assert "Errors:" not in out

    @pytest.mark.asyncio
    async def test_create_reports_each_collection(self, service, config, store, capsys):
        store.inject_failure("Ride", "list_all", RuntimeError("timeout"))
        cli = self.make_cli(service, config)

        assert await cli.create() == 0

        lines = capsys.readouterr().out.splitlines()
        start = lines.index("Collection Results:")
        assert lines[start + 1 : start + 4] == [
            "  ✓ Customer: 1 records",
            "  ✓ Cab: 2 records",
            "  ✗ Ride: timeout",
        ]

    @pytest.mark.asyncio
    async def test_create_reports_metadata_failure(self, service, config, capsys):
        service.storage.inject_failure("metadata.json")
        cli = self.make_cli(service, config)

        assert await cli.create(["Cab"]) == 1

        out = capsys.readouterr().out
        assert "✓ Cab: 2 records" in out
        assert "Errors:\n  ✗ metadata: " in out

    @pytest.mark.asyncio
    async def test_create_failed_exit_code(self, service, config, capsys):
        cli = self.make_cli(service, config)

        assert await cli.create(["../bad"]) == 1

    @pytest.mark.asyncio
    async def test_interactive_selection(self, service, config):
        cli = self.make_cli(service, config, "2, Ride")

        await cli.create(interactive=True)

        [backup] = await service.list_backups()
        assert backup.collections == ["Cab", "Ride"]

    @pytest.mark.asyncio
    async def test_list(self, service, config, capsys):
        cli = self.make_cli(service, config)

        assert await cli.list_backups() == 0
        assert "No backups found" in capsys.readouterr().out

        await service.create_backup()
        await service.create_backup(["Cab"])

        assert await cli.list_backups(limit=1) == 0
        out = capsys.readouterr().out
        assert "completed" in out
        assert "Showing 1 of 2 backups" in out

    @pytest.mark.asyncio
    async def test_restore_with_force(self, service, config, store, capsys):
        metadata = await service.create_backup()
        store.seed("Cab", [])
        cli = self.make_cli(service, config)

        assert await cli.restore(metadata.id, force=True) == 0

        out = capsys.readouterr().out
        assert "✓ Cab: 2 records restored" in out
        assert len(store.snapshot("Cab")) == 2

    @pytest.mark.asyncio
    async def test_restore_cancelled(self, service, config, store, capsys):
        metadata = await service.create_backup()
        store.seed("Cab", [])
        cli = self.make_cli(service, config, "n")

        assert await cli.restore(metadata.id) == 0

        assert "Restore cancelled" in capsys.readouterr().out
        assert "delete existing data" in cli.prompt.questions[0]
        assert store.snapshot("Cab") == []

    @pytest.mark.asyncio
    async def test_restore_unknown_backup(self, service, config, capsys):
        cli = self.make_cli(service, config)

        assert await cli.restore("2020-01-01-00-00-00", force=True) == 1
        assert "Backup 2020-01-01-00-00-00 not found" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_restore_with_errors(self, service, config, capsys):
        metadata = await service.create_backup(["Cab"])
        cli = self.make_cli(service, config, "yes")

        assert await cli.restore(metadata.id, ["Cab", "Ride"]) == 1

        out = capsys.readouterr().out
        assert "✓ Cab" in out
        assert "✗ Ride" in out

    @pytest.mark.asyncio
    async def test_validate(self, service, config, capsys):
        metadata = await service.create_backup()
        cli = self.make_cli(service, config)

        assert await cli.validate(metadata.id) == 0
        assert "Backup is valid" in capsys.readouterr().out

        service.metadata_store.collection_path(metadata.id, "Cab").write_text('{"not": "a list"}')

        assert await cli.validate(metadata.id) == 1
        assert "✗ Cab: Invalid format: not an array" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_delete(self, service, config, capsys):
        metadata = await service.create_backup(["Cab"])

        assert await self.make_cli(service, config, "").delete(metadata.id) == 0
        assert "Delete cancelled" in capsys.readouterr().out
        assert await service.get_backup(metadata.id) is not None

        assert await self.make_cli(service, config, "y").delete(metadata.id, remote=True) == 0
        assert await service.get_backup(metadata.id) is None

    @pytest.mark.asyncio
    async def test_delete_unknown(self, service, config):
        with pytest.raises(NotFoundError):
            await self.make_cli(service, config).delete("2020-01-01-00-00-00", force=True)

    @pytest.mark.asyncio
    async def test_schedule_disable_persists(self, service, config, backup_root, capsys):
        cli = self.make_cli(service, config)

        assert await cli.schedule_disable() == 0

        saved = json.loads(state_path(backup_root).read_text())
        assert saved["enabled"] is False
        assert "Scheduler disabled" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_schedule_enable_without_foreground(self, service, config, backup_root):
        cli = self.make_cli(service, config)

        assert await cli.schedule_enable(foreground=False) == 0

        assert cli.scheduler_config().enabled is True

    @pytest.mark.asyncio
    async def test_schedule_configure(self, service, config, backup_root, capsys):
        cli = self.make_cli(service, config, "1", "14", "")

        assert await cli.schedule_configure() == 0

        updated = cli.scheduler_config()
        assert updated.schedule == "0 * * * *"
        assert updated.retention.days == 14
        assert updated.retention.max_count == config.scheduler.retention.max_count

        assert await cli.schedule_status() == 0
        out = capsys.readouterr().out
        assert "Schedule: 0 * * * * (Every hour)" in out
        assert "Retention: 14 days" in out

    @pytest.mark.asyncio
    async def test_schedule_configure_custom_cron(self, service, config):
        cli = self.make_cli(service, config, "5", "30 3 * * 1-5", "7", "20")

        assert await cli.schedule_configure() == 0
        assert cli.scheduler_config().schedule == "30 3 * * 1-5"

    @pytest.mark.asyncio
    async def test_schedule_configure_rejects_bad_cron(self, service, config, backup_root):
        cli = self.make_cli(service, config, "5", "every night")

        with pytest.raises(ConfigurationError):
            await cli.schedule_configure()

        assert not state_path(backup_root).exists()

    @pytest.mark.asyncio
    async def test_schedule_configure_invalid_choice(self, service, config):
        cli = self.make_cli(service, config, "9")

        assert await cli.schedule_configure() == 1


class TestParser:
    """Tests for argument parsing."""

    def test_restore_flags(self):
        args = build_parser().parse_args(["restore", "2024-03-01-02-00-00", "-c", "Cab", "Ride", "--no-delete", "-f"])

        assert args.collections == ["Cab", "Ride"]
        assert args.delete_existing is False
        assert args.force is True

    def test_schedule_options_are_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["schedule", "--enable", "--disable"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestMain:
    """Tests for the main() entry point."""

    @pytest.fixture
    def env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("STORE_BACKEND", "memory")
        monkeypatch.setenv("STORAGE_BACKEND", "memory")
        monkeypatch.setenv("BACKUP_ROOT", str(tmp_path))
        for name in ("BACKUP_SCHEDULER_ENABLED", "BACKUP_SCHEDULE", "BACKUP_COLLECTIONS_KNOWN"):
            monkeypatch.delenv(name, raising=False)
        return tmp_path

    def run(self, *argv):
        with pytest.raises(SystemExit) as exc_info:
            main(list(argv))
        return exc_info.value.code

    def test_create_then_list_and_validate(self, env, capsys):
        assert self.run("create", "-c", "Cab") == 0
        [backup_id] = [p.name for p in env.iterdir() if p.is_dir()]

        assert self.run("list") == 0
        assert backup_id in capsys.readouterr().out

        assert self.run("restore", backup_id, "-c", "Cab", "--force") == 0

    def test_unknown_backup_exit_code(self, env, capsys):
        assert self.run("restore", "2020-01-01-00-00-00", "--force") == 1
        assert self.run("delete", "2020-01-01-00-00-00", "--force") == 1
        assert "Error: Backup 2020-01-01-00-00-00 not found" in capsys.readouterr().err

    def test_configuration_error(self, env, monkeypatch, capsys):
        monkeypatch.setenv("STORAGE_BACKEND", "ftp")

        assert self.run("list") == 1
        assert "Error:" in capsys.readouterr().err
