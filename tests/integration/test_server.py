"""
Integration tests for the server orchestrator.

Tests cover:
- Startup and graceful shutdown with in-memory backends
- Persisted scheduler overrides applied on start
- Logging setup
"""

import asyncio
import logging

import json_log_formatter
import pytest

from vault.snapvault_server.config import (
    HttpConfig,
    ObservabilityConfig,
    SchedulerConfig,
    ServerConfig,
    StorageBackend,
    StorageConfig,
    StoreBackend,
    StoreConfig,
)
from vault.snapvault_server.errors import ConfigurationError
from vault.snapvault_server.main import Server, setup_logging
from vault.snapvault_server.scheduler import save_config, state_path


@pytest.fixture
def config(tmp_path):
    return ServerConfig(
        storage=StorageConfig(backend=StorageBackend.MEMORY, backup_root=str(tmp_path / "backups")),
        store=StoreConfig(backend=StoreBackend.MEMORY),
        http=HttpConfig(enabled=False),
    )


async def wait_until_running(server, timeout=5.0):
    deadline = asyncio.get_event_loop().time() + timeout
    while not server._running:
        if asyncio.get_event_loop().time() > deadline:
            raise TimeoutError("server did not start")
        await asyncio.sleep(0.01)


class TestServer:
    """Tests for Server start/stop."""

    @pytest.mark.asyncio
    async def test_start_and_shutdown(self, config, tmp_path):
        server = Server(config)
        task = asyncio.create_task(server.start())

        await wait_until_running(server)
        assert (tmp_path / "backups").is_dir()
        assert server.service is not None
        assert server.scheduler is not None
        assert not server.scheduler.is_running

        server.request_shutdown()
        await task
        await server.stop()

        assert server.service is None
        assert server.scheduler is None

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, config):
        server = Server(config)

        await server.stop()
        await server.stop()

    @pytest.mark.asyncio
    async def test_persisted_overrides_enable_scheduler(self, config):
        save_config(
            state_path(config.storage.backup_root),
            SchedulerConfig(enabled=True, schedule="0 3 * * *"),
        )
        server = Server(config)
        task = asyncio.create_task(server.start())

        await wait_until_running(server)
        assert server.scheduler.is_running
        assert server.scheduler.config.schedule == "0 3 * * *"

        server.request_shutdown()
        await task
        await server.stop()

    @pytest.mark.asyncio
    async def test_invalid_schedule_aborts_startup(self, config):
        save_config(
            state_path(config.storage.backup_root),
            SchedulerConfig(enabled=True, schedule="not a cron"),
        )
        server = Server(config)

        with pytest.raises(ConfigurationError):
            await server.start()

        assert server.service is None


class TestSetupLogging:
    """Tests for setup_logging."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_json_format(self):
        setup_logging(ServerConfig(observability=ObservabilityConfig(log_level="DEBUG", log_format="json")))

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)
        assert logging.getLogger("botocore").level == logging.WARNING

    def test_text_format(self):
        setup_logging(ServerConfig(observability=ObservabilityConfig(log_level="warning", log_format="text")))

        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert not isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)
