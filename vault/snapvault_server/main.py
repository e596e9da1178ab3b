"""
SnapVault Server - Main entry point.

This module starts the SnapVault server with all components:
- Primary document store and object storage connections
- Backup scheduler (cron-driven backups + retention)
- HTTP API (aiohttp)

Usage:
    python -m vault.snapvault_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Store and object storage are connected before the API accepts requests
    - Graceful shutdown lets an in-flight scheduled run finish

How to change safely:
    - Add new components with enable/disable flags
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path

import json_log_formatter
from aiohttp import web

from .api import create_http_app
from .backup import BackupService
from .config import ServerConfig
from .errors import ConfigurationError
from .scheduler import BackupScheduler, apply_overrides, load_overrides, state_path

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


class Server:
    """SnapVault Server orchestrator.

    Manages the lifecycle of all server components:
    - Backup service (store + object storage)
    - Backup scheduler
    - HTTP API

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in start())
        self.service: BackupService | None = None
        self.scheduler: BackupScheduler | None = None
        self._http_runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start the server and wait for a shutdown request."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting SnapVault server")
        self.config.log_config()

        try:
            Path(self.config.storage.backup_root).mkdir(parents=True, exist_ok=True)

            self.service = BackupService.from_config(self.config)
            await self.service.start()
            logger.info("Backup service connected")

            scheduler_config = apply_overrides(
                self.config.scheduler,
                load_overrides(state_path(self.config.storage.backup_root)),
            )
            self.scheduler = BackupScheduler(self.service, scheduler_config)
            await self.scheduler.start()

            if self.config.http.enabled:
                app = create_http_app(self.service, self.scheduler)
                self._http_runner = web.AppRunner(app)
                await self._http_runner.setup()
                site = web.TCPSite(self._http_runner, self.config.http.host, self.config.http.port)
                await site.start()
                logger.info(
                    f"HTTP server running on http://{self.config.http.host}:{self.config.http.port}"
                )

            self._running = True
            logger.info("SnapVault server started successfully")

            # Wait for shutdown signal
            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if self.service is None:
            return

        logger.info("Stopping SnapVault server")

        if self._http_runner:
            await self._http_runner.cleanup()
            self._http_runner = None

        if self.scheduler:
            await self.scheduler.stop()
            await self.scheduler.wait_idle()
            self.scheduler = None

        await self.service.close()
        self.service = None

        self._running = False
        logger.info("SnapVault server stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = ServerConfig.from_env()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    server = Server(config)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    exit_code = 0
    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    except Exception:
        exit_code = 1
    finally:
        loop.run_until_complete(server.stop())
        loop.close()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
