"""
SyncDB Server - Main entry point.

This module starts the SyncDB server:
- Storage backend (memory, files or SQLite)
- RecordStore on top of it
- HTTP server speaking the SyncedDB REST contract

Usage:
    python -m service.syncdb_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The backend is connected before the HTTP site accepts requests
    - Shutdown stops accepting requests before the backend is closed

How to change safely:
    - Add new components with enable/disable flags
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter
from aiohttp import web

from .api import create_http_app
from .config import ServerConfig
from .store import RecordStore, StorageBackend, create_backend

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


class Server:
    """SyncDB Server orchestrator.

    Manages the lifecycle of the storage backend and the HTTP site.

    Attributes:
        config: Server configuration
        backend: Storage backend instance
        record_store: Versioned record store

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
        self.backend: StorageBackend | None = None
        self.record_store: RecordStore | None = None
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start the server and wait for a shutdown request."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting SyncDB server")
        self.config.log_config()

        try:
            self.backend = create_backend(self.config.storage)
            await self.backend.connect()
            logger.info(f"Storage backend connected: {self.config.storage.backend.value}")

            self.record_store = RecordStore(
                self.backend,
                default_page_size=self.config.feed.default_page_size,
                max_page_size=self.config.feed.max_page_size,
            )

            app = create_http_app(self.record_store, self.config.http)
            self._runner = web.AppRunner(app)
            await self._runner.setup()
            site = web.TCPSite(self._runner, self.config.http.host, self.config.http.port)
            await site.start()

            self._running = True
            logger.info(
                f"SyncDB server listening on http://{self.config.http.host}:{self.config.http.port}"
            )

            # Wait for shutdown signal
            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self._release()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running:
            return

        logger.info("Stopping SyncDB server")
        await self._release()
        self._running = False
        logger.info("SyncDB server stopped")

    async def _release(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        if self.backend:
            await self.backend.close()

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)

    # Create server
    server = Server(config)

    # Setup signal handlers
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    # Run server
    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
