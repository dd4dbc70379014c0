"""
TierVault Server - Main entry point.

This module starts the TierVault server with all components:
- HTTP read API (hot-then-cold routing)
- Archival loop (change feed -> cold store)
- Age sweep (hot store scan for records that aged in place)
- Reconciliation scan (heals interrupted archivals)

Usage:
    python -m tiering.tiervault.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Stores are initialized before any loop or request starts
    - Graceful shutdown lets in-flight archival steps finish
    - The cursor is never persisted past a non-terminal task

How to change safely:
    - Add new components with enable/disable flags
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Any

import json_log_formatter

from .api import HttpServer, create_http_app
from .archive import ArchivalLoop, ArchivalWorkerPool, Archiver
from .cold import ColdStore, S3ColdStore, create_cold_store
from .config import ServerConfig
from .cursor import ChangeCursor
from .deadletter import DeadLetterSink
from .hot import SqliteHotStore
from .read import ReadRouter
from .reconcile import ReconciliationScan
from .retry import RetryCoordinator, RetryPolicy
from .state import ControlStore, TaskLedger
from .trigger import ArchivalTrigger

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
    """TierVault server orchestrator.

    Manages the lifecycle of all server components:
    - Hot, cold and control stores
    - HTTP read API
    - Background loops (archival, age sweep, reconciliation)

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
        self.hot: SqliteHotStore | None = None
        self.cold: ColdStore | None = None
        self.control: ControlStore | None = None
        self.dead_letters: DeadLetterSink | None = None
        self.archiver: Archiver | None = None
        self.archival_loop: ArchivalLoop | None = None
        self.reconciliation: ReconciliationScan | None = None
        self.http_server: HttpServer | None = None

        # Background tasks
        self._tasks: list[asyncio.Task] = []

    async def start(self) -> None:
        """Start the server and all components."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting TierVault server")
        self.config.log_config()

        try:
            await self._build()
            self._running = True
            logger.info("TierVault server started successfully")

            # Wait for shutdown signal
            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def _build(self) -> None:
        cfg = self.config

        self.hot = SqliteHotStore(
            data_dir=cfg.hot.data_dir,
            db_name=cfg.hot.db_name,
            wal_mode=cfg.hot.wal_mode,
            busy_timeout_ms=cfg.hot.busy_timeout_ms,
        )
        await self.hot.initialize()

        self.control = ControlStore(cfg.control.db_path, busy_timeout_ms=cfg.hot.busy_timeout_ms)
        await self.control.initialize()

        self.cold = create_cold_store(cfg)
        if isinstance(self.cold, S3ColdStore):
            await self.cold.connect()

        ledger = TaskLedger(self.control)
        self.dead_letters = DeadLetterSink(self.control)

        self.archiver = Archiver(
            hot=self.hot,
            cold=self.cold,
            ledger=ledger,
            dead_letters=self.dead_letters,
            retry=RetryCoordinator(RetryPolicy.from_config(cfg.retry)),
            cold_prefix=cfg.cold_prefix,
            hot_limiter=asyncio.Semaphore(cfg.archival.max_inflight_hot_ops),
        )

        router = ReadRouter(
            hot=self.hot,
            cold=self.cold,
            retry=RetryCoordinator(RetryPolicy.for_reads(cfg.retry)),
            hot_timeout=cfg.read.hot_timeout_ms / 1000.0,
            cold_timeout=cfg.read.cold_timeout_ms / 1000.0,
            cold_prefix=cfg.cold_prefix,
        )

        self.http_server = HttpServer(
            create_http_app(router, dead_letters=self.dead_letters, stats=self.stats),
            host=cfg.http.host,
            port=cfg.http.port,
        )
        await self.http_server.start()

        if cfg.archival.enabled:
            self.archival_loop = ArchivalLoop(
                cursor=ChangeCursor(self.hot, self.control, cfg.archival.consumer_name),
                trigger=ArchivalTrigger(
                    self.hot, cfg.archival.age_threshold_ms, dead_letters=self.dead_letters
                ),
                pool=ArchivalWorkerPool(self.archiver, max_workers=cfg.archival.max_workers),
                batch_size=cfg.archival.batch_size,
                poll_interval_seconds=cfg.archival.poll_interval_seconds,
                sweep_interval_seconds=cfg.archival.sweep_interval_seconds,
            )
            self._tasks.append(asyncio.create_task(self.archival_loop.start()))
            self._tasks.append(asyncio.create_task(self.archival_loop.start_sweep()))

        if cfg.reconciliation.enabled:
            self.reconciliation = ReconciliationScan(
                ledger=ledger,
                archiver=self.archiver,
                staleness_seconds=cfg.reconciliation.staleness_seconds,
                interval_seconds=cfg.reconciliation.interval_seconds,
                batch_size=cfg.reconciliation.batch_size,
            )
            self._tasks.append(asyncio.create_task(self.reconciliation.start()))

    def stats(self) -> dict[str, Any]:
        """Engine counters for the health endpoint."""
        return {
            "archiver": self.archiver.stats if self.archiver else {},
            "archival_loop": self.archival_loop.stats if self.archival_loop else {},
        }

    async def stop(self) -> None:
        """Stop the server gracefully.

        Loops are asked to stop first and given time to finish their
        current archival step; only then are the stores closed.
        """
        logger.info("Stopping TierVault server")

        if self.archival_loop:
            await self.archival_loop.stop()
        if self.reconciliation:
            await self.reconciliation.stop()
        if self.archiver:
            self.archiver.request_stop()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks.clear()

        if self.http_server:
            await self.http_server.stop()

        if isinstance(self.cold, S3ColdStore):
            await self.cold.close()

        self._running = False
        logger.info("TierVault server stopped")

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

    setup_logging(config)

    server = Server(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
