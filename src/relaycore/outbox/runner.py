"""
Outbox Dispatcher Runner

Standalone entry point that runs a dispatcher as a background service.
Run as many copies as you like against the same database.

Usage:
    python -m relaycore.outbox.runner --publisher myapp.publishers:registry

The --publisher target is "module:attribute". The attribute may be a
Publisher instance, or a class / zero-argument factory returning one.

Environment Variables:
    DATABASE_BACKEND: "postgresql" or "sqlite" (default: sqlite)
    DATABASE_URL: PostgreSQL connection string
    SQLITE_PATH: SQLite database file (default: relaycore.db)
    OUTBOX_*: Dispatcher tuning (see DispatcherConfig.from_env)
    OTEL_EXPORTER_OTLP_ENDPOINT: Enables trace and metric export
    LOG_LEVEL: Logging level (default: INFO)
    LOG_FORMAT: "json" or "text" (default: json)
"""

import argparse
import asyncio
import importlib
import logging
import os
import signal
import sys
from typing import Optional

from dotenv import load_dotenv

from ..config import DispatcherConfig
from ..database import DatabaseAdapter, DatabaseBackend, DatabaseConfig, create_sqlite_schema
from ..observability import configure_logging, init_metrics, init_tracing
from .dispatcher import OutboxDispatcher
from .publisher import Publisher
from .store import OutboxStore

logger = logging.getLogger(__name__)


def load_publisher(target: str) -> Publisher:
    """Resolve "package.module:attribute" to a Publisher."""
    module_name, _, attribute = target.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Publisher must look like 'module:attribute', got {target!r}")

    obj = getattr(importlib.import_module(module_name), attribute)
    if not hasattr(obj, "deliver") or isinstance(obj, type):
        obj = obj()
    if not isinstance(obj, Publisher):
        raise TypeError(f"{target} does not provide an async deliver(event) method")
    return obj


class OutboxRunner:
    """
    Manages the dispatcher lifecycle with graceful shutdown.
    """

    def __init__(
        self,
        publisher: Publisher,
        db_config: Optional[DatabaseConfig] = None,
        dispatcher_config: Optional[DispatcherConfig] = None,
        shutdown_timeout: float = 10.0,
    ):
        self.publisher = publisher
        self.db_config = db_config or DatabaseConfig()
        self.dispatcher_config = dispatcher_config or DispatcherConfig.from_env()
        self.shutdown_timeout = shutdown_timeout
        self.dispatcher: Optional[OutboxDispatcher] = None
        self._shutdown_event = asyncio.Event()
        self._shutdown_requested = False

    def _setup_signal_handlers(self):
        """Set up signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_shutdown_signal, sig)

    def _handle_shutdown_signal(self, sig: signal.Signals):
        if self._shutdown_requested:
            logger.warning(f"Received {sig.name} again, forcing exit")
            sys.exit(1)

        logger.info(f"Received {sig.name}, initiating graceful shutdown")
        self.request_shutdown()

    def request_shutdown(self) -> None:
        self._shutdown_requested = True
        self._shutdown_event.set()

    async def run(self):
        """Run the dispatcher until shutdown is requested."""
        config = self.dispatcher_config

        logger.info("Starting Outbox Dispatcher Runner")
        logger.info(f"  Database: {self.db_config!r}")
        logger.info(f"  Batch size: {config.batch_size}, concurrency: {config.concurrency}")
        logger.info(f"  Lease: {config.lease_duration_ms}ms, max attempts: {config.max_attempts}")

        self._setup_signal_handlers()

        async with DatabaseAdapter(self.db_config) as db:
            if db.backend == DatabaseBackend.SQLITE:
                await create_sqlite_schema(db)

            self.dispatcher = OutboxDispatcher(OutboxStore(db), self.publisher, config)

            try:
                await self.dispatcher.start()
                logger.info("Outbox Dispatcher is running as %s", self.dispatcher.worker_id)

                await self._shutdown_event.wait()

            except Exception as e:
                logger.error(f"Outbox Dispatcher error: {e}", exc_info=True)
                raise
            finally:
                logger.info("Stopping Outbox Dispatcher")
                await self.dispatcher.stop(timeout=self.shutdown_timeout)
                logger.info("Outbox Dispatcher stopped")

    async def health_check(self) -> dict:
        """Return health status for monitoring."""
        running = bool(self.dispatcher and self.dispatcher.is_running)
        health = {
            "status": "healthy" if running else "unhealthy",
            "running": running,
            "shutdown_requested": self._shutdown_requested,
        }
        if running:
            stats = await self.dispatcher.get_queue_stats()
            health["due_pending_count"] = stats.due_pending_count
            health["oldest_due_pending_age_ms"] = stats.oldest_due_pending_age_ms
        return health


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run an outbox dispatcher")
    parser.add_argument(
        "--publisher",
        default=os.getenv("OUTBOX_PUBLISHER"),
        help="Publisher to deliver events with, as module:attribute (env: OUTBOX_PUBLISHER)",
    )
    parser.add_argument(
        "--shutdown-timeout",
        type=float,
        default=10.0,
        help="Seconds to let in-flight deliveries finish on shutdown",
    )
    return parser.parse_args(argv)


async def main(argv=None):
    """Main entry point."""
    load_dotenv()
    args = _parse_args(argv)

    configure_logging(
        level=os.getenv("LOG_LEVEL", "INFO"),
        structured=os.getenv("LOG_FORMAT", "json").lower() != "text",
        service_name="relaycore-outbox",
    )

    otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if otlp_endpoint:
        init_tracing(service_name="relaycore-outbox", otlp_endpoint=otlp_endpoint)
        init_metrics(service_name="relaycore-outbox", otlp_endpoint=otlp_endpoint)

    if not args.publisher:
        logger.error("A publisher is required (--publisher module:attribute)")
        sys.exit(2)

    runner = OutboxRunner(
        publisher=load_publisher(args.publisher),
        shutdown_timeout=args.shutdown_timeout,
    )
    await runner.run()


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
