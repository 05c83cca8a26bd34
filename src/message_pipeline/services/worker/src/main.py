"""Worker Service - Redis queue to PostgreSQL ingestion."""

import asyncio
import logging
import os
import signal
import sys
from datetime import datetime
from typing import Optional

from message_pipeline.shared.config.settings import PipelineConfig, load_config
from message_pipeline.shared.db_writer import PersistenceGateway
from message_pipeline.shared.errors import StartupError
from message_pipeline.shared.queue_client import QueueClient
from message_pipeline.shared.startup import GatePolicy, StartupGate
from message_pipeline.shared.utils.logging import setup_logging
from message_pipeline.shared.utils.shutdown import ShutdownSignal

from .health import HealthCheckServer
from .ingestion_loop import IngestionLoop


logger = logging.getLogger(__name__)


class WorkerService:
    """Main worker service: gate the database, then drain the queue."""

    def __init__(
        self,
        config_file: str = "config/local.yaml",
        config: Optional[PipelineConfig] = None,
        queue: Optional[QueueClient] = None,
        gateway: Optional[PersistenceGateway] = None
    ):
        self.config = config or load_config(config_file)

        # Setup logging
        setup_logging(self.config.logging, service_name="worker")

        # Connections are created once and shared by every iteration
        self.queue = queue or QueueClient(self.config.redis)
        self.gateway = gateway or PersistenceGateway(self.config.database)

        self.gate = StartupGate(self.gateway, GatePolicy.FATAL, self.config.startup)
        self.ingestion_loop = IngestionLoop(self.queue, self.gateway, self.config.worker)
        self.shutdown = ShutdownSignal()
        self.health_server: Optional[HealthCheckServer] = None
        self._signals_installed = False

        logger.info("Worker Service initialized")

    @property
    def is_ready(self) -> bool:
        return self.gate.ready

    async def start(self, install_signal_handlers: bool = True):
        """Start the worker service.

        Raises:
            StartupError: if the database cannot be reached or provisioned
        """
        logger.info("Starting Worker Service")

        if install_signal_handlers:
            self._setup_signal_handlers()

        try:
            if self.config.health.enabled:
                self.health_server = HealthCheckServer(
                    self, self.config.health.host, self.config.health.port
                )
                await self.health_server.start()

            await self.gate.open(self.shutdown)

            if self.shutdown.is_set:
                logger.info("Shutdown requested before the ingestion loop started")
                return

            await self.ingestion_loop.run(self.shutdown)
        finally:
            await self._cleanup()

        logger.info("Worker Service stopped")

    def stop(self):
        """Ask the ingestion loop to stop at its next boundary."""
        self.shutdown.set()

    async def _cleanup(self):
        self._remove_signal_handlers()
        if self.health_server:
            await self.health_server.stop()
            self.health_server = None
        await self.queue.close()
        await self.gateway.close()

    def _setup_signal_handlers(self):
        """Route SIGINT/SIGTERM through the running loop so waits wake up."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._handle_signal, sig)
        self._signals_installed = True

    def _remove_signal_handlers(self):
        if not self._signals_installed:
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        self._signals_installed = False

    def _handle_signal(self, sig: signal.Signals):
        logger.info(f"Received signal {sig.name}, initiating shutdown")
        self.shutdown.set()

    async def health_check(self) -> dict:
        """Perform health check."""
        health_status = {
            "service": "worker",
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "components": {
                "ingestion_loop": await self.ingestion_loop.health_check(),
                "queue": await self.queue.health_check(),
                "database": await self.gateway.health_check()
            }
        }

        # Determine overall health
        component_statuses = [
            comp.get("status", "unknown")
            for comp in health_status["components"].values()
        ]

        if not self.is_ready or any(status == "unhealthy" for status in component_statuses):
            health_status["status"] = "unhealthy"
        elif any(status == "degraded" for status in component_statuses):
            health_status["status"] = "degraded"

        return health_status


async def main():
    """Main entry point."""
    config_file = os.getenv("CONFIG_FILE", "config/local.yaml")

    try:
        service = WorkerService(config_file)
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    try:
        await service.start()
    except StartupError:
        logger.error("Failed to initialize database. Exiting...")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Service failed: {e}", exc_info=True)
        sys.exit(1)


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
