"""Health check endpoint for the worker service."""

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Optional
from aiohttp import web, web_request
from aiohttp.web_response import Response

from .ingestion_loop import LoopState

if TYPE_CHECKING:
    from .main import WorkerService


logger = logging.getLogger(__name__)


class WorkerProbeHandler:
    """Readiness, liveness and component health for the worker.

    Every payload carries the ingestion loop state so an orchestrator can
    tell a worker backing off from one that has stopped.
    """

    def __init__(self, service: "WorkerService"):
        self.service = service

    def _loop_snapshot(self) -> dict:
        loop = self.service.ingestion_loop
        return {
            "loop_state": loop.state.value,
            "records_persisted": loop.stats["records_persisted"],
            "queue": self.service.queue.queue_name,
            "timestamp": datetime.now().isoformat()
        }

    async def health(self, request: web_request.Request) -> Response:
        """Aggregated component health; 503 unless everything is healthy."""
        try:
            health_data = await self.service.health_check()
        except Exception as e:
            logger.error(f"Health check failed: {e}", exc_info=True)
            return web.json_response(
                {"status": "unhealthy", "error": str(e), **self._loop_snapshot()},
                status=503
            )

        health_data["loop_state"] = self.service.ingestion_loop.state.value
        return web.json_response(health_data, status=200 if health_data["status"] == "healthy" else 503)

    async def ready(self, request: web_request.Request) -> Response:
        """Ready once the startup gate has opened and until the loop stops."""
        stopped = self.service.ingestion_loop.state is LoopState.STOPPED
        is_ready = self.service.is_ready and not stopped
        return web.json_response(
            {"ready": is_ready, "gate_open": self.service.is_ready, **self._loop_snapshot()},
            status=200 if is_ready else 503
        )

    async def live(self, request: web_request.Request) -> Response:
        """Alive while the ingestion loop has not stopped."""
        alive = self.service.ingestion_loop.state is not LoopState.STOPPED
        return web.json_response(
            {"alive": alive, **self._loop_snapshot()},
            status=200 if alive else 503
        )


def create_health_app(service: "WorkerService") -> web.Application:
    app = web.Application()
    handler = WorkerProbeHandler(service)
    app.router.add_get('/health', handler.health)
    app.router.add_get('/ready', handler.ready)
    app.router.add_get('/live', handler.live)
    return app


class HealthCheckServer:
    """HTTP server for health check endpoints."""

    def __init__(self, service: "WorkerService", host: str = "0.0.0.0", port: int = 8080):
        self.service = service
        self.host = host
        self.port = port
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

    async def start(self):
        """Start the health check server."""
        logger.info(f"Starting health check server on {self.host}:{self.port}")

        self.runner = web.AppRunner(create_health_app(self.service))
        await self.runner.setup()

        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()

        logger.info(f"Health check server started on http://{self.host}:{self.port}")

    async def stop(self):
        """Stop the health check server."""
        logger.info("Stopping health check server")

        if self.runner:
            await self.runner.cleanup()
            self.runner = None
            self.site = None

        logger.info("Health check server stopped")
