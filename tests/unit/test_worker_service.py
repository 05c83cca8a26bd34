"""Tests for worker process wiring and exit behaviour."""

import asyncio
import os
import signal
import sys
from dataclasses import replace
from unittest.mock import AsyncMock, Mock, patch

import pytest
from aiohttp.test_utils import TestClient, TestServer
from redis.exceptions import ConnectionError as RedisConnectionError

from message_pipeline.services.worker.src import main as worker_main
from message_pipeline.services.worker.src.health import create_health_app
from message_pipeline.services.worker.src.ingestion_loop import LoopState
from message_pipeline.services.worker.src.main import WorkerService
from message_pipeline.shared.config.settings import WorkerConfig
from message_pipeline.shared.errors import StartupError


@pytest.fixture
def worker_service(test_config, queue_client, gateway):
    return WorkerService(config=test_config, queue=queue_client, gateway=gateway)


@pytest.mark.unit
class TestWorkerService:

    @pytest.mark.asyncio
    async def test_end_to_end_hello_world(self, worker_service, queue_client, fake_pool, fake_redis, wait_for):
        await queue_client.push("hello")
        await queue_client.push("world")

        task = asyncio.create_task(worker_service.start(install_signal_handlers=False))
        await wait_for(lambda: len(fake_pool.rows) == 2)
        worker_service.stop()
        await asyncio.wait_for(task, timeout=1.0)

        ids = [row["id"] for row in fake_pool.rows]
        assert fake_pool.contents == ["hello", "world"]
        assert ids[0] < ids[1]
        assert worker_service.ingestion_loop.state is LoopState.STOPPED
        assert fake_redis.closed and fake_pool.closed

    @pytest.mark.asyncio
    async def test_gate_failure_is_fatal(self, worker_service, queue_client, fake_pool, fake_redis):
        fake_pool.unreachable = OSError("Connection refused")
        await queue_client.push("waiting")

        with pytest.raises(StartupError):
            await worker_service.start(install_signal_handlers=False)

        # The loop never ran, so the item stays queued
        assert len(fake_redis.lists["test-messages"]) == 1

    @pytest.mark.asyncio
    async def test_health_endpoints(self, worker_service, fake_pool):
        await worker_service.gate.open()

        async with TestClient(TestServer(create_health_app(worker_service))) as client:
            ready = await client.get("/ready")
            live = await client.get("/live")
            health = await client.get("/health")
            data = await health.json()

            assert ready.status == 200
            assert live.status == 200
            assert health.status == 200
            assert set(data["components"]) == {"ingestion_loop", "queue", "database"}
            assert data["loop_state"] == "polling"

    @pytest.mark.asyncio
    async def test_probes_report_loop_state(self, worker_service):
        await worker_service.gate.open()

        async with TestClient(TestServer(create_health_app(worker_service))) as client:
            ready = await (await client.get("/ready")).json()
            assert ready["loop_state"] == "polling"
            assert ready["gate_open"] is True
            assert ready["queue"] == "test-messages"

            worker_service.ingestion_loop.state = LoopState.STOPPED
            live = await client.get("/live")
            assert live.status == 503
            assert (await live.json())["loop_state"] == "stopped"
            assert (await client.get("/ready")).status == 503

    @pytest.mark.asyncio
    async def test_not_ready_before_gate(self, worker_service):
        async with TestClient(TestServer(create_health_app(worker_service))) as client:
            assert (await client.get("/ready")).status == 503
            assert (await client.get("/health")).status == 503

    @pytest.mark.asyncio
    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals only")
    async def test_sigterm_cuts_backoff_short(self, test_config, queue_client, gateway, fake_redis, wait_for):
        config = replace(test_config, worker=WorkerConfig(idle_delay_seconds=30.0, backoff_delay_seconds=30.0))
        service = WorkerService(config=config, queue=queue_client, gateway=gateway)
        fake_redis.error = RedisConnectionError("Connection refused")

        task = asyncio.create_task(service.start())
        await wait_for(lambda: service.ingestion_loop.state is LoopState.BACKOFF_WAIT)
        os.kill(os.getpid(), signal.SIGTERM)
        await asyncio.wait_for(task, timeout=2.0)

        assert service.ingestion_loop.state is LoopState.STOPPED
        # Handlers are removed again on cleanup
        assert not service._signals_installed


@pytest.mark.unit
class TestMain:

    @pytest.mark.asyncio
    async def test_exits_non_zero_when_gate_fails(self):
        service = Mock()
        service.start = AsyncMock(side_effect=StartupError("db down"))

        with patch.object(worker_main, "WorkerService", return_value=service):
            with pytest.raises(SystemExit) as exc_info:
                await worker_main.main()

        assert exc_info.value.code == 1

    @pytest.mark.asyncio
    async def test_exits_non_zero_on_bad_config(self):
        with patch.object(worker_main, "WorkerService", side_effect=ValueError("bad policy")):
            with pytest.raises(SystemExit) as exc_info:
                await worker_main.main()

        assert exc_info.value.code == 1

    @pytest.mark.asyncio
    async def test_clean_shutdown_returns(self):
        service = Mock()
        service.start = AsyncMock(return_value=None)

        with patch.object(worker_main, "WorkerService", return_value=service):
            await worker_main.main()

        service.start.assert_awaited_once()
