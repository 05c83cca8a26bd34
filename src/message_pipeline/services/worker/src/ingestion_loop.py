"""Ingestion loop draining the Redis queue into PostgreSQL."""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

from message_pipeline.shared.config.settings import WorkerConfig
from message_pipeline.shared.db_writer import PersistenceGateway
from message_pipeline.shared.errors import RecordValidationError
from message_pipeline.shared.models import Record
from message_pipeline.shared.queue_client import QueueClient
from message_pipeline.shared.utils.logging import log_error_with_context, log_with_context
from message_pipeline.shared.utils.shutdown import ShutdownSignal


logger = logging.getLogger(__name__)


class LoopState(Enum):
    POLLING = "polling"
    PERSISTING = "persisting"
    IDLE_WAIT = "idle_wait"
    BACKOFF_WAIT = "backoff_wait"
    STOPPED = "stopped"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class IngestionLoop:
    """Pops messages one at a time and appends each as a record.

    Delivery is at-least-once up to the pop: once an item has been popped,
    a failed insert drops it. The item is logged and lost unless
    ``requeue_on_failure`` is enabled, in which case it is pushed back onto
    the producer end of the queue before backing off. Items behind it go
    first, and a payload that keeps failing is dropped after
    ``max_requeue_attempts`` re-enqueues.
    """

    def __init__(
        self,
        queue: QueueClient,
        gateway: PersistenceGateway,
        config: WorkerConfig,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.queue = queue
        self.gateway = gateway
        self.config = config
        self.clock = clock or utc_now
        self.state = LoopState.POLLING
        # Insert failures per re-enqueued payload
        self._requeue_counts: Dict[str, int] = {}

        # Statistics
        self.stats = {
            "iterations": 0,
            "records_persisted": 0,
            "records_rejected": 0,
            "records_dropped": 0,
            "records_requeued": 0,
            "queue_errors": 0,
            "persistence_errors": 0,
            "unexpected_errors": 0,
            "last_record_time": None
        }

        logger.info(
            f"IngestionLoop initialized (idle={config.idle_delay_seconds}s, "
            f"backoff={config.backoff_delay_seconds}s, policy={config.content_policy}, "
            f"requeue_on_failure={config.requeue_on_failure})"
        )

    async def run(self, shutdown: ShutdownSignal):
        """Loop until ``shutdown`` is set.

        The signal is checked between iterations and interrupts idle and
        backoff waits. An item already popped is always carried through to
        its insert before the loop stops.
        """
        logger.info("Ingestion loop started")

        while not shutdown.is_set:
            try:
                next_state = await self.run_once()
            except Exception as e:
                logger.error(f"Error processing message: {e}", exc_info=True)
                self.stats["unexpected_errors"] += 1
                next_state = LoopState.BACKOFF_WAIT
                self.state = next_state

            if next_state is LoopState.IDLE_WAIT:
                await shutdown.wait(self.config.idle_delay_seconds)
            elif next_state is LoopState.BACKOFF_WAIT:
                await shutdown.wait(self.config.backoff_delay_seconds)

            self.state = LoopState.POLLING

        self.state = LoopState.STOPPED
        logger.info("Ingestion loop stopped")

    async def run_once(self) -> LoopState:
        """Run one poll and, if an item came back, one insert.

        Returns the state the loop should enter next: POLLING straight away
        after a successful insert or a rejected payload, IDLE_WAIT when the
        queue was empty, BACKOFF_WAIT after any failure.
        """
        self.stats["iterations"] += 1
        self.state = LoopState.POLLING

        popped = await self.queue.try_pop()
        if not popped.ok and isinstance(popped.error, RecordValidationError):
            logger.warning(f"Rejected message: {popped.error}")
            self.stats["records_rejected"] += 1
            return self._enter(LoopState.POLLING)
        if not popped.ok:
            logger.error(f"Error popping from queue: {popped.error}")
            self.stats["queue_errors"] += 1
            return self._enter(LoopState.BACKOFF_WAIT)

        payload = popped.value
        if payload is None:
            return self._enter(LoopState.IDLE_WAIT)

        logger.info(f"Received message: {payload[:80]}")

        parsed = Record.parse(payload, self.config.content_policy, now=self.clock())
        if not parsed.ok:
            logger.warning(f"Rejected message: {parsed.error}")
            self.stats["records_rejected"] += 1
            return self._enter(LoopState.POLLING)

        self._enter(LoopState.PERSISTING)
        appended = await self.gateway.append(parsed.value)
        if not appended.ok:
            log_error_with_context(logger, appended.error, "append", payload_length=len(payload))
            self.stats["persistence_errors"] += 1
            await self._handle_lost_item(payload)
            return self._enter(LoopState.BACKOFF_WAIT)

        self._requeue_counts.pop(payload, None)
        self.stats["records_persisted"] += 1
        self.stats["last_record_time"] = datetime.now()
        log_with_context(
            logger, logging.INFO, f"Message saved to database with ID: {appended.value}",
            record_id=appended.value
        )
        return self._enter(LoopState.POLLING)

    async def _handle_lost_item(self, payload: str):
        if not self.config.requeue_on_failure:
            logger.error("Popped message was not persisted and is not re-enqueued; it is lost")
            self.stats["records_dropped"] += 1
            return

        attempts = self._requeue_counts.get(payload, 0) + 1
        if attempts > self.config.max_requeue_attempts:
            self._requeue_counts.pop(payload, None)
            logger.error(
                f"Message failed {attempts} inserts, giving up after "
                f"{self.config.max_requeue_attempts} re-enqueues; it is lost"
            )
            self.stats["records_dropped"] += 1
            return

        requeued = await self.queue.requeue(payload)
        if requeued.ok:
            self._requeue_counts[payload] = attempts
            logger.warning(f"Popped message re-enqueued after persistence failure (attempt {attempts})")
            self.stats["records_requeued"] += 1
        else:
            self._requeue_counts.pop(payload, None)
            logger.error(f"Re-enqueue failed, message is lost: {requeued.error}")
            self.stats["records_dropped"] += 1

    def _enter(self, state: LoopState) -> LoopState:
        self.state = state
        return state

    async def health_check(self) -> Dict[str, Any]:
        """Report loop state and counters."""
        health_status = {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "state": self.state.value,
            "stats": self.stats.copy()
        }

        if self.state is LoopState.STOPPED:
            health_status["status"] = "unhealthy"
            health_status["error"] = "Ingestion loop stopped"
        elif self.state is LoopState.BACKOFF_WAIT:
            health_status["status"] = "degraded"
            health_status["warning"] = "Backing off after a failure"

        return health_status
