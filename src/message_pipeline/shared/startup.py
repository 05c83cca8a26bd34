"""One-time connectivity check and schema provisioning before services run."""

import logging
from enum import Enum
from typing import Optional

from .config.settings import StartupConfig
from .db_writer import PersistenceGateway
from .errors import StartupError
from .utils.retry import retry_until_true
from .utils.shutdown import ShutdownSignal


logger = logging.getLogger(__name__)


class GatePolicy(Enum):
    """What the caller wants done when the gate cannot open."""
    FATAL = "fatal"  # raise StartupError, caller exits non-zero
    WARN = "warn"    # log a warning and carry on


class StartupGate:
    """Probes the store and provisions the schema once per process.

    The worker opens the gate with ``GatePolicy.FATAL`` because it cannot do
    anything useful without the table. The web front end uses
    ``GatePolicy.WARN`` since the worker may still provision the schema.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        policy: GatePolicy = GatePolicy.FATAL,
        config: Optional[StartupConfig] = None
    ):
        self.gateway = gateway
        self.policy = policy
        self.config = config or StartupConfig()
        self.ready = False

    async def open(self, shutdown: Optional[ShutdownSignal] = None) -> bool:
        """Run the gate.

        Returns:
            True once the store is reachable and the schema exists

        Raises:
            StartupError: if the gate failed and the policy is FATAL
        """
        self.ready = await retry_until_true(
            self._attempt,
            max_attempts=self.config.max_attempts,
            initial_delay=self.config.initial_backoff_seconds,
            max_delay=self.config.max_backoff_seconds,
            backoff_factor=self.config.backoff_multiplier,
            jitter=self.config.jitter,
            shutdown=shutdown,
            description="Database initialization"
        )

        if self.ready:
            return True

        if self.policy is GatePolicy.FATAL:
            logger.error("Failed to initialize database")
            raise StartupError("Database connectivity or schema check failed")

        logger.warning("Database initialization failed, continuing since another service may initialize it")
        return False

    async def _attempt(self) -> bool:
        logger.info("Attempting to connect to database...")

        if not await self.gateway.can_connect():
            logger.error("Failed to connect to database")
            return False

        logger.info("Successfully connected to database")

        result = await self.gateway.ensure_schema()
        if not result.ok:
            logger.error(f"Schema provisioning failed: {result.error}")
            return False

        return True
