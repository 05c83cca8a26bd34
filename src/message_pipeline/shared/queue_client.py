"""Redis list used as the message work queue."""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from .config.settings import RedisConfig
from .errors import QueueTransportError, RecordValidationError, Result


logger = logging.getLogger(__name__)


class QueueClient:
    """Wraps a named Redis list.

    Producers push on the left, the consumer pops from the right, which
    gives FIFO order for a single list. RPOP is atomic on the server, so two
    concurrent pops never receive the same item.
    """

    def __init__(self, config: RedisConfig, client: Optional[redis.Redis] = None):
        self.config = config
        self.queue_name = config.queue_name
        self.redis_client = client or redis.Redis.from_url(
            config.url,
            socket_timeout=config.socket_timeout,
            socket_connect_timeout=config.socket_connect_timeout,
            health_check_interval=30,
            decode_responses=False
        )

        # Statistics
        self.stats = {
            "items_popped": 0,
            "items_pushed": 0,
            "items_requeued": 0,
            "transport_errors": 0,
            "last_pop_time": None
        }

        logger.info(f"QueueClient initialized for list '{self.queue_name}'")

    async def close(self):
        """Close Redis connection."""
        if self.redis_client:
            logger.info("Closing Redis connection")
            await self.redis_client.aclose()
            self.redis_client = None

    async def try_pop(self) -> Result[Optional[str]]:
        """Pop the oldest item, or return an empty result if the list is empty.

        Payloads are read as bytes and decoded here, so an item that is not
        UTF-8 comes back as a RecordValidationError failure once removed.
        """
        try:
            value = await self.redis_client.rpop(self.queue_name)
        except (RedisError, OSError) as e:
            self.stats["transport_errors"] += 1
            return Result.failure(QueueTransportError(f"RPOP {self.queue_name} failed: {e}"))

        if value is None:
            return Result.success(None)

        self.stats["items_popped"] += 1
        self.stats["last_pop_time"] = datetime.now()

        if isinstance(value, bytes):
            try:
                value = value.decode('utf-8')
            except UnicodeDecodeError as e:
                return Result.failure(RecordValidationError(f"Payload is not valid UTF-8: {e}"))

        return Result.success(value)

    async def push(self, payload: str) -> int:
        """Push a payload on the producer end and return the new queue length.

        Raises:
            QueueTransportError: if Redis rejects or cannot receive the push
        """
        try:
            length = await self.redis_client.lpush(self.queue_name, payload)
        except (RedisError, OSError) as e:
            self.stats["transport_errors"] += 1
            raise QueueTransportError(f"LPUSH {self.queue_name} failed: {e}") from e

        self.stats["items_pushed"] += 1
        logger.debug(f"Pushed message to '{self.queue_name}', length now {length}")
        return length

    async def requeue(self, payload: str) -> Result[int]:
        """Put a popped payload back on the producer end, behind waiting items."""
        try:
            length = await self.redis_client.lpush(self.queue_name, payload)
        except (RedisError, OSError) as e:
            self.stats["transport_errors"] += 1
            return Result.failure(QueueTransportError(f"LPUSH {self.queue_name} failed: {e}"))

        self.stats["items_requeued"] += 1
        return Result.success(length)

    async def ping(self) -> bool:
        """Cheap connectivity probe."""
        try:
            return bool(await self.redis_client.ping())
        except (RedisError, OSError) as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def size(self) -> int:
        """Number of items waiting in the queue."""
        try:
            return await self.redis_client.llen(self.queue_name)
        except (RedisError, OSError) as e:
            logger.warning(f"Redis LLEN failed: {e}")
            return 0

    async def health_check(self) -> Dict[str, Any]:
        """Perform health check on Redis connection."""

        health_status = {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "stats": self.stats.copy()
        }

        if not await self.ping():
            health_status["status"] = "unhealthy"
            health_status["error"] = "Redis ping failed"
            return health_status

        health_status["queue_length"] = await self.size()
        return health_status
