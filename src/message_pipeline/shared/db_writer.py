"""Persistence gateway for PostgreSQL operations."""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import asyncpg
from asyncpg import Pool

from .config.settings import DatabaseConfig
from .errors import ConnectivityError, Result, SchemaError, TransientPersistenceError
from .models import MAX_CONTENT_LENGTH, Record


logger = logging.getLogger(__name__)


CREATE_MESSAGES_TABLE = f"""
    CREATE TABLE IF NOT EXISTS messages (
        id SERIAL PRIMARY KEY,
        content VARCHAR({MAX_CONTENT_LENGTH}) NOT NULL,
        processed_at TIMESTAMPTZ NOT NULL
    )
"""

# Errors that mean the server could not be reached at all
CONNECTION_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.InterfaceError,
    asyncpg.exceptions.CannotConnectNowError,
)


class PersistenceGateway:
    """Owns the asyncpg pool and the ``messages`` table."""

    def __init__(self, config: DatabaseConfig, pool: Optional[Pool] = None):
        self.config = config
        self.pool: Optional[Pool] = pool
        self._pool_lock = asyncio.Lock()

        # Statistics
        self.stats = {
            "records_written": 0,
            "write_errors": 0,
            "last_write_time": None
        }

        logger.info("PersistenceGateway initialized")

    async def _get_pool(self) -> Pool:
        """Create the pool on first use; later calls reuse it."""
        if self.pool is None:
            async with self._pool_lock:
                if self.pool is None:
                    logger.info("Initializing database connection pool")
                    self.pool = await asyncpg.create_pool(
                        dsn=self.config.dsn,
                        min_size=self.config.pool_min_size,
                        max_size=self.config.pool_max_size,
                        command_timeout=self.config.command_timeout
                    )
        return self.pool

    async def close(self):
        """Close database connection pool."""

        if self.pool:
            logger.info("Closing database connection pool")
            await self.pool.close()
            self.pool = None

    async def can_connect(self) -> bool:
        """Probe the store with ``SELECT 1``. Never raises."""
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except Exception as e:
            logger.warning(f"Database connectivity probe failed: {e}")
            return False

    async def ensure_schema(self) -> Result[None]:
        """Create the ``messages`` table if it does not exist.

        Safe to call repeatedly and from several processes at once: a racing
        creator that wins the catalog insert makes the loser see a unique or
        duplicate-table violation, which still means the table exists.
        """
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                await conn.execute(CREATE_MESSAGES_TABLE)
        except (asyncpg.UniqueViolationError, asyncpg.DuplicateTableError):
            logger.info("Messages table created concurrently by another process")
        except CONNECTION_ERRORS as e:
            return Result.failure(ConnectivityError(f"Database unreachable: {e}"))
        except Exception as e:
            return Result.failure(SchemaError(f"Failed to create messages table: {e}"))

        logger.info("Database schema ensured")
        return Result.success()

    async def append(self, record: Record) -> Result[int]:
        """Insert one record and return the id the store assigned.

        Each call acquires its own pooled connection and releases it as soon
        as the insert completes or fails, so nothing is held across waits.
        """
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                record_id = await conn.fetchval(
                    """
                    INSERT INTO messages (content, processed_at)
                    VALUES ($1, $2)
                    RETURNING id
                    """,
                    record.content,
                    record.processed_at
                )
        except CONNECTION_ERRORS as e:
            self.stats["write_errors"] += 1
            return Result.failure(ConnectivityError(f"Database unreachable: {e}"))
        except Exception as e:
            self.stats["write_errors"] += 1
            return Result.failure(TransientPersistenceError(f"Insert failed: {e}"))

        self.stats["records_written"] += 1
        self.stats["last_write_time"] = datetime.now()
        return Result.success(record_id)

    async def recent(self, limit: int = 100) -> List[Record]:
        """Most recently processed records, newest first."""
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, content, processed_at
                FROM messages
                ORDER BY processed_at DESC
                LIMIT $1
                """,
                limit
            )

        return [
            Record(id=row["id"], content=row["content"], processed_at=row["processed_at"])
            for row in rows
        ]

    async def health_check(self) -> Dict[str, Any]:
        """Perform health check on database connection."""

        health_status = {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "stats": self.stats.copy()
        }

        if not await self.can_connect():
            health_status["status"] = "unhealthy"
            health_status["error"] = "Database unreachable"
            return health_status

        # Check error rates
        total_operations = self.stats["records_written"] + self.stats["write_errors"]
        if total_operations > 0:
            error_rate = self.stats["write_errors"] / total_operations
            if error_rate > 0.05:  # >5% error rate
                health_status["status"] = "degraded"
                health_status["warning"] = f"High error rate: {error_rate:.2%}"

        return health_status
