"""Postgres connection pool for the data gateway"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional
import psycopg
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool
from healthquest.config import DATABASE_URL, DB_POOL_MAX_SIZE, DB_POOL_MIN_SIZE, GATEWAY_TIMEOUT_SECONDS
from healthquest.exceptions import DatabaseError

logger = logging.getLogger(__name__)


class Database:
    """
    Owns one AsyncConnectionPool. Connections hand out rows as dicts.

    Args:
        connection_string: libpq URL (DATABASE_URL)
        min_size / max_size: pool bounds (DB_POOL_MIN_SIZE / DB_POOL_MAX_SIZE)
        acquire_timeout: seconds to wait for a free connection
    """

    def __init__(
        self,
        connection_string: str = DATABASE_URL,
        min_size: int = DB_POOL_MIN_SIZE,
        max_size: int = DB_POOL_MAX_SIZE,
        acquire_timeout: float = GATEWAY_TIMEOUT_SECONDS,
    ):
        self.connection_string = connection_string
        self.min_size = min_size
        self.max_size = max_size
        self.acquire_timeout = acquire_timeout
        self._pool: Optional[AsyncConnectionPool] = None

    @property
    def is_open(self) -> bool:
        return self._pool is not None

    async def init_pool(self) -> None:
        if self._pool is not None:
            return
        logger.info(f"Opening Postgres pool ({self.min_size}-{self.max_size} connections)")
        pool = AsyncConnectionPool(
            self.connection_string,
            min_size=self.min_size,
            max_size=self.max_size,
            timeout=self.acquire_timeout,
            kwargs={"row_factory": dict_row},
            open=False,
        )
        await pool.open()
        self._pool = pool

    async def close_pool(self) -> None:
        if self._pool is None:
            return
        logger.info("Closing Postgres pool")
        pool, self._pool = self._pool, None
        await pool.close()

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """
        Borrow a pooled connection for the duration of the block.

        Raises:
            DatabaseError: the pool has not been opened
        """
        if self._pool is None:
            raise DatabaseError(
                "Postgres pool is not open",
                operation="acquire_connection",
                user_message="The service is starting up. Please try again shortly.",
            )

        async with self._pool.connection() as conn:
            yield conn
