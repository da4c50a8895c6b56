"""
Remote Data Gateway

Uniform row-based CRUD access to the record collections. Callers speak the
record convention (camelCase field names, e.g. ``userId``); storage speaks
snake_case. The translation happens here and nowhere else, so backends only
ever see snake_case and callers only ever see camelCase.

Every call is bounded by a timeout. Backend failures surface as
PersistenceError (writes) or QueryError (reads); nothing is retried.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Sequence, TypeVar

from healthquest.config import GATEWAY_TIMEOUT_SECONDS
from healthquest.db.casing import keys_to_camel, keys_to_snake, names_to_snake, to_snake_case
from healthquest.exceptions import PersistenceError, QueryError, wrap_gateway_exception

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Collection name -> primary/conflict key columns (storage convention)
COLLECTIONS: dict[str, tuple[str, ...]] = {
    "users": ("id",),
    "user_health_profiles": ("user_id",),
    "user_points": ("user_id",),
    "daily_metrics": ("id",),
    "game_sessions": ("id",),
    "recommendations": ("id",),
    "recommendation_status": ("user_id", "recommendation_id"),
    "auth_credentials": ("id",),
}

# Collections whose integer ids are assigned by the store
SERIAL_ID_COLLECTIONS = frozenset({"daily_metrics", "game_sessions", "recommendations"})

# Collections that get a created_at timestamp on insert
TIMESTAMPED_COLLECTIONS = frozenset({
    "users", "daily_metrics", "game_sessions", "recommendations", "auth_credentials",
})


class DataGateway(ABC):
    """
    Public CRUD surface over the named collections.

    Subclasses implement the underscore methods, which receive and return
    snake_case rows.
    """

    def __init__(self, timeout: float = GATEWAY_TIMEOUT_SECONDS):
        self.timeout = timeout

    async def connect(self) -> None:
        """Open backend resources (no-op by default)"""

    async def close(self) -> None:
        """Release backend resources (no-op by default)"""

    async def apply_schema(self) -> None:
        """Create the collections if the backend needs it (no-op by default)"""

    # ------------------------------------------------------------------
    # Public API (camelCase)
    # ------------------------------------------------------------------

    async def select(
        self,
        collection: str,
        match: Optional[dict[str, Any]] = None,
        *,
        gte: Optional[dict[str, Any]] = None,
        lt: Optional[dict[str, Any]] = None,
        columns: Optional[Sequence[str]] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
        for_update: bool = False,
    ) -> list[dict[str, Any]]:
        """
        Read rows matching every equality in `match` and every bound in
        `gte` (inclusive) / `lt` (exclusive).

        Args:
            collection: Collection name
            match: Field -> value equalities
            gte: Field -> inclusive lower bound
            lt: Field -> exclusive upper bound
            columns: Fields to return (all when None)
            order_by: Field to sort on; prefix with '-' for descending
            limit: Maximum number of rows
            for_update: Lock the matched rows until the enclosing
                transaction ends (only meaningful inside transaction())

        Returns:
            Matching rows, camelCase keys
        """
        order = None
        if order_by:
            descending = order_by.startswith("-")
            order = ("-" if descending else "") + to_snake_case(order_by.lstrip("-"))

        rows = await self._run(
            "select", collection, False,
            self._select,
            collection,
            keys_to_snake(match),
            keys_to_snake(gte),
            keys_to_snake(lt),
            names_to_snake(columns),
            order,
            limit,
            for_update,
        )
        return [keys_to_camel(row) for row in rows]

    async def select_one(self, collection: str, match: dict[str, Any], **kwargs: Any) -> Optional[dict[str, Any]]:
        """First matching row, or None"""
        rows = await self.select(collection, match, limit=1, **kwargs)
        return rows[0] if rows else None

    async def insert(self, collection: str, rows: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
        """Insert rows; returns them as stored (with generated ids/timestamps)"""
        if not rows:
            return []
        stored = await self._run(
            "insert", collection, True,
            self._insert, collection, [keys_to_snake(row) for row in rows],
        )
        return [keys_to_camel(row) for row in stored]

    async def upsert(
        self,
        collection: str,
        rows: Sequence[dict[str, Any]],
        on_conflict: Sequence[str],
    ) -> list[dict[str, Any]]:
        """Insert rows, overwriting any existing row with the same conflict key"""
        if not rows:
            return []
        stored = await self._run(
            "upsert", collection, True,
            self._upsert, collection, [keys_to_snake(row) for row in rows], names_to_snake(on_conflict),
        )
        return [keys_to_camel(row) for row in stored]

    async def update(
        self,
        collection: str,
        values: dict[str, Any],
        match: dict[str, Any],
    ) -> list[dict[str, Any]]:
        """Overwrite `values` on every row matching `match`; returns updated rows"""
        if not match:
            raise PersistenceError(f"Refusing unfiltered update of '{collection}'", collection=collection)
        stored = await self._run(
            "update", collection, True,
            self._update, collection, keys_to_snake(values), keys_to_snake(match),
        )
        return [keys_to_camel(row) for row in stored]

    async def delete(self, collection: str, match: dict[str, Any]) -> int:
        """Delete rows matching `match`; returns the number removed"""
        if not match:
            raise PersistenceError(f"Refusing unfiltered delete of '{collection}'", collection=collection)
        return await self._run(
            "delete", collection, True,
            self._delete, collection, keys_to_snake(match),
        )

    async def increment(self, collection: str, key: dict[str, Any], column: str, delta: int) -> int:
        """
        Atomically add `delta` to `column` of the row identified by `key`,
        creating the row with value `delta` when absent.

        Returns:
            The stored value after the increment
        """
        return await self._run(
            "increment", collection, True,
            self._increment, collection, keys_to_snake(key), to_snake_case(column), delta,
        )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """
        Group writes so that they commit together or not at all.

        Example:
            async with gateway.transaction():
                await gateway.delete("recommendations", {"userId": user_id})
                await gateway.insert("recommendations", rows)
        """
        async with self._transaction():
            yield

    # ------------------------------------------------------------------
    # Backend hooks (snake_case)
    # ------------------------------------------------------------------

    @abstractmethod
    async def _select(self, collection, match, gte, lt, columns, order_by, limit, for_update=False) -> list[dict]:
        ...

    @abstractmethod
    async def _insert(self, collection, rows) -> list[dict]:
        ...

    @abstractmethod
    async def _upsert(self, collection, rows, on_conflict) -> list[dict]:
        ...

    @abstractmethod
    async def _update(self, collection, values, match) -> list[dict]:
        ...

    @abstractmethod
    async def _delete(self, collection, match) -> int:
        ...

    @abstractmethod
    async def _increment(self, collection, key, column, delta) -> int:
        ...

    @abstractmethod
    def _transaction(self):
        """Return an async context manager delimiting one transaction"""

    # ------------------------------------------------------------------

    async def _run(
        self,
        operation: str,
        collection: str,
        write: bool,
        func: Callable[..., Awaitable[T]],
        *args: Any,
    ) -> T:
        if collection not in COLLECTIONS:
            error_cls = PersistenceError if write else QueryError
            raise error_cls(f"Unknown collection '{collection}'", collection=collection, operation=operation)

        try:
            return await asyncio.wait_for(func(*args), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Gateway {operation} on '{collection}' timed out after {self.timeout}s")
            raise wrap_gateway_exception(
                TimeoutError(f"timed out after {self.timeout}s"), operation, collection, write
            ) from e
        except Exception as e:
            raise wrap_gateway_exception(e, operation, collection, write) from e
