"""
Process-local gateway backend

Holds every collection in memory. Used for local development
(DATA_BACKEND=memory) and as the store behind the test suite. Each
operation runs without suspending, so on a single event loop it is atomic.
Transactions run one at a time, snapshot the tables and restore them if
the block raises. A block nested in an open transaction joins it.
"""

import asyncio
import copy
import itertools
import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Optional

from healthquest.db.gateway import (
    COLLECTIONS,
    SERIAL_ID_COLLECTIONS,
    TIMESTAMPED_COLLECTIONS,
    DataGateway,
)
from healthquest.utils.datetime_helpers import now_utc

logger = logging.getLogger(__name__)

# Set while the current task is inside a transaction block
_in_transaction: ContextVar[bool] = ContextVar("_in_transaction", default=False)


class InMemoryGateway(DataGateway):
    """Dictionary-backed implementation of the data gateway"""

    def __init__(self, clock: Callable[[], datetime] = now_utc, **kwargs: Any):
        super().__init__(**kwargs)
        self.clock = clock
        self.tables: dict[str, list[dict[str, Any]]] = {name: [] for name in COLLECTIONS}
        self._sequences = {name: itertools.count(1) for name in SERIAL_ID_COLLECTIONS}
        self._failures: dict[tuple[str, str], Exception] = {}
        self._transaction_lock = asyncio.Lock()

    def fail_next(self, operation: str, collection: str, error: Optional[Exception] = None) -> None:
        """Make the next `operation` on `collection` raise (fault injection for tests)"""
        self._failures[(operation, collection)] = error or RuntimeError(f"injected {operation} failure")

    def _maybe_fail(self, operation: str, collection: str) -> None:
        error = self._failures.pop((operation, collection), None)
        if error is not None:
            raise error

    # ------------------------------------------------------------------

    @staticmethod
    def _matches(row: dict, match: dict, gte: Optional[dict] = None, lt: Optional[dict] = None) -> bool:
        for field, value in match.items():
            if row.get(field) != value:
                return False
        for field, bound in (gte or {}).items():
            if row.get(field) is None or row[field] < bound:
                return False
        for field, bound in (lt or {}).items():
            if row.get(field) is None or row[field] >= bound:
                return False
        return True

    def _with_defaults(self, collection: str, row: dict) -> dict:
        stored = dict(row)
        if collection in SERIAL_ID_COLLECTIONS and stored.get("id") is None:
            stored["id"] = next(self._sequences[collection])
        if collection in TIMESTAMPED_COLLECTIONS and stored.get("created_at") is None:
            stored["created_at"] = self.clock()
        return stored

    async def _select(self, collection, match, gte, lt, columns, order_by, limit, for_update=False):
        self._maybe_fail("select", collection)
        rows = [row for row in self.tables[collection] if self._matches(row, match, gte, lt)]

        if order_by:
            field = order_by.lstrip("-")
            rows.sort(
                key=lambda r: (r.get(field) is None, r.get(field) if r.get(field) is not None else 0),
                reverse=order_by.startswith("-"),
            )
        if limit is not None:
            rows = rows[:limit]
        if columns:
            return [{c: row.get(c) for c in columns} for row in rows]
        return [dict(row) for row in rows]

    async def _insert(self, collection, rows):
        self._maybe_fail("insert", collection)
        key_columns = COLLECTIONS[collection]
        stored_rows = []
        for row in rows:
            stored = self._with_defaults(collection, row)
            key = {k: stored.get(k) for k in key_columns}
            if any(self._matches(existing, key) for existing in self.tables[collection]):
                raise ValueError(f"duplicate key {key} in {collection}")
            self.tables[collection].append(stored)
            stored_rows.append(dict(stored))
        return stored_rows

    async def _upsert(self, collection, rows, on_conflict):
        self._maybe_fail("upsert", collection)
        stored_rows = []
        for row in rows:
            key = {k: row.get(k) for k in on_conflict}
            existing = next((r for r in self.tables[collection] if self._matches(r, key)), None)
            if existing is not None:
                existing.update(row)
                stored_rows.append(dict(existing))
            else:
                stored = self._with_defaults(collection, row)
                self.tables[collection].append(stored)
                stored_rows.append(dict(stored))
        return stored_rows

    async def _update(self, collection, values, match):
        self._maybe_fail("update", collection)
        updated = []
        for row in self.tables[collection]:
            if self._matches(row, match):
                row.update(values)
                updated.append(dict(row))
        return updated

    async def _delete(self, collection, match):
        self._maybe_fail("delete", collection)
        before = len(self.tables[collection])
        self.tables[collection] = [row for row in self.tables[collection] if not self._matches(row, match)]
        return before - len(self.tables[collection])

    async def _increment(self, collection, key, column, delta):
        self._maybe_fail("increment", collection)
        existing = next((r for r in self.tables[collection] if self._matches(r, key)), None)
        if existing is None:
            existing = self._with_defaults(collection, {**key, column: 0})
            self.tables[collection].append(existing)
        existing[column] = (existing.get(column) or 0) + delta
        return existing[column]

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[None]:
        if _in_transaction.get():
            yield
            return

        async with self._transaction_lock:
            token = _in_transaction.set(True)
            saved = copy.deepcopy(self.tables)
            try:
                yield
            except BaseException:
                logger.warning("Rolling back in-memory transaction")
                self.tables = saved
                raise
            finally:
                _in_transaction.reset(token)
