"""Unit tests for the Postgres gateway backend (mocked connection)"""
import pytest
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

from healthquest.db.connection import Database
from healthquest.db.postgres_gateway import PostgresGateway
from healthquest.exceptions import DatabaseError, PersistenceError, QueryError


class FakeCursor:
    """Async cursor returning canned rows"""

    def __init__(self, rows=None, rowcount=0, error=None):
        self.rows = rows or []
        self.rowcount = rowcount
        self.error = error
        self.description = [("col",)] if rows is not None else None
        self.executed = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def execute(self, query, params=None):
        self.executed.append((query, params))
        if self.error:
            raise self.error

    async def fetchall(self):
        return self.rows


@pytest.fixture
def fake_db():
    """Database stand-in whose connection hands out one FakeCursor"""
    conn = MagicMock()
    conn.commit = AsyncMock()
    conn.cursor_obj = FakeCursor(rows=[])
    conn.cursor = lambda: conn.cursor_obj

    @asynccontextmanager
    async def transaction():
        yield

    conn.transaction = transaction

    db = MagicMock()

    @asynccontextmanager
    async def connection():
        yield conn

    db.connection = connection
    db.conn = conn
    return db


class TestPostgresGateway:

    async def test_increment_is_single_statement(self, fake_db):
        fake_db.conn.cursor_obj = FakeCursor(rows=[{"points": 35}])
        gateway = PostgresGateway(database=fake_db)

        total = await gateway.increment("user_points", {"userId": "u1"}, "points", 10)

        assert total == 35
        assert len(fake_db.conn.cursor_obj.executed) == 1
        _, params = fake_db.conn.cursor_obj.executed[0]
        assert params == ["u1", 10]
        fake_db.conn.commit.assert_awaited_once()

    async def test_select_translates_rows(self, fake_db):
        fake_db.conn.cursor_obj = FakeCursor(rows=[{"user_id": "u1", "heart_rate": 72.0}])
        gateway = PostgresGateway(database=fake_db)

        rows = await gateway.select("daily_metrics", {"userId": "u1"}, limit=1)

        assert rows == [{"userId": "u1", "heartRate": 72.0}]
        _, params = fake_db.conn.cursor_obj.executed[0]
        assert params == ["u1", 1]

    async def test_delete_returns_rowcount(self, fake_db):
        fake_db.conn.cursor_obj = FakeCursor(rowcount=3)
        gateway = PostgresGateway(database=fake_db)

        assert await gateway.delete("recommendations", {"userId": "u1"}) == 3

    async def test_write_failure_is_persistence_error(self, fake_db):
        fake_db.conn.cursor_obj = FakeCursor(rows=[], error=RuntimeError("connection lost"))
        gateway = PostgresGateway(database=fake_db)

        with pytest.raises(PersistenceError) as exc_info:
            await gateway.insert("game_sessions", [{"userId": "u1", "gameType": "Memory", "score": 1}])
        assert exc_info.value.collection == "game_sessions"

    async def test_read_failure_is_query_error(self, fake_db):
        fake_db.conn.cursor_obj = FakeCursor(rows=[], error=RuntimeError("connection lost"))
        gateway = PostgresGateway(database=fake_db)

        with pytest.raises(QueryError):
            await gateway.select("users", {"id": "u1"})

    async def test_transaction_shares_one_connection_and_commits_once(self, fake_db):
        gateway = PostgresGateway(database=fake_db)

        async with gateway.transaction():
            await gateway.delete("recommendation_status", {"userId": "u1"})
            await gateway.delete("recommendations", {"userId": "u1"})

        # commit is left to conn.transaction(), not issued per statement
        fake_db.conn.commit.assert_not_awaited()
        assert len(fake_db.conn.cursor_obj.executed) == 2

    async def test_select_for_update_locks_rows(self, fake_db):
        fake_db.conn.cursor_obj = FakeCursor(rows=[{"id": 1}])
        gateway = PostgresGateway(database=fake_db)

        async with gateway.transaction():
            await gateway.select("recommendations", {"userId": "u1"}, columns=["id"], for_update=True)
            await gateway.select("recommendations", {"userId": "u1"}, columns=["id"])

        locked, _ = fake_db.conn.cursor_obj.executed[0]
        plain, _ = fake_db.conn.cursor_obj.executed[1]
        assert "FOR UPDATE" in repr(locked)
        assert "FOR UPDATE" not in repr(plain)


class TestDatabase:

    def test_pool_bounds_from_arguments(self):
        database = Database("postgresql://localhost/test", min_size=1, max_size=3)
        assert (database.min_size, database.max_size) == (1, 3)
        assert database.is_open is False

    async def test_connection_before_open(self):
        database = Database("postgresql://localhost/test")
        with pytest.raises(DatabaseError):
            async with database.connection():
                pass
