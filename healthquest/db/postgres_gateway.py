"""Postgres backend for the data gateway (psycopg 3, async pool)"""
import logging
from importlib import resources
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, AsyncGenerator, AsyncIterator, Optional

import psycopg
from psycopg import sql

from healthquest.db.connection import Database
from healthquest.db.gateway import DataGateway

logger = logging.getLogger(__name__)

# Connection of the transaction open in the current task, if any
_current_conn: ContextVar[Optional[psycopg.AsyncConnection]] = ContextVar("_current_conn", default=None)


def _where(match: dict, gte: Optional[dict] = None, lt: Optional[dict] = None) -> tuple[sql.Composable, list]:
    clauses = []
    params: list[Any] = []
    for field, value in match.items():
        clauses.append(sql.SQL("{} = %s").format(sql.Identifier(field)))
        params.append(value)
    for field, bound in (gte or {}).items():
        clauses.append(sql.SQL("{} >= %s").format(sql.Identifier(field)))
        params.append(bound)
    for field, bound in (lt or {}).items():
        clauses.append(sql.SQL("{} < %s").format(sql.Identifier(field)))
        params.append(bound)
    if not clauses:
        return sql.SQL(""), params
    return sql.SQL(" WHERE ") + sql.SQL(" AND ").join(clauses), params


class PostgresGateway(DataGateway):
    """
    Data gateway over a Postgres database.

    Table names equal collection names; see schema.sql. Outside a
    transaction each call runs on its own pooled connection and commits
    immediately.
    """

    def __init__(self, database: Optional[Database] = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.database = database or Database()

    async def connect(self) -> None:
        await self.database.init_pool()

    async def close(self) -> None:
        await self.database.close_pool()

    async def apply_schema(self) -> None:
        """Create missing tables from schema.sql (idempotent)"""
        schema = resources.files("healthquest.db").joinpath("schema.sql").read_text(encoding="utf-8")
        async with self.database.connection() as conn:
            await conn.execute(schema)
            await conn.commit()
        logger.info("Database schema applied")

    @asynccontextmanager
    async def _connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        conn = _current_conn.get()
        if conn is not None:
            yield conn
            return

        async with self.database.connection() as conn:
            yield conn
            await conn.commit()

    async def _fetch(self, query: sql.Composable, params: list) -> list[dict]:
        async with self._connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                if cur.description is None:
                    return []
                return [dict(row) for row in await cur.fetchall()]

    async def _select(self, collection, match, gte, lt, columns, order_by, limit, for_update=False):
        where, params = _where(match, gte, lt)
        fields = (
            sql.SQL(", ").join(sql.Identifier(c) for c in columns) if columns else sql.SQL("*")
        )
        query = sql.SQL("SELECT {fields} FROM {table}").format(
            fields=fields, table=sql.Identifier(collection)
        ) + where
        if order_by:
            direction = sql.SQL(" DESC") if order_by.startswith("-") else sql.SQL(" ASC")
            query += sql.SQL(" ORDER BY {}").format(sql.Identifier(order_by.lstrip("-"))) + direction
        if limit is not None:
            query += sql.SQL(" LIMIT %s")
            params.append(limit)
        if for_update:
            query += sql.SQL(" FOR UPDATE")
        return await self._fetch(query, params)

    async def _insert(self, collection, rows):
        stored = []
        for row in rows:
            columns = list(row)
            query = sql.SQL("INSERT INTO {table} ({columns}) VALUES ({values}) RETURNING *").format(
                table=sql.Identifier(collection),
                columns=sql.SQL(", ").join(sql.Identifier(c) for c in columns),
                values=sql.SQL(", ").join(sql.Placeholder() for _ in columns),
            )
            stored.extend(await self._fetch(query, [row[c] for c in columns]))
        return stored

    async def _upsert(self, collection, rows, on_conflict):
        stored = []
        for row in rows:
            columns = list(row)
            updates = [c for c in columns if c not in on_conflict] or list(on_conflict)
            query = sql.SQL(
                "INSERT INTO {table} ({columns}) VALUES ({values}) "
                "ON CONFLICT ({conflict}) DO UPDATE SET {updates} RETURNING *"
            ).format(
                table=sql.Identifier(collection),
                columns=sql.SQL(", ").join(sql.Identifier(c) for c in columns),
                values=sql.SQL(", ").join(sql.Placeholder() for _ in columns),
                conflict=sql.SQL(", ").join(sql.Identifier(c) for c in on_conflict),
                updates=sql.SQL(", ").join(
                    sql.SQL("{col} = EXCLUDED.{col}").format(col=sql.Identifier(c)) for c in updates
                ),
            )
            stored.extend(await self._fetch(query, [row[c] for c in columns]))
        return stored

    async def _update(self, collection, values, match):
        if not values:
            return await self._select(collection, match, None, None, None, None, None)
        where, where_params = _where(match)
        query = sql.SQL("UPDATE {table} SET {assignments}").format(
            table=sql.Identifier(collection),
            assignments=sql.SQL(", ").join(
                sql.SQL("{} = %s").format(sql.Identifier(c)) for c in values
            ),
        ) + where + sql.SQL(" RETURNING *")
        return await self._fetch(query, list(values.values()) + where_params)

    async def _delete(self, collection, match):
        where, params = _where(match)
        query = sql.SQL("DELETE FROM {table}").format(table=sql.Identifier(collection)) + where
        async with self._connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                return cur.rowcount

    async def _increment(self, collection, key, column, delta):
        key_columns = list(key)
        query = sql.SQL(
            "INSERT INTO {table} ({columns}, {column}) VALUES ({values}, %s) "
            "ON CONFLICT ({conflict}) DO UPDATE SET {column} = {table}.{column} + EXCLUDED.{column} "
            "RETURNING {column}"
        ).format(
            table=sql.Identifier(collection),
            columns=sql.SQL(", ").join(sql.Identifier(c) for c in key_columns),
            column=sql.Identifier(column),
            values=sql.SQL(", ").join(sql.Placeholder() for _ in key_columns),
            conflict=sql.SQL(", ").join(sql.Identifier(c) for c in key_columns),
        )
        rows = await self._fetch(query, [key[c] for c in key_columns] + [delta])
        return rows[0][column]

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[None]:
        if _current_conn.get() is not None:
            # Nested block: savepoint on the outer transaction's connection
            async with _current_conn.get().transaction():
                yield
            return

        async with self.database.connection() as conn:
            async with conn.transaction():
                token = _current_conn.set(conn)
                try:
                    yield
                finally:
                    _current_conn.reset(token)
