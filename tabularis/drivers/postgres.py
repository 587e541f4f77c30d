"""PostgreSQL dialect backed by asyncpg pools."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import asyncpg

from ..models import Driver
from .base import ResultCursor, parse_affected_rows
from .extract import POSTGRES_PROBES


class PostgresSession:
    def __init__(self, conn: asyncpg.Connection) -> None:
        self._conn = conn

    async def count_rows(self, sql: str) -> int:
        value = await self._conn.fetchval(sql)
        return int(value or 0)

    @asynccontextmanager
    async def cursor(self, sql: str) -> AsyncIterator[ResultCursor]:
        statement = await self._conn.prepare(sql)
        columns = tuple(attribute.name for attribute in statement.get_attributes())
        if not columns:
            status = await self._conn.execute(sql)
            yield ResultCursor((), affected_rows=parse_affected_rows(status))
            return
        # Server-side cursors only live inside a transaction.
        async with self._conn.transaction():
            yield ResultCursor(columns, _records(statement))


async def _records(statement: asyncpg.prepared_stmt.PreparedStatement) -> AsyncIterator[tuple[object, ...]]:
    async for record in statement.cursor():
        yield tuple(record.values())


class PostgresDialect:
    """Runs statements on a connection checked out of an asyncpg pool."""

    driver = Driver.POSTGRES
    probes = POSTGRES_PROBES

    @asynccontextmanager
    async def session(self, pool: asyncpg.Pool) -> AsyncIterator[PostgresSession]:
        async with pool.acquire() as conn:
            yield PostgresSession(conn)


__all__ = ["PostgresDialect", "PostgresSession"]
