"""SQLite dialect backed by aiosqlite."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import aiosqlite

from ..models import Driver
from .base import ResultCursor
from .extract import SQLITE_PROBES


class SqliteSession:
    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def count_rows(self, sql: str) -> int:
        async with self._conn.execute(sql) as cur:
            row = await cur.fetchone()
        return int(row[0]) if row else 0

    @asynccontextmanager
    async def cursor(self, sql: str) -> AsyncIterator[ResultCursor]:
        async with self._conn.execute(sql) as cur:
            if cur.description is None:
                await self._conn.commit()
                yield ResultCursor((), affected_rows=max(cur.rowcount, 0))
                return
            columns = tuple(column[0] for column in cur.description)
            yield ResultCursor(columns, _rows(cur))


async def _rows(cur: aiosqlite.Cursor) -> AsyncIterator[Any]:
    async for row in cur:
        yield tuple(row)


class SqliteDialect:
    """Runs statements on a connection opened by a ``SqlitePool``."""

    driver = Driver.SQLITE
    probes = SQLITE_PROBES

    @asynccontextmanager
    async def session(self, pool: Any) -> AsyncIterator[SqliteSession]:
        async with pool.acquire() as conn:
            yield SqliteSession(conn)


__all__ = ["SqliteDialect", "SqliteSession"]
