"""MySQL dialect backed by aiomysql pools."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import aiomysql

from ..models import Driver
from .base import ResultCursor
from .extract import MYSQL_PROBES

FETCH_BATCH_SIZE = 200


class MysqlSession:
    def __init__(self, conn: aiomysql.Connection) -> None:
        self._conn = conn

    async def count_rows(self, sql: str) -> int:
        async with self._conn.cursor() as cur:
            await cur.execute(sql)
            row = await cur.fetchone()
        return int(row[0]) if row else 0

    @asynccontextmanager
    async def cursor(self, sql: str) -> AsyncIterator[ResultCursor]:
        # Unbuffered, so large results are streamed instead of loaded at once.
        async with self._conn.cursor(aiomysql.SSCursor) as cur:
            await cur.execute(sql)
            if not cur.description:
                yield ResultCursor((), affected_rows=max(cur.rowcount, 0))
                return
            columns = tuple(column[0] for column in cur.description)
            yield ResultCursor(columns, _batches(cur))


async def _batches(cur: Any) -> AsyncIterator[tuple[object, ...]]:
    while True:
        rows = await cur.fetchmany(FETCH_BATCH_SIZE)
        if not rows:
            return
        for row in rows:
            yield tuple(row)


class MysqlDialect:
    """Runs statements on a connection checked out of an aiomysql pool."""

    driver = Driver.MYSQL
    probes = MYSQL_PROBES

    @asynccontextmanager
    async def session(self, pool: aiomysql.Pool) -> AsyncIterator[MysqlSession]:
        async with pool.acquire() as conn:
            yield MysqlSession(conn)


__all__ = ["FETCH_BATCH_SIZE", "MysqlDialect", "MysqlSession"]
