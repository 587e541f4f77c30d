"""Lazily created connection pools keyed by connection URL."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator
from urllib.parse import quote

import aiomysql
import aiosqlite
import asyncpg

from .errors import ConnectionValidationError, QueryExecutionError
from .models import ConnectionParams, Driver

LOG = logging.getLogger(__name__)

POOL_MAX_SIZE = 5


def build_connection_url(params: ConnectionParams) -> str:
    """Canonical URL for ``params``; credentials are percent-encoded."""

    driver = Driver.parse(params.driver)
    if driver is Driver.SQLITE:
        return f"sqlite://{params.database}"
    user = quote(params.username or "", safe="")
    password = quote(params.password or "", safe="")
    host = params.host or "localhost"
    port = params.port or driver.default_port
    return f"{driver.value}://{user}:{password}@{host}:{port}/{params.database}"


class SqlitePool:
    """Opens one aiosqlite connection per checkout."""

    def __init__(self, path: str) -> None:
        self.path = path

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[aiosqlite.Connection]:
        try:
            conn = await aiosqlite.connect(self.path)
        except (sqlite3.Error, OSError) as exc:
            raise QueryExecutionError(f"Failed to connect to sqlite database {self.path}: {exc}") from exc
        try:
            yield conn
        finally:
            await conn.close()

    async def close(self) -> None:
        return None


class PoolProvider:
    """Hands out one pool per distinct connection URL."""

    def __init__(self, *, connect_timeout: float = 10.0, max_size: int = POOL_MAX_SIZE) -> None:
        self._connect_timeout = connect_timeout
        self._max_size = max_size
        self._pools: dict[str, tuple[Driver, Any]] = {}
        self._lock = asyncio.Lock()

    async def get_pool(self, params: ConnectionParams) -> Any:
        driver = Driver.parse(params.driver)
        url = build_connection_url(params)
        async with self._lock:
            cached = self._pools.get(url)
            if cached is not None:
                return cached[1]
            pool = await self._create_pool(driver, params)
            self._pools[url] = (driver, pool)
            return pool

    async def close_all(self) -> None:
        async with self._lock:
            pools = list(self._pools.values())
            self._pools.clear()
        for driver, pool in pools:
            await _close_pool(driver, pool)

    def __len__(self) -> int:
        return len(self._pools)

    async def _create_pool(self, driver: Driver, params: ConnectionParams) -> Any:
        if driver is Driver.SQLITE:
            if not params.database.strip():
                raise ConnectionValidationError("Missing SQLite database path")
            return SqlitePool(params.database)
        host = params.host or "localhost"
        port = params.port or driver.default_port
        LOG.info("Creating %s pool for %s:%s/%s", driver.value, host, port, params.database)
        try:
            if driver is Driver.POSTGRES:
                return await asyncpg.create_pool(
                    host=host,
                    port=port,
                    user=params.username,
                    password=params.password,
                    database=params.database or None,
                    min_size=1,
                    max_size=self._max_size,
                    timeout=self._connect_timeout,
                    init=_init_postgres_connection,
                )
            return await aiomysql.create_pool(
                host=host,
                port=port,
                user=params.username,
                password=params.password or "",
                db=params.database or None,
                minsize=1,
                maxsize=self._max_size,
                connect_timeout=self._connect_timeout,
                autocommit=True,
            )
        except (OSError, asyncio.TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError, aiomysql.Error) as exc:
            raise QueryExecutionError(
                f"Failed to connect to {driver.value} database at {host}:{port}: {exc}"
            ) from exc


async def _init_postgres_connection(conn: asyncpg.Connection) -> None:
    for type_name in ("json", "jsonb"):
        await conn.set_type_codec(type_name, encoder=json.dumps, decoder=json.loads, schema="pg_catalog")


async def _close_pool(driver: Driver, pool: Any) -> None:
    if driver is Driver.MYSQL:
        pool.close()
        await pool.wait_closed()
    else:
        await pool.close()


__all__ = ["POOL_MAX_SIZE", "PoolProvider", "SqlitePool", "build_connection_url"]
