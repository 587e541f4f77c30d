"""Query execution: pagination rewrite, streaming and value extraction."""

from __future__ import annotations

import logging
import time
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, Protocol

from .drivers import DialectSession, extract_row, get_dialect
from .drivers.extract import Probe
from .errors import QueryExecutionError, TabularisError
from .models import ConnectionParams, Driver, Pagination, QueryResult
from .pools import PoolProvider
from .sqltext import build_count_query, build_page_query, is_select_query, sanitize_statement

LOG = logging.getLogger(__name__)


class QueryExecutor(Protocol):
    """Interface implemented by query executors."""

    async def execute(
        self,
        params: ConnectionParams,
        sql: str,
        *,
        limit: int | None = None,
        page: int = 1,
    ) -> QueryResult: ...


@dataclass(slots=True)
class _Collected:
    columns: tuple[str, ...]
    rows: tuple[tuple[Any, ...], ...]
    returns_rows: bool
    affected_rows: int
    truncated: bool


class QueryEngine:
    """Runs SQL against pooled connections of any supported driver.

    With a ``limit`` a SELECT is paginated server-side: a COUNT over the
    wrapped statement gives the total, then only the requested page is
    fetched. Any other statement streams until ``limit`` rows are collected.
    """

    def __init__(self, *, pools: PoolProvider | None = None) -> None:
        self._pools = pools if pools is not None else PoolProvider()

    @property
    def pools(self) -> PoolProvider:
        return self._pools

    async def execute(
        self,
        params: ConnectionParams,
        sql: str,
        *,
        limit: int | None = None,
        page: int = 1,
    ) -> QueryResult:
        statement = sanitize_statement(sql)
        if not statement:
            raise QueryExecutionError("Provide SQL to execute.")
        if page < 1:
            raise QueryExecutionError(f"Page must be 1 or greater, got {page}.")
        if limit is not None and limit < 1:
            raise QueryExecutionError(f"Limit must be 1 or greater, got {limit}.")
        dialect = get_dialect(Driver.parse(params.driver))

        started = time.perf_counter()
        pagination: Pagination | None = None
        truncated = False
        try:
            pool = await self._pools.get_pool(params)
            async with dialect.session(pool) as session:
                if limit is not None and is_select_query(statement):
                    total_rows = await session.count_rows(build_count_query(statement))
                    pagination = Pagination(page=page, page_size=limit, total_rows=total_rows)
                    truncated = total_rows > limit
                    collected = await _collect(
                        session, build_page_query(statement, limit, page), dialect.probes, cap=None
                    )
                else:
                    collected = await _collect(session, statement, dialect.probes, cap=limit)
                    truncated = collected.truncated
        except TabularisError:
            raise
        except Exception as exc:
            raise QueryExecutionError(str(exc)) from exc
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        if collected.returns_rows:
            status = f"{len(collected.rows)} row(s)"
        else:
            status = f"{collected.affected_rows} row(s) affected"
        LOG.debug("%s query finished in %d ms: %s", dialect.driver.value, elapsed_ms, status)
        return QueryResult(
            columns=collected.columns,
            rows=collected.rows,
            status=status,
            elapsed_ms=elapsed_ms,
            truncated=truncated,
            pagination=pagination,
            affected_rows=collected.affected_rows,
        )


async def _collect(session: DialectSession, sql: str, probes: tuple[Probe, ...], *, cap: int | None) -> _Collected:
    rows: list[tuple[Any, ...]] = []
    truncated = False
    async with session.cursor(sql) as cursor:
        async with aclosing(aiter(cursor)) as stream:
            async for raw in stream:
                if cap is not None and len(rows) >= cap:
                    truncated = True
                    break
                rows.append(extract_row(raw, probes))
    return _Collected(
        columns=cursor.columns,
        rows=tuple(rows),
        returns_rows=cursor.returns_rows,
        affected_rows=cursor.affected_rows,
        truncated=truncated,
    )


__all__ = ["QueryEngine", "QueryExecutor"]
