"""Interfaces shared by the dialect adapters."""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Any, AsyncIterator, Protocol, Sequence

from ..models import Driver
from .extract import Probe


class ResultCursor:
    """Column names plus a lazily consumed stream of raw driver rows."""

    def __init__(
        self,
        columns: tuple[str, ...],
        rows: AsyncIterator[Sequence[Any]] | None = None,
        *,
        affected_rows: int = 0,
    ) -> None:
        self.columns = columns
        self.affected_rows = affected_rows
        self._rows = rows

    @property
    def returns_rows(self) -> bool:
        return bool(self.columns)

    def __aiter__(self) -> AsyncIterator[Sequence[Any]]:
        if self._rows is None:
            return _no_rows()
        return self._rows


async def _no_rows() -> AsyncIterator[Sequence[Any]]:
    return
    yield


class DialectSession(Protocol):
    """One checked-out connection able to count and stream a statement."""

    async def count_rows(self, sql: str) -> int: ...

    def cursor(self, sql: str) -> AbstractAsyncContextManager[ResultCursor]: ...


class Dialect(Protocol):
    driver: Driver
    probes: tuple[Probe, ...]

    def session(self, pool: Any) -> AbstractAsyncContextManager[DialectSession]: ...


def parse_affected_rows(status: str | None) -> int:
    """Read the trailing row count from a command tag such as ``INSERT 0 3``."""

    if not status:
        return 0
    tail = status.rsplit(None, 1)[-1]
    return int(tail) if tail.isdigit() else 0


__all__ = ["Dialect", "DialectSession", "ResultCursor", "parse_affected_rows"]
