"""Dialect adapters and value extraction for the supported SQL drivers."""

from __future__ import annotations

from ..models import Driver
from .base import Dialect, DialectSession, ResultCursor
from .extract import MYSQL_PROBES, NO_MATCH, POSTGRES_PROBES, SQLITE_PROBES, extract_row, extract_value
from .mysql import MysqlDialect
from .postgres import PostgresDialect
from .sqlite import SqliteDialect

_DIALECTS: dict[Driver, Dialect] = {
    Driver.POSTGRES: PostgresDialect(),
    Driver.MYSQL: MysqlDialect(),
    Driver.SQLITE: SqliteDialect(),
}


def get_dialect(driver: Driver) -> Dialect:
    return _DIALECTS[driver]


__all__ = [
    "Dialect",
    "DialectSession",
    "MYSQL_PROBES",
    "MysqlDialect",
    "NO_MATCH",
    "POSTGRES_PROBES",
    "PostgresDialect",
    "ResultCursor",
    "SQLITE_PROBES",
    "SqliteDialect",
    "extract_row",
    "extract_value",
    "get_dialect",
]
