"""Textual SQL rewrites used for pagination.

These helpers work on the statement text only. They do not parse SQL, so an
``ORDER BY`` inside a string literal or a trailing subquery is treated like any
other occurrence: the last one wins.
"""

from __future__ import annotations

_ORDER_BY = "ORDER BY"


def sanitize_statement(sql: str) -> str:
    """Strip surrounding whitespace and trailing semicolons."""

    return sql.strip().rstrip(";").rstrip()


def is_select_query(sql: str) -> bool:
    return sql.lstrip().upper().startswith("SELECT")


def extract_order_by(sql: str) -> str:
    """Return the last ``ORDER BY`` clause with its original casing, or ``""``."""

    position = sql.upper().rfind(_ORDER_BY)
    if position == -1:
        return ""
    return sql[position:].strip()


def remove_order_by(sql: str) -> str:
    position = sql.upper().rfind(_ORDER_BY)
    if position == -1:
        return sql
    return sql[:position].strip()


def calculate_offset(page: int, page_size: int) -> int:
    return (page - 1) * page_size


def build_count_query(sql: str) -> str:
    return f"SELECT COUNT(*) FROM ({sql}) AS count_wrapper"


def build_page_query(sql: str, limit: int, page: int) -> str:
    """Wrap ``sql`` in a LIMIT/OFFSET window, moving its ORDER BY outside."""

    offset = calculate_offset(page, limit)
    order_by = extract_order_by(sql)
    if not order_by:
        return f"SELECT * FROM ({sql}) AS data_wrapper LIMIT {limit} OFFSET {offset}"
    inner = remove_order_by(sql)
    return f"SELECT * FROM ({inner}) AS data_wrapper {order_by} LIMIT {limit} OFFSET {offset}"


__all__ = [
    "build_count_query",
    "build_page_query",
    "calculate_offset",
    "extract_order_by",
    "is_select_query",
    "remove_order_by",
    "sanitize_statement",
]
