"""Ordered probe chains that turn driver values into JSON-compatible values.

Drivers hand back native Python objects whose concrete type depends on the
column type. Each dialect tries an explicit tuple of probes in priority order;
the first probe that recognises the value produces the result. Priority matters:
signed integers before unsigned, decimals before floats, dates before text.
"""

from __future__ import annotations

import base64
import math
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Iterable, Sequence
from uuid import UUID


class _NoMatch:
    __slots__ = ()

    def __repr__(self) -> str:
        return "NO_MATCH"


NO_MATCH: Any = _NoMatch()

Probe = Callable[[Any], Any]

DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_UINT64_MAX = 2**64 - 1


def extract_value(value: Any, probes: Sequence[Probe]) -> Any:
    """Return the first probe result for ``value``; ``None`` for NULL or no match."""

    if value is None:
        return None
    for probe in probes:
        result = probe(value)
        if result is not NO_MATCH:
            return result
    return None


def extract_row(values: Iterable[Any], probes: Sequence[Probe]) -> tuple[Any, ...]:
    return tuple(extract_value(value, probes) for value in values)


def probe_datetime(value: Any) -> Any:
    if not isinstance(value, datetime):
        return NO_MATCH
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(DATETIME_FORMAT)


def probe_date(value: Any) -> Any:
    # datetime is a date subclass and is handled by probe_datetime.
    if isinstance(value, datetime) or not isinstance(value, date):
        return NO_MATCH
    return value.isoformat()


def probe_time(value: Any) -> Any:
    if not isinstance(value, time):
        return NO_MATCH
    return value.replace(tzinfo=None).isoformat()


def probe_interval_time(value: Any) -> Any:
    """MySQL TIME columns arrive as ``timedelta`` and may exceed 24 hours."""

    if not isinstance(value, timedelta):
        return NO_MATCH
    seconds = int(value.total_seconds())
    sign = "-" if seconds < 0 else ""
    hours, remainder = divmod(abs(seconds), 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{sign}{hours:02d}:{minutes:02d}:{seconds:02d}"


def probe_int64(value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, int):
        return NO_MATCH
    if _INT64_MIN <= value <= _INT64_MAX:
        return value
    return NO_MATCH


def probe_uint64(value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, int):
        return NO_MATCH
    if 0 <= value <= _UINT64_MAX:
        return value
    return NO_MATCH


def probe_decimal(value: Any) -> Any:
    if not isinstance(value, Decimal):
        return NO_MATCH
    return str(value)


def probe_float(value: Any) -> Any:
    if not isinstance(value, float):
        return NO_MATCH
    return value if math.isfinite(value) else None


def probe_bool(value: Any) -> Any:
    if not isinstance(value, bool):
        return NO_MATCH
    return value


def probe_text(value: Any) -> Any:
    if not isinstance(value, str):
        return NO_MATCH
    return value


def probe_uuid(value: Any) -> Any:
    if not isinstance(value, UUID):
        return NO_MATCH
    return str(value)


def probe_binary(value: Any) -> Any:
    if not isinstance(value, (bytes, bytearray, memoryview)):
        return NO_MATCH
    raw = bytes(value)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return base64.b64encode(raw).decode("ascii")


def probe_json(value: Any) -> Any:
    if not isinstance(value, (dict, list)):
        return NO_MATCH
    return _normalise_json(value)


def probe_any_text(value: Any) -> Any:
    """Last resort for driver types without a JSON shape (ranges, inet, intervals)."""

    return str(value)


def _normalise_json(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(key): _normalise_json(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalise_json(item) for item in value]
    if value is None or isinstance(value, (bool, int, str)):
        return value
    return extract_value(value, _JSON_SCALAR_PROBES)


_JSON_SCALAR_PROBES: tuple[Probe, ...] = (
    probe_float,
    probe_decimal,
    probe_datetime,
    probe_date,
    probe_time,
    probe_uuid,
    probe_binary,
    probe_any_text,
)

POSTGRES_PROBES: tuple[Probe, ...] = (
    probe_datetime,
    probe_date,
    probe_time,
    probe_int64,
    probe_decimal,
    probe_float,
    probe_bool,
    probe_text,
    probe_uuid,
    probe_binary,
    probe_json,
    probe_any_text,
)

MYSQL_PROBES: tuple[Probe, ...] = (
    probe_int64,
    probe_uint64,
    probe_decimal,
    probe_float,
    probe_bool,
    probe_datetime,
    probe_date,
    probe_time,
    probe_interval_time,
    probe_text,
    probe_binary,
    probe_json,
)

SQLITE_PROBES: tuple[Probe, ...] = (
    probe_text,
    probe_int64,
    probe_float,
    probe_bool,
    probe_binary,
)


__all__ = [
    "DATETIME_FORMAT",
    "MYSQL_PROBES",
    "NO_MATCH",
    "POSTGRES_PROBES",
    "Probe",
    "SQLITE_PROBES",
    "extract_row",
    "extract_value",
    "probe_any_text",
    "probe_binary",
    "probe_bool",
    "probe_date",
    "probe_datetime",
    "probe_decimal",
    "probe_float",
    "probe_int64",
    "probe_interval_time",
    "probe_json",
    "probe_text",
    "probe_time",
    "probe_uint64",
    "probe_uuid",
]
