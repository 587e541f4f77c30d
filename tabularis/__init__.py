"""Connectivity core for the tabularis database client."""

from __future__ import annotations

from .errors import (
    ConnectionValidationError,
    QueryCancelledError,
    QueryExecutionError,
    TabularisError,
    TunnelError,
    UnsupportedDriverError,
)
from .models import ConnectionParams, Driver, Pagination, QueryResult, SshAuthKind, SshProfile

__all__ = [
    "ConnectionParams",
    "ConnectionValidationError",
    "Driver",
    "Pagination",
    "QueryCancelledError",
    "QueryExecutionError",
    "QueryResult",
    "SshAuthKind",
    "SshProfile",
    "TabularisError",
    "TunnelError",
    "UnsupportedDriverError",
]
