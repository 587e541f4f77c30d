"""Exception hierarchy shared by the tunnel, resolver and query layers."""

from __future__ import annotations


class TabularisError(RuntimeError):
    """Base class for errors surfaced to callers as human-readable strings."""


class ConnectionValidationError(TabularisError, ValueError):
    """Raised when connection parameters are incomplete or inconsistent."""


class UnsupportedDriverError(ConnectionValidationError):
    """Raised for a driver tag outside the supported dialects."""

    def __init__(self, driver: str) -> None:
        super().__init__(f"Unsupported driver: {driver}")
        self.driver = driver


class TunnelError(TabularisError):
    """Raised when an SSH tunnel cannot be established."""


class QueryExecutionError(TabularisError):
    """Raised when a query fails to execute."""


class QueryCancelledError(TabularisError):
    """Raised when a running query was cancelled by the user."""


__all__ = [
    "ConnectionValidationError",
    "QueryCancelledError",
    "QueryExecutionError",
    "TabularisError",
    "TunnelError",
    "UnsupportedDriverError",
]
