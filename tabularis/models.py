"""Shared dataclasses used across tunnel, resolver and query modules."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from .errors import UnsupportedDriverError

LOOPBACK_HOST = "127.0.0.1"


class Driver(str, Enum):
    """SQL dialects the query engine can talk to."""

    POSTGRES = "postgres"
    MYSQL = "mysql"
    SQLITE = "sqlite"

    @property
    def default_port(self) -> int | None:
        return _DEFAULT_PORTS[self]

    @property
    def is_networked(self) -> bool:
        return self.default_port is not None

    @classmethod
    def parse(cls, tag: str) -> Driver:
        try:
            return cls(tag)
        except ValueError:
            raise UnsupportedDriverError(tag) from None


_DEFAULT_PORTS: dict[Driver, int | None] = {
    Driver.POSTGRES: 5432,
    Driver.MYSQL: 3306,
    Driver.SQLITE: None,
}


class SshAuthKind(str, Enum):
    PASSWORD = "password"
    SSH_KEY = "ssh_key"


@dataclass(frozen=True, slots=True)
class ConnectionParams:
    """Connection parameters for one database endpoint.

    Instances are never mutated; resolving returns a copy with host/port
    rewritten to the tunnel's loopback endpoint.
    """

    driver: str
    database: str = ""
    host: str | None = None
    port: int | None = None
    username: str | None = None
    password: str | None = None
    ssh_enabled: bool = False
    ssh_profile_id: str | None = None
    ssh_host: str | None = None
    ssh_port: int | None = None
    ssh_user: str | None = None
    ssh_password: str | None = None
    ssh_key_file: str | None = None
    ssh_key_passphrase: str | None = None


@dataclass(frozen=True, slots=True)
class SshProfile:
    """SSH identity used to open a tunnel."""

    host: str
    user: str
    port: int = 22
    auth_kind: SshAuthKind = SshAuthKind.PASSWORD
    key_file: str | None = None
    key_passphrase: str | None = None
    password: str | None = None
    id: str | None = None
    name: str | None = None

    @property
    def destination(self) -> str:
        if self.user.strip():
            return f"{self.user}@{self.host}"
        return self.host


@dataclass(frozen=True, slots=True)
class Pagination:
    page: int
    page_size: int
    total_rows: int


@dataclass(frozen=True, slots=True)
class QueryResult:
    """Normalized query output returned to callers."""

    columns: tuple[str, ...]
    rows: tuple[tuple[Any, ...], ...]
    status: str
    elapsed_ms: int
    truncated: bool = False
    pagination: Pagination | None = None
    affected_rows: int = 0

    @property
    def row_count(self) -> int:
        return len(self.rows)


__all__ = [
    "ConnectionParams",
    "Driver",
    "LOOPBACK_HOST",
    "Pagination",
    "QueryResult",
    "SshAuthKind",
    "SshProfile",
]
