"""Pure helpers for tunnel keys, backend selection and port allocation."""

from __future__ import annotations

import socket

from ..models import LOOPBACK_HOST

DEFAULT_SSH_PORT = 22


def build_tunnel_key(
    ssh_user: str,
    ssh_host: str,
    ssh_port: int,
    remote_host: str,
    remote_port: int,
) -> str:
    """Cache key identifying one forwarding route."""

    return f"{ssh_user}@{ssh_host}:{ssh_port}:{remote_host}->{remote_port}"


def is_blank(value: str | None) -> bool:
    return value is None or not value.strip()


def should_use_system_ssh(password: str | None) -> bool:
    """Use the ssh binary unless a password must be supplied.

    ``ssh -o BatchMode=yes`` cannot answer a password prompt, while it does
    honour the user's ssh config, agent and known_hosts.
    """

    return is_blank(password)


def allocate_local_port() -> int:
    """Ask the OS for a free loopback port.

    The probe socket is closed before the tunnel binds the port again, so
    another process may grab it in between. Best effort only.
    """

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
        probe.bind((LOOPBACK_HOST, 0))
        return probe.getsockname()[1]


__all__ = [
    "DEFAULT_SSH_PORT",
    "allocate_local_port",
    "build_tunnel_key",
    "is_blank",
    "should_use_system_ssh",
]
