"""SSH tunnel handle and the backend selection entry point."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..config import TunnelSettings
from ..errors import TunnelError
from ..models import LOOPBACK_HOST, SshProfile
from .keys import allocate_local_port, should_use_system_ssh
from .native import NativeTunnelBackend, open_native_backend
from .system import SystemSshTunnelBackend, open_system_backend

LOG = logging.getLogger(__name__)

TunnelBackend = NativeTunnelBackend | SystemSshTunnelBackend


@dataclass(eq=False, slots=True)
class SshTunnel:
    """A live port forward from ``127.0.0.1:local_port`` to a remote endpoint."""

    local_port: int
    backend: TunnelBackend
    remote_host: str
    remote_port: int
    key: str | None = None

    @property
    def is_alive(self) -> bool:
        return self.backend.is_alive

    @property
    def uses_system_ssh(self) -> bool:
        return isinstance(self.backend, SystemSshTunnelBackend)

    def stop(self) -> None:
        """Stop forwarding; safe to call more than once."""

        if not self.backend.is_alive:
            return
        self.backend.stop()
        LOG.info("Stopped tunnel on %s:%d (%s)", LOOPBACK_HOST, self.local_port, self.key or "unregistered")


async def open_tunnel(
    profile: SshProfile,
    remote_host: str,
    remote_port: int,
    *,
    settings: TunnelSettings | None = None,
) -> SshTunnel:
    """Open a tunnel through ``profile`` to ``remote_host:remote_port``.

    Profiles without a password go through the system ssh client, which can
    use keys, the agent and ~/.ssh/config non-interactively; password
    profiles use the native client.
    """

    settings = settings or TunnelSettings()
    use_system_ssh = should_use_system_ssh(profile.password)
    LOG.info(
        "New tunnel request: host=%s port=%d user=%s system_ssh=%s",
        profile.host,
        profile.port,
        profile.user,
        use_system_ssh,
    )
    try:
        local_port = allocate_local_port()
    except OSError as exc:
        raise TunnelError(f"Failed to find free local port: {exc}") from exc
    LOG.info("Assigned local port %d", local_port)

    backend: TunnelBackend
    try:
        if use_system_ssh:
            backend = await open_system_backend(profile, remote_host, remote_port, local_port, settings)
        else:
            backend = await open_native_backend(profile, remote_host, remote_port, local_port, settings)
    except TunnelError as exc:
        LOG.error("SSH tunnel to %s failed: %s", profile.destination, exc)
        raise
    LOG.info(
        "Tunnel established: %s:%d -> %s:%d via %s",
        LOOPBACK_HOST,
        local_port,
        remote_host,
        remote_port,
        profile.destination,
    )
    return SshTunnel(local_port=local_port, backend=backend, remote_host=remote_host, remote_port=remote_port)


def stop_tunnel(tunnel: SshTunnel) -> None:
    tunnel.stop()


__all__ = ["SshTunnel", "TunnelBackend", "open_tunnel", "stop_tunnel"]
