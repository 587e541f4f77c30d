"""SSH tunnel backends, handles and the tunnel registry."""

from __future__ import annotations

from .keys import allocate_local_port, build_tunnel_key, is_blank, should_use_system_ssh
from .native import NativeTunnelBackend
from .probe import test_ssh_connection
from .registry import TunnelRegistry, get_tunnel_registry
from .system import SystemSshTunnelBackend, build_ssh_command
from .tunnel import SshTunnel, TunnelBackend, open_tunnel, stop_tunnel

__all__ = [
    "NativeTunnelBackend",
    "SshTunnel",
    "SystemSshTunnelBackend",
    "TunnelBackend",
    "TunnelRegistry",
    "allocate_local_port",
    "build_ssh_command",
    "build_tunnel_key",
    "get_tunnel_registry",
    "is_blank",
    "open_tunnel",
    "should_use_system_ssh",
    "stop_tunnel",
    "test_ssh_connection",
]
