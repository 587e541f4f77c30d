"""Rewrite connection parameters so drivers reach the database through SSH."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Mapping

from .config import TunnelSettings
from .errors import ConnectionValidationError
from .models import LOOPBACK_HOST, ConnectionParams, Driver, SshAuthKind, SshProfile
from .tunnels import SshTunnel, TunnelRegistry, build_tunnel_key, get_tunnel_registry, is_blank, open_tunnel
from .tunnels.keys import DEFAULT_SSH_PORT

LOG = logging.getLogger(__name__)

DEFAULT_REMOTE_HOST = "localhost"

TunnelOpener = Callable[..., Awaitable[SshTunnel]]


@dataclass(frozen=True, slots=True)
class TunnelPlan:
    """Where a tunnel for a set of connection parameters must go."""

    key: str
    profile: SshProfile
    remote_host: str
    remote_port: int


def expand_ssh_profile(params: ConnectionParams, profiles: Mapping[str, SshProfile]) -> ConnectionParams:
    """Copy the referenced SSH profile into the inline SSH fields of ``params``."""

    if not params.ssh_enabled or params.ssh_profile_id is None:
        return params
    profile = profiles.get(params.ssh_profile_id)
    if profile is None:
        raise ConnectionValidationError(f"SSH connection with ID {params.ssh_profile_id} not found")
    return replace(
        params,
        ssh_host=profile.host,
        ssh_port=profile.port,
        ssh_user=profile.user,
        ssh_password=profile.password,
        ssh_key_file=profile.key_file,
        ssh_key_passphrase=profile.key_passphrase,
    )


def plan_tunnel(params: ConnectionParams) -> TunnelPlan:
    """Validate the inline SSH fields of ``params`` and compute the tunnel route."""

    if is_blank(params.ssh_host):
        raise ConnectionValidationError("Missing SSH Host")
    if is_blank(params.ssh_user):
        raise ConnectionValidationError("Missing SSH User")
    driver = Driver.parse(params.driver)
    if driver.default_port is None:
        raise ConnectionValidationError(f"Driver {driver.value} has no network endpoint to tunnel")

    profile = SshProfile(
        host=params.ssh_host,
        port=params.ssh_port or DEFAULT_SSH_PORT,
        user=params.ssh_user,
        auth_kind=SshAuthKind.PASSWORD if is_blank(params.ssh_key_file) else SshAuthKind.SSH_KEY,
        key_file=params.ssh_key_file,
        key_passphrase=params.ssh_key_passphrase,
        password=params.ssh_password,
    )
    remote_host = DEFAULT_REMOTE_HOST if is_blank(params.host) else params.host
    remote_port = params.port or driver.default_port
    return TunnelPlan(
        key=build_tunnel_key(profile.user, profile.host, profile.port, remote_host, remote_port),
        profile=profile,
        remote_host=remote_host,
        remote_port=remote_port,
    )


class ConnectionResolver:
    """Obtains tunnels from a registry and points parameters at them."""

    def __init__(
        self,
        *,
        registry: TunnelRegistry | None = None,
        settings: TunnelSettings | None = None,
        opener: TunnelOpener = open_tunnel,
    ) -> None:
        self._registry = registry if registry is not None else get_tunnel_registry()
        self._settings = settings if settings is not None else TunnelSettings()
        self._opener = opener

    @property
    def registry(self) -> TunnelRegistry:
        return self._registry

    async def resolve(self, params: ConnectionParams) -> ConnectionParams:
        """Return ``params`` itself when SSH is off, else a copy aimed at the tunnel."""

        if not params.ssh_enabled:
            return params
        plan = plan_tunnel(params)

        async def factory() -> SshTunnel:
            return await self._opener(plan.profile, plan.remote_host, plan.remote_port, settings=self._settings)

        tunnel = await self._registry.get_or_create(plan.key, factory)
        LOG.debug("Resolved %s through local port %d", plan.key, tunnel.local_port)
        return replace(params, host=LOOPBACK_HOST, port=tunnel.local_port)


_DEFAULT_RESOLVER = ConnectionResolver()


async def resolve_connection_params(params: ConnectionParams) -> ConnectionParams:
    """Resolve ``params`` against the process-wide tunnel registry."""

    return await _DEFAULT_RESOLVER.resolve(params)


__all__ = [
    "ConnectionResolver",
    "DEFAULT_REMOTE_HOST",
    "TunnelOpener",
    "TunnelPlan",
    "expand_ssh_profile",
    "plan_tunnel",
    "resolve_connection_params",
]
