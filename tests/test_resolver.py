"""Tests for SSH profile expansion and tunnel-aware parameter resolution."""

from __future__ import annotations

from typing import Iterator

import pytest

from tabularis.config import TunnelSettings
from tabularis.errors import ConnectionValidationError, TunnelError, UnsupportedDriverError
from tabularis.models import ConnectionParams, SshProfile
from tabularis.resolver import ConnectionResolver, expand_ssh_profile, plan_tunnel, resolve_connection_params
from tabularis.tunnels.registry import TunnelRegistry, get_tunnel_registry
from tabularis.tunnels.tunnel import SshTunnel


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def process_registry_stays_empty() -> Iterator[None]:
    yield
    assert len(get_tunnel_registry()) == 0


class _Backend:
    is_alive = True

    def stop(self) -> None:
        return None


class _RecordingOpener:
    def __init__(self, *, port: int = 45001, error: Exception | None = None) -> None:
        self.calls: list[tuple[SshProfile, str, int]] = []
        self.port = port
        self.error = error

    async def __call__(self, profile, remote_host, remote_port, *, settings):  # type: ignore[no-untyped-def]
        self.calls.append((profile, remote_host, remote_port))
        if self.error is not None:
            raise self.error
        return SshTunnel(local_port=self.port, backend=_Backend(), remote_host=remote_host, remote_port=remote_port)


def _ssh_params(**overrides) -> ConnectionParams:  # type: ignore[no-untyped-def]
    values = {
        "driver": "postgres",
        "database": "app",
        "host": "db.internal",
        "port": 5433,
        "username": "app",
        "ssh_enabled": True,
        "ssh_host": "bastion",
        "ssh_user": "deploy",
        "ssh_password": "secret",
    }
    values.update(overrides)
    return ConnectionParams(**values)


@pytest.mark.anyio
async def test_resolve_without_ssh_returns_same_object() -> None:
    params = ConnectionParams(driver="postgres", host="db", port=5432)

    assert await resolve_connection_params(params) is params


@pytest.mark.anyio
async def test_missing_ssh_host_is_rejected() -> None:
    resolver = ConnectionResolver(registry=TunnelRegistry(), opener=_RecordingOpener())

    with pytest.raises(ConnectionValidationError, match="SSH Host"):
        await resolver.resolve(_ssh_params(ssh_host=None))


@pytest.mark.anyio
async def test_blank_ssh_user_is_rejected() -> None:
    resolver = ConnectionResolver(registry=TunnelRegistry(), opener=_RecordingOpener())

    with pytest.raises(ConnectionValidationError, match="Missing SSH User"):
        await resolver.resolve(_ssh_params(ssh_user="  "))


@pytest.mark.anyio
async def test_resolve_rewrites_host_and_port_to_tunnel() -> None:
    opener = _RecordingOpener(port=45002)
    resolver = ConnectionResolver(registry=TunnelRegistry(), opener=opener)
    params = _ssh_params()

    resolved = await resolver.resolve(params)

    assert resolved.host == "127.0.0.1"
    assert resolved.port == 45002
    assert resolved.database == "app"
    assert params.host == "db.internal"
    profile, remote_host, remote_port = opener.calls[0]
    assert (remote_host, remote_port) == ("db.internal", 5433)
    assert profile.port == 22
    assert profile.password == "secret"


@pytest.mark.anyio
async def test_same_route_reuses_tunnel_across_connections() -> None:
    opener = _RecordingOpener()
    resolver = ConnectionResolver(registry=TunnelRegistry(), opener=opener)

    first = await resolver.resolve(_ssh_params(database="one"))
    second = await resolver.resolve(_ssh_params(database="two"))

    assert first.port == second.port
    assert len(opener.calls) == 1


@pytest.mark.anyio
async def test_remote_defaults_follow_driver() -> None:
    opener = _RecordingOpener()
    resolver = ConnectionResolver(registry=TunnelRegistry(), opener=opener, settings=TunnelSettings())

    await resolver.resolve(_ssh_params(driver="mysql", host=None, port=None))

    _, remote_host, remote_port = opener.calls[0]
    assert (remote_host, remote_port) == ("localhost", 3306)


@pytest.mark.anyio
async def test_sqlite_cannot_be_tunnelled() -> None:
    resolver = ConnectionResolver(registry=TunnelRegistry(), opener=_RecordingOpener())

    with pytest.raises(ConnectionValidationError, match="no network endpoint"):
        await resolver.resolve(_ssh_params(driver="sqlite"))


@pytest.mark.anyio
async def test_unknown_driver_is_rejected() -> None:
    resolver = ConnectionResolver(registry=TunnelRegistry(), opener=_RecordingOpener())

    with pytest.raises(UnsupportedDriverError, match="Unsupported driver: oracle"):
        await resolver.resolve(_ssh_params(driver="oracle"))


@pytest.mark.anyio
async def test_tunnel_failure_leaves_registry_empty() -> None:
    registry = TunnelRegistry()
    resolver = ConnectionResolver(registry=registry, opener=_RecordingOpener(error=TunnelError("boom")))

    with pytest.raises(TunnelError):
        await resolver.resolve(_ssh_params())

    assert len(registry) == 0


def test_expand_ssh_profile_merges_fields() -> None:
    profile = SshProfile(host="jump", user="ops", port=2200, key_file="/keys/ops", key_passphrase="pw", id="p1")
    params = ConnectionParams(driver="postgres", ssh_enabled=True, ssh_profile_id="p1")

    expanded = expand_ssh_profile(params, {"p1": profile})

    assert (expanded.ssh_host, expanded.ssh_port, expanded.ssh_user) == ("jump", 2200, "ops")
    assert expanded.ssh_key_file == "/keys/ops"
    assert expanded.ssh_key_passphrase == "pw"
    assert expanded.ssh_password is None


def test_expand_ssh_profile_unknown_id() -> None:
    params = ConnectionParams(driver="postgres", ssh_enabled=True, ssh_profile_id="missing")

    with pytest.raises(ConnectionValidationError, match="SSH connection with ID missing not found"):
        expand_ssh_profile(params, {})


def test_expand_ssh_profile_ignored_when_ssh_disabled() -> None:
    params = ConnectionParams(driver="postgres", ssh_profile_id="p1")

    assert expand_ssh_profile(params, {}) is params


def test_plan_tunnel_key() -> None:
    plan = plan_tunnel(_ssh_params(ssh_port=2222))

    assert plan.key == "deploy@bastion:2222:db.internal->5433"


def test_empty_injected_registry_is_kept() -> None:
    registry = TunnelRegistry()

    resolver = ConnectionResolver(registry=registry)

    assert resolver.registry is registry
    assert resolver.registry is not get_tunnel_registry()
