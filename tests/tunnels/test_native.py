"""Tests for the asyncssh-backed tunnel backend."""

from __future__ import annotations

import asyncio
from pathlib import Path

import asyncssh
import pytest

from tabularis.config import TunnelSettings
from tabularis.errors import TunnelError
from tabularis.models import SshAuthKind, SshProfile
from tabularis.tunnels.native import NativeTunnelBackend, connect_ssh
from tabularis.tunnels.probe import test_ssh_connection as probe_ssh_connection
from tabularis.tunnels.tunnel import open_tunnel


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class _FakeConnection:
    """Stands in for an SSH connection; channels are plain TCP to ``target_port``."""

    def __init__(self, target_port: int | None = None) -> None:
        self.target_port = target_port
        self.opened: list[tuple[str, int]] = []
        self.closed = False
        self.gone = asyncio.Event()

    async def open_connection(self, host: str, port: int):  # type: ignore[no-untyped-def]
        self.opened.append((host, port))
        assert self.target_port is not None
        return await asyncio.open_connection("127.0.0.1", self.target_port)

    def close(self) -> None:
        self.closed = True
        self.gone.set()

    async def wait_closed(self) -> None:
        await self.gone.wait()


def _password_profile() -> SshProfile:
    return SshProfile(host="bastion.example.com", user="deploy", port=2222, password="secret")


async def _echo(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    while data := await reader.read(1024):
        writer.write(data)
        await writer.drain()
    writer.close()


@pytest.mark.anyio
async def test_open_tunnel_relays_bytes_through_channel(monkeypatch: pytest.MonkeyPatch) -> None:
    echo = await asyncio.start_server(_echo, "127.0.0.1", 0)
    connection = _FakeConnection(echo.sockets[0].getsockname()[1])
    seen: dict[str, object] = {}

    async def _connect(host, **kwargs):  # type: ignore[no-untyped-def]
        seen.update(kwargs, host=host)
        return connection

    monkeypatch.setattr("tabularis.tunnels.native.asyncssh.connect", _connect)

    tunnel = await open_tunnel(_password_profile(), "db.internal", 5432, settings=TunnelSettings())
    try:
        assert tunnel.uses_system_ssh is False
        assert isinstance(tunnel.backend, NativeTunnelBackend)
        reader, writer = await asyncio.open_connection("127.0.0.1", tunnel.local_port)
        writer.write(b"ping")
        await writer.drain()
        assert await asyncio.wait_for(reader.readexactly(4), timeout=2) == b"ping"
        writer.close()
    finally:
        tunnel.stop()
        echo.close()

    assert connection.opened == [("db.internal", 5432)]
    assert connection.closed is True
    assert tunnel.is_alive is False
    assert seen["host"] == "bastion.example.com"
    assert seen["port"] == 2222
    assert seen["username"] == "deploy"
    assert seen["password"] == "secret"
    assert seen["known_hosts"] is None
    assert seen["connect_timeout"] == 10.0
    assert seen["login_timeout"] == 30.0


@pytest.mark.anyio
async def test_backend_stops_when_ssh_connection_drops() -> None:
    connection = _FakeConnection()
    backend = NativeTunnelBackend(connection, "db.internal", 5432)  # type: ignore[arg-type]
    await backend.serve(0)
    assert backend.is_alive is True

    connection.gone.set()
    for _ in range(50):
        if not backend.is_alive:
            break
        await asyncio.sleep(0.01)

    assert backend.is_alive is False
    assert connection.closed is True


@pytest.mark.anyio
async def test_permission_denied_is_reported(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _connect(host, **kwargs):  # type: ignore[no-untyped-def]
        raise asyncssh.PermissionDenied("Permission denied")

    monkeypatch.setattr("tabularis.tunnels.native.asyncssh.connect", _connect)

    with pytest.raises(TunnelError, match="SSH password authentication failed: Permission denied"):
        await connect_ssh(_password_profile(), TunnelSettings())


@pytest.mark.anyio
async def test_unreachable_server_is_reported(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _connect(host, **kwargs):  # type: ignore[no-untyped-def]
        raise ConnectionRefusedError("Connection refused")

    monkeypatch.setattr("tabularis.tunnels.native.asyncssh.connect", _connect)

    with pytest.raises(TunnelError, match="Failed to connect to SSH server bastion.example.com:2222"):
        await connect_ssh(_password_profile(), TunnelSettings())


@pytest.mark.anyio
async def test_hung_handshake_times_out(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _connect(host, **kwargs):  # type: ignore[no-untyped-def]
        await asyncio.sleep(10)

    monkeypatch.setattr("tabularis.tunnels.native.asyncssh.connect", _connect)
    settings = TunnelSettings(handshake_timeout=0.05, auth_timeout=0.05)

    with pytest.raises(TunnelError, match="timed out after 0.1 seconds"):
        await connect_ssh(_password_profile(), settings)


@pytest.mark.anyio
async def test_unreadable_key_file_is_reported(tmp_path: Path) -> None:
    key_file = tmp_path / "id_broken"
    key_file.write_text("not a private key\n")
    profile = SshProfile(
        host="bastion.example.com",
        user="deploy",
        auth_kind=SshAuthKind.SSH_KEY,
        key_file=str(key_file),
        password="unused",
    )

    with pytest.raises(TunnelError, match="SSH key auth failed"):
        await connect_ssh(profile, TunnelSettings())


@pytest.mark.anyio
async def test_missing_credentials_are_rejected() -> None:
    profile = SshProfile(host="bastion.example.com", user="deploy")

    with pytest.raises(TunnelError, match="No SSH credentials"):
        await connect_ssh(profile, TunnelSettings())


@pytest.mark.anyio
async def test_probe_with_password_closes_connection(monkeypatch: pytest.MonkeyPatch) -> None:
    connection = _FakeConnection()

    async def _connect(host, **kwargs):  # type: ignore[no-untyped-def]
        return connection

    monkeypatch.setattr("tabularis.tunnels.native.asyncssh.connect", _connect)

    message = await probe_ssh_connection(_password_profile())

    assert message == "SSH connection to deploy@bastion.example.com:2222 established successfully!"
    assert connection.closed is True
