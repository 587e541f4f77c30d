"""Tests for the system ssh backend using a fake ssh executable."""

from __future__ import annotations

import asyncio
import sys
import textwrap
from pathlib import Path

import pytest

from tabularis.config import TunnelSettings
from tabularis.errors import TunnelError
from tabularis.models import SshProfile
from tabularis.tunnels.probe import test_ssh_connection as probe_ssh_connection
from tabularis.tunnels.system import SystemSshTunnelBackend, build_probe_command, build_ssh_command
from tabularis.tunnels.tunnel import open_tunnel

LISTENING_SSH = """
import socket, sys, time
spec = sys.argv[sys.argv.index("-L") + 1]
port = int(spec.split(":")[1])
server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
server.bind(("127.0.0.1", port))
server.listen()
print("forwarding " + spec, flush=True)
time.sleep(30)
"""

FAILING_SSH = """
import sys
sys.stderr.write("Permission denied (publickey).\\n")
sys.exit(255)
"""

HANGING_SSH = """
import time
time.sleep(30)
"""

PROBE_OK_SSH = """
import sys
sys.exit(0 if sys.argv[-1] == "exit" else 2)
"""


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _fake_ssh(tmp_path: Path, body: str) -> str:
    script = tmp_path / "ssh"
    script.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body))
    script.chmod(0o755)
    return str(script)


def _profile(**overrides) -> SshProfile:  # type: ignore[no-untyped-def]
    values = {"host": "bastion.example.com", "user": "deploy"}
    values.update(overrides)
    return SshProfile(**values)


def test_build_ssh_command_defaults() -> None:
    command = build_ssh_command(_profile(), "db.internal", 5432, 40123)

    assert command == [
        "ssh",
        "-N",
        "-L",
        "127.0.0.1:40123:db.internal:5432",
        "-o",
        "BatchMode=yes",
        "-o",
        "StrictHostKeyChecking=accept-new",
        "-o",
        "ExitOnForwardFailure=yes",
        "deploy@bastion.example.com",
    ]


def test_build_ssh_command_with_port_key_and_verbose() -> None:
    profile = _profile(port=2222, key_file="/home/deploy/.ssh/id_ed25519")

    command = build_ssh_command(profile, "localhost", 3306, 40124, ssh_binary="/usr/bin/ssh", verbose=True)

    assert command[:2] == ["/usr/bin/ssh", "-v"]
    assert command[command.index("-p") + 1] == "2222"
    assert command[command.index("-i") + 1] == "/home/deploy/.ssh/id_ed25519"
    assert command[-1] == "deploy@bastion.example.com"


def test_build_ssh_command_skips_blank_key_and_user() -> None:
    command = build_ssh_command(_profile(user="", key_file="  "), "localhost", 5432, 40125)

    assert "-i" not in command
    assert "-p" not in command
    assert command[-1] == "bastion.example.com"


def test_build_probe_command() -> None:
    command = build_probe_command(_profile(port=2200))

    assert command[:7] == [
        "ssh",
        "-o",
        "BatchMode=yes",
        "-o",
        "ConnectTimeout=10",
        "-o",
        "StrictHostKeyChecking=accept-new",
    ]
    assert command[-2:] == ["deploy@bastion.example.com", "exit"]
    assert "-p" in command


@pytest.mark.anyio
async def test_open_tunnel_uses_system_ssh_without_password(tmp_path: Path) -> None:
    settings = TunnelSettings(ssh_binary=_fake_ssh(tmp_path, LISTENING_SSH), ready_timeout=10)

    tunnel = await open_tunnel(_profile(), "db.internal", 5432, settings=settings)
    try:
        assert tunnel.uses_system_ssh is True
        assert tunnel.is_alive is True
        _, writer = await asyncio.open_connection("127.0.0.1", tunnel.local_port)
        writer.close()
    finally:
        tunnel.stop()
    backend = tunnel.backend
    assert isinstance(backend, SystemSshTunnelBackend)
    await asyncio.wait_for(backend.wait(), timeout=5)
    assert tunnel.is_alive is False


@pytest.mark.anyio
async def test_premature_exit_reports_stderr(tmp_path: Path) -> None:
    settings = TunnelSettings(ssh_binary=_fake_ssh(tmp_path, FAILING_SSH), ready_timeout=10)

    with pytest.raises(TunnelError) as excinfo:
        await open_tunnel(_profile(), "db.internal", 5432, settings=settings)

    message = str(excinfo.value)
    assert "exited prematurely with status: 255" in message
    assert "Permission denied (publickey)." in message


@pytest.mark.anyio
async def test_readiness_timeout_kills_process(tmp_path: Path) -> None:
    settings = TunnelSettings(ssh_binary=_fake_ssh(tmp_path, HANGING_SSH), ready_timeout=0.5)

    with pytest.raises(TunnelError, match="Timed out waiting for SSH tunnel"):
        await open_tunnel(_profile(), "db.internal", 5432, settings=settings)


@pytest.mark.anyio
async def test_missing_binary_is_reported(tmp_path: Path) -> None:
    settings = TunnelSettings(ssh_binary=str(tmp_path / "no-such-ssh"))

    with pytest.raises(TunnelError, match="Failed to launch system ssh"):
        await open_tunnel(_profile(), "db.internal", 5432, settings=settings)


@pytest.mark.anyio
async def test_probe_succeeds_with_system_ssh(tmp_path: Path) -> None:
    settings = TunnelSettings(ssh_binary=_fake_ssh(tmp_path, PROBE_OK_SSH))

    message = await probe_ssh_connection(_profile(port=2222), settings=settings)

    assert message == "SSH connection to deploy@bastion.example.com:2222 established successfully!"


@pytest.mark.anyio
async def test_probe_failure_includes_stderr(tmp_path: Path) -> None:
    settings = TunnelSettings(ssh_binary=_fake_ssh(tmp_path, FAILING_SSH))

    with pytest.raises(TunnelError, match=r"SSH connection failed: Permission denied \(publickey\)\."):
        await probe_ssh_connection(_profile(), settings=settings)
