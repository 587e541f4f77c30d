"""Check SSH credentials without opening a forward."""

from __future__ import annotations

import asyncio
import logging
import shlex

from ..config import TunnelSettings
from ..errors import TunnelError
from ..models import SshProfile
from .keys import should_use_system_ssh
from .native import connect_ssh
from .system import build_probe_command

LOG = logging.getLogger(__name__)


async def test_ssh_connection(profile: SshProfile, *, settings: TunnelSettings | None = None) -> str:
    """Authenticate against ``profile`` and report success as a message."""

    settings = settings or TunnelSettings()
    if should_use_system_ssh(profile.password):
        await _probe_system(profile, settings)
    else:
        connection = await connect_ssh(profile, settings)
        connection.close()
        await connection.wait_closed()
    LOG.info("SSH connection test to %s succeeded", profile.destination)
    return f"SSH connection to {profile.user}@{profile.host}:{profile.port} established successfully!"


# Not a pytest test despite the name.
test_ssh_connection.__test__ = False  # type: ignore[attr-defined]


async def _probe_system(profile: SshProfile, settings: TunnelSettings) -> None:
    command = build_probe_command(profile, ssh_binary=settings.ssh_binary)
    LOG.info("Executing: %s", shlex.join(command))
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise TunnelError(
            f"Failed to execute ssh command: {exc}. Ensure '{settings.ssh_binary}' is in PATH."
        ) from exc
    _, stderr = await process.communicate()
    if process.returncode != 0:
        raise TunnelError(f"SSH connection failed: {stderr.decode(errors='replace').strip()}")


__all__ = ["test_ssh_connection"]
