"""Tunnel backend that shells out to the system ``ssh`` client."""

from __future__ import annotations

import asyncio
import logging
import shlex
from collections import deque

from ..config import TunnelSettings
from ..errors import TunnelError
from ..models import LOOPBACK_HOST, SshProfile
from .keys import DEFAULT_SSH_PORT, is_blank

LOG = logging.getLogger(__name__)


def build_ssh_command(
    profile: SshProfile,
    remote_host: str,
    remote_port: int,
    local_port: int,
    *,
    ssh_binary: str = "ssh",
    verbose: bool = False,
) -> list[str]:
    """Arguments for a non-interactive local port forward."""

    args = [ssh_binary]
    if verbose:
        args.append("-v")
    args += ["-N", "-L", f"{LOOPBACK_HOST}:{local_port}:{remote_host}:{remote_port}"]
    args += _endpoint_args(profile)
    args += [
        "-o", "BatchMode=yes",
        "-o", "StrictHostKeyChecking=accept-new",
        "-o", "ExitOnForwardFailure=yes",
        profile.destination,
    ]
    return args


def build_probe_command(profile: SshProfile, *, ssh_binary: str = "ssh", connect_timeout: int = 10) -> list[str]:
    """Arguments that authenticate and immediately run ``exit``."""

    args = [
        ssh_binary,
        "-o", "BatchMode=yes",
        "-o", f"ConnectTimeout={connect_timeout}",
        "-o", "StrictHostKeyChecking=accept-new",
    ]
    args += _endpoint_args(profile)
    args += [profile.destination, "exit"]
    return args


def _endpoint_args(profile: SshProfile) -> list[str]:
    args: list[str] = []
    if profile.port != DEFAULT_SSH_PORT:
        args += ["-p", str(profile.port)]
    if not is_blank(profile.key_file):
        args += ["-i", profile.key_file]
    return args


class SystemSshTunnelBackend:
    """Owns an ``ssh -N -L`` subprocess and its captured diagnostics."""

    def __init__(self, process: asyncio.subprocess.Process, *, log_lines: int = 200) -> None:
        self._process = process
        self.stdout_log: deque[str] = deque(maxlen=log_lines)
        self.stderr_log: deque[str] = deque(maxlen=log_lines)
        self._readers = [
            asyncio.create_task(_drain(process.stdout, self.stdout_log, "out")),
            asyncio.create_task(_drain(process.stderr, self.stderr_log, "err")),
        ]

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def is_alive(self) -> bool:
        return self._process.returncode is None

    def stop(self) -> None:
        if self._process.returncode is not None:
            return
        try:
            self._process.terminate()
        except ProcessLookupError:
            pass

    async def wait(self) -> int:
        """Wait for the ssh process to exit and return its status."""

        return await self._process.wait()

    async def wait_ready(self, local_port: int, *, timeout: float, interval: float) -> None:
        """Poll the forwarded port until it accepts, the process dies, or time runs out."""

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            if self._process.returncode is not None:
                await asyncio.wait(self._readers, timeout=1.0)
                raise TunnelError(
                    f"SSH process exited prematurely with status: {self._process.returncode}.\n"
                    f"Stderr: {self.diagnostics(self.stderr_log)}\n"
                    f"Stdout: {self.diagnostics(self.stdout_log)}"
                )
            if await _port_accepts(local_port, interval):
                return
            await asyncio.sleep(interval)
        self._process.kill()
        await self._process.wait()
        raise TunnelError("Timed out waiting for SSH tunnel to establish connection.")

    @staticmethod
    def diagnostics(log: deque[str]) -> str:
        return "\n".join(log)


async def _drain(stream: asyncio.StreamReader | None, log: deque[str], label: str) -> None:
    if stream is None:
        return
    async for raw in stream:
        line = raw.decode(errors="replace").rstrip()
        log.append(line)
        LOG.debug("[ssh %s] %s", label, line)


async def _port_accepts(port: int, timeout: float) -> bool:
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(LOOPBACK_HOST, port), timeout)
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    return True


async def open_system_backend(
    profile: SshProfile,
    remote_host: str,
    remote_port: int,
    local_port: int,
    settings: TunnelSettings,
) -> SystemSshTunnelBackend:
    command = build_ssh_command(
        profile,
        remote_host,
        remote_port,
        local_port,
        ssh_binary=settings.ssh_binary,
        verbose=LOG.isEnabledFor(logging.DEBUG),
    )
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
            f"Failed to launch system ssh: {exc}. Ensure '{settings.ssh_binary}' is in PATH."
        ) from exc
    backend = SystemSshTunnelBackend(process, log_lines=settings.log_buffer_lines)
    try:
        await backend.wait_ready(local_port, timeout=settings.ready_timeout, interval=settings.poll_interval)
    except asyncio.CancelledError:
        backend.stop()
        raise
    return backend


__all__ = [
    "SystemSshTunnelBackend",
    "build_probe_command",
    "build_ssh_command",
    "open_system_backend",
]
