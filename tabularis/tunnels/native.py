"""Native tunnel backend built on asyncssh.

The backend owns one authenticated SSH connection and a loopback listener.
Every accepted local socket gets its own direct-tcpip channel and a pair of
relay pumps, so a slow peer never blocks the others.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import asyncssh

from ..config import TunnelSettings
from ..errors import TunnelError
from ..models import LOOPBACK_HOST, SshProfile
from .keys import is_blank

LOG = logging.getLogger(__name__)

RELAY_CHUNK_SIZE = 64 * 1024


async def connect_ssh(profile: SshProfile, settings: TunnelSettings) -> asyncssh.SSHClientConnection:
    """Open and authenticate an SSH connection, bounded by the settings' timeouts."""

    options = _auth_options(profile)
    overall = settings.handshake_timeout + settings.auth_timeout
    try:
        return await asyncio.wait_for(
            asyncssh.connect(
                profile.host,
                port=profile.port,
                username=profile.user,
                known_hosts=None,
                agent_forwarding=False,
                connect_timeout=settings.handshake_timeout,
                login_timeout=settings.auth_timeout,
                **options,
            ),
            timeout=overall,
        )
    except asyncio.TimeoutError:
        raise TunnelError(
            f"SSH connection to {profile.host}:{profile.port} timed out after {overall:g} seconds"
        ) from None
    except asyncssh.PermissionDenied as exc:
        method = "key" if options.get("client_keys") else "password"
        raise TunnelError(f"SSH {method} authentication failed: {exc.reason}") from exc
    except (asyncssh.Error, OSError) as exc:
        raise TunnelError(f"Failed to connect to SSH server {profile.host}:{profile.port}: {exc}") from exc


def _auth_options(profile: SshProfile) -> dict[str, Any]:
    if not is_blank(profile.key_file):
        passphrase = None if is_blank(profile.key_passphrase) else profile.key_passphrase
        LOG.info("Authenticating with key file: %s", profile.key_file)
        try:
            key = asyncssh.read_private_key(profile.key_file, passphrase)
        except (asyncssh.KeyImportError, OSError) as exc:
            raise TunnelError(f"SSH key auth failed: {exc}") from exc
        return {"client_keys": [key], "agent_path": None, "password": None}
    if profile.password is not None:
        LOG.info("Authenticating with password")
        return {"client_keys": None, "agent_path": None, "password": profile.password}
    raise TunnelError("No SSH credentials provided for the native SSH client")


class NativeTunnelBackend:
    """Forwards a loopback port through an asyncssh connection."""

    def __init__(self, connection: asyncssh.SSHClientConnection, remote_host: str, remote_port: int) -> None:
        self._connection = connection
        self._remote_host = remote_host
        self._remote_port = remote_port
        self._running = True
        self._server: asyncio.AbstractServer | None = None
        self._watcher: asyncio.Task[None] | None = None
        self._channel_lock = asyncio.Lock()

    @property
    def is_alive(self) -> bool:
        return self._running

    async def serve(self, local_port: int) -> None:
        """Start accepting local connections on ``127.0.0.1:local_port``."""

        self._server = await asyncio.start_server(self._handle_client, LOOPBACK_HOST, local_port)
        self._watcher = asyncio.create_task(self._watch_connection())

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._server is not None:
            self._server.close()
        self._connection.close()

    async def _watch_connection(self) -> None:
        await self._connection.wait_closed()
        if self._running:
            LOG.warning("SSH connection closed, stopping tunnel to %s:%d", self._remote_host, self._remote_port)
            self.stop()

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        if not self._running:
            writer.close()
            return
        try:
            async with self._channel_lock:
                remote_reader, remote_writer = await self._connection.open_connection(
                    self._remote_host, self._remote_port
                )
        except (asyncssh.ConnectionLost, asyncssh.DisconnectError) as exc:
            LOG.warning("SSH connection lost, stopping tunnel: %s", exc)
            writer.close()
            self.stop()
            return
        except (asyncssh.Error, OSError) as exc:
            LOG.warning(
                "Failed to open SSH channel to %s:%d: %s", self._remote_host, self._remote_port, exc
            )
            writer.close()
            return
        try:
            await asyncio.gather(
                self._pump(reader, remote_writer),
                self._pump(remote_reader, writer),
            )
        finally:
            remote_writer.close()
            writer.close()

    async def _pump(self, reader: Any, writer: Any) -> None:
        try:
            while self._running:
                data = await reader.read(RELAY_CHUNK_SIZE)
                if not data:
                    break
                writer.write(data)
                await writer.drain()
        except (asyncssh.Error, OSError) as exc:
            LOG.debug("Forwarding stopped: %s", exc)
        finally:
            try:
                if writer.can_write_eof():
                    writer.write_eof()
            except (asyncssh.Error, OSError):
                pass


async def open_native_backend(
    profile: SshProfile,
    remote_host: str,
    remote_port: int,
    local_port: int,
    settings: TunnelSettings,
) -> NativeTunnelBackend:
    LOG.info("Native SSH connecting to %s:%d", profile.host, profile.port)
    connection = await connect_ssh(profile, settings)
    backend = NativeTunnelBackend(connection, remote_host, remote_port)
    try:
        await backend.serve(local_port)
    except OSError as exc:
        backend.stop()
        raise TunnelError(f"Failed to bind local port {local_port}: {exc}") from exc
    return backend


__all__ = ["NativeTunnelBackend", "connect_ssh", "open_native_backend"]
