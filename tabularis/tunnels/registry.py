"""Process-wide cache of live tunnels keyed by route."""

from __future__ import annotations

import asyncio
import logging
import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable

from .tunnel import SshTunnel

LOG = logging.getLogger(__name__)

TunnelFactory = Callable[[], Awaitable[SshTunnel]]


class TunnelRegistry:
    """Keeps at most one live tunnel per tunnel key.

    The map lock is held only for lookups and mutations. Creation for one key
    is serialized by a per-key asyncio lock so that concurrent resolutions of
    the same route share a single factory call while other keys proceed. The
    per-key lock lives only while some caller is creating or waiting.
    """

    def __init__(self) -> None:
        self._tunnels: dict[str, SshTunnel] = {}
        self._creating: dict[str, tuple[asyncio.Lock, int]] = {}
        self._lock = threading.Lock()

    async def get_or_create(self, key: str, factory: TunnelFactory) -> SshTunnel:
        tunnel = self._lookup(key)
        if tunnel is not None:
            return tunnel
        async with self._creation_slot(key):
            tunnel = self._lookup(key)
            if tunnel is not None:
                return tunnel
            tunnel = await factory()
            tunnel.key = key
            with self._lock:
                self._tunnels[key] = tunnel
            LOG.info("Registered tunnel %s on local port %d", key, tunnel.local_port)
            return tunnel

    def get(self, key: str) -> SshTunnel | None:
        return self._lookup(key)

    def evict(self, key: str) -> bool:
        """Stop and forget the tunnel for ``key``."""

        with self._lock:
            tunnel = self._tunnels.pop(key, None)
        if tunnel is None:
            return False
        tunnel.stop()
        return True

    def evict_matching(self, predicate: Callable[[str, SshTunnel], bool]) -> int:
        with self._lock:
            doomed = [(key, tunnel) for key, tunnel in self._tunnels.items() if predicate(key, tunnel)]
            for key, _ in doomed:
                del self._tunnels[key]
        for _, tunnel in doomed:
            tunnel.stop()
        return len(doomed)

    def close_all(self) -> None:
        with self._lock:
            tunnels = list(self._tunnels.values())
            self._tunnels.clear()
        for tunnel in tunnels:
            tunnel.stop()

    def keys(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(self._tunnels)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tunnels)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._tunnels

    def _lookup(self, key: str) -> SshTunnel | None:
        with self._lock:
            tunnel = self._tunnels.get(key)
            if tunnel is None or tunnel.is_alive:
                return tunnel
            del self._tunnels[key]
        LOG.info("Discarding dead tunnel %s", key)
        tunnel.stop()
        return None

    @asynccontextmanager
    async def _creation_slot(self, key: str) -> AsyncIterator[None]:
        with self._lock:
            lock, users = self._creating.get(key) or (asyncio.Lock(), 0)
            self._creating[key] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            with self._lock:
                lock, users = self._creating[key]
                if users == 1:
                    del self._creating[key]
                else:
                    self._creating[key] = (lock, users - 1)


_REGISTRY = TunnelRegistry()


def get_tunnel_registry() -> TunnelRegistry:
    """Registry shared by every resolver in the process."""

    return _REGISTRY


__all__ = ["TunnelFactory", "TunnelRegistry", "get_tunnel_registry"]
