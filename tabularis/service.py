"""Facade wiring saved connections to tunnels, the query engine and cancellation."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Callable

from .cancellation import QueryCancellationRegistry
from .config import AppConfig, ConnectionProfileConfig
from .credentials import (
    MemorySecretStore,
    SecretStore,
    connection_password_key,
    ssh_passphrase_key,
    ssh_password_key,
)
from .errors import ConnectionValidationError, QueryCancelledError, QueryExecutionError
from .models import ConnectionParams, QueryResult, SshProfile
from .query import QueryEngine, QueryExecutor
from .resolver import ConnectionResolver, expand_ssh_profile, plan_tunnel
from .tunnels import test_ssh_connection as probe_ssh_connection

LOG = logging.getLogger(__name__)

ConfigListener = Callable[[AppConfig], None]


class DatabaseService:
    """Entry point used by the UI and the CLI."""

    def __init__(
        self,
        config: AppConfig,
        *,
        secrets: SecretStore | None = None,
        resolver: ConnectionResolver | None = None,
        engine: QueryExecutor | None = None,
        cancellations: QueryCancellationRegistry | None = None,
        on_config_change: ConfigListener | None = None,
    ) -> None:
        self._config = config
        self._secrets = secrets if secrets is not None else MemorySecretStore()
        self._resolver = resolver if resolver is not None else ConnectionResolver(settings=config.tunnel)
        self._engine = engine if engine is not None else QueryEngine()
        self._cancellations = cancellations if cancellations is not None else QueryCancellationRegistry()
        self._on_config_change = on_config_change

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def cancellations(self) -> QueryCancellationRegistry:
        return self._cancellations

    def ssh_profile(self, profile_id: str) -> SshProfile:
        """Saved SSH profile with keychain secrets filled in."""

        entry = self._config.find_ssh_profile(profile_id)
        if entry is None:
            raise ConnectionValidationError(f"SSH connection with ID {profile_id} not found")
        if not entry.save_in_keychain:
            return entry.to_profile()
        return entry.to_profile(
            password=self._secrets.get_secret(ssh_password_key(entry.id)),
            key_passphrase=self._secrets.get_secret(ssh_passphrase_key(entry.id)),
        )

    def connection_params(self, connection_id: str) -> ConnectionParams:
        entry = self._config.find_connection(connection_id)
        if entry is None:
            raise ConnectionValidationError(f"Connection with ID {connection_id} not found")
        params = entry.to_params()
        if entry.save_in_keychain:
            password = self._secrets.get_secret(connection_password_key(entry.id))
            if password is not None:
                params = replace(params, password=password)
        return params

    async def resolve_connection_params(self, params: ConnectionParams) -> ConnectionParams:
        profiles = {entry.id: self.ssh_profile(entry.id) for entry in self._config.ssh_profiles}
        return await self._resolver.resolve(expand_ssh_profile(params, profiles))

    async def execute_query(
        self,
        connection_id: str,
        sql: str,
        limit: int | None = None,
        page: int = 1,
        *,
        tab_id: str | None = None,
    ) -> QueryResult:
        """Run ``sql`` on a saved connection as a task cancellable via ``cancel_query``."""

        params = await self.resolve_connection_params(self.connection_params(connection_id))
        query_id = tab_id or connection_id
        task = asyncio.create_task(self._engine.execute(params, sql, limit=limit, page=page))
        self._cancellations.register(query_id, task)
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                task.cancel()
                raise
            LOG.info("Query %s cancelled", query_id)
            raise QueryCancelledError("Query cancelled") from None
        finally:
            self._cancellations.discard(query_id, task)

    def cancel_query(self, query_id: str) -> None:
        if not self._cancellations.cancel(query_id):
            raise QueryExecutionError("No running query found")

    async def test_ssh_connection(self, profile_id: str) -> str:
        return await probe_ssh_connection(self.ssh_profile(profile_id), settings=self._config.tunnel)

    def delete_connection(self, connection_id: str) -> None:
        """Forget a saved connection and stop its tunnel if nothing else uses it."""

        entry = self._config.find_connection(connection_id)
        if entry is None:
            raise ConnectionValidationError(f"Connection with ID {connection_id} not found")
        self._set_config(self._config.without_connection(connection_id))
        self._secrets.delete_secret(connection_password_key(connection_id))
        stale = self._tunnel_keys([entry]) - self._tunnel_keys(self._config.connections)
        self._evict(stale)

    def delete_ssh_profile(self, profile_id: str) -> None:
        """Forget an SSH profile and stop every tunnel routed through it."""

        if self._config.find_ssh_profile(profile_id) is None:
            raise ConnectionValidationError(f"SSH connection with ID {profile_id} not found")
        users = [conn for conn in self._config.connections if conn.ssh_profile_id == profile_id]
        stale = self._tunnel_keys(users)
        self._set_config(self._config.without_ssh_profile(profile_id))
        self._secrets.delete_secret(ssh_password_key(profile_id))
        self._secrets.delete_secret(ssh_passphrase_key(profile_id))
        self._evict(stale)

    async def close(self) -> None:
        """Stop every tunnel and close every pool."""

        self._resolver.registry.close_all()
        pools = getattr(self._engine, "pools", None)
        if pools is not None:
            await pools.close_all()

    def _tunnel_keys(self, connections: list[ConnectionProfileConfig]) -> set[str]:
        profiles = {entry.id: entry.to_profile() for entry in self._config.ssh_profiles}
        keys: set[str] = set()
        for conn in connections:
            if not conn.ssh_enabled:
                continue
            try:
                keys.add(plan_tunnel(expand_ssh_profile(conn.to_params(), profiles)).key)
            except ConnectionValidationError as exc:
                LOG.debug("Connection %s has no usable tunnel route: %s", conn.id, exc)
        return keys

    def _evict(self, keys: set[str]) -> None:
        if not keys:
            return
        evicted = self._resolver.registry.evict_matching(lambda key, _tunnel: key in keys)
        LOG.info("Stopped %d tunnel(s) after removing saved settings", evicted)

    def _set_config(self, config: AppConfig) -> None:
        self._config = config
        if self._on_config_change is not None:
            self._on_config_change(config)


__all__ = ["ConfigListener", "DatabaseService"]
