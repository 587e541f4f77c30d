"""App configuration loading helpers."""

from __future__ import annotations

import json
import logging
import uuid
from pathlib import Path

import tomllib

from pydantic import BaseModel, Field, ValidationError

from .credentials import SecretStore, ssh_passphrase_key, ssh_password_key
from .models import ConnectionParams, SshAuthKind, SshProfile

CONFIG_FILE = Path.home() / ".config" / "tabularis" / "config.toml"

LOG = logging.getLogger(__name__)


class TunnelSettings(BaseModel):
    """Timeouts and process options for SSH tunnels."""

    handshake_timeout: float = 10.0
    auth_timeout: float = 30.0
    ready_timeout: float = 10.0
    poll_interval: float = 0.1
    ssh_binary: str = "ssh"
    log_buffer_lines: int = 200


class SshProfileConfig(BaseModel):
    """SSH profile stored in config.toml."""

    id: str
    name: str
    host: str
    user: str
    port: int = 22
    auth_type: SshAuthKind | None = None
    password: str | None = None
    key_file: str | None = None
    key_passphrase: str | None = None
    save_in_keychain: bool = False

    def resolved_auth_type(self) -> SshAuthKind:
        """Infer the auth kind for profiles saved before it was recorded."""

        if self.auth_type is not None:
            return self.auth_type
        if self.key_file and self.key_file.strip():
            return SshAuthKind.SSH_KEY
        return SshAuthKind.PASSWORD

    def to_profile(self, *, password: str | None = None, key_passphrase: str | None = None) -> SshProfile:
        return SshProfile(
            id=self.id,
            name=self.name,
            host=self.host,
            port=self.port,
            user=self.user,
            auth_kind=self.resolved_auth_type(),
            key_file=self.key_file,
            key_passphrase=key_passphrase if key_passphrase is not None else self.key_passphrase,
            password=password if password is not None else self.password,
        )


class ConnectionProfileConfig(BaseModel):
    """Saved database connection stored in config.toml."""

    id: str
    name: str
    driver: str
    database: str = ""
    host: str | None = None
    port: int | None = None
    username: str | None = None
    password: str | None = None
    save_in_keychain: bool = False
    ssh_enabled: bool = False
    ssh_profile_id: str | None = None
    ssh_host: str | None = None
    ssh_port: int | None = None
    ssh_user: str | None = None
    ssh_password: str | None = None
    ssh_key_file: str | None = None
    ssh_key_passphrase: str | None = None

    def to_params(self) -> ConnectionParams:
        return ConnectionParams(
            driver=self.driver,
            database=self.database,
            host=self.host,
            port=self.port,
            username=self.username,
            password=self.password,
            ssh_enabled=self.ssh_enabled,
            ssh_profile_id=self.ssh_profile_id,
            ssh_host=self.ssh_host,
            ssh_port=self.ssh_port,
            ssh_user=self.ssh_user,
            ssh_password=self.ssh_password,
            ssh_key_file=self.ssh_key_file,
            ssh_key_passphrase=self.ssh_key_passphrase,
        )


class AppConfig(BaseModel):
    """Shape of the application configuration file."""

    result_page_size: int = 500
    log_level: str = "INFO"
    tunnel: TunnelSettings = Field(default_factory=TunnelSettings)
    connections: list[ConnectionProfileConfig] = Field(default_factory=list)
    ssh_profiles: list[SshProfileConfig] = Field(default_factory=list)

    def find_connection(self, connection_id: str) -> ConnectionProfileConfig | None:
        return next((conn for conn in self.connections if conn.id == connection_id), None)

    def find_ssh_profile(self, profile_id: str) -> SshProfileConfig | None:
        return next((ssh for ssh in self.ssh_profiles if ssh.id == profile_id), None)

    def with_connection(self, connection: ConnectionProfileConfig) -> AppConfig:
        """Return a copy with the connection added or replaced by id."""

        connections = [conn for conn in self.connections if conn.id != connection.id]
        connections.append(connection)
        return self.model_copy(update={"connections": connections})

    def without_connection(self, connection_id: str) -> AppConfig:
        connections = [conn for conn in self.connections if conn.id != connection_id]
        return self.model_copy(update={"connections": connections})

    def with_ssh_profile(self, profile: SshProfileConfig) -> AppConfig:
        """Return a copy with the SSH profile added or replaced by id."""

        profiles = [ssh for ssh in self.ssh_profiles if ssh.id != profile.id]
        profiles.append(profile)
        return self.model_copy(update={"ssh_profiles": profiles})

    def without_ssh_profile(self, profile_id: str) -> AppConfig:
        profiles = [ssh for ssh in self.ssh_profiles if ssh.id != profile_id]
        return self.model_copy(update={"ssh_profiles": profiles})


def load_config() -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing."""

    try:
        data = _read_config_file()
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError) as exc:
        LOG.warning("Ignoring unreadable config file %s: %s", CONFIG_FILE, exc)
        return AppConfig()
    return AppConfig(**data)


def save_config(config: AppConfig) -> None:
    """Persist configuration to disk.

    Secrets of profiles flagged ``save_in_keychain`` are left out; they live
    in the credential store instead.
    """

    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = [
        f"result_page_size = {config.result_page_size}",
        f"log_level = {_toml_value(config.log_level)}",
        "",
        "[tunnel]",
    ]
    for key, value in config.tunnel.model_dump().items():
        lines.append(f"{key} = {_toml_value(value)}")
    for connection in config.connections:
        lines.append("")
        lines.append("[[connections]]")
        skip = {"password", "ssh_password", "ssh_key_passphrase"} if connection.save_in_keychain else set()
        lines.extend(_table_lines(connection, skip))
    for profile in config.ssh_profiles:
        lines.append("")
        lines.append("[[ssh_profiles]]")
        skip = {"password", "key_passphrase"} if profile.save_in_keychain else set()
        lines.extend(_table_lines(profile, skip))
    CONFIG_FILE.write_text("\n".join(lines) + "\n")


def migrate_legacy_ssh(config: AppConfig, secrets: SecretStore) -> AppConfig:
    """Move inline SSH fields of saved connections into shared SSH profiles.

    Connections pointing at the same ``host:port:user:key_file`` share one
    profile. For connections flagged ``save_in_keychain`` the SSH password and
    key passphrase, inline or stored under the connection id, are copied to
    the new profile's keys in ``secrets``. Returns ``config`` itself when
    nothing needed migrating.
    """

    pending = [
        conn
        for conn in config.connections
        if conn.ssh_enabled and conn.ssh_profile_id is None and conn.ssh_host and conn.ssh_user
    ]
    if not pending:
        return config
    pending_ids = {conn.id for conn in pending}
    profiles = list(config.ssh_profiles)
    by_route: dict[str, str] = {}
    connections: list[ConnectionProfileConfig] = []
    for conn in config.connections:
        if conn.id not in pending_ids:
            connections.append(conn)
            continue
        port = conn.ssh_port or 22
        key_file = conn.ssh_key_file or ""
        route = f"{conn.ssh_host}:{port}:{conn.ssh_user}:{key_file}"
        profile_id = by_route.get(route)
        if profile_id is None:
            profile_id = str(uuid.uuid4())
            password, passphrase = conn.ssh_password, conn.ssh_key_passphrase
            if conn.save_in_keychain:
                _move_ssh_secrets(secrets, conn, profile_id)
                password = passphrase = None
            profiles.append(
                SshProfileConfig(
                    id=profile_id,
                    name=f"{conn.ssh_user}@{conn.ssh_host}",
                    host=conn.ssh_host,
                    port=port,
                    user=conn.ssh_user,
                    auth_type=SshAuthKind.SSH_KEY if key_file.strip() else SshAuthKind.PASSWORD,
                    password=password,
                    key_file=conn.ssh_key_file,
                    key_passphrase=passphrase,
                    save_in_keychain=conn.save_in_keychain,
                )
            )
            by_route[route] = profile_id
        connections.append(
            conn.model_copy(
                update={
                    "ssh_profile_id": profile_id,
                    "ssh_host": None,
                    "ssh_port": None,
                    "ssh_user": None,
                    "ssh_password": None,
                    "ssh_key_file": None,
                    "ssh_key_passphrase": None,
                }
            )
        )
    LOG.info("Migrated %d connection(s) to %d SSH profile(s)", len(pending), len(by_route))
    return config.model_copy(update={"connections": connections, "ssh_profiles": profiles})


def _move_ssh_secrets(secrets: SecretStore, conn: ConnectionProfileConfig, profile_id: str) -> None:
    for inline, key_for in ((conn.ssh_password, ssh_password_key), (conn.ssh_key_passphrase, ssh_passphrase_key)):
        value = inline if inline is not None else secrets.get_secret(key_for(conn.id))
        if value and value.strip():
            secrets.set_secret(key_for(profile_id), value)


def _read_config_file() -> dict[str, object]:
    with CONFIG_FILE.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    page_size = raw.get("result_page_size")
    if isinstance(page_size, int) and not isinstance(page_size, bool) and page_size > 0:
        data["result_page_size"] = page_size
    log_level = raw.get("log_level")
    if isinstance(log_level, str):
        data["log_level"] = log_level.upper()
    tunnel = raw.get("tunnel")
    if isinstance(tunnel, dict):
        try:
            data["tunnel"] = TunnelSettings.model_validate(tunnel)
        except ValidationError as exc:
            LOG.warning("Ignoring invalid [tunnel] settings: %s", exc)
    data["connections"] = _parse_entries(raw.get("connections"), ConnectionProfileConfig)
    data["ssh_profiles"] = _parse_entries(raw.get("ssh_profiles"), SshProfileConfig)
    return data


def _parse_entries(entries: object, model: type[BaseModel]) -> list:
    if not isinstance(entries, list):
        return []
    parsed = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        try:
            parsed.append(model.model_validate(entry))
        except ValidationError as exc:
            LOG.warning("Skipping invalid %s entry: %s", model.__name__, exc)
    return parsed


def _table_lines(model: BaseModel, skip: set[str]) -> list[str]:
    lines: list[str] = []
    for key, value in model.model_dump(mode="json").items():
        if value is None or key in skip:
            continue
        lines.append(f"{key} = {_toml_value(value)}")
    return lines


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    # JSON string escapes are valid TOML basic-string escapes.
    return json.dumps(str(value))


__all__ = [
    "AppConfig",
    "CONFIG_FILE",
    "ConnectionProfileConfig",
    "SshProfileConfig",
    "TunnelSettings",
    "load_config",
    "migrate_legacy_ssh",
    "save_config",
]
