"""Secret storage for passwords kept out of the config file."""

from __future__ import annotations

from typing import Protocol


class SecretStore(Protocol):
    """Interface implemented by OS keychains or test doubles."""

    def get_secret(self, key: str) -> str | None: ...

    def set_secret(self, key: str, value: str) -> None: ...

    def delete_secret(self, key: str) -> None: ...


class MemorySecretStore:
    """Process-local secret store."""

    def __init__(self, secrets: dict[str, str] | None = None) -> None:
        self._secrets: dict[str, str] = dict(secrets or {})

    def get_secret(self, key: str) -> str | None:
        return self._secrets.get(key)

    def set_secret(self, key: str, value: str) -> None:
        self._secrets[key] = value

    def delete_secret(self, key: str) -> None:
        self._secrets.pop(key, None)


def ssh_password_key(profile_id: str) -> str:
    return f"ssh:{profile_id}:password"


def ssh_passphrase_key(profile_id: str) -> str:
    return f"ssh:{profile_id}:passphrase"


def connection_password_key(connection_id: str) -> str:
    return f"connection:{connection_id}:password"


__all__ = [
    "MemorySecretStore",
    "SecretStore",
    "connection_password_key",
    "ssh_passphrase_key",
    "ssh_password_key",
]
