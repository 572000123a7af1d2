from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Protocol

logger = logging.getLogger(__name__)


class SecretStore(Protocol):
    def get(self, key: str) -> str | None: ...
    def set(self, key: str, value: str) -> None: ...
    def delete(self, key: str) -> None: ...


@dataclass(slots=True)
class InMemorySecretStore:
    items: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.items = dict(self.items)

    def get(self, key: str) -> str | None:
        return self.items.get(key)

    def set(self, key: str, value: str) -> None:
        self.items[key] = value

    def delete(self, key: str) -> None:
        if key in self.items:
            del self.items[key]


@dataclass(slots=True)
class KeyringSecretStore:
    """Secrets kept in the OS credential store via `keyring`."""

    service_name: str = "live-transcription"

    def get(self, key: str) -> str | None:
        import keyring
        from keyring.errors import KeyringError

        try:
            return keyring.get_password(self.service_name, key)
        except KeyringError as exc:
            logger.warning("Keyring lookup for %s failed: %s", key, exc)
            return None

    def set(self, key: str, value: str) -> None:
        import keyring

        keyring.set_password(self.service_name, key, value)

    def delete(self, key: str) -> None:
        import keyring
        from keyring.errors import PasswordDeleteError

        try:
            keyring.delete_password(self.service_name, key)
        except PasswordDeleteError:
            return


def mask_secret(value: str, *, unmasked_prefix: int = 3) -> str:
    if not value:
        return value
    if len(value) <= unmasked_prefix:
        return "*" * len(value)
    return f"{value[:unmasked_prefix]}****"


def resolve_secret(secrets: SecretStore, *, key: str, env_var: str) -> str | None:
    """Look up `key` in the store, then in the environment."""
    value = secrets.get(key)
    if value:
        return value
    return os.getenv(env_var) or None

