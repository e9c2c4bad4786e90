"""Provider credentials, kept in the operating system keyring.

Important: the keyring has no way to enumerate the entries of a service,
so the store maintains an additional ``index`` entry listing every key.
"""

from __future__ import annotations

import dataclasses
import json
from typing import Optional

import keyring
import keyring.errors
from typing_extensions import Protocol, TypedDict

from omachine.errors import AlreadyExists, NotFound
from omachine.provider.base import Credentials
from omachine.utils import ui

SERVICE = "ollama-machine"
"""Keyring service holding every entry"""

INDEX_KEY = "index"


class SecretBackend(Protocol):
    """Subset of the :py:mod:`keyring` API used by the store"""

    def get_password(self, service_name: str, username: str) -> Optional[str]:
        ...

    def set_password(self, service_name: str, username: str, password: str) -> None:
        ...

    def delete_password(self, service_name: str, username: str) -> None:
        ...


@dataclasses.dataclass(frozen=True)
class CredentialKey:
    """Identifies a set of credentials: a name, unique per provider"""

    class Serialized(TypedDict):
        name: str
        provider: str

    name: str
    provider: str

    @property
    def entry(self) -> str:
        """Name of the keyring entry holding the secret"""
        return f"{self.name}-{self.provider}"

    def dict(self) -> Serialized:
        return {"name": self.name, "provider": self.provider}

    def __str__(self) -> str:
        return f"credentials {self.name} ({self.provider})"


class CredentialStore:
    """Credentials, serialized as JSON, one keyring entry per key"""

    def __init__(
        self, backend: None | SecretBackend = None, service: str = SERVICE
    ) -> None:
        """
        Args:
            backend: Object with the :py:mod:`keyring` functions. Defaults
                to the :py:mod:`keyring` module itself.
            service: Keyring service name.
        """
        self.backend: SecretBackend = backend if backend is not None else keyring
        self.service = service

    def list(self) -> list[CredentialKey]:
        """Return the stored keys; an empty list if nothing was ever saved"""
        index = self.backend.get_password(self.service, INDEX_KEY)
        if index is None:
            return []
        return [CredentialKey(e["name"], e["provider"]) for e in json.loads(index)]

    def _write_index(self, keys: list[CredentialKey]) -> None:
        self.backend.set_password(
            self.service, INDEX_KEY, json.dumps([k.dict() for k in keys])
        )

    def exists(self, key: CredentialKey) -> bool:
        return key in self.list()

    def get(self, key: CredentialKey, into: Credentials) -> Credentials:
        """Load the credentials of *key* into *into*.

        Returns:
            The *into* object, filled.

        Raises:
            NotFound: If there is no secret for *key*.
        """
        secret = self.backend.get_password(self.service, key.entry)
        if secret is None:
            raise NotFound(key)
        into.load(json.loads(secret))
        return into

    def save(self, key: CredentialKey, credentials: Credentials) -> None:
        """Store new credentials.

        Raises:
            AlreadyExists: If the key is already in the index.
        """
        if self.exists(key):
            raise AlreadyExists(key)
        self.backend.set_password(
            self.service, key.entry, json.dumps(credentials.dict())
        )
        self._write_index([*self.list(), key])
        ui.instance().debug(f"Saved {key}")

    def delete(self, key: CredentialKey) -> None:
        """Remove the credentials and their index entry.

        Raises:
            NotFound: If the key is neither indexed nor stored.
        """
        keys = self.list()
        indexed = key in keys
        try:
            self.backend.delete_password(self.service, key.entry)
        except keyring.errors.PasswordDeleteError as exce:
            if not indexed:
                raise NotFound(key) from exce
            ui.instance().warning(f"Secret of {key} missing, removing from index")
        if indexed:
            self._write_index([k for k in keys if k != key])
