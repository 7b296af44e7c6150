from __future__ import annotations
"""Connection profile store contract and a JSON/keychain backed implementation."""
from dataclasses import dataclass, field
import json
import logging
from pathlib import Path
from typing import Callable, Optional, Protocol

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

SECRET_PASSWORD = "password"

PLUGIN_ID_S3 = "builtin/file-system-s3"
PLUGIN_ID_S3_TABLE = "builtin/file-system-s3table"

LOGGER = logging.getLogger(__name__)

PromptFn = Callable[[str, str], Optional[str]]


class ConnectionNotFoundError(LookupError):
    """Raised when the store has no profile with the requested name."""


class SecretNotFoundError(LookupError):
    """Raised when no secret is stored for a connection."""


class ConnectionProvider(Protocol):
    """What the context resolver needs from a connection profile store."""

    def get_profile_json(self, name: str) -> str:
        ...

    def get_secret(self, name: str, kind: str) -> str:
        ...

    def prompt_for_secret(self, name: str, kind: str) -> Optional[str]:
        """Ask the user for a secret; ``None`` means the prompt was cancelled."""
        ...


@dataclass
class ConnectionProfile:
    """Represents a saved connection.

    ``host`` holds an explicit region and ``user_name`` the access key id,
    matching the fields of the profile document.
    """

    name: str
    plugin_id: str = PLUGIN_ID_S3
    host: str = ""
    user_name: str = ""
    extra: dict[str, object] = field(default_factory=dict)

    def to_document(self) -> dict[str, object]:
        document: dict[str, object] = {
            "name": self.name,
            "pluginId": self.plugin_id,
            "host": self.host,
            "userName": self.user_name,
        }
        if self.extra:
            document["extra"] = dict(self.extra)
        return document


class KeychainStore:
    """Encapsulates OS keychain access for secrets."""

    def __init__(self, service_name: str = "pys3vfs"):
        self._service_name = service_name

    def get_secret(self, profile_name: str, kind: str = SECRET_PASSWORD) -> str:
        if not profile_name:
            return ""
        try:
            return keyring.get_password(self._service_name, self._account(profile_name, kind)) or ""
        except KeyringError:
            LOGGER.warning("Keychain lookup failed for connection '%s'", profile_name)
            return ""

    def set_secret(self, profile_name: str, secret: str, kind: str = SECRET_PASSWORD) -> None:
        if not profile_name:
            return
        if not secret:
            self.delete_secret(profile_name, kind)
            return
        try:
            keyring.set_password(self._service_name, self._account(profile_name, kind), secret)
        except KeyringError:
            LOGGER.warning("Keychain update failed for connection '%s'", profile_name)
            return

    def delete_secret(self, profile_name: str, kind: str = SECRET_PASSWORD) -> None:
        if not profile_name:
            return
        try:
            keyring.delete_password(self._service_name, self._account(profile_name, kind))
        except PasswordDeleteError:
            return
        except KeyringError:
            LOGGER.warning("Keychain delete failed for connection '%s'", profile_name)
            return

    @staticmethod
    def _account(profile_name: str, kind: str) -> str:
        return f"{profile_name}:{kind}"


class ProfileStorage:
    """Simple JSON-backed store for connection profiles.

    Secrets never stay in the JSON file: a plaintext ``secret`` found on load
    is moved to the keychain and the file is rewritten without it.
    """

    def __init__(self, storage_path: str | Path | None = None, keychain: KeychainStore | None = None):
        if storage_path is None:
            storage_path = Path.home() / ".pys3vfs_connections.json"
        self._path = Path(storage_path)
        self._keychain = keychain or KeychainStore()

    @property
    def keychain(self) -> KeychainStore:
        return self._keychain

    def load(self) -> list[ConnectionProfile]:
        data = self._read_data()
        profiles: list[ConnectionProfile] = []
        sanitized: list[dict[str, object]] = []
        saw_plaintext = False
        for entry in data:
            if not isinstance(entry, dict):
                continue
            name = entry.get("name")
            if not isinstance(name, str) or not name:
                continue
            extra = entry.get("extra")
            profile = ConnectionProfile(
                name=name,
                plugin_id=str(entry.get("pluginId") or PLUGIN_ID_S3),
                host=str(entry.get("host") or ""),
                user_name=str(entry.get("userName") or ""),
                extra=dict(extra) if isinstance(extra, dict) else {},
            )
            secret = entry.get("secret")
            if isinstance(secret, str) and secret:
                saw_plaintext = True
                self._keychain.set_secret(name, secret)
            profiles.append(profile)
            sanitized.append(profile.to_document())
        if saw_plaintext:
            self._write_data(sanitized)
        return profiles

    def save(self, profiles: list[ConnectionProfile]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        existing_names = {
            entry.get("name") for entry in self._read_data() if isinstance(entry, dict)
        }
        current_names = {profile.name for profile in profiles}
        for name in existing_names - current_names:
            if isinstance(name, str) and name:
                self._keychain.delete_secret(name)
        self._write_data([profile.to_document() for profile in profiles])

    def _read_data(self) -> list[object]:
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            LOGGER.warning("Ignoring unreadable connection store %s", self._path)
            return []
        return data if isinstance(data, list) else []

    def _write_data(self, data: list[dict[str, object]]) -> None:
        self._path.write_text(json.dumps(data, indent=2), encoding="utf-8")


class LocalConnectionProvider:
    """:class:`ConnectionProvider` over a :class:`ProfileStorage`.

    ``prompt`` is called when a secret is missing from the keychain. Without
    a prompt every missing secret counts as a cancelled prompt.
    """

    def __init__(self, storage: ProfileStorage | None = None, prompt: PromptFn | None = None):
        self._storage = storage or ProfileStorage()
        self._prompt = prompt

    def get_profile_json(self, name: str) -> str:
        for profile in self._storage.load():
            if profile.name == name:
                return json.dumps(profile.to_document())
        raise ConnectionNotFoundError(f"Connection '{name}' does not exist")

    def get_secret(self, name: str, kind: str) -> str:
        secret = self._storage.keychain.get_secret(name, kind)
        if not secret:
            raise SecretNotFoundError(f"No {kind} stored for connection '{name}'")
        return secret

    def prompt_for_secret(self, name: str, kind: str) -> Optional[str]:
        if self._prompt is None:
            return None
        secret = self._prompt(name, kind)
        if secret:
            self._storage.keychain.set_secret(name, secret, kind)
        return secret
