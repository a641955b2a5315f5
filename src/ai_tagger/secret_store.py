"""Opaque key/value storage for backend credentials."""

import json
import os
from pathlib import Path
from typing import Protocol

from loguru import logger

from ai_tagger.errors import ConfigurationError


class SecretStore(Protocol):
    """String secrets addressed by name; values are never logged."""

    def store(self, name: str, secret: str) -> None: ...

    def retrieve(self, name: str) -> str | None: ...

    def clear(self, name: str) -> None: ...


class MemorySecretStore:
    """Process-local store, mostly for tests and one-off sessions."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._secrets: dict[str, str] = dict(initial or {})

    def store(self, name: str, secret: str) -> None:
        self._secrets[name] = secret

    def retrieve(self, name: str) -> str | None:
        return self._secrets.get(name) or None

    def clear(self, name: str) -> None:
        self._secrets.pop(name, None)


class FileSecretStore:
    """
    JSON file readable only by the current user.

    The file is rewritten on every change; a corrupt file raises ConfigurationError
    instead of silently dropping stored keys.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    def _load(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.error("secret_file_unreadable", path=str(self._path), error=str(exc))
            msg = f"Secret file {self._path} is unreadable"
            raise ConfigurationError(msg) from exc
        if not isinstance(data, dict):
            msg = f"Secret file {self._path} does not contain an object"
            raise ConfigurationError(msg)
        return {str(key): str(value) for key, value in data.items()}

    def _save(self, data: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        self._path.chmod(0o600)

    def store(self, name: str, secret: str) -> None:
        data = self._load()
        data[name] = secret
        self._save(data)
        logger.debug("secret_stored", name=name, path=str(self._path))

    def retrieve(self, name: str) -> str | None:
        return self._load().get(name) or None

    def clear(self, name: str) -> None:
        data = self._load()
        if data.pop(name, None) is not None:
            self._save(data)
            logger.debug("secret_cleared", name=name, path=str(self._path))


class EnvironmentSecretStore:
    """Delegate to ``backing`` and fall back to an environment variable of the same name."""

    def __init__(self, backing: SecretStore) -> None:
        self._backing = backing

    def store(self, name: str, secret: str) -> None:
        self._backing.store(name, secret)

    def retrieve(self, name: str) -> str | None:
        return self._backing.retrieve(name) or os.getenv(name) or None

    def clear(self, name: str) -> None:
        self._backing.clear(name)
