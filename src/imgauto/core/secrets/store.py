"""
Secret lookup by name and namespace.

Secrets are plain key/value maps of bytes. Two stores are provided:

- MemorySecretStore: in-process dict, used by embedding callers and tests.
- DirectorySecretStore: reads mounted secrets laid out as
  ``<root>/<namespace>/<name>/<key>``, one file per key.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Mapping, Protocol

from imgauto.core.errors import SecretNotFoundError

logger = logging.getLogger(__name__)

SecretData = dict[str, bytes]


class SecretStore(Protocol):
    """Protocol for secret lookup."""

    def get(self, name: str, namespace: str) -> SecretData:
        """Return the secret data.

        Raises:
            SecretNotFoundError: If no such secret exists.
        """
        ...


def _to_bytes(value: bytes | str) -> bytes:
    if isinstance(value, bytes):
        return value
    return value.encode()


class MemorySecretStore:
    """
    Thread-safe in-memory secret store.

    Example:
        >>> store = MemorySecretStore()
        >>> store.put("git-auth", "default", {"username": "bot", "password": "s3cret"})
        >>> store.get("git-auth", "default")["username"]
        b'bot'
    """

    def __init__(self, secrets: Mapping[tuple[str, str], Mapping[str, bytes | str]] | None = None):
        self._lock = threading.Lock()
        self._secrets: dict[tuple[str, str], SecretData] = {}
        for (namespace, name), data in (secrets or {}).items():
            self.put(name, namespace, data)

    def put(self, name: str, namespace: str, data: Mapping[str, bytes | str]) -> None:
        with self._lock:
            self._secrets[(namespace, name)] = {k: _to_bytes(v) for k, v in data.items()}

    def get(self, name: str, namespace: str) -> SecretData:
        with self._lock:
            data = self._secrets.get((namespace, name))
        if data is None:
            raise SecretNotFoundError(name, namespace)
        return dict(data)


class DirectorySecretStore:
    """Reads secrets from a ``<root>/<namespace>/<name>/<key>`` tree."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def get(self, name: str, namespace: str) -> SecretData:
        secret_dir = self.root / (namespace or "default") / name
        if not secret_dir.is_dir():
            raise SecretNotFoundError(name, namespace)

        data: SecretData = {}
        for entry in sorted(secret_dir.iterdir()):
            # Kubernetes volume mounts use dot-prefixed symlinks for bookkeeping
            if entry.name.startswith(".") or not entry.is_file():
                continue
            data[entry.name] = entry.read_bytes()
        logger.debug("Loaded secret %s/%s with %d keys", namespace, name, len(data))
        return data
