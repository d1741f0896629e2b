"""
Secret lookup for credentials, proxies, and signing keys.
"""

from imgauto.core.secrets.store import (
    DirectorySecretStore,
    MemorySecretStore,
    SecretData,
    SecretStore,
)

__all__ = [
    "DirectorySecretStore",
    "MemorySecretStore",
    "SecretData",
    "SecretStore",
]
