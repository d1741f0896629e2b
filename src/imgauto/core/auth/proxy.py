"""Proxy settings from a proxy secret."""

from __future__ import annotations

from urllib.parse import urlsplit

from imgauto.core.auth.models import ProxyConfig
from imgauto.core.errors import ProxyConfigError, SecretNotFoundError
from imgauto.core.secrets import SecretStore
from imgauto.core.source.models import SourceDescriptor

KEY_ADDRESS = "address"
KEY_USERNAME = "username"
KEY_PASSWORD = "password"


def proxy_from_secret(name: str, data: dict[str, bytes]) -> ProxyConfig:
    """
    Build proxy settings from secret data.

    The ``address`` key is required; ``username`` and ``password`` are optional.

    Raises:
        ProxyConfigError: If the address is missing or not a URL.
    """
    address = data.get(KEY_ADDRESS, b"").decode().strip()
    if not address:
        raise ProxyConfigError(f"invalid proxy secret '{name}': key 'address' is missing")

    parts = urlsplit(address)
    if not parts.scheme or not parts.netloc:
        raise ProxyConfigError(f"invalid proxy secret '{name}': address '{address}' is not a URL")

    return ProxyConfig(
        address=address,
        username=data.get(KEY_USERNAME, b"").decode().strip(),
        password=data.get(KEY_PASSWORD, b"").decode().strip(),
    )


def resolve_proxy(source: SourceDescriptor, secrets: SecretStore) -> ProxyConfig | None:
    """Return the source's proxy settings, or None if it has no proxy secret."""
    if source.proxy_secret_ref is None:
        return None

    name = source.proxy_secret_ref.name
    try:
        data = secrets.get(name, source.namespace)
    except SecretNotFoundError as e:
        raise ProxyConfigError(
            f"failed to get proxy secret '{source.namespace}/{name}': {e}"
        ) from e
    return proxy_from_secret(name, data)
