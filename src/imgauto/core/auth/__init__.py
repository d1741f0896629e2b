"""
Credential resolution for git sources.
"""

from imgauto.core.auth.cache import TokenCache, cache_key
from imgauto.core.auth.models import (
    AuthOptions,
    GitCredentials,
    ProxyConfig,
    TransportKind,
    redact_url,
)
from imgauto.core.auth.options import AuthOptionsError, new_auth_options, parse_transport
from imgauto.core.auth.proxy import proxy_from_secret, resolve_proxy
from imgauto.core.auth.resolver import get_auth_options

__all__ = [
    "AuthOptions",
    "AuthOptionsError",
    "GitCredentials",
    "ProxyConfig",
    "TokenCache",
    "TransportKind",
    "cache_key",
    "get_auth_options",
    "new_auth_options",
    "parse_transport",
    "proxy_from_secret",
    "redact_url",
    "resolve_proxy",
]
