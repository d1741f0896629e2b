"""
Resolve transport credentials for a source.

Provider dispatch:
    generic  - credentials come from the source secret, if any
    github   - the source secret must carry GitHub App data, exchanged for
               an installation token
    azure    - workload identity; no secret needed
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

import httpx

from imgauto.core.auth import azure, github
from imgauto.core.auth.cache import TokenCache, cache_key
from imgauto.core.auth.models import (
    DEFAULT_EXCHANGE_TIMEOUT,
    AuthOptions,
    GitCredentials,
    ProxyConfig,
)
from imgauto.core.auth.options import new_auth_options
from imgauto.core.errors import InvalidSourceConfigurationError
from imgauto.core.secrets import SecretStore
from imgauto.core.source.models import AUTOMATION_KIND, GitProvider, NamespacedName, SourceDescriptor

logger = logging.getLogger(__name__)

OPERATION_GIT = "git"


@dataclass
class ResolveContext:
    """Per-call inputs shared by the provider resolvers."""

    source: SourceDescriptor
    data: dict[str, bytes] | None
    proxy: ProxyConfig | None = None
    token_cache: TokenCache | None = None
    involved: NamespacedName | None = None
    http_client: httpx.Client | None = None
    timeout: float = DEFAULT_EXCHANGE_TIMEOUT

    @property
    def proxy_url(self) -> str | None:
        return self.proxy.url if self.proxy else None

    def cache_key(self) -> str | None:
        if self.token_cache is None or self.involved is None:
            return None
        return cache_key(
            self.source.provider.value,
            AUTOMATION_KIND,
            self.involved.namespace,
            self.involved.name,
            OPERATION_GIT,
        )


def _resolve_generic(ctx: ResolveContext) -> GitCredentials | None:
    if github.has_app_data(ctx.data):
        raise InvalidSourceConfigurationError(
            f"secret '{ctx.source.namespace}/{ctx.source.secret_ref.name}' contains "
            f"GitHub App data, but the source provider is '{GitProvider.GENERIC.value}'; "
            f"set the provider to '{GitProvider.GITHUB.value}'"
        )
    return None


def _resolve_github(ctx: ResolveContext) -> GitCredentials | None:
    if ctx.data is None:
        raise InvalidSourceConfigurationError(
            f"secretRef with GitHub App data must be specified when provider is "
            f"'{GitProvider.GITHUB.value}'"
        )
    if not github.has_app_data(ctx.data):
        raise InvalidSourceConfigurationError(
            f"secret '{ctx.source.namespace}/{ctx.source.secret_ref.name}' has no GitHub App "
            f"data; it is required when provider is '{GitProvider.GITHUB.value}'"
        )
    app = github.GitHubAppData.from_secret(ctx.data)
    return github.get_credentials(
        app,
        proxy_url=ctx.proxy_url,
        cache=ctx.token_cache,
        cache_key=ctx.cache_key(),
        http_client=ctx.http_client,
        timeout=ctx.timeout,
    )


def _resolve_azure(ctx: ResolveContext) -> GitCredentials | None:
    return azure.get_credentials(
        proxy_url=ctx.proxy_url,
        cache=ctx.token_cache,
        cache_key=ctx.cache_key(),
        http_client=ctx.http_client,
        timeout=ctx.timeout,
    )


_RESOLVERS: dict[GitProvider, Callable[[ResolveContext], GitCredentials | None]] = {
    GitProvider.GENERIC: _resolve_generic,
    GitProvider.GITHUB: _resolve_github,
    GitProvider.AZURE: _resolve_azure,
}


def get_auth_options(
    source: SourceDescriptor,
    secrets: SecretStore,
    *,
    proxy: ProxyConfig | None = None,
    token_cache: TokenCache | None = None,
    involved: NamespacedName | None = None,
    http_client: httpx.Client | None = None,
    timeout: float = DEFAULT_EXCHANGE_TIMEOUT,
) -> AuthOptions:
    """
    Build auth options for the source URL using its provider.

    Args:
        source: The source repository
        secrets: Where the source's secret is looked up
        proxy: Proxy used for provider token exchanges
        token_cache: Cache for exchanged tokens; disabled when None
        involved: The automation the credentials are requested for,
            used as the cache identity
        http_client: HTTP client for token exchanges (one is created if None)
        timeout: Bound on each provider token exchange, in seconds

    Raises:
        InvalidURLError: If the URL cannot be parsed.
        SecretNotFoundError: If the referenced secret does not exist.
        InvalidSourceConfigurationError: If the secret does not match the provider.
        AuthenticationError: If a provider token exchange fails.
    """
    data = None
    if source.secret_ref is not None:
        data = secrets.get(source.secret_ref.name, source.namespace)

    opts = new_auth_options(source.url, data)

    ctx = ResolveContext(
        source=source,
        data=data,
        proxy=proxy,
        token_cache=token_cache,
        involved=involved,
        http_client=http_client,
        timeout=timeout,
    )
    creds = _RESOLVERS[source.provider](ctx)
    if creds is None:
        return opts

    logger.debug("Using %s provider credentials for %s", source.provider.value, source.key)
    update: dict[str, str] = {}
    if creds.username:
        update["username"] = creds.username
    if creds.password:
        update["password"] = creds.password
    if creds.bearer_token:
        update["bearer_token"] = creds.bearer_token
    return opts.model_copy(update=update)
