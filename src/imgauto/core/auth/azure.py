"""
Azure DevOps credentials through workload identity federation.

The federated token projected into the pod is exchanged at the Entra ID
token endpoint for an access token scoped to Azure DevOps. The token is
sent to git as a bearer token.
"""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path

import httpx

from imgauto.core.auth.cache import TokenCache
from imgauto.core.auth.models import DEFAULT_EXCHANGE_TIMEOUT, GitCredentials
from imgauto.core.errors import AuthenticationError

logger = logging.getLogger(__name__)

ENV_CLIENT_ID = "AZURE_CLIENT_ID"
ENV_TENANT_ID = "AZURE_TENANT_ID"
ENV_FEDERATED_TOKEN_FILE = "AZURE_FEDERATED_TOKEN_FILE"
ENV_AUTHORITY_HOST = "AZURE_AUTHORITY_HOST"

DEFAULT_AUTHORITY_HOST = "https://login.microsoftonline.com"
AZURE_DEVOPS_SCOPE = "499b84ac-1321-427f-aa17-267ca6975798/.default"
CLIENT_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"


def _require_env(name: str) -> str:
    value = os.environ.get(name, "").strip()
    if not value:
        raise AuthenticationError(f"workload identity is not configured: {name} is not set")
    return value


def request_access_token(
    *,
    proxy_url: str | None = None,
    http_client: httpx.Client | None = None,
    timeout: float = DEFAULT_EXCHANGE_TIMEOUT,
) -> tuple[str, float]:
    """
    Exchange the federated token for an Azure DevOps access token.

    The request is bounded by timeout, also when http_client is given.

    Returns:
        ``(access_token, expires_at)`` with expires_at in epoch seconds.
    """
    client_id = _require_env(ENV_CLIENT_ID)
    tenant_id = _require_env(ENV_TENANT_ID)
    token_file = Path(_require_env(ENV_FEDERATED_TOKEN_FILE))
    authority = os.environ.get(ENV_AUTHORITY_HOST, "").strip() or DEFAULT_AUTHORITY_HOST

    try:
        assertion = token_file.read_text().strip()
    except OSError as e:
        raise AuthenticationError(f"failed to read federated token file {token_file}: {e}") from e

    url = f"{authority.rstrip('/')}/{tenant_id}/oauth2/v2.0/token"
    form = {
        "client_id": client_id,
        "grant_type": "client_credentials",
        "client_assertion_type": CLIENT_ASSERTION_TYPE,
        "client_assertion": assertion,
        "scope": AZURE_DEVOPS_SCOPE,
    }

    client = http_client
    if client is None:
        client = httpx.Client(timeout=timeout, proxy=proxy_url)
    try:
        logger.info("Requesting Azure DevOps token for client %s", client_id)
        response = client.post(url, data=form, timeout=timeout)
    except httpx.TimeoutException as e:
        raise AuthenticationError(f"Azure token request timed out after {timeout}s: {e}") from e
    except httpx.HTTPError as e:
        raise AuthenticationError(f"Azure token request failed: {e}") from e
    finally:
        if http_client is None:
            client.close()

    if response.status_code != 200:
        raise AuthenticationError(
            f"Azure token request failed with status {response.status_code}: {response.text[:200]}"
        )

    try:
        body = response.json()
        token = body.get("access_token")
        expires_in = float(body.get("expires_in", 3600))
    except (ValueError, TypeError, AttributeError) as e:
        raise AuthenticationError(f"invalid Azure token response: {e}") from e
    if not token:
        raise AuthenticationError("Azure token response has no access_token")
    return token, time.time() + expires_in


def get_credentials(
    *,
    proxy_url: str | None = None,
    cache: TokenCache | None = None,
    cache_key: str | None = None,
    http_client: httpx.Client | None = None,
    timeout: float = DEFAULT_EXCHANGE_TIMEOUT,
) -> GitCredentials:
    def fetch() -> tuple[GitCredentials, float]:
        token, expires_at = request_access_token(
            proxy_url=proxy_url, http_client=http_client, timeout=timeout
        )
        return GitCredentials(bearer_token=token), expires_at

    if cache is not None and cache_key:
        return cache.get_or_fetch(cache_key, fetch)
    creds, _ = fetch()
    return creds
