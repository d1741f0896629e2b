"""
GitHub App installation token exchange.

A GitHub App authenticates with a short-lived RS256 JWT signed by its private
key, then trades the JWT for an installation access token. Git uses that
token as the password for the ``x-access-token`` user.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime

import httpx
import jwt
from pydantic import BaseModel, ConfigDict, Field

from imgauto.core.auth.cache import TokenCache
from imgauto.core.auth.models import DEFAULT_EXCHANGE_TIMEOUT, GitCredentials
from imgauto.core.errors import AuthenticationError, InvalidSourceConfigurationError

logger = logging.getLogger(__name__)

KEY_APP_ID = "githubAppID"
KEY_INSTALLATION_ID = "githubAppInstallationID"
KEY_PRIVATE_KEY = "githubAppPrivateKey"
KEY_BASE_URL = "githubAppBaseURL"

DEFAULT_BASE_URL = "https://api.github.com"
API_VERSION = "2022-11-28"
ACCESS_TOKEN_USERNAME = "x-access-token"

# GitHub rejects app JWTs valid for more than ten minutes
JWT_LIFETIME_SECONDS = 600
JWT_CLOCK_SKEW_SECONDS = 60


class GitHubAppData(BaseModel):
    """GitHub App identity read from a secret."""

    model_config = ConfigDict(frozen=True)

    app_id: str
    installation_id: str
    private_key: str = Field(repr=False)
    base_url: str = DEFAULT_BASE_URL

    @classmethod
    def from_secret(cls, data: dict[str, bytes]) -> GitHubAppData:
        """
        Read App data from secret keys.

        Raises:
            InvalidSourceConfigurationError: If a required key is missing.
        """
        missing = [
            key for key in (KEY_APP_ID, KEY_INSTALLATION_ID, KEY_PRIVATE_KEY) if not data.get(key)
        ]
        if missing:
            raise InvalidSourceConfigurationError(
                f"secret is missing GitHub App keys: {', '.join(missing)}"
            )
        base_url = data.get(KEY_BASE_URL, b"").decode().strip() or DEFAULT_BASE_URL
        return cls(
            app_id=data[KEY_APP_ID].decode().strip(),
            installation_id=data[KEY_INSTALLATION_ID].decode().strip(),
            private_key=data[KEY_PRIVATE_KEY].decode(),
            base_url=base_url.rstrip("/"),
        )


def has_app_data(data: dict[str, bytes] | None) -> bool:
    """Return True if the secret carries a GitHub App ID."""
    return bool(data and data.get(KEY_APP_ID))


def generate_app_jwt(app: GitHubAppData, now: float | None = None) -> str:
    """Sign a JWT identifying the App."""
    issued = int(now if now is not None else time.time()) - JWT_CLOCK_SKEW_SECONDS
    payload = {
        "iat": issued,
        "exp": issued + JWT_LIFETIME_SECONDS,
        "iss": app.app_id,
    }
    try:
        return jwt.encode(payload, app.private_key, algorithm="RS256")
    except (ValueError, TypeError, jwt.PyJWTError) as e:
        raise AuthenticationError(f"failed to sign GitHub App JWT: {e}") from e


def _parse_expiry(value: str) -> float:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
    except ValueError as e:
        raise AuthenticationError(f"invalid token expiry '{value}' from GitHub: {e}") from e


def request_installation_token(
    app: GitHubAppData,
    *,
    proxy_url: str | None = None,
    http_client: httpx.Client | None = None,
    timeout: float = DEFAULT_EXCHANGE_TIMEOUT,
) -> tuple[str, float]:
    """
    Exchange an App JWT for an installation token.

    The request is bounded by timeout, also when http_client is given.

    Returns:
        ``(token, expires_at)`` with expires_at in epoch seconds.

    Raises:
        AuthenticationError: On transport errors, a timeout, a non-201
            response or a malformed body.
    """
    url = f"{app.base_url}/app/installations/{app.installation_id}/access_tokens"
    headers = {
        "Accept": "application/vnd.github+json",
        "Authorization": f"Bearer {generate_app_jwt(app)}",
        "X-GitHub-Api-Version": API_VERSION,
    }

    client = http_client
    if client is None:
        client = httpx.Client(timeout=timeout, proxy=proxy_url)
    try:
        logger.info("Requesting installation token for GitHub App %s", app.app_id)
        response = client.post(url, headers=headers, timeout=timeout)
    except httpx.TimeoutException as e:
        raise AuthenticationError(
            f"GitHub App token request timed out after {timeout}s: {e}"
        ) from e
    except httpx.HTTPError as e:
        raise AuthenticationError(f"GitHub App token request failed: {e}") from e
    finally:
        if http_client is None:
            client.close()

    if response.status_code != 201:
        raise AuthenticationError(
            f"GitHub App token request failed with status {response.status_code}: "
            f"{response.text[:200]}"
        )

    try:
        body = response.json()
    except ValueError as e:
        raise AuthenticationError(f"invalid GitHub App token response: {e}") from e
    if not isinstance(body, dict):
        raise AuthenticationError("invalid GitHub App token response: expected an object")
    token = body.get("token")
    if not token:
        raise AuthenticationError("GitHub App token response has no token")
    return token, _parse_expiry(body.get("expires_at", ""))


def get_credentials(
    app: GitHubAppData,
    *,
    proxy_url: str | None = None,
    cache: TokenCache | None = None,
    cache_key: str | None = None,
    http_client: httpx.Client | None = None,
    timeout: float = DEFAULT_EXCHANGE_TIMEOUT,
) -> GitCredentials:
    """Return git credentials for the App installation, using the cache when given."""

    def fetch() -> tuple[GitCredentials, float]:
        token, expires_at = request_installation_token(
            app, proxy_url=proxy_url, http_client=http_client, timeout=timeout
        )
        return GitCredentials(username=ACCESS_TOKEN_USERNAME, password=token), expires_at

    if cache is not None and cache_key:
        return cache.get_or_fetch(cache_key, fetch)
    creds, _ = fetch()
    return creds
