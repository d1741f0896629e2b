"""
Credential data models.

AuthOptions is the common transport-level credential shape every provider
resolves to. It is consumed by the git client when building the environment
for network operations.
"""

from __future__ import annotations

from enum import Enum
from urllib.parse import quote, urlsplit, urlunsplit

from pydantic import BaseModel, ConfigDict, Field

# token exchanges made outside a resolved plan
DEFAULT_EXCHANGE_TIMEOUT = 60.0


class TransportKind(str, Enum):
    """Git transport derived from the URL scheme."""

    HTTP = "http"
    HTTPS = "https"
    SSH = "ssh"
    FILE = "file"


class AuthOptions(BaseModel):
    """
    Transport-level authentication options for a git remote.

    Secret material is excluded from repr so plans can be logged.
    """

    model_config = ConfigDict(frozen=True)

    transport: TransportKind
    host: str = ""
    username: str = ""
    password: str = Field(default="", repr=False)
    bearer_token: str = Field(default="", repr=False)
    identity: bytes = Field(default=b"", repr=False, description="SSH private key (PEM)")
    known_hosts: bytes = Field(default=b"", description="SSH known_hosts entries")
    ca_file: bytes = Field(default=b"", description="CA bundle for HTTPS")

    def has_credentials(self) -> bool:
        return bool(self.password or self.bearer_token or self.identity)


class GitCredentials(BaseModel):
    """Credentials produced by a provider exchange."""

    model_config = ConfigDict(frozen=True)

    username: str = ""
    password: str = Field(default="", repr=False)
    bearer_token: str = Field(default="", repr=False)


class ProxyConfig(BaseModel):
    """HTTP(S) proxy settings read from a proxy secret."""

    model_config = ConfigDict(frozen=True)

    address: str
    username: str = ""
    password: str = Field(default="", repr=False)

    @property
    def url(self) -> str:
        """Proxy URL with credentials embedded as userinfo."""
        parts = urlsplit(self.address)
        if not self.username:
            return self.address
        userinfo = quote(self.username, safe="")
        if self.password:
            userinfo += ":" + quote(self.password, safe="")
        netloc = f"{userinfo}@{parts.netloc.rsplit('@', 1)[-1]}"
        return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


def redact_url(url: str) -> str:
    """Strip userinfo from a URL before logging it."""
    parts = urlsplit(url)
    if "@" not in parts.netloc:
        return url
    netloc = parts.netloc.rsplit("@", 1)[-1]
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))
