"""
Build AuthOptions from a repository URL and optional secret data.

Recognised secret keys:
    username, password       HTTP(S) basic auth (password doubles as the
                             SSH key passphrase)
    bearerToken              HTTP(S) bearer token
    identity, known_hosts    SSH private key and host keys
    ca.crt                   CA bundle for HTTPS
"""

from __future__ import annotations

from urllib.parse import unquote, urlsplit

from imgauto.core.auth.models import AuthOptions, TransportKind
from imgauto.core.errors import ConfigurationError, InvalidURLError

KEY_USERNAME = "username"
KEY_PASSWORD = "password"
KEY_BEARER_TOKEN = "bearerToken"
KEY_IDENTITY = "identity"
KEY_KNOWN_HOSTS = "known_hosts"
KEY_CA_FILE = "ca.crt"

DEFAULT_SSH_USER = "git"

_SCHEMES = {kind.value: kind for kind in TransportKind}


class AuthOptionsError(ConfigurationError):
    """Secret data does not form valid auth options for the transport."""

    pass


def parse_transport(url: str) -> tuple[TransportKind, str, str]:
    """
    Parse a repository URL into transport, host and URL username.

    Raises:
        InvalidURLError: If the URL cannot be parsed or has no supported scheme.
    """
    try:
        parts = urlsplit(url)
        # force port validation, which urlsplit defers
        _ = parts.port
    except ValueError as e:
        raise InvalidURLError(f"failed to parse URL '{url}': {e}") from e

    if not parts.scheme:
        raise InvalidURLError(f"failed to parse URL '{url}': missing protocol scheme")

    transport = _SCHEMES.get(parts.scheme.lower())
    if transport is None:
        raise InvalidURLError(f"unsupported protocol scheme '{parts.scheme}' in URL '{url}'")

    host = parts.netloc.rsplit("@", 1)[-1]
    if transport is not TransportKind.FILE and not host:
        raise InvalidURLError(f"failed to parse URL '{url}': missing host")

    username = unquote(parts.username) if parts.username else ""
    return transport, host, username


def _text(data: dict[str, bytes], key: str) -> str:
    value = data.get(key)
    return value.decode().strip() if value else ""


def new_auth_options(url: str, data: dict[str, bytes] | None = None) -> AuthOptions:
    """
    Create auth options for a URL, filling credentials from secret data.

    Without data, the options are anonymous and derived from the URL alone;
    transports that need identity then fail later at the git operation.

    Raises:
        InvalidURLError: On an unparsable URL.
        AuthOptionsError: When secret data is present but inconsistent.
    """
    transport, host, url_user = parse_transport(url)

    username = url_user
    if transport is TransportKind.SSH and not username:
        username = DEFAULT_SSH_USER

    if not data:
        return AuthOptions(transport=transport, host=host, username=username)

    opts = AuthOptions(
        transport=transport,
        host=host,
        username=_text(data, KEY_USERNAME) or username,
        password=_text(data, KEY_PASSWORD),
        bearer_token=_text(data, KEY_BEARER_TOKEN),
        identity=data.get(KEY_IDENTITY, b""),
        known_hosts=data.get(KEY_KNOWN_HOSTS, b""),
        ca_file=data.get(KEY_CA_FILE, b""),
    )
    validate_auth_options(opts)
    return opts


def validate_auth_options(opts: AuthOptions) -> None:
    """Check that the credentials make sense for the transport."""
    kind = opts.transport.value
    if opts.transport in (TransportKind.HTTP, TransportKind.HTTPS):
        if opts.password and not opts.username:
            raise AuthOptionsError(
                f"invalid '{kind}' auth option: 'username' must be set when 'password' is set"
            )
        if opts.bearer_token and opts.password:
            raise AuthOptionsError(
                f"invalid '{kind}' auth option: basic auth and bearer token are mutually exclusive"
            )
    elif opts.transport is TransportKind.SSH:
        if not opts.host:
            raise AuthOptionsError("invalid 'ssh' auth option: 'host' is required")
        if not opts.identity:
            raise AuthOptionsError("invalid 'ssh' auth option: 'identity' is required")
        if not opts.known_hosts:
            raise AuthOptionsError("invalid 'ssh' auth option: 'known_hosts' is required")
