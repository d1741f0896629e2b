"""
Error taxonomy for the synchronization engine.

Every failure raised by the engine derives from AutomationError. Each class
states whether retrying the cycle unchanged can succeed (``retryable``) and
which family it belongs to, so the scheduler and the CLI can decide what to
do without string matching.

Families:
    configuration  - terminal until the automation or source spec changes
    auth           - reported, retried on the next scheduled cycle
    transient      - network/deadline failures, retried with backoff
    data           - terminal until the referenced secret or spec changes
"""

from __future__ import annotations


class AutomationError(Exception):
    """Base exception for all engine failures."""

    category: str = "general"
    retryable: bool = False


# ==============================================================================
# Configuration errors
# ==============================================================================


class ConfigurationError(AutomationError):
    """The automation or source spec cannot be turned into a plan."""

    category = "configuration"
    retryable = False


class InvalidSourceConfigurationError(ConfigurationError):
    """Invalid source configuration (unsupported kind, missing push branch, ...)."""

    pass


# ==============================================================================
# Authentication / authorization errors
# ==============================================================================


class AuthenticationError(AutomationError):
    """Credentials are missing, invalid, or could not be exchanged."""

    category = "auth"
    retryable = True


class SecretNotFoundError(AuthenticationError):
    """A referenced secret does not exist."""

    def __init__(self, name: str, namespace: str) -> None:
        super().__init__(f"secret '{namespace}/{name}' not found")
        self.name = name
        self.namespace = namespace


class AccessDeniedError(AuthenticationError):
    """Access to a referenced object is blocked by policy."""

    pass


# ==============================================================================
# Transient / git errors
# ==============================================================================


class GitOperationError(AutomationError):
    """A git operation against the working copy or remote failed."""

    category = "transient"
    retryable = True

    def __init__(self, message: str, command: list[str] | None = None, stderr: str = ""):
        super().__init__(message)
        self.command = command
        self.stderr = stderr


class GitTimeoutError(GitOperationError):
    """A git operation exceeded the resolved timeout."""

    pass


class BranchNotFoundError(GitOperationError):
    """The branch to switch to is absent from the fetched references."""

    category = "configuration"
    retryable = False


# ==============================================================================
# Data errors
# ==============================================================================


class DataError(AutomationError):
    """Referenced data (URL, key material, proxy secret) is malformed."""

    category = "data"
    retryable = False


class InvalidURLError(DataError):
    """The source URL cannot be parsed or uses an unsupported scheme."""

    pass


class SigningKeyError(DataError):
    """The signing key secret does not yield exactly one usable entity."""

    pass


class ProxyConfigError(DataError):
    """The proxy secret is missing its address or is malformed."""

    pass


class PushResultError(AutomationError):
    """A push result cannot be constructed from the given data."""

    pass


def is_retryable(error: BaseException) -> bool:
    """Return True if the error may go away by re-running the cycle."""
    return isinstance(error, AutomationError) and error.retryable
