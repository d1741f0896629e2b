"""
Resolve an automation and its source into a git execution plan.

Each precedence rule is a small pure function so it can be exercised on its
own; build_git_config strings them together with credential and signing key
resolution. Nothing here touches the network except provider token
exchanges made by the credential resolver.
"""

from __future__ import annotations

import logging

import httpx
from pydantic import BaseModel, ConfigDict, Field

from imgauto.core.auth.cache import TokenCache
from imgauto.core.auth.models import AuthOptions, ProxyConfig, TransportKind, redact_url
from imgauto.core.auth.proxy import resolve_proxy
from imgauto.core.auth.resolver import get_auth_options
from imgauto.core.config.models import EngineConfig, FeatureGates
from imgauto.core.errors import InvalidSourceConfigurationError
from imgauto.core.secrets import SecretStore
from imgauto.core.signing import SigningEntity, get_signing_entity
from imgauto.core.source.models import (
    AutomationSpec,
    GitReference,
    GitSpec,
    NamespacedName,
    PushSpec,
    SourceDescriptor,
)

logger = logging.getLogger(__name__)


class ClientOptions(BaseModel):
    """Options for the git client derived from the plan."""

    model_config = ConfigDict(frozen=True)

    disk_storage: bool = Field(default=True, description="Keep objects on disk, never in memory")
    insecure_http_credentials: bool = Field(
        default=False,
        description="Allow sending credentials over plain HTTP",
    )
    proxy: ProxyConfig | None = None
    single_branch: bool | None = Field(
        default=None,
        description="Fetch only the checkout branch (True) or all heads (False); None keeps the default",
    )


class GitSourceConfig(BaseModel):
    """
    The resolved plan for one cycle.

    Created fresh per cycle and discarded afterwards.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    src_key: NamespacedName
    url: str
    push_branch: str
    switch_branch: bool = False
    timeout_seconds: float
    checkout_ref: GitReference | None = None
    auth_options: AuthOptions
    client_options: ClientOptions = Field(default_factory=ClientOptions)
    signing_entity: SigningEntity | None = Field(default=None, repr=False)


def resolve_timeout(source: SourceDescriptor, default_seconds: float) -> float:
    """Source timeout if set, else the default."""
    if source.timeout_seconds is not None:
        return source.timeout_seconds
    return default_seconds


def resolve_checkout_ref(git_spec: GitSpec, source: SourceDescriptor) -> GitReference | None:
    """Automation checkout reference, else the source reference, else None."""
    if git_spec.checkout is not None:
        return git_spec.checkout.reference
    return source.reference


def configure_push(
    push: PushSpec | None,
    checkout_ref: GitReference | None,
    default_branch: str,
) -> tuple[str, bool]:
    """
    Work out the push branch and whether the working copy must switch to it.

    With a push branch, switching is needed when it differs from the
    checkout branch, or from default_branch when no checkout branch is
    known. Without one, the checkout branch is the push branch.

    Returns:
        ``(push_branch, switch_branch)``

    Raises:
        InvalidSourceConfigurationError: If no push branch is set and the
            checkout reference has no branch to infer it from.
    """
    checkout_branch = checkout_ref.branch if checkout_ref is not None else ""

    if push is not None and push.branch:
        effective = checkout_branch or default_branch
        return push.branch, push.branch != effective

    if checkout_branch:
        return checkout_branch, False

    raise InvalidSourceConfigurationError(
        "push spec not provided, and cannot be inferred from checkout ref or source ref"
    )


def build_client_options(
    auth: AuthOptions,
    proxy: ProxyConfig | None,
    switch_branch: bool,
    features: FeatureGates,
) -> ClientOptions:
    single_branch = None
    if switch_branch:
        single_branch = not features.git_all_branch_references
    return ClientOptions(
        disk_storage=True,
        insecure_http_credentials=auth.transport is TransportKind.HTTP,
        proxy=proxy,
        single_branch=single_branch,
    )


def build_git_config(
    automation: AutomationSpec,
    source: SourceDescriptor,
    secrets: SecretStore,
    config: EngineConfig,
    *,
    token_cache: TokenCache | None = None,
    http_client: httpx.Client | None = None,
) -> GitSourceConfig:
    """
    Resolve the plan for one cycle.

    Args:
        automation: The automation target
        source: The source the automation refers to
        secrets: Lookup for auth, proxy and signing secrets
        config: Engine configuration carrying the feature gates
        token_cache: Shared cache for provider tokens
        http_client: HTTP client for provider token exchanges

    Raises:
        InvalidSourceConfigurationError: On a missing git spec or an
            un-inferable push branch.
        AutomationError: Any failure from proxy, credential or signing key
            resolution, unchanged.
    """
    if automation.git is None:
        raise InvalidSourceConfigurationError(
            f"automation {automation.key} has no git specification"
        )
    git_spec = automation.git

    timeout = resolve_timeout(source, config.git.default_timeout_seconds)
    checkout_ref = resolve_checkout_ref(git_spec, source)
    push_branch, switch_branch = configure_push(
        git_spec.push, checkout_ref, config.git.default_branch
    )

    proxy = resolve_proxy(source, secrets)
    auth = get_auth_options(
        source,
        secrets,
        proxy=proxy,
        token_cache=token_cache,
        involved=automation.key,
        http_client=http_client,
        timeout=timeout,
    )
    client_options = build_client_options(auth, proxy, switch_branch, config.features)

    signing_entity = get_signing_entity(automation, secrets)

    plan = GitSourceConfig(
        src_key=source.key,
        url=source.url,
        push_branch=push_branch,
        switch_branch=switch_branch,
        timeout_seconds=timeout,
        checkout_ref=checkout_ref,
        auth_options=auth,
        client_options=client_options,
        signing_entity=signing_entity,
    )
    logger.debug(
        "Resolved plan for %s: url=%s push_branch=%s switch_branch=%s timeout=%ss",
        automation.key,
        redact_url(source.url),
        push_branch,
        switch_branch,
        timeout,
    )
    return plan
