"""
Run one synchronization cycle for an automation target.

The cycle creates a source manager, checks the source out, lets the policy
applier rewrite manifests, then commits and pushes. Scheduling and retries
belong to the caller; use errors.is_retryable() on a raised error to decide
whether to retry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from imgauto.core.auth.cache import TokenCache
from imgauto.core.config.models import EngineConfig
from imgauto.core.secrets import SecretStore
from imgauto.core.source.gitclient import Commit
from imgauto.core.source.manager import (
    CheckoutOption,
    SourceManager,
    with_last_observed,
    with_shallow_clone,
)
from imgauto.core.source.models import AutomationSpec, SourceDescriptor
from imgauto.core.source.result import PushResult
from imgauto.core.update.applier import PolicyApplier, resolve_update_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CycleOutcome:
    """Result of a cycle: the checked-out commit and, if something was pushed, the push."""

    commit: Commit
    push_result: PushResult | None = None

    @property
    def pushed(self) -> bool:
        return self.push_result is not None


def new_token_cache(config: EngineConfig) -> TokenCache | None:
    """Build the shared token cache from configuration, or None when disabled."""
    if not config.token_cache.enabled:
        return None
    return TokenCache(
        max_ttl=config.token_cache.max_ttl_seconds,
        expiry_buffer=config.token_cache.expiry_buffer_seconds,
    )


def run_automation(
    automation: AutomationSpec,
    source: SourceDescriptor,
    secrets: SecretStore,
    applier: PolicyApplier,
    config: EngineConfig,
    *,
    last_observed_commit: str = "",
    token_cache: TokenCache | None = None,
    http_client: httpx.Client | None = None,
) -> CycleOutcome:
    """
    Run the checkout, apply, commit and push pipeline once.

    Args:
        automation: The automation target
        source: Its source repository
        secrets: Secret lookup for auth, proxy and signing keys
        applier: Rewrites manifests in the working copy
        config: Engine configuration (feature gates, git defaults)
        last_observed_commit: Skip the cycle when the remote tip still equals it
        token_cache: Shared provider token cache
        http_client: HTTP client for provider token exchanges

    Returns:
        The checked-out commit and the push result (None if nothing was pushed).
    """
    options: list[CheckoutOption] = []
    if config.features.git_shallow_clone:
        options.append(with_shallow_clone())
    if last_observed_commit:
        options.append(with_last_observed(last_observed_commit))

    with SourceManager.create(
        automation,
        source,
        secrets,
        config,
        token_cache=token_cache,
        http_client=http_client,
    ) as manager:
        commit = manager.checkout_source(*options)
        if not commit.concrete:
            logger.info("%s: source unchanged at %s, nothing to do", automation.key, commit.short())
            return CycleOutcome(commit=commit)

        result = applier(resolve_update_path(manager.workdir, automation.update_path), automation)
        push_result = manager.commit_and_push(automation, result)

    if push_result is not None:
        logger.info("%s: %s", automation.key, push_result.summary().splitlines()[0])
    return CycleOutcome(commit=commit, push_result=push_result)
