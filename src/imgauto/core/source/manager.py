"""
Source manager: one cycle's working copy, from checkout to push.

Usage:
    with SourceManager.create(automation, source, secrets, config) as manager:
        commit = manager.checkout_source(with_shallow_clone())
        result = applier(manager.workdir, automation)
        push_result = manager.commit_and_push(automation, result)

The working directory is created when the manager is, and removed by
cleanup() (or on leaving the ``with`` block) whatever the outcome.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import httpx

from imgauto.core.auth.cache import TokenCache
from imgauto.core.config.models import EngineConfig
from imgauto.core.errors import (
    AccessDeniedError,
    GitOperationError,
    InvalidSourceConfigurationError,
)
from imgauto.core.secrets import SecretStore
from imgauto.core.source.config import GitSourceConfig, build_git_config
from imgauto.core.source.gitclient import CloneConfig, Commit, GitClient
from imgauto.core.source.models import (
    GIT_REPOSITORY_KIND,
    AutomationSpec,
    NamespacedName,
    SourceDescriptor,
)
from imgauto.core.source.result import PushResult, new_push_result
from imgauto.core.source.template import TemplateData, render_commit_message
from imgauto.core.update.result import UpdateResult

logger = logging.getLogger(__name__)


@dataclass
class CheckoutOptions:
    shallow_clone: bool = False
    last_observed_commit: str = ""


CheckoutOption = Callable[[CheckoutOptions], None]


def with_shallow_clone() -> CheckoutOption:
    """Fetch only the tip commit."""

    def apply(opts: CheckoutOptions) -> None:
        opts.shallow_clone = True

    return apply


def with_last_observed(commit: str) -> CheckoutOption:
    """Skip downloading when the remote tip is still this commit."""

    def apply(opts: CheckoutOptions) -> None:
        opts.last_observed_commit = commit

    return apply


def validate_automation(
    automation: AutomationSpec, source: SourceDescriptor, config: EngineConfig
) -> None:
    """
    Check the automation can be served from source.

    Raises:
        InvalidSourceConfigurationError: On an unsupported source kind, a
            missing git spec, or a source that is not the one referenced.
        AccessDeniedError: On a blocked cross-namespace reference.
    """
    kind = automation.source_ref.kind
    if kind != GIT_REPOSITORY_KIND or source.kind != GIT_REPOSITORY_KIND:
        raise InvalidSourceConfigurationError(f"source kind '{kind}' not supported")
    if automation.git is None:
        raise InvalidSourceConfigurationError(
            f"source kind '{GIT_REPOSITORY_KIND}' requires a git specification"
        )

    src_key = automation.source_key()
    if source.key != src_key:
        raise InvalidSourceConfigurationError(
            f"automation {automation.key} references {src_key}, got source {source.key}"
        )

    if config.features.no_cross_namespace_refs and src_key.namespace != automation.namespace:
        raise AccessDeniedError(
            f"can't access '{GIT_REPOSITORY_KIND}/{src_key}', "
            f"cross-namespace references have been blocked"
        )


class SourceManager:
    """Owns the resolved plan, the working directory and the git client for one cycle."""

    def __init__(
        self,
        plan: GitSourceConfig,
        automation_key: NamespacedName,
        workdir: Path,
        config: EngineConfig,
        cycle_start: datetime | None = None,
    ):
        self.plan = plan
        self.automation_key = automation_key
        self.workdir = Path(workdir)
        self.config = config
        self.cycle_start = cycle_start or datetime.now(timezone.utc)
        self._client: GitClient | None = None

    @classmethod
    def create(
        cls,
        automation: AutomationSpec,
        source: SourceDescriptor,
        secrets: SecretStore,
        config: EngineConfig,
        *,
        token_cache: TokenCache | None = None,
        http_client: httpx.Client | None = None,
        cycle_start: datetime | None = None,
        workdir: Path | None = None,
    ) -> SourceManager:
        """
        Validate the automation, resolve the plan and create the working directory.

        The working directory is a fresh ``<namespace>-<name>-<random>``
        directory under the system temp dir unless workdir is given.

        Raises:
            AutomationError: Any failure from validate_automation or while
                resolving the plan.
        """
        validate_automation(automation, source, config)
        src_key = automation.source_key()

        plan = build_git_config(
            automation,
            source,
            secrets,
            config,
            token_cache=token_cache,
            http_client=http_client,
        )
        if workdir is None:
            workdir = Path(tempfile.mkdtemp(prefix=f"{src_key.namespace}-{src_key.name}-"))
        else:
            workdir.mkdir(parents=True, exist_ok=True)
        logger.debug("Using working directory %s", workdir)
        return cls(plan, automation.key, workdir, config, cycle_start=cycle_start)

    def __enter__(self) -> SourceManager:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cleanup()

    @property
    def switch_branch(self) -> bool:
        return self.plan.switch_branch

    def cleanup(self, remove_workdir: bool = True) -> None:
        """Remove credential files and, unless told otherwise, the working directory."""
        if self._client is not None:
            self._client.close()
            self._client = None
        if not remove_workdir:
            return
        try:
            shutil.rmtree(self.workdir)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to remove working directory %s: %s", self.workdir, e)

    def checkout_source(self, *options: CheckoutOption) -> Commit:
        """
        Clone the source and switch to the push branch when it differs.

        Returns:
            The checked-out commit. A non-concrete commit means the remote is
            unchanged since the last observed commit and the working
            directory is empty.
        """
        opts = CheckoutOptions()
        for option in options:
            option(opts)

        clone_cfg = CloneConfig.from_reference(
            self.plan.checkout_ref,
            shallow_clone=opts.shallow_clone,
            last_observed_commit=opts.last_observed_commit,
        )
        self._client = GitClient(
            self.workdir, self.plan.auth_options, self.plan.client_options
        )
        commit = self._client.clone(self.plan.url, clone_cfg, self.plan.timeout_seconds)

        if commit.concrete and self.plan.switch_branch:
            self._client.switch_branch(
                self.plan.push_branch,
                create_missing=self.config.git.create_missing_push_branch,
            )
        return commit

    def commit_and_push(self, automation: AutomationSpec, result: UpdateResult) -> PushResult | None:
        """
        Commit the applier's changes and push them.

        Returns None without committing when result is empty or nothing ends
        up staged.

        Raises:
            GitOperationError: If the working copy was not checked out or a
                push fails. The local commit is kept.
        """
        if result.is_empty():
            logger.info("No changes to commit for %s", self.automation_key)
            return None
        if self._client is None:
            raise GitOperationError("checkout_source must run before commit_and_push")

        commit_spec = automation.git.commit
        data = TemplateData(
            automation_object=self.automation_key,
            updated=result.image_result(),
            changed=result,
            values=dict(commit_spec.message_template_values),
        )
        message = render_commit_message(commit_spec.message_template, data)

        revision = self._client.commit(
            commit_spec.author.name,
            commit_spec.author.email,
            message,
            self.cycle_start,
            signer=self.plan.signing_entity,
        )
        if not revision:
            logger.info("No changes made in the source for %s; no commit", self.automation_key)
            return None

        push = automation.git.push
        refspec = push.refspec if automation.git.has_refspec() else ""
        force = self.plan.switch_branch and self.config.features.git_force_push_branch
        self._client.push(
            self.plan.push_branch,
            self.plan.timeout_seconds,
            refspec=refspec,
            force=force,
            options=dict(push.options) if push is not None else None,
        )

        return new_push_result(
            self.plan.push_branch,
            revision,
            message,
            refspecs=[refspec] if refspec else [],
            switch_branch=self.plan.switch_branch,
        )
