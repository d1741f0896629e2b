"""
Tests for running a full automation cycle.
"""

from unittest.mock import Mock

import pytest

from imgauto.core.automation import new_token_cache, run_automation
from imgauto.core.config.models import EngineConfig
from imgauto.core.errors import ConfigurationError, is_retryable
from imgauto.core.update.result import Change, ObjectIdentifier, UpdateResult

APP = ObjectIdentifier(kind="Deployment", namespace="apps", name="app")


class FakeApplier:
    """Sets the app image tag in every manifest under the directory it is given."""

    def __init__(self, tag: str = "1.1.0"):
        self.tag = tag
        self.calls = []

    def __call__(self, workdir, automation):
        self.calls.append(workdir)
        result = UpdateResult()
        for path in sorted(workdir.rglob("*.yaml")):
            old = path.read_text().split("image: ", 1)[1].strip()
            new = f"ghcr.io/org/app:{self.tag}"
            if old != new:
                path.write_text(f"image: {new}\n")
                result.add_change(path.name, APP, Change(old, new, "apps:app-policy"))
        return result


@pytest.fixture
def file_source(make_source, git_remote_url):
    return make_source(url=git_remote_url)


class TestRunAutomation:
    def test_pushes_changes(self, make_automation, file_source, secret_store, engine_config, remote_head):
        applier = FakeApplier()
        outcome = run_automation(make_automation(), file_source, secret_store, applier, engine_config)

        assert outcome.pushed
        assert outcome.commit.concrete
        assert outcome.push_result.commit.hash == remote_head("main")
        assert len(applier.calls) == 1

    def test_no_changes(self, make_automation, file_source, secret_store, engine_config, remote_head):
        before = remote_head("main")
        outcome = run_automation(
            make_automation(), file_source, secret_store, FakeApplier("1.0.0"), engine_config
        )

        assert not outcome.pushed
        assert outcome.commit.hash == before
        assert remote_head("main") == before

    def test_unchanged_remote_skips_applier(
        self, make_automation, file_source, secret_store, engine_config, remote_head
    ):
        applier = Mock()
        outcome = run_automation(
            make_automation(),
            file_source,
            secret_store,
            applier,
            engine_config,
            last_observed_commit=remote_head("main"),
        )

        assert not outcome.commit.concrete
        assert outcome.push_result is None
        applier.assert_not_called()

    def test_update_path(self, make_automation, file_source, secret_store, engine_config):
        applier = FakeApplier()
        run_automation(
            make_automation(update_path="./deploy"), file_source, secret_store, applier, engine_config
        )
        assert applier.calls[0].name == "deploy"

    def test_update_path_escape(self, make_automation, file_source, secret_store, engine_config):
        with pytest.raises(ConfigurationError):
            run_automation(
                make_automation(update_path="../.."),
                file_source,
                secret_store,
                FakeApplier(),
                engine_config,
            )

    def test_full_clone_when_shallow_gate_off(
        self, make_automation, file_source, secret_store, remote_head
    ):
        config = EngineConfig.model_validate({"features": {"git_shallow_clone": False}})
        outcome = run_automation(make_automation(), file_source, secret_store, FakeApplier(), config)
        assert outcome.push_result.commit.hash == remote_head("main")

    def test_configuration_error_not_retryable(
        self, make_automation, file_source, secret_store, engine_config
    ):
        with pytest.raises(ConfigurationError) as exc_info:
            run_automation(
                make_automation(checkout_branch=None),
                file_source,
                secret_store,
                FakeApplier(),
                engine_config,
            )
        assert not is_retryable(exc_info.value)


class TestNewTokenCache:
    def test_enabled(self, engine_config):
        cache = new_token_cache(engine_config)
        assert cache.max_ttl == 3600.0
        assert cache.expiry_buffer == 300.0

    def test_disabled(self):
        config = EngineConfig.model_validate({"token_cache": {"enabled": False}})
        assert new_token_cache(config) is None
