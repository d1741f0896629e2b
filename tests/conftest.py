"""
Pytest configuration and shared fixtures.

Provides fixtures for git remotes, automation and source models, secret
stores, and the key material used by the signing and GitHub App tests.
"""

import subprocess
from pathlib import Path

import pgpy
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from pgpy.constants import (
    CompressionAlgorithm,
    HashAlgorithm,
    KeyFlags,
    PubKeyAlgorithm,
    SymmetricKeyAlgorithm,
)

from imgauto.core.config import clear_cache
from imgauto.core.config.models import EngineConfig
from imgauto.core.secrets import MemorySecretStore
from imgauto.core.source.models import AutomationSpec, SourceDescriptor

GIT_IDENTITY_ENV = {
    "GIT_AUTHOR_NAME": "Test Author",
    "GIT_AUTHOR_EMAIL": "author@example.com",
    "GIT_COMMITTER_NAME": "Test Author",
    "GIT_COMMITTER_EMAIL": "author@example.com",
}

SIGNING_PASSPHRASE = "correct horse battery staple"


def run_git(*args: str, cwd: Path) -> str:
    """Run git in cwd and return stripped stdout."""
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        check=True,
        text=True,
    )
    return result.stdout.strip()


# ==============================================================================
# Environment Fixtures
# ==============================================================================


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep user config, env overrides and the config cache out of every test."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    for name in (
        "IMGAUTO_FORCE_PUSH_BRANCH",
        "IMGAUTO_SHALLOW_CLONE",
        "IMGAUTO_ALL_BRANCH_REFERENCES",
        "IMGAUTO_NO_CROSS_NAMESPACE_REFS",
        "IMGAUTO_DEFAULT_BRANCH",
        "IMGAUTO_GIT_TIMEOUT",
        "IMGAUTO_LOG_LEVEL",
        "IMGAUTO_SECRETS_DIR",
    ):
        monkeypatch.delenv(name, raising=False)
    for name, value in GIT_IDENTITY_ENV.items():
        monkeypatch.setenv(name, value)
    clear_cache()
    yield
    clear_cache()


# ==============================================================================
# Git Fixtures
# ==============================================================================


@pytest.fixture
def git_remote(tmp_path):
    """
    Provide a bare repository acting as the remote.

    Layout:
    - main: two commits, the second adding deploy/app.yaml
    - staging: one commit on top of main
    - tag v1.0.0 on the first commit, v1.2.0 on main's tip
    - HEAD points at main
    """
    remote = tmp_path / "remote.git"
    seed = tmp_path / "seed"
    remote.mkdir()
    seed.mkdir()

    run_git("init", "--bare", cwd=remote)
    run_git("symbolic-ref", "HEAD", "refs/heads/main", cwd=remote)

    run_git("init", cwd=seed)
    run_git("checkout", "-b", "main", cwd=seed)
    (seed / "README.md").write_text("# fleet\n")
    run_git("add", "README.md", cwd=seed)
    run_git("commit", "-m", "Initial commit", cwd=seed)
    run_git("tag", "v1.0.0", cwd=seed)

    (seed / "deploy").mkdir()
    (seed / "deploy" / "app.yaml").write_text("image: ghcr.io/org/app:1.0.0\n")
    run_git("add", "deploy", cwd=seed)
    run_git("commit", "-m", "Add app manifest", cwd=seed)
    run_git("tag", "-a", "v1.2.0", "-m", "release 1.2.0", cwd=seed)

    run_git("checkout", "-b", "staging", cwd=seed)
    (seed / "staging.txt").write_text("staging\n")
    run_git("add", "staging.txt", cwd=seed)
    run_git("commit", "-m", "Staging change", cwd=seed)
    run_git("checkout", "main", cwd=seed)

    run_git("push", str(remote), "main", "staging", "--tags", cwd=seed)
    return remote


@pytest.fixture
def git_remote_url(git_remote):
    """file:// URL of the bare remote."""
    return git_remote.as_uri()


@pytest.fixture
def git():
    """Run git in a directory: ``git("log", "-1", cwd=path)``."""
    return run_git


@pytest.fixture
def remote_head(git_remote):
    """Return the commit a branch points at in the remote, or '' if absent."""

    def _head(branch: str) -> str:
        result = subprocess.run(
            ["git", "rev-parse", "--verify", "--quiet", f"refs/heads/{branch}"],
            cwd=git_remote,
            capture_output=True,
            text=True,
        )
        return result.stdout.strip()

    return _head


# ==============================================================================
# Model Fixtures
# ==============================================================================


@pytest.fixture
def engine_config():
    """Default engine configuration."""
    return EngineConfig()


@pytest.fixture
def secret_store():
    """Empty in-memory secret store."""
    return MemorySecretStore()


@pytest.fixture
def make_source():
    """Factory for source descriptors in the 'apps' namespace."""

    def _make(url: str = "https://github.com/org/fleet", **overrides) -> SourceDescriptor:
        data = {"name": "fleet", "namespace": "apps", "url": url}
        data.update(overrides)
        return SourceDescriptor.model_validate(data)

    return _make


@pytest.fixture
def make_automation():
    """
    Factory for automation targets referencing the 'apps/fleet' source.

    checkout_ref, when given, replaces the checkout branch (e.g. a tag).
    """

    def _make(
        checkout_branch: str | None = "main",
        push: dict | None = None,
        checkout_ref: dict | None = None,
        signing_secret: str | None = None,
        message_template: str = "",
        **overrides,
    ) -> AutomationSpec:
        commit: dict = {
            "author": {"name": "fluxbot", "email": "fluxbot@example.com"},
            "message_template": message_template,
        }
        if signing_secret is not None:
            commit["signing_key"] = {"secret_ref": {"name": signing_secret}}
        git: dict = {"commit": commit}
        if checkout_ref is not None:
            git["checkout"] = {"ref": checkout_ref}
        elif checkout_branch is not None:
            git["checkout"] = {"ref": {"branch": checkout_branch}}
        if push is not None:
            git["push"] = push
        data = {
            "name": "podinfo-update",
            "namespace": "apps",
            "source_ref": {"name": "fleet"},
            "git": git,
        }
        data.update(overrides)
        return AutomationSpec.model_validate(data)

    return _make


# ==============================================================================
# Key Material Fixtures
# ==============================================================================


def _new_pgp_key(name: str) -> pgpy.PGPKey:
    key = pgpy.PGPKey.new(PubKeyAlgorithm.RSAEncryptOrSign, 2048)
    uid = pgpy.PGPUID.new(name, email="fluxbot@example.com")
    key.add_uid(
        uid,
        usage={KeyFlags.Sign, KeyFlags.Certify},
        hashes=[HashAlgorithm.SHA256],
        ciphers=[SymmetricKeyAlgorithm.AES256],
        compression=[CompressionAlgorithm.Uncompressed],
    )
    return key


@pytest.fixture(scope="session")
def signing_passphrase():
    return SIGNING_PASSPHRASE


@pytest.fixture(scope="session")
def pgp_private_key():
    """Unencrypted armored OpenPGP private key."""
    return str(_new_pgp_key("Flux Bot"))


@pytest.fixture(scope="session")
def pgp_encrypted_key():
    """Passphrase-protected armored OpenPGP private key (SIGNING_PASSPHRASE)."""
    key = _new_pgp_key("Flux Bot Encrypted")
    key.protect(SIGNING_PASSPHRASE, SymmetricKeyAlgorithm.AES256, HashAlgorithm.SHA256)
    return str(key)


@pytest.fixture(scope="session")
def rsa_private_key():
    """RSA private key, as used for GitHub App JWTs."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_private_key_pem(rsa_private_key):
    return rsa_private_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
