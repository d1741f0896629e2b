"""
Tests for secret stores.
"""

import pytest

from imgauto.core.errors import SecretNotFoundError
from imgauto.core.secrets import DirectorySecretStore, MemorySecretStore


class TestMemorySecretStore:
    """Test the in-memory store."""

    def test_values_stored_as_bytes(self):
        store = MemorySecretStore({("apps", "git-auth"): {"username": "bot", "password": b"pw"}})
        assert store.get("git-auth", "apps") == {"username": b"bot", "password": b"pw"}

    def test_missing_secret(self):
        with pytest.raises(SecretNotFoundError, match="apps/absent"):
            MemorySecretStore().get("absent", "apps")

    def test_namespaces_are_distinct(self):
        store = MemorySecretStore()
        store.put("git-auth", "apps", {"username": "bot"})
        with pytest.raises(SecretNotFoundError):
            store.get("git-auth", "other")

    def test_get_returns_copy(self):
        store = MemorySecretStore()
        store.put("git-auth", "apps", {"username": "bot"})
        store.get("git-auth", "apps")["username"] = b"changed"
        assert store.get("git-auth", "apps")["username"] == b"bot"


class TestDirectorySecretStore:
    """Test reading mounted secrets."""

    @pytest.fixture
    def secrets_root(self, tmp_path):
        secret = tmp_path / "apps" / "git-auth"
        secret.mkdir(parents=True)
        (secret / "username").write_text("bot")
        (secret / "password").write_bytes(b"s3cret")
        (secret / "..data").mkdir()
        (secret / ".hidden").write_text("ignored")
        return tmp_path

    def test_reads_keys(self, secrets_root):
        data = DirectorySecretStore(secrets_root).get("git-auth", "apps")
        assert data == {"password": b"s3cret", "username": b"bot"}

    def test_missing_secret(self, secrets_root):
        with pytest.raises(SecretNotFoundError):
            DirectorySecretStore(secrets_root).get("absent", "apps")

    def test_empty_namespace_uses_default(self, tmp_path):
        secret = tmp_path / "default" / "proxy"
        secret.mkdir(parents=True)
        (secret / "address").write_text("http://proxy:3128")
        assert DirectorySecretStore(tmp_path).get("proxy", "")["address"] == b"http://proxy:3128"
