"""
Tests for proxy secret resolution.
"""

import pytest

from imgauto.core.auth.proxy import proxy_from_secret, resolve_proxy
from imgauto.core.errors import ProxyConfigError
from imgauto.core.secrets import MemorySecretStore


class TestProxyFromSecret:
    def test_address_only(self):
        proxy = proxy_from_secret("proxy", {"address": b"http://proxy:3128"})
        assert proxy.address == "http://proxy:3128"
        assert proxy.username == ""

    def test_with_credentials(self):
        proxy = proxy_from_secret(
            "proxy",
            {"address": b"http://proxy:3128", "username": b"user", "password": b"pw"},
        )
        assert (proxy.username, proxy.password) == ("user", "pw")

    def test_missing_address(self):
        with pytest.raises(ProxyConfigError, match="key 'address' is missing"):
            proxy_from_secret("proxy", {"username": b"user"})

    def test_address_not_a_url(self):
        with pytest.raises(ProxyConfigError, match="not a URL"):
            proxy_from_secret("proxy", {"address": b"proxy:3128:x"})


class TestResolveProxy:
    """Test proxy lookup from the source descriptor."""

    def test_no_proxy_ref(self, make_source, secret_store):
        assert resolve_proxy(make_source(), secret_store) is None

    def test_proxy_in_source_namespace(self, make_source):
        store = MemorySecretStore({("apps", "proxy"): {"address": "http://proxy:3128"}})
        source = make_source(proxy_secret_ref={"name": "proxy"})
        assert resolve_proxy(source, store).address == "http://proxy:3128"

    def test_missing_secret(self, make_source, secret_store):
        source = make_source(proxy_secret_ref={"name": "proxy"})
        with pytest.raises(ProxyConfigError, match="apps/proxy"):
            resolve_proxy(source, secret_store)
