"""
Short-lived token cache shared by the provider exchanges.

Entries are keyed by the identity of the object the token was minted for,
so two automations never share a token. Misses for one key are serialized
(one exchange in flight per key) without blocking lookups for other keys.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CachedToken(Generic[T]):
    value: T
    expires_at: float


def cache_key(provider: str, kind: str, namespace: str, name: str, operation: str) -> str:
    """Build the cache key for a token minted on behalf of an object."""
    return f"{provider}:{kind}/{namespace}/{name}:{operation}"


class TokenCache:
    """
    Thread-safe token cache with per-entry expiry.

    Each entry lives until the earlier of its token's own expiry minus
    ``expiry_buffer`` and ``max_ttl`` after insertion.

    Example:
        >>> cache = TokenCache(max_ttl=60)
        >>> cache.get_or_fetch("k", lambda: ("tok", time.time() + 3600))
        'tok'
    """

    def __init__(
        self,
        max_ttl: float = 3600.0,
        expiry_buffer: float = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        self.max_ttl = max_ttl
        self.expiry_buffer = expiry_buffer
        self._clock = clock
        self._entries: dict[str, CachedToken] = {}
        self._key_locks: dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _lock_for(self, key: str) -> threading.Lock:
        with self._lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.Lock()
            return lock

    def get(self, key: str) -> object | None:
        """Return the cached value, or None if absent or expired."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= now:
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: str, value: object, expires_at: float) -> None:
        """Store a value whose underlying token expires at ``expires_at`` (epoch seconds)."""
        now = self._clock()
        deadline = min(expires_at - self.expiry_buffer, now + self.max_ttl)
        if deadline <= now:
            logger.debug("Not caching token for %s: expires too soon", key)
            return
        with self._lock:
            self._entries[key] = CachedToken(value=value, expires_at=deadline)

    def get_or_fetch(self, key: str, fetch: Callable[[], tuple[T, float]]) -> T:
        """
        Return the cached value for key, calling fetch on a miss.

        fetch returns ``(value, expires_at)``. Concurrent callers with the
        same key wait for a single fetch; errors from fetch propagate and
        nothing is cached.
        """
        cached = self.get(key)
        if cached is not None:
            return cached  # type: ignore[return-value]

        with self._lock_for(key):
            cached = self.get(key)
            if cached is not None:
                return cached  # type: ignore[return-value]
            logger.debug("Token cache miss for %s", key)
            value, expires_at = fetch()
            self.set(key, value, expires_at)
            return value

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)
            self._key_locks.pop(key, None)

    def clear(self) -> None:
        """Drop all entries and their per-key locks."""
        with self._lock:
            self._entries.clear()
            self._key_locks.clear()
