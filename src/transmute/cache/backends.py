"""Key/value backends shared by the cache tiers and the rate limiter.

Backends are injected, never owned: a process-local ``InMemoryBackend`` for
tests and single-process use, and a Redis backend (``redis`` extra) when
several processes must share cache and rate-limit state.
"""

from __future__ import annotations

from collections.abc import Callable
import logging
import threading
import time
from typing import Protocol

from transmute.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

type Clock = Callable[[], float]


class CacheBackend(Protocol):
    """Minimal string key/value surface used by cache tiers and rate limiter."""

    def get(self, key: str) -> str | None:
        """Return the stored value, or None when absent or expired."""
        ...

    def put(self, key: str, value: str, ttl: int | None) -> None:
        """Store a value; ``ttl`` in seconds, None for no expiry."""
        ...

    def delete(self, key: str) -> None:
        """Remove a key if present."""
        ...

    def increment(self, key: str, ttl: int) -> int:
        """Atomically increment a counter and return the new value.

        The expiry is set only when the counter is created, so the window
        starts at the first hit and is not extended by later ones.
        """
        ...

    def clear_prefix(self, prefix: str) -> int:
        """Delete every key starting with ``prefix``; return how many."""
        ...


class InMemoryBackend:
    """Thread-safe process-local backend with lazy expiry."""

    def __init__(self, clock: Clock = time.monotonic) -> None:  # noqa: D107
        self._clock = clock
        self._lock = threading.Lock()
        # key -> (value, expires_at | None)
        self._data: dict[str, tuple[str, float | None]] = {}

    def _live(self, key: str, now: float) -> tuple[str, float | None] | None:
        item = self._data.get(key)
        if item is None:
            return None
        _, expires_at = item
        if expires_at is not None and now >= expires_at:
            del self._data[key]
            return None
        return item

    def get(self, key: str) -> str | None:  # noqa: D102
        with self._lock:
            item = self._live(key, self._clock())
            return item[0] if item else None

    def put(self, key: str, value: str, ttl: int | None) -> None:  # noqa: D102
        with self._lock:
            expires_at = self._clock() + ttl if ttl is not None else None
            self._data[key] = (value, expires_at)

    def delete(self, key: str) -> None:  # noqa: D102
        with self._lock:
            self._data.pop(key, None)

    def increment(self, key: str, ttl: int) -> int:  # noqa: D102
        with self._lock:
            now = self._clock()
            item = self._live(key, now)
            if item is None:
                self._data[key] = ("1", now + ttl)
                return 1
            value, expires_at = item
            count = int(value) + 1
            self._data[key] = (str(count), expires_at)
            return count

    def clear_prefix(self, prefix: str) -> int:  # noqa: D102
        with self._lock:
            doomed = [k for k in self._data if k.startswith(prefix)]
            for key in doomed:
                del self._data[key]
            return len(doomed)

    def __len__(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(1 for k in list(self._data) if self._live(k, now))


def create_backend(store: str) -> CacheBackend:
    """Build a backend from the ``cache_store`` setting.

    ``"memory"`` gives an ``InMemoryBackend``; a ``redis://`` or
    ``rediss://`` URL gives a ``RedisBackend`` (requires the ``redis`` extra).

    Raises:
        ConfigurationError: If the store is not recognised.
    """
    logger.debug("Creating cache backend for store %r", store.split("@")[-1])
    if store == "memory":
        return InMemoryBackend()
    if store.startswith(("redis://", "rediss://", "unix://")):
        from .redis_backend import RedisBackend

        return RedisBackend.from_url(store)
    raise ConfigurationError(
        f"Unsupported cache store {store!r}; use 'memory' or a redis:// URL"
    )
