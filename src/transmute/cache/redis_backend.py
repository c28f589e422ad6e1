"""Redis-backed cache backend (install with the ``redis`` extra)."""

from __future__ import annotations

import logging
from typing import Any

import redis
from redis.connection import ConnectionPool

logger = logging.getLogger(__name__)

_SCAN_BATCH = 500


class RedisBackend:
    """``CacheBackend`` on a synchronous Redis client.

    Counters use ``INCR`` followed by ``EXPIRE ... NX`` in one transaction so
    the window is fixed at the first hit.
    """

    def __init__(self, client: Any) -> None:  # noqa: D107
        self._client = client

    @classmethod
    def from_url(cls, url: str, *, max_connections: int = 20) -> RedisBackend:
        """Create a backend with its own connection pool."""
        pool = ConnectionPool.from_url(
            url, max_connections=max_connections, decode_responses=True
        )
        logger.info("Redis cache backend using pool for %s", _safe_url(url))
        return cls(redis.Redis(connection_pool=pool))

    def get(self, key: str) -> str | None:  # noqa: D102
        value = self._client.get(key)
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def put(self, key: str, value: str, ttl: int | None) -> None:  # noqa: D102
        if ttl is None:
            self._client.set(key, value)
        else:
            self._client.set(key, value, ex=ttl)

    def delete(self, key: str) -> None:  # noqa: D102
        self._client.delete(key)

    def increment(self, key: str, ttl: int) -> int:  # noqa: D102
        with self._client.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, ttl, nx=True)
            count, _ = pipe.execute()
        return int(count)

    def clear_prefix(self, prefix: str) -> int:  # noqa: D102
        removed = 0
        batch: list[Any] = []
        for key in self._client.scan_iter(match=f"{prefix}*", count=_SCAN_BATCH):
            batch.append(key)
            if len(batch) >= _SCAN_BATCH:
                removed += int(self._client.delete(*batch))
                batch.clear()
        if batch:
            removed += int(self._client.delete(*batch))
        return removed

    def close(self) -> None:
        """Release the connection pool."""
        self._client.connection_pool.disconnect()
        self._client.close()


def _safe_url(url: str) -> str:
    # Drop credentials before logging.
    if "@" in url:
        scheme, _, rest = url.partition("://")
        return f"{scheme}://***@{rest.rsplit('@', 1)[1]}"
    return url
