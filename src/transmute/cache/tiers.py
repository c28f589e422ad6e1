"""Namespaced cache tiers over a shared backend.

Two tiers exist: ``content_fetch`` (fetched page bodies) and ``results``
(successful transformation results). Each tier is enabled and expires
independently. A tier never raises: backend or decode failures are logged
and treated as a miss or a skipped store, so a degraded cache can only cost
an extra fetch or provider call.
"""

from __future__ import annotations

from collections.abc import Callable
import dataclasses
import json
import logging
import time
from typing import Any

from transmute.core.fingerprint import FETCH_NAMESPACE, RESULT_NAMESPACE, fingerprint
from transmute.core.types import CachedEntry, TransformResult

from .backends import CacheBackend, Clock

logger = logging.getLogger(__name__)


def _identity(value: Any) -> Any:
    return value


@dataclasses.dataclass(frozen=True)
class CacheTier[T]:
    """One namespaced view of a backend with its own TTL and switch."""

    namespace: str
    backend: CacheBackend
    enabled: bool
    ttl_seconds: int
    prefix: str
    encode: Callable[[T], Any] = _identity
    decode: Callable[[Any], T] = _identity
    clock: Clock = time.time

    def key_for(self, *parts: Any) -> str:
        """Full backend key: ``<prefix>:<namespace>:<sha256>``."""
        return f"{self.prefix}:{fingerprint(self.namespace, *parts)}"

    def get(self, key: str) -> CachedEntry[T] | None:
        """Return the stored entry, or None on miss, expiry or failure."""
        if not self.enabled:
            return None
        try:
            raw = self.backend.get(key)
            if raw is None:
                logger.debug("Cache miss (%s): %s", self.namespace, key)
                return None
            envelope = json.loads(raw)
            entry = CachedEntry(
                value=self.decode(envelope["value"]),
                stored_at=float(envelope["stored_at"]),
                ttl=envelope.get("ttl"),
            )
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "Cache read failed for %s; treating as miss: %s", key, e, exc_info=True
            )
            return None
        if entry.is_expired(self.clock()):
            logger.debug("Cache entry expired (%s): %s", self.namespace, key)
            return None
        logger.debug("Cache hit (%s): %s", self.namespace, key)
        return entry

    def put(self, key: str, value: T, ttl: int | None = None) -> bool:
        """Store a value; returns False when disabled or the write failed."""
        if not self.enabled:
            return False
        effective_ttl = ttl if ttl is not None else self.ttl_seconds
        try:
            payload = json.dumps(
                {
                    "value": self.encode(value),
                    "stored_at": self.clock(),
                    "ttl": effective_ttl,
                }
            )
            self.backend.put(key, payload, effective_ttl)
        except Exception as e:  # noqa: BLE001
            logger.warning("Cache write skipped for %s: %s", key, e, exc_info=True)
            return False
        return True

    def forget(self, key: str) -> None:
        """Remove a single entry; failures are logged."""
        try:
            self.backend.delete(key)
        except Exception as e:  # noqa: BLE001
            logger.warning("Cache delete failed for %s: %s", key, e)


def _encode_result(result: TransformResult) -> dict[str, Any]:
    return result.to_dict()


def _decode_result(value: Any) -> TransformResult:
    return TransformResult.from_dict(value)


@dataclasses.dataclass(frozen=True)
class TwoTierCache:
    """The content-fetch and results tiers sharing one backend and prefix."""

    backend: CacheBackend
    prefix: str
    content_fetch: CacheTier[str]
    results: CacheTier[TransformResult]

    @classmethod
    def from_config(
        cls, config: Any, backend: CacheBackend, *, clock: Clock = time.time
    ) -> TwoTierCache:
        """Build both tiers from a ``CacheConfig`` (or a ``FrozenConfig``)."""
        cache_config = getattr(config, "cache", config)
        prefix = cache_config.prefix
        return cls(
            backend=backend,
            prefix=prefix,
            content_fetch=CacheTier(
                namespace=FETCH_NAMESPACE,
                backend=backend,
                enabled=cache_config.content_fetch.enabled,
                ttl_seconds=cache_config.content_fetch.ttl_seconds,
                prefix=prefix,
                clock=clock,
            ),
            results=CacheTier(
                namespace=RESULT_NAMESPACE,
                backend=backend,
                enabled=cache_config.results.enabled,
                ttl_seconds=cache_config.results.ttl_seconds,
                prefix=prefix,
                encode=_encode_result,
                decode=_decode_result,
                clock=clock,
            ),
        )

    def clear(self) -> int:
        """Remove every entry under the configured prefix."""
        removed = self.backend.clear_prefix(f"{self.prefix}:")
        logger.info("Cleared %d cache entries under prefix %r", removed, self.prefix)
        return removed
