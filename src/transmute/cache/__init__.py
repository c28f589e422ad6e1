"""Two-tier cache (fetched content, transformation results) and backends."""

from .backends import CacheBackend, InMemoryBackend, create_backend
from .tiers import CacheTier, TwoTierCache

__all__ = [
    "CacheBackend",
    "CacheTier",
    "InMemoryBackend",
    "TwoTierCache",
    "create_backend",
]
