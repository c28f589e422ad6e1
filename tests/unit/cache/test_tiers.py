"""Two-tier cache: namespacing, independent TTLs and failure tolerance."""

import json

import pytest

from transmute.cache.tiers import TwoTierCache
from transmute.config import CacheConfig, CacheTierConfig
from transmute.core.types import TransformMetadata, TransformResult

pytestmark = pytest.mark.unit


@pytest.fixture
def cache(backend, clock):
    config = CacheConfig(
        prefix="test",
        content_fetch=CacheTierConfig(enabled=True, ttl_seconds=100),
        results=CacheTierConfig(enabled=True, ttl_seconds=1000),
    )
    return TwoTierCache.from_config(config, backend, clock=clock)


def test_keys_are_prefixed_and_namespaced(cache):
    fetch_key = cache.content_fetch.key_for("https://example.com")
    result_key = cache.results.key_for("https://example.com")

    assert fetch_key.startswith("test:fetch:")
    assert result_key.startswith("test:result:")
    assert fetch_key != result_key


def test_results_roundtrip_through_the_backend(cache):
    result = TransformResult.successful(
        "hola", TransformMetadata.make("m", "openai", "acme.t")
    )
    key = cache.results.key_for("hello")

    assert cache.results.put(key, result) is True
    entry = cache.results.get(key)

    assert entry is not None
    assert entry.value == result
    assert entry.ttl == 1000


def test_tiers_expire_independently(cache, clock):
    page_key = cache.content_fetch.key_for("u")
    result_key = cache.results.key_for("u")
    cache.content_fetch.put(page_key, "<html>")
    cache.results.put(result_key, TransformResult.successful("x"))

    clock.advance(150)

    assert cache.content_fetch.get(page_key) is None
    assert cache.results.get(result_key) is not None


def test_disabled_tier_neither_reads_nor_writes(backend, clock):
    config = CacheConfig(
        content_fetch=CacheTierConfig(enabled=False, ttl_seconds=100),
        results=CacheTierConfig(enabled=True, ttl_seconds=100),
    )
    cache = TwoTierCache.from_config(config, backend, clock=clock)
    key = cache.content_fetch.key_for("u")

    assert cache.content_fetch.put(key, "body") is False
    assert backend.get(key) is None
    backend.put(key, json.dumps({"value": "x", "stored_at": clock(), "ttl": 9}), 9)
    assert cache.content_fetch.get(key) is None


def test_corrupt_entries_read_as_misses(cache, backend, caplog):
    key = cache.results.key_for("u")
    backend.put(key, "{not json", ttl=None)

    assert cache.results.get(key) is None
    assert "treating as miss" in caplog.text


class _BrokenBackend:
    def get(self, key):
        raise ConnectionError("backend down")

    def put(self, key, value, ttl):
        raise ConnectionError("backend down")

    def delete(self, key):
        raise ConnectionError("backend down")

    def increment(self, key, ttl):
        raise ConnectionError("backend down")

    def clear_prefix(self, prefix):
        raise ConnectionError("backend down")


def test_backend_failures_never_escape_a_tier():
    cache = TwoTierCache.from_config(CacheConfig(), _BrokenBackend())
    key = cache.results.key_for("u")

    assert cache.results.get(key) is None
    assert cache.results.put(key, TransformResult.successful("x")) is False
    cache.results.forget(key)


def test_clear_removes_only_this_prefix(cache, backend):
    cache.content_fetch.put(cache.content_fetch.key_for("a"), "x")
    cache.results.put(cache.results.key_for("a"), TransformResult.successful("y"))
    backend.put("elsewhere:key", "z", ttl=None)

    assert cache.clear() == 2
    assert backend.get("elsewhere:key") == "z"
