"""HTTP content fetcher over httpx.MockTransport (no network)."""

import httpx
import pytest

from transmute.cache.tiers import TwoTierCache
from transmute.config import CacheConfig, FetchConfig
from transmute.core.exceptions import ContentTooLargeError, FetchError, ValidationError
from transmute.fetch.http import FetchOptions, HttpContentFetcher

pytestmark = pytest.mark.unit


class Recorder:
    """MockTransport handler replaying scripted outcomes; the last one repeats.

    Each outcome is an exception to raise or a (status, body) pair.
    """

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        status, body = outcome
        content = body.encode() if isinstance(body, str) else body
        return httpx.Response(status, content=content)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_fetcher(backend, clock, sleeps):
    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    def _make(recorder, *, cached=True, **fetch_overrides):
        overrides = {"retry_attempts": 3, "retry_delay_ms": 100, "retry_backoff": 2.0}
        overrides.update(fetch_overrides)
        config = FetchConfig(**overrides)
        cache = TwoTierCache.from_config(CacheConfig(), backend, clock=clock)
        client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
        return HttpContentFetcher(
            config,
            cache.content_fetch if cached else None,
            client=client,
            sleep=fake_sleep,
        )

    return _make


@pytest.mark.asyncio
async def test_fetch_returns_body_and_caches_it(make_fetcher):
    recorder = Recorder((200, "<p>hello</p>"))
    fetcher = make_fetcher(recorder)

    first = await fetcher.fetch("https://example.com/page")
    second = await fetcher.fetch("https://example.com/page")

    assert first == second == "<p>hello</p>"
    assert len(recorder.requests) == 1


@pytest.mark.asyncio
async def test_blank_bodies_are_not_cached(make_fetcher):
    recorder = Recorder((200, "   "))
    fetcher = make_fetcher(recorder)

    await fetcher.fetch("https://example.com/")
    await fetcher.fetch("https://example.com/")

    assert len(recorder.requests) == 2


@pytest.mark.asyncio
async def test_invalid_url_never_reaches_the_network(make_fetcher):
    recorder = Recorder((200, "x"))
    fetcher = make_fetcher(recorder, blocked_domains=("evil.com",))

    with pytest.raises(ValidationError):
        await fetcher.fetch("https://www.evil.com/")
    with pytest.raises(FetchError) as excinfo:
        await fetcher.fetch("ftp://example.com/")

    assert isinstance(excinfo.value, ValidationError)
    assert excinfo.value.context == {"url": "ftp://example.com/"}
    assert recorder.requests == []


@pytest.mark.asyncio
async def test_transient_errors_are_retried_with_backoff(make_fetcher, sleeps):
    recorder = Recorder(
        httpx.ConnectError("connection refused"),
        (503, "busy"),
        (200, "finally"),
    )
    fetcher = make_fetcher(recorder)

    assert await fetcher.fetch("https://example.com/") == "finally"
    assert len(recorder.requests) == 3
    assert sleeps == [0.1, 0.2]


@pytest.mark.asyncio
async def test_exhausted_retries_raise_fetch_error_with_cause(make_fetcher, sleeps):
    recorder = Recorder((503, "busy"))
    fetcher = make_fetcher(recorder)

    with pytest.raises(FetchError) as exc_info:
        await fetcher.fetch("https://example.com/")

    err = exc_info.value
    assert "after 3 attempt(s)" in str(err)
    assert err.context["attempts"] == 3
    assert err.context["status_code"] == 503
    assert err.context["error_type"] == "HTTPStatusError"
    assert isinstance(err.__cause__, httpx.HTTPStatusError)
    assert len(recorder.requests) == 3
    assert len(sleeps) == 2


@pytest.mark.asyncio
async def test_client_errors_fail_immediately(make_fetcher, sleeps):
    recorder = Recorder((404, "missing"))
    fetcher = make_fetcher(recorder)

    with pytest.raises(FetchError, match="HTTP 404") as exc_info:
        await fetcher.fetch("https://example.com/missing")

    assert exc_info.value.context["status_code"] == 404
    assert len(recorder.requests) == 1
    assert sleeps == []


@pytest.mark.asyncio
async def test_rate_limited_responses_are_retried(make_fetcher):
    recorder = Recorder((429, ""), (200, "ok"))
    fetcher = make_fetcher(recorder)

    assert await fetcher.fetch("https://example.com/") == "ok"
    assert len(recorder.requests) == 2


@pytest.mark.asyncio
async def test_oversized_body_is_rejected_without_retry(make_fetcher):
    recorder = Recorder((200, b"x" * 100))
    fetcher = make_fetcher(recorder, max_content_length=10)

    with pytest.raises(ContentTooLargeError, match="exceeds 10 bytes"):
        await fetcher.fetch("https://example.com/big")
    assert len(recorder.requests) == 1


@pytest.mark.asyncio
async def test_request_options_are_sent_and_part_of_the_key(make_fetcher):
    recorder = Recorder((200, "ok"))
    fetcher = make_fetcher(recorder)

    await fetcher.fetch("https://example.com/", FetchOptions(headers={"X-Lang": "es"}))
    await fetcher.fetch("https://example.com/", FetchOptions(headers={"X-Lang": "fr"}))
    await fetcher.fetch(
        "https://example.com/", FetchOptions(method="post", auth=("user", "pw"))
    )

    assert len(recorder.requests) == 3
    assert recorder.requests[0].headers["x-lang"] == "es"
    assert recorder.requests[2].method == "POST"
    assert recorder.requests[2].headers["authorization"].startswith("Basic ")


def test_cache_parts_never_include_secrets():
    options = FetchOptions(auth=("user", "s3cret"), cookies={"session": "abc"})
    parts = options.cache_parts()
    assert "s3cret" not in repr(parts)
    assert "abc" not in repr(parts)
    assert parts["auth"] == "user"
    assert parts["cookies"] == ["session"]


@pytest.mark.asyncio
async def test_without_cache_every_fetch_hits_the_network(make_fetcher):
    recorder = Recorder((200, "ok"))
    fetcher = make_fetcher(recorder, cached=False)

    await fetcher.fetch("https://example.com/")
    await fetcher.fetch("https://example.com/")

    assert len(recorder.requests) == 2


@pytest.mark.asyncio
async def test_owned_client_is_closed():
    fetcher = HttpContentFetcher(FetchConfig())
    client = fetcher._get_client()
    assert client.headers["user-agent"] == "transmute/1.0"
    await fetcher.aclose()
    assert client.is_closed


@pytest.mark.asyncio
async def test_zero_attempts_fail_without_a_request(make_fetcher):
    recorder = Recorder((200, "x"))
    fetcher = make_fetcher(recorder, retry_attempts=0)

    with pytest.raises(FetchError, match="after 0 attempt"):
        await fetcher.fetch("https://example.com/")
    assert recorder.requests == []
