"""TransformPipeline: admission, caching, invocation and lifecycle events."""

import asyncio

import pytest

from transmute.cache.tiers import TwoTierCache
from transmute.config import CacheConfig, CacheTierConfig, RateLimitConfig
from transmute.core.exceptions import InvocationError, RateLimitExceededError
from transmute.core.types import TransformResult
from transmute.events import (
    EventDispatcher,
    RecordingListener,
    TransformationCompleted,
    TransformationFailed,
    TransformationStarted,
)
from transmute.pipeline.orchestrator import TransformPipeline
from transmute.pipeline.rate_limiter import RateLimiter
from transmute.telemetry import InMemoryReporter, TelemetryContext

pytestmark = pytest.mark.unit


class Scripted:
    """Invocable returning (or raising) scripted outcomes in order."""

    identity = "test.scripted"

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes) or ["ok"]
        self.calls = []

    async def invoke(self, content, context):
        self.calls.append((content, dict(context)))
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, str):
            return TransformResult.successful(f"{outcome}:{content}")
        return outcome


class Slow(Scripted):
    async def invoke(self, content, context):
        await asyncio.sleep(1)
        return TransformResult.successful("late")


@pytest.fixture
def events():
    return EventDispatcher()


@pytest.fixture
def recorder(events):
    return RecordingListener().attach(events)


@pytest.fixture
def make_pipeline(backend, clock, events):
    def _make(*, cached=True, rate_limit=None, telemetry=None):
        tier = CacheTierConfig(enabled=cached, ttl_seconds=3600)
        cache = TwoTierCache.from_config(
            CacheConfig(results=tier), backend, clock=clock
        )
        limiter = None
        if rate_limit is not None:
            limiter = RateLimiter(
                RateLimitConfig(enabled=True, max_attempts=rate_limit), backend, clock
            )
        return TransformPipeline(
            rate_limiter=limiter,
            results_cache=cache.results,
            events=events,
            telemetry=telemetry,
        )

    return _make


@pytest.mark.asyncio
async def test_identical_requests_invoke_once(make_pipeline):
    pipeline = make_pipeline()
    invocable = Scripted()

    first = await pipeline.execute(invocable, "hello", {"lang": "es"})
    second = await pipeline.execute(invocable, "hello", {"lang": "es"})

    assert len(invocable.calls) == 1
    assert first == second
    assert second.context == {"lang": "es"}


@pytest.mark.asyncio
async def test_any_difference_in_the_request_invokes_again(make_pipeline):
    pipeline = make_pipeline()
    invocable = Scripted()

    await pipeline.execute(invocable, "hello")
    await pipeline.execute(invocable, "hello", {"lang": "es"})
    await pipeline.execute(invocable, "hello!")
    await pipeline.execute(invocable, "hello", transform_config={"temperature": 1})

    assert len(invocable.calls) == 4


@pytest.mark.asyncio
async def test_failed_results_are_returned_but_not_cached(make_pipeline):
    pipeline = make_pipeline()
    invocable = Scripted(RuntimeError("provider down"), "ok")

    failed = await pipeline.execute(invocable, "hello", {"id": 1})
    assert failed.is_failed()
    assert failed.errors == ("provider down",)
    assert failed.context == {"id": 1}

    succeeded = await pipeline.execute(invocable, "hello", {"id": 1})
    assert succeeded.is_successful()
    assert len(invocable.calls) == 2


@pytest.mark.asyncio
async def test_returned_failures_are_not_cached_either(make_pipeline):
    pipeline = make_pipeline()
    invocable = Scripted(TransformResult.failed(["bad input"]), "ok")

    assert (await pipeline.execute(invocable, "x")).is_failed()
    assert (await pipeline.execute(invocable, "x")).is_successful()
    assert len(invocable.calls) == 2


@pytest.mark.asyncio
async def test_disabled_cache_invokes_every_time(make_pipeline):
    pipeline = make_pipeline(cached=False)
    invocable = Scripted()

    await pipeline.execute(invocable, "x")
    await pipeline.execute(invocable, "x")

    assert len(invocable.calls) == 2
    assert pipeline.result_key(invocable, "x", {}) is None


@pytest.mark.asyncio
async def test_raise_on_failure_wraps_the_cause(make_pipeline, recorder):
    pipeline = make_pipeline()
    cause = ConnectionError("reset by peer")

    with pytest.raises(InvocationError, match="reset by peer") as exc_info:
        await pipeline.execute(Scripted(cause), "x", raise_on_failure=True)

    assert exc_info.value.__cause__ is cause
    assert exc_info.value.identity == "test.scripted"
    assert [type(e) for e in recorder.events] == [
        TransformationStarted,
        TransformationFailed,
    ]
    assert isinstance(recorder.events[1].error, InvocationError)


@pytest.mark.asyncio
async def test_events_for_a_successful_run(make_pipeline, recorder):
    pipeline = make_pipeline()

    result = await pipeline.execute(Scripted(), "x", {"request_id": "r-1"})

    started, completed = recorder.events
    assert isinstance(started, TransformationStarted)
    assert started.content == "x"
    assert started.context == {"request_id": "r-1"}
    assert isinstance(completed, TransformationCompleted)
    assert completed.result == result


@pytest.mark.asyncio
async def test_returned_failure_completes_without_failed_event(make_pipeline, recorder):
    pipeline = make_pipeline()

    await pipeline.execute(Scripted(RuntimeError("boom")), "x")

    assert [type(e) for e in recorder.events] == [
        TransformationStarted,
        TransformationCompleted,
    ]
    assert recorder.events[1].result.is_failed()


@pytest.mark.asyncio
async def test_denied_admission_emits_nothing_and_invokes_nothing(
    make_pipeline, recorder
):
    pipeline = make_pipeline(rate_limit=1)
    invocable = Scripted()

    await pipeline.execute(invocable, "a")
    with pytest.raises(RateLimitExceededError):
        await pipeline.execute(invocable, "b")

    assert len(invocable.calls) == 1
    assert len(recorder.of_type(TransformationStarted)) == 1


@pytest.mark.asyncio
async def test_admission_counts_cache_hits_too(make_pipeline):
    pipeline = make_pipeline(rate_limit=1)
    await pipeline.execute(Scripted(), "a")
    with pytest.raises(RateLimitExceededError):
        await pipeline.execute(Scripted(), "a")


@pytest.mark.asyncio
async def test_admit_false_skips_the_limiter(make_pipeline):
    pipeline = make_pipeline(rate_limit=1)
    for text in ("a", "b", "c"):
        await pipeline.execute(Scripted(), text, admit=False)


@pytest.mark.asyncio
async def test_timeout_becomes_a_failed_result(make_pipeline):
    pipeline = make_pipeline()

    result = await pipeline.execute(Slow(), "x", timeout=0.01)

    assert result.is_failed()
    assert result.errors == ("TimeoutError",)


@pytest.mark.asyncio
async def test_non_result_return_values_fail(make_pipeline):
    pipeline = make_pipeline()
    result = await pipeline.execute(Scripted({"not": "a result"}), "x")
    assert result.is_failed()
    assert "expected TransformResult" in result.errors[0]


@pytest.mark.asyncio
async def test_unfingerprintable_context_bypasses_the_cache(make_pipeline, caplog):
    pipeline = make_pipeline()
    invocable = Scripted()
    context = {"handle": object()}

    await pipeline.execute(invocable, "x", context)
    await pipeline.execute(invocable, "x", context)

    assert len(invocable.calls) == 2
    assert "Result cache bypassed" in caplog.text


@pytest.mark.asyncio
async def test_listener_errors_do_not_change_the_outcome(make_pipeline, events):
    def explode(event):
        raise RuntimeError("listener bug")

    events.subscribe(TransformationCompleted, explode)
    pipeline = make_pipeline()

    result = await pipeline.execute(Scripted(), "x")
    assert result.is_successful()


@pytest.mark.asyncio
async def test_stage_telemetry_is_reported(make_pipeline):
    reporter = InMemoryReporter()
    pipeline = make_pipeline(telemetry=TelemetryContext(reporter, enabled=True))

    await pipeline.execute(Scripted(), "x")
    await pipeline.execute(Scripted(), "x")

    assert len(reporter.timings["pipeline.execute"]) == 2
    assert "pipeline.execute.pipeline.stage" in reporter.timings
    assert reporter.total("pipeline.execute.pipeline.cache_hit") == 1
