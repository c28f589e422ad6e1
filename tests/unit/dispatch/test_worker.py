"""Worker retries, terminal failures and malformed jobs."""

import logging

import pytest

from transmute.cache.tiers import TwoTierCache
from transmute.config import CacheConfig, RateLimitConfig
from transmute.core.exceptions import (
    HandlerResolutionError,
    InvocationError,
    TerminalFailureError,
)
from transmute.core.types import Failure, Success
from transmute.dispatch.envelope import JobEnvelope, RetryPolicy
from transmute.dispatch.queue import InMemoryJobQueue, ReservedJob
from transmute.dispatch.worker import TransformationWorker
from transmute.events import (
    EventDispatcher,
    RecordingListener,
    TransformationCompleted,
    TransformationFailed,
)
from transmute.pipeline.orchestrator import TransformPipeline
from transmute.pipeline.rate_limiter import RateLimiter
from transmute.pipeline.registry import HandlerDescriptor, HandlerRegistry

pytestmark = pytest.mark.unit


@pytest.fixture
def failures():
    """Remaining failures per content string for the 'flaky' closure."""
    return {}


@pytest.fixture
def registry(failures):
    registry = HandlerRegistry()

    @registry.closure("flaky")
    async def flaky(content, context, *, suffix=""):
        if failures.get(content, 0) > 0:
            failures[content] -= 1
            raise RuntimeError(f"upstream error for {content}")
        return f"{content}{suffix}"

    return registry


@pytest.fixture
def events():
    return EventDispatcher()


@pytest.fixture
def recorder(events):
    return RecordingListener().attach(events)


@pytest.fixture
def worker(registry, events, backend, clock):
    cache = TwoTierCache.from_config(CacheConfig(), backend, clock=clock)
    pipeline = TransformPipeline(results_cache=cache.results, events=events)
    return TransformationWorker(pipeline, registry)


@pytest.fixture
def queue(clock):
    return InMemoryJobQueue(clock=clock)


def envelope_for(content, *, tries=3, delay=0, suffix="!", context=None):
    return JobEnvelope.build(
        HandlerDescriptor(
            kind="closure", payload={"id": "flaky", "captured": {"suffix": suffix}}
        ),
        content,
        context or {"request_id": content},
        RetryPolicy(max_attempts=tries, delay_seconds=delay),
    )


@pytest.mark.asyncio
async def test_successful_job_is_removed(worker, queue):
    await queue.enqueue(envelope_for("hello"))

    outcome = await worker.process_next(queue)

    assert isinstance(outcome, Success)
    assert outcome.value.data == "hello!"
    assert outcome.value.context == {"request_id": "hello"}
    assert await queue.size() == 0
    assert await worker.process_next(queue) is None


@pytest.mark.asyncio
async def test_failed_attempts_are_retried_until_success(worker, queue, failures):
    failures["hello"] = 2
    await queue.enqueue(envelope_for("hello", tries=3))

    outcomes = await worker.run_until_empty(queue)

    assert [type(o) for o in outcomes] == [Failure, Failure, Success]
    assert isinstance(outcomes[0].error, InvocationError)
    assert not worker.terminal_failures


@pytest.mark.asyncio
async def test_exhausted_job_calls_failed_once(
    worker, queue, failures, recorder, caplog
):
    failures["doomed"] = 99
    await queue.enqueue(envelope_for("doomed", tries=2))

    with caplog.at_level(logging.ERROR, logger="transmute.dispatch.worker"):
        outcomes = await worker.run_until_empty(queue)

    assert len(outcomes) == 2
    assert await queue.size() == 0
    assert len(worker.terminal_failures) == 1
    terminal = worker.terminal_failures[0]
    assert terminal.attempts == 2
    assert isinstance(terminal.cause, InvocationError)

    final = recorder.of_type(TransformationFailed)[-1]
    assert isinstance(final.error, TerminalFailureError)
    assert final.content == "doomed"
    assert final.context == {"request_id": "doomed"}
    # One failed event per attempt, plus the terminal one
    assert len(recorder.of_type(TransformationFailed)) == 3

    record = next(
        r for r in caplog.records if "failed after all retry attempts" in r.getMessage()
    )
    assert record.content_length == len("doomed")
    assert record.transformer == "closure:flaky"
    assert record.context == {"request_id": "doomed"}


@pytest.mark.asyncio
async def test_retry_delay_is_honoured(worker, queue, failures, clock):
    failures["later"] = 1
    await queue.enqueue(envelope_for("later", delay=30))
    clock.advance(30)  # initial delay

    outcomes = await worker.run_until_empty(queue)
    assert [type(o) for o in outcomes] == [Failure]
    assert await queue.size() == 1

    clock.advance(30)
    outcomes = await worker.run_until_empty(queue)
    assert [type(o) for o in outcomes] == [Success]


@pytest.mark.asyncio
async def test_unknown_handler_fails_without_retry(worker, queue, recorder):
    envelope = JobEnvelope.build(
        HandlerDescriptor(kind="identity", payload="acme.removed"),
        "x",
        {},
        RetryPolicy(max_attempts=5),
    )
    await queue.enqueue(envelope)

    outcomes = await worker.run_until_empty(queue)

    assert len(outcomes) == 1
    assert isinstance(outcomes[0].error, HandlerResolutionError)
    assert len(worker.terminal_failures) == 1
    assert await queue.size() == 0


class StaticQueue:
    """Hands out a single pre-built job."""

    def __init__(self, payload):
        self.job = ReservedJob(job_id="j1", queue="default", payload=payload, attempts=1)
        self.deleted = []

    async def reserve(self, queue=None):
        job, self.job = self.job, None
        return job

    async def release(self, job, delay=0):
        raise AssertionError("malformed jobs are never released")

    async def delete(self, job):
        self.deleted.append(job.job_id)


@pytest.mark.asyncio
async def test_malformed_payload_is_discarded(worker, recorder):
    queue = StaticQueue("{broken")

    outcome = await worker.process_next(queue)

    assert isinstance(outcome, Failure)
    assert queue.deleted == ["j1"]
    assert len(worker.terminal_failures) == 1
    assert isinstance(recorder.events[-1], TransformationFailed)


@pytest.mark.asyncio
async def test_each_attempt_runs_the_full_pipeline(worker, queue, recorder):
    await queue.enqueue(envelope_for("same"))
    await queue.enqueue(envelope_for("same"))

    outcomes = await worker.run_until_empty(queue)

    assert [o.value.data for o in outcomes] == ["same!", "same!"]
    assert len(recorder.of_type(TransformationCompleted)) == 2


@pytest.mark.asyncio
async def test_worker_bypasses_the_rate_limiter(registry, backend, clock, queue):
    limiter = RateLimiter(RateLimitConfig(enabled=True, max_attempts=1), backend, clock)
    limiter.admit()  # window exhausted
    worker = TransformationWorker(TransformPipeline(rate_limiter=limiter), registry)
    await queue.enqueue(envelope_for("a"))
    await queue.enqueue(envelope_for("b"))

    outcomes = await worker.run_until_empty(queue)

    assert all(isinstance(o, Success) for o in outcomes)


@pytest.mark.asyncio
async def test_terminal_failure_history_is_bounded(registry, events, failures, queue):
    worker = TransformationWorker(TransformPipeline(events=events), registry, history=2)
    for name in ("a", "b", "c"):
        failures[name] = 99
        await queue.enqueue(envelope_for(name, tries=1))

    await worker.run_until_empty(queue)

    assert len(worker.terminal_failures) == 2
    assert [str(t.cause) for t in worker.terminal_failures] == [
        "upstream error for b",
        "upstream error for c",
    ]


@pytest.mark.asyncio
async def test_job_config_reaches_the_closure(registry, worker, queue):
    @registry.closure("styled")
    async def styled(content, context, *, config):
        return f"{content} in {config['style']}"

    await queue.enqueue(
        JobEnvelope.build(
            HandlerDescriptor(kind="closure", payload={"id": "styled", "captured": {}}),
            "text",
            {},
            RetryPolicy(),
            config={"style": "bold"},
        )
    )

    outcomes = await worker.run_until_empty(queue)

    assert outcomes[0].value.data == "text in bold"
