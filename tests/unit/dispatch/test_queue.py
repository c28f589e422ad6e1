import pytest

from transmute.dispatch.envelope import JobEnvelope, RetryPolicy
from transmute.dispatch.queue import InMemoryJobQueue
from transmute.pipeline.registry import HandlerDescriptor

pytestmark = pytest.mark.unit


def make_envelope(text, queue="default", delay=0):
    return JobEnvelope.build(
        HandlerDescriptor(kind="identity", payload="acme.t"),
        text,
        {},
        RetryPolicy(queue=queue, delay_seconds=delay),
    )


@pytest.mark.asyncio
async def test_fifo_per_queue(clock):
    queue = InMemoryJobQueue(clock=clock)
    first = await queue.enqueue(make_envelope("a"))
    second = await queue.enqueue(make_envelope("b", queue="slow"))
    third = await queue.enqueue(make_envelope("c"))

    assert await queue.pending_ids() == (first, second, third)
    assert await queue.size() == 3
    assert await queue.size("default") == 2
    assert await queue.size("slow") == 1

    job = await queue.reserve("default")
    assert job.job_id == first
    assert job.attempts == 1
    assert JobEnvelope.from_json(job.payload).content == "a"


@pytest.mark.asyncio
async def test_release_counts_attempts_and_respects_delay(clock):
    queue = InMemoryJobQueue(clock=clock)
    await queue.enqueue(make_envelope("a"))

    job = await queue.reserve()
    await queue.release(job, delay=10)
    assert await queue.reserve() is None

    clock.advance(10)
    again = await queue.reserve()
    assert again.job_id == job.job_id
    assert again.attempts == 2

    await queue.delete(again)
    assert await queue.size() == 0


@pytest.mark.asyncio
async def test_delayed_enqueue(clock):
    queue = InMemoryJobQueue(clock=clock)
    await queue.enqueue(make_envelope("a", delay=5))
    assert await queue.reserve() is None
    clock.advance(5)
    assert await queue.reserve() is not None
