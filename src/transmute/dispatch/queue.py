"""Job queue protocol and an in-memory implementation.

The in-memory queue stores envelopes as JSON strings, so every job crosses
the same serialization boundary a networked queue would impose.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
import dataclasses
import logging
import time
from typing import Protocol
import uuid

from .envelope import JobEnvelope

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True, slots=True)
class ReservedJob:
    """A job handed to a worker; ``attempts`` counts this reservation."""

    job_id: str
    queue: str
    payload: str
    attempts: int


class JobQueue(Protocol):
    """Minimal queue surface used by the dispatcher and worker."""

    async def enqueue(self, envelope: JobEnvelope) -> str:
        """Store the envelope and return its job id."""
        ...

    async def reserve(self, queue: str | None = None) -> ReservedJob | None:
        """Take the next available job, or None when there is nothing to do."""
        ...

    async def release(self, job: ReservedJob, delay: int = 0) -> None:
        """Return a reserved job for another attempt after ``delay`` seconds."""
        ...

    async def delete(self, job: ReservedJob) -> None:
        """Remove a finished job."""
        ...

    async def size(self, queue: str | None = None) -> int:
        """Jobs waiting (reserved jobs excluded)."""
        ...


@dataclasses.dataclass(slots=True)
class _Slot:
    job_id: str
    queue: str
    payload: str
    attempts: int = 0
    available_at: float = 0.0


class InMemoryJobQueue:
    """Process-local FIFO queue keyed by queue name."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:  # noqa: D107
        self._clock = clock
        self._lock = asyncio.Lock()
        self._waiting: list[_Slot] = []
        self._reserved: dict[str, _Slot] = {}

    async def enqueue(self, envelope: JobEnvelope) -> str:  # noqa: D102
        slot = _Slot(
            job_id=uuid.uuid4().hex,
            queue=envelope.retry.queue,
            payload=envelope.to_json(),
            available_at=self._clock() + envelope.retry.delay_seconds,
        )
        async with self._lock:
            self._waiting.append(slot)
        logger.debug("Enqueued job %s on %s", slot.job_id, slot.queue)
        return slot.job_id

    async def reserve(self, queue: str | None = None) -> ReservedJob | None:  # noqa: D102
        async with self._lock:
            now = self._clock()
            for index, slot in enumerate(self._waiting):
                if queue is not None and slot.queue != queue:
                    continue
                if slot.available_at > now:
                    continue
                del self._waiting[index]
                slot.attempts += 1
                self._reserved[slot.job_id] = slot
                return ReservedJob(
                    job_id=slot.job_id,
                    queue=slot.queue,
                    payload=slot.payload,
                    attempts=slot.attempts,
                )
        return None

    async def release(self, job: ReservedJob, delay: int = 0) -> None:  # noqa: D102
        async with self._lock:
            slot = self._reserved.pop(job.job_id, None)
            if slot is None:
                return
            slot.available_at = self._clock() + delay
            self._waiting.append(slot)

    async def delete(self, job: ReservedJob) -> None:  # noqa: D102
        async with self._lock:
            self._reserved.pop(job.job_id, None)

    async def size(self, queue: str | None = None) -> int:  # noqa: D102
        async with self._lock:
            return sum(1 for s in self._waiting if queue is None or s.queue == queue)

    async def pending_ids(self) -> tuple[str, ...]:
        """Ids of waiting jobs in queue order."""
        async with self._lock:
            return tuple(s.job_id for s in self._waiting)
