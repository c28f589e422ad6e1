"""Queue worker: decodes envelopes and runs them through the pipeline.

Each attempt runs the full pipeline (queue retries are whole-job retries).
An attempt that raises is released back to the queue until the envelope's
``maxAttempts`` is used up; then ``failed()`` logs the terminal failure and
emits one final ``TransformationFailed`` carrying a ``TerminalFailureError``.
"""

from __future__ import annotations

from collections import deque
import logging
from typing import TYPE_CHECKING, Any

from transmute.core._validation import _thaw
from transmute.core.exceptions import EnvelopeError, TerminalFailureError
from transmute.core.types import Failure, Result, Success, TransformResult
from transmute.events import EventDispatcher, TransformationFailed

from .envelope import JobEnvelope

if TYPE_CHECKING:
    from transmute.pipeline.orchestrator import TransformPipeline
    from transmute.pipeline.registry import HandlerRegistry

    from .queue import JobQueue, ReservedJob

logger = logging.getLogger(__name__)

TERMINAL_HISTORY = 100


class TransformationWorker:
    """Consumes job envelopes from a ``JobQueue``."""

    def __init__(
        self,
        pipeline: TransformPipeline,
        registry: HandlerRegistry,
        events: EventDispatcher | None = None,
        *,
        history: int = TERMINAL_HISTORY,
    ) -> None:
        """Initialize the worker.

        Args:
            pipeline: Shared pipeline (its rate limiter is bypassed here; jobs
                were admitted when they were enqueued).
            registry: Rebuilds handlers from envelope descriptors.
            events: Dispatcher for the terminal failure event; defaults to
                the pipeline's.
            history: How many recent terminal failures ``terminal_failures``
                keeps; older ones are only available through the events.
        """
        self.pipeline = pipeline
        self.registry = registry
        self.events = events or pipeline.events
        self.terminal_failures: deque[TerminalFailureError] = deque(maxlen=history)

    async def handle(self, envelope: JobEnvelope) -> TransformResult:
        """Run one attempt of a job.

        Raises:
            EnvelopeError: If the handler or content cannot be decoded.
            InvocationError: If the transformation failed this attempt.
        """
        invocable = self.registry.from_descriptor(envelope.handler)
        content = envelope.decoded_content()
        return await self.pipeline.execute(
            invocable,
            content,
            dict(envelope.context),
            transform_config=_thaw(envelope.config),
            admit=False,
            raise_on_failure=True,
            timeout=envelope.retry.timeout_seconds,
        )

    async def process_next(
        self, queue: JobQueue, queue_name: str | None = None
    ) -> Result[TransformResult, Exception] | None:
        """Reserve and run the next job.

        Returns:
            None when no job is available, ``Success`` with the result, or
            ``Failure`` with the attempt's error (retried or terminal).
        """
        job = await queue.reserve(queue_name)
        if job is None:
            return None

        try:
            envelope = JobEnvelope.from_json(job.payload)
        except EnvelopeError as exc:
            logger.error("Discarding malformed job %s: %s", job.job_id, exc)
            await queue.delete(job)
            terminal = self._record_terminal(
                job.attempts, exc, content_length=0, identity=None, context={}
            )
            self.events.emit(TransformationFailed(error=terminal, content="", context={}))
            return Failure(exc)

        try:
            result = await self.handle(envelope)
        except EnvelopeError as exc:
            await queue.delete(job)
            self.failed(envelope, exc, attempts=job.attempts)
            return Failure(exc)
        except Exception as exc:
            return await self._retry_or_fail(queue, job, envelope, exc)

        await queue.delete(job)
        logger.debug("Job %s completed on attempt %d", job.job_id, job.attempts)
        return Success(result)

    async def _retry_or_fail(
        self,
        queue: JobQueue,
        job: ReservedJob,
        envelope: JobEnvelope,
        exc: Exception,
    ) -> Failure[Exception]:
        if job.attempts < envelope.retry.max_attempts:
            logger.warning(
                "Job %s attempt %d/%d failed: %s; releasing for retry",
                job.job_id,
                job.attempts,
                envelope.retry.max_attempts,
                exc,
            )
            await queue.release(job, delay=envelope.retry.delay_seconds)
            return Failure(exc)
        await queue.delete(job)
        self.failed(envelope, exc, attempts=job.attempts)
        return Failure(exc)

    def failed(
        self, envelope: JobEnvelope, exc: BaseException, *, attempts: int
    ) -> TerminalFailureError:
        """Terminal handler, called once per job after its last attempt."""
        try:
            content: Any = envelope.decoded_content()
            length = len(content)
        except EnvelopeError:
            content, length = "", 0
        identity = envelope.handler.payload
        if envelope.handler.kind == "closure":
            identity = f"closure:{envelope.handler.payload.get('id')}"

        terminal = self._record_terminal(
            attempts,
            exc,
            content_length=length,
            identity=identity,
            context=dict(envelope.context),
        )
        self.events.emit(
            TransformationFailed(
                error=terminal, content=content, context=dict(envelope.context)
            )
        )
        return terminal

    def _record_terminal(
        self,
        attempts: int,
        exc: BaseException,
        *,
        content_length: int,
        identity: str | None,
        context: dict[str, Any],
    ) -> TerminalFailureError:
        terminal = TerminalFailureError(attempts, exc)
        terminal.__cause__ = exc
        logger.error(
            "TransformationJob failed after all retry attempts: %s "
            "(transformer=%s, content_length=%d, context=%s)",
            exc,
            identity,
            content_length,
            context,
            extra={
                "exception": str(exc),
                "content_length": content_length,
                "context": context,
                "transformer": identity,
            },
        )
        self.terminal_failures.append(terminal)
        return terminal

    async def run_until_empty(
        self, queue: JobQueue, queue_name: str | None = None, *, max_jobs: int | None = None
    ) -> list[Result[TransformResult, Exception]]:
        """Process jobs until none is available (delayed jobs end the run)."""
        outcomes: list[Result[TransformResult, Exception]] = []
        while max_jobs is None or len(outcomes) < max_jobs:
            outcome = await self.process_next(queue, queue_name)
            if outcome is None:
                break
            outcomes.append(outcome)
        return outcomes
