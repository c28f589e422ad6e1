"""Entry point for transformation requests: run inline or enqueue."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from transmute.core.types import JobHandle, TransformRequest, TransformResult

from .envelope import JobEnvelope, RetryPolicy

if TYPE_CHECKING:
    from transmute.config.types import QueueConfig
    from transmute.pipeline.orchestrator import TransformPipeline
    from transmute.pipeline.rate_limiter import RateLimiter
    from transmute.pipeline.registry import HandlerRegistry

    from .queue import JobQueue

logger = logging.getLogger(__name__)


class Dispatcher:
    """Routes a ``TransformRequest`` to the pipeline or to the job queue."""

    def __init__(
        self,
        pipeline: TransformPipeline,
        queue: JobQueue,
        registry: HandlerRegistry,
        config: QueueConfig,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            pipeline: Runs synchronous requests inline.
            queue: Receives asynchronous requests.
            registry: Resolves handlers and describes them for envelopes.
            config: Queue name, connection, tries, timeout and delay for jobs.
            rate_limiter: Admits asynchronous requests before they are enqueued.
        """
        self.pipeline = pipeline
        self.queue = queue
        self.registry = registry
        self.config = config
        self.rate_limiter = rate_limiter

    async def dispatch(self, request: TransformRequest) -> TransformResult | JobHandle:
        """Run ``request`` now, or enqueue it when ``run_async`` is set.

        Raises:
            HandlerResolutionError: If the handler cannot be resolved.
            RateLimitExceededError: If admission is denied.
            EnvelopeError: If an async request cannot be serialized; the queue
                is not touched and no rate-limit slot is spent.
        """
        invocable = self.registry.resolve(request.handler)

        if not request.run_async:
            return await self.pipeline.execute(
                invocable,
                request.content,
                request.context,
                transform_config=request.transform_config,
            )

        envelope = JobEnvelope.build(
            self.registry.describe(invocable),
            request.content,
            request.context,
            RetryPolicy.from_config(self.config),
            config=request.transform_config,
        )
        if self.rate_limiter is not None:
            self.rate_limiter.admit()

        job_id = await self.queue.enqueue(envelope)
        logger.info(
            "Queued transformation %s as job %s on %s",
            invocable.identity,
            job_id,
            envelope.retry.queue,
        )
        return JobHandle(
            job_id=job_id,
            queue=envelope.retry.queue,
            connection=envelope.retry.connection,
        )
