"""The transformation pipeline: admit, check cache, invoke, store, report.

``TransformPipeline`` holds no per-request state, so one instance serves every
concurrent request and every worker. Each run walks the same stages:

    Admitted -> CacheChecked -> Invoking -> Stored -> Done

with ``TransformationStarted`` emitted after admission and exactly one of
``TransformationCompleted`` or ``TransformationFailed`` at the end.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
import enum
import logging
from typing import TYPE_CHECKING, Any

from transmute.core.exceptions import InvocationError
from transmute.core.types import Content, TransformResult, content_length
from transmute.events import (
    EventDispatcher,
    TransformationCompleted,
    TransformationFailed,
    TransformationStarted,
)
from transmute.telemetry import TelemetryContext, TelemetryContextProtocol

from .registry import Invocable, configure_invocable, fingerprint_parts_of

if TYPE_CHECKING:
    from transmute.cache.tiers import CacheTier

    from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class PipelineStage(enum.StrEnum):
    """Stages a single transformation passes through."""

    ADMITTED = "admitted"
    CACHE_CHECKED = "cache_checked"
    INVOKING = "invoking"
    STORED = "stored"
    DONE = "done"


def _describe_error(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class TransformPipeline:
    """Runs one invocable over one piece of content with caching and admission."""

    def __init__(
        self,
        rate_limiter: RateLimiter | None = None,
        results_cache: CacheTier[TransformResult] | None = None,
        events: EventDispatcher | None = None,
        telemetry: TelemetryContextProtocol | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            rate_limiter: Admission control; None admits everything.
            results_cache: Results tier; None disables result caching.
            events: Lifecycle event dispatcher.
            telemetry: Optional telemetry context for stage timings.
        """
        self.rate_limiter = rate_limiter
        self.results_cache = results_cache
        self.events = events or EventDispatcher()
        self._telemetry = telemetry or TelemetryContext()

    def result_key(
        self,
        invocable: Invocable,
        content: Content,
        context: Mapping[str, Any],
        transform_config: Mapping[str, Any] | None = None,
    ) -> str | None:
        """Results-tier key for a request, or None when caching is off."""
        if self.results_cache is None or not self.results_cache.enabled:
            return None
        configured = configure_invocable(invocable, transform_config)
        return self.results_cache.key_for(
            content,
            configured.identity,
            fingerprint_parts_of(configured),
            dict(transform_config or {}),
            context,
        )

    async def execute(
        self,
        invocable: Invocable,
        content: Content,
        context: Mapping[str, Any] | None = None,
        *,
        transform_config: Mapping[str, Any] | None = None,
        admit: bool = True,
        raise_on_failure: bool = False,
        timeout: float | None = None,
    ) -> TransformResult:
        """Transform ``content`` with ``invocable``.

        Args:
            invocable: The resolved handler.
            content: Text or binary media.
            context: Caller context; part of the cache key and echoed on the result.
            transform_config: Extra per-request settings applied to the
                invocable through ``with_config`` and folded into the cache key.
            admit: Consult the rate limiter first. Callers that already admitted
                the request (queued jobs) pass False.
            raise_on_failure: Raise ``InvocationError`` instead of returning a
                failed result, so a queue can retry.
            timeout: Seconds allowed for the invocation.

        Returns:
            The result, carrying ``context``. Failed results are returned, not
            cached.

        Raises:
            RateLimitExceededError: If admission is denied (before any event).
            InvocationError: If the invocation fails and ``raise_on_failure``.
        """
        context = dict(context or {})
        invocable = configure_invocable(invocable, transform_config)

        if admit and self.rate_limiter is not None:
            self.rate_limiter.admit()
        self._stage(PipelineStage.ADMITTED, invocable)

        self.events.emit(TransformationStarted(content=content, context=context))
        try:
            with self._telemetry("pipeline.execute", handler=invocable.identity):
                result = await self._run_stages(
                    invocable,
                    content,
                    context,
                    transform_config=transform_config,
                    raise_on_failure=raise_on_failure,
                    timeout=timeout,
                )
        except Exception as exc:
            self.events.emit(
                TransformationFailed(error=exc, content=content, context=context)
            )
            raise

        self._stage(PipelineStage.DONE, invocable)
        self.events.emit(TransformationCompleted(result=result, context=context))
        return result

    async def _run_stages(
        self,
        invocable: Invocable,
        content: Content,
        context: dict[str, Any],
        *,
        transform_config: Mapping[str, Any] | None,
        raise_on_failure: bool,
        timeout: float | None,
    ) -> TransformResult:
        key = self._safe_key(invocable, content, context, transform_config)

        if key is not None:
            with self._telemetry("pipeline.stage", stage=PipelineStage.CACHE_CHECKED):
                entry = self.results_cache.get(key)  # type: ignore[union-attr]
            self._stage(PipelineStage.CACHE_CHECKED, invocable, hit=entry is not None)
            if entry is not None and entry.value.is_successful():
                self._telemetry.count("pipeline.cache_hit")
                return entry.value.with_context(context)

        self._stage(PipelineStage.INVOKING, invocable)
        try:
            with self._telemetry("pipeline.stage", stage=PipelineStage.INVOKING):
                async with asyncio.timeout(timeout):
                    result = await invocable.invoke(content, context)
            if not isinstance(result, TransformResult):
                raise TypeError(
                    f"{invocable.identity} returned {type(result).__name__}, "
                    "expected TransformResult"
                )
        except Exception as exc:
            message = _describe_error(exc)
            logger.warning(
                "Transformation by %s failed (content length %d): %s",
                invocable.identity,
                content_length(content),
                message,
            )
            self._telemetry.count("pipeline.invocation_error")
            if raise_on_failure:
                raise InvocationError(message, identity=invocable.identity) from exc
            return TransformResult.failed([message]).with_context(context)

        if key is not None and result.is_successful():
            stored = self.results_cache.put(key, result)  # type: ignore[union-attr]
            self._stage(PipelineStage.STORED, invocable, stored=stored)
        return result.with_context(context)

    def _safe_key(
        self,
        invocable: Invocable,
        content: Content,
        context: Mapping[str, Any],
        transform_config: Mapping[str, Any] | None,
    ) -> str | None:
        try:
            return self.result_key(invocable, content, context, transform_config)
        except TypeError as e:
            logger.warning(
                "Result cache bypassed for %s; request is not fingerprintable: %s",
                invocable.identity,
                e,
            )
            return None

    def _stage(self, stage: PipelineStage, invocable: Invocable, **detail: Any) -> None:
        logger.debug("pipeline %s [%s] %s", stage.value, invocable.identity, detail or "")
