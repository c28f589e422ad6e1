"""Scenario-first entry points over the dispatcher and pipeline.

``build_runtime`` wires every component from one ``FrozenConfig``;
``TransformBuilder`` offers the fluent style::

    runtime = build_runtime(client=my_client)
    result = await (
        runtime.builder()
        .url("https://example.com/article")
        .using("acme.summarize")
        .with_context({"lang": "es"})
        .transform()
    )
"""

from __future__ import annotations

from collections.abc import Mapping
import dataclasses
import logging
from typing import TYPE_CHECKING, Any

from transmute.cache.backends import CacheBackend, create_backend
from transmute.cache.tiers import TwoTierCache
from transmute.config import FrozenConfig, load_config
from transmute.core.exceptions import ValidationError
from transmute.core.types import (
    BinaryMedia,
    Content,
    JobHandle,
    TransformRequest,
    TransformResult,
)
from transmute.dispatch.dispatcher import Dispatcher
from transmute.dispatch.queue import InMemoryJobQueue, JobQueue
from transmute.dispatch.worker import TransformationWorker
from transmute.events import EventDispatcher
from transmute.fetch.http import FetchOptions, HttpContentFetcher
from transmute.pipeline.orchestrator import TransformPipeline
from transmute.pipeline.rate_limiter import RateLimiter
from transmute.pipeline.registry import HandlerRegistry, ProviderClient
from transmute.telemetry import TelemetryContext, TelemetryReporter

if TYPE_CHECKING:
    from pathlib import Path

    import httpx

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class Runtime:
    """Every component of one configured transformation stack."""

    config: FrozenConfig
    backend: CacheBackend
    cache: TwoTierCache
    rate_limiter: RateLimiter
    events: EventDispatcher
    registry: HandlerRegistry
    pipeline: TransformPipeline
    fetcher: HttpContentFetcher
    queue: JobQueue
    dispatcher: Dispatcher

    def worker(self) -> TransformationWorker:
        """A worker sharing this runtime's pipeline, registry and events."""
        return TransformationWorker(self.pipeline, self.registry, self.events)

    def builder(self) -> TransformBuilder:  # noqa: D102
        return TransformBuilder(self)

    async def aclose(self) -> None:
        """Release resources the runtime created (the HTTP client)."""
        await self.fetcher.aclose()


def build_runtime(
    config: FrozenConfig | None = None,
    *,
    client: ProviderClient | None = None,
    backend: CacheBackend | None = None,
    queue: JobQueue | None = None,
    registry: HandlerRegistry | None = None,
    events: EventDispatcher | None = None,
    http_client: httpx.AsyncClient | None = None,
    reporters: tuple[TelemetryReporter, ...] = (),
) -> Runtime:
    """Compose a runtime from configuration and injected collaborators.

    Args:
        config: Frozen configuration; resolved from all sources when omitted.
        client: Provider client handed to transformers built by the registry.
        backend: Cache and rate-limit backend; built from ``cache.store``
            when omitted.
        queue: Job queue; an ``InMemoryJobQueue`` when omitted.
        registry: Handler registry; a fresh one when omitted. Its client and
            config are filled in when unset.
        events: Event dispatcher shared by pipeline and worker.
        http_client: Injected HTTP client for the content fetcher.
        reporters: Telemetry reporters (active only when telemetry is enabled).
    """
    cfg = config or load_config()
    store = backend if backend is not None else create_backend(cfg.cache.store)
    cache = TwoTierCache.from_config(cfg, store)
    telemetry = TelemetryContext(*reporters)
    dispatcher_events = events or EventDispatcher()

    handler_registry = registry or HandlerRegistry()
    if handler_registry.client is None:
        handler_registry.client = client
    if handler_registry.config is None:
        handler_registry.config = cfg

    limiter = RateLimiter(cfg.rate_limit, store)
    pipeline = TransformPipeline(
        rate_limiter=limiter,
        results_cache=cache.results,
        events=dispatcher_events,
        telemetry=telemetry,
    )
    fetcher = HttpContentFetcher(
        cfg.fetch, cache.content_fetch, client=http_client, telemetry=telemetry
    )
    job_queue = queue or InMemoryJobQueue()
    dispatcher = Dispatcher(
        pipeline, job_queue, handler_registry, cfg.queue, rate_limiter=limiter
    )
    logger.debug(
        "Runtime built (provider=%s, store=%s, rate_limit=%s)",
        cfg.provider.value,
        cfg.cache.store,
        cfg.rate_limit.enabled,
    )
    return Runtime(
        config=cfg,
        backend=store,
        cache=cache,
        rate_limiter=limiter,
        events=dispatcher_events,
        registry=handler_registry,
        pipeline=pipeline,
        fetcher=fetcher,
        queue=job_queue,
        dispatcher=dispatcher,
    )


class TransformBuilder:
    """Fluent request builder; each setter returns the builder.

    ``url()`` fetches eagerly, so it is awaited::

        builder = await runtime.builder().url("https://example.com")
    """

    def __init__(self, runtime: Runtime) -> None:  # noqa: D107
        self._runtime = runtime
        self._content: Content | None = None
        self._handler: Any = None
        self._context: dict[str, Any] = {}
        self._transform_config: dict[str, Any] = {}
        self._run_async = False

    def text(self, content: str) -> TransformBuilder:  # noqa: D102
        self._content = content
        return self

    async def url(
        self, url: str, options: FetchOptions | None = None
    ) -> TransformBuilder:
        """Fetch ``url`` now and use its body as the content.

        Raises:
            ValidationError: If the URL is rejected.
            FetchError: If the content cannot be fetched.
        """
        self._content = await self._runtime.fetcher.fetch(url, options)
        return self

    def media(self, media: BinaryMedia | str | Path) -> TransformBuilder:
        """Use an image or document (an in-memory payload or a file path)."""
        self._content = (
            media if isinstance(media, BinaryMedia) else BinaryMedia.from_path(media)
        )
        return self

    def using(self, handler: Any, **captured: Any) -> TransformBuilder:
        """Pick the handler; ``captured`` binds values to a registered closure id."""
        if captured:
            if not isinstance(handler, str):
                raise ValueError("captured values require a registered closure id")
            handler = self._runtime.registry.bind(
                handler.removeprefix("closure:"), **captured
            )
        self._handler = handler
        return self

    def with_context(self, context: Mapping[str, Any]) -> TransformBuilder:  # noqa: D102
        self._context.update(context)
        return self

    def with_config(self, **transform_config: Any) -> TransformBuilder:  # noqa: D102
        self._transform_config.update(transform_config)
        return self

    def queued(self, run_async: bool = True) -> TransformBuilder:  # noqa: D102, FBT001, FBT002
        self._run_async = run_async
        return self

    def build(self) -> TransformRequest:
        """Assemble the request.

        Raises:
            ValidationError: If content or handler is missing.
        """
        if self._content is None:
            raise ValidationError("No content set; call text(), url() or media() first")
        if self._handler is None:
            raise ValidationError("No handler set; call using() first")
        return TransformRequest(
            content=self._content,
            handler=self._handler,
            transform_config=self._transform_config,
            context=self._context,
            run_async=self._run_async,
        )

    async def transform(self) -> TransformResult | JobHandle:
        """Dispatch the built request."""
        return await self._runtime.dispatcher.dispatch(self.build())


async def transform_text(
    text: str,
    handler: Any,
    *,
    context: Mapping[str, Any] | None = None,
    runtime: Runtime | None = None,
    client: ProviderClient | None = None,
) -> TransformResult:
    """Transform a string inline with a fresh or supplied runtime.

    Raises:
        TypeError: If the dispatcher queued the request instead of running it.
    """
    rt = runtime or build_runtime(client=client)
    result = await rt.dispatcher.dispatch(
        TransformRequest(content=text, handler=handler, context=context or {})
    )
    if not isinstance(result, TransformResult):
        raise TypeError(
            f"Expected an inline TransformResult, got {type(result).__name__}"
        )
    return result
