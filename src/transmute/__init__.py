"""Caching, rate limiting and sync/async dispatch for content transformations."""

import importlib.metadata
import logging

from transmute.cache import CacheTier, InMemoryBackend, TwoTierCache, create_backend
from transmute.config import FrozenConfig, ResolvedConfig, load_config, resolve_config
from transmute.core.exceptions import (
    ConfigurationError,
    ContentTooLargeError,
    EnvelopeError,
    FetchError,
    HandlerResolutionError,
    InvocationError,
    RateLimitExceededError,
    TerminalFailureError,
    TransmuteError,
    UrlValidationError,
    ValidationError,
)
from transmute.core.fingerprint import fingerprint
from transmute.core.providers import Provider
from transmute.core.types import (
    BinaryMedia,
    Failure,
    JobHandle,
    RateDecision,
    RawResult,
    Result,
    Success,
    TransformMetadata,
    TransformRequest,
    TransformResult,
    TransformStatus,
)
from transmute.dispatch import (
    Dispatcher,
    InMemoryJobQueue,
    JobEnvelope,
    TransformationWorker,
)
from transmute.events import (
    EventDispatcher,
    TransformationCompleted,
    TransformationFailed,
    TransformationStarted,
)
from transmute.fetch import FetchOptions, HttpContentFetcher, UrlValidator
from transmute.frontdoor import Runtime, TransformBuilder, build_runtime, transform_text
from transmute.pipeline import (
    HandlerRegistry,
    ProviderClient,
    RateLimiter,
    Transformer,
    TransformPipeline,
)
from transmute.telemetry import TelemetryContext, TelemetryReporter

try:
    __version__ = importlib.metadata.version("transmute")
except importlib.metadata.PackageNotFoundError:
    __version__ = "development"

# Set up a null handler for the library's root logger.
# This prevents 'No handler found' errors if the consuming app has no logging configured.
logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [  # noqa: RUF022
    # Entry points
    "build_runtime",
    "transform_text",
    "Runtime",
    "TransformBuilder",
    # Configuration
    "resolve_config",
    "load_config",
    "FrozenConfig",
    "ResolvedConfig",
    # Components
    "Dispatcher",
    "TransformPipeline",
    "TransformationWorker",
    "HandlerRegistry",
    "Transformer",
    "ProviderClient",
    "RateLimiter",
    "HttpContentFetcher",
    "FetchOptions",
    "UrlValidator",
    "TwoTierCache",
    "CacheTier",
    "InMemoryBackend",
    "InMemoryJobQueue",
    "JobEnvelope",
    "create_backend",
    "fingerprint",
    # Events
    "EventDispatcher",
    "TransformationStarted",
    "TransformationCompleted",
    "TransformationFailed",
    # Types
    "BinaryMedia",
    "JobHandle",
    "Provider",
    "RateDecision",
    "RawResult",
    "TransformMetadata",
    "TransformRequest",
    "TransformResult",
    "TransformStatus",
    "Result",
    "Success",
    "Failure",
    # Telemetry
    "TelemetryContext",
    "TelemetryReporter",
    # Exceptions
    "TransmuteError",
    "ConfigurationError",
    "ValidationError",
    "UrlValidationError",
    "FetchError",
    "ContentTooLargeError",
    "RateLimitExceededError",
    "InvocationError",
    "TerminalFailureError",
    "EnvelopeError",
    "HandlerResolutionError",
]
