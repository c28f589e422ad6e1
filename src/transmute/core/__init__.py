"""Core types, errors and key derivation shared by every pipeline stage."""

from .exceptions import (
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
from .fingerprint import FETCH_NAMESPACE, RESULT_NAMESPACE, canonicalize, fingerprint
from .providers import Provider
from .types import (
    BinaryMedia,
    CachedEntry,
    Content,
    Failure,
    JobHandle,
    RateDecision,
    RateWindow,
    RawResult,
    Result,
    Success,
    TransformMetadata,
    TransformRequest,
    TransformResult,
    TransformStatus,
)

__all__ = [  # noqa: RUF022
    # Types
    "BinaryMedia",
    "CachedEntry",
    "Content",
    "JobHandle",
    "RateDecision",
    "RateWindow",
    "RawResult",
    "TransformMetadata",
    "TransformRequest",
    "TransformResult",
    "TransformStatus",
    "Result",
    "Success",
    "Failure",
    "Provider",
    # Fingerprints
    "fingerprint",
    "canonicalize",
    "FETCH_NAMESPACE",
    "RESULT_NAMESPACE",
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
