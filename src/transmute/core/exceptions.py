"""Exceptions raised by the transformation pipeline."""

from __future__ import annotations

from typing import Any


class TransmuteError(Exception):
    """Base exception for all transmute errors."""


class ConfigurationError(TransmuteError):
    """Raised when configuration cannot be resolved or is invalid."""


class ValidationError(TransmuteError):
    """Raised when input validation fails (malformed or blocked URL, bad scheme).

    Validation failures are deterministic and never retried.
    """

    def __init__(self, message: str, *, url: str | None = None) -> None:  # noqa: D107
        super().__init__(message)
        self.url = url


class FetchError(TransmuteError):
    """Raised when remote content cannot be fetched.

    The last underlying cause is chained via ``__cause__`` and also exposed in
    ``context["original_error"]`` for logging.
    """

    def __init__(  # noqa: D107
        self,
        message: str = "Failed to fetch content from source",
        *,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.context: dict[str, Any] = dict(context or {})


class ContentTooLargeError(FetchError):
    """Raised when a fetched body exceeds the configured maximum length"""  # noqa: D415


class UrlValidationError(ValidationError, FetchError):
    """Raised when a URL is rejected before any request is made.

    Both a ``ValidationError`` (never retried) and a ``FetchError`` (the fetch
    did not happen).
    """

    def __init__(self, message: str, *, url: str | None = None) -> None:  # noqa: D107
        super().__init__(message, url=url)
        self.context = {"url": url}


class RateLimitExceededError(TransmuteError):
    """Raised when an admission is denied by the rate limiter."""

    def __init__(  # noqa: D107
        self,
        key: str,
        max_attempts: int,
        retry_after: int,
        message: str | None = None,
    ) -> None:
        self.key = key
        self.max_attempts = max_attempts
        self.retry_after = retry_after
        super().__init__(
            message
            or (
                f"Rate limit exceeded for key '{key}'. Maximum {max_attempts} "
                f"attempts allowed. Try again in {retry_after} seconds."
            )
        )


class InvocationError(TransmuteError):
    """Raised when the external capability fails inside a worker.

    Wraps any exception (domain or not) so the queue's retry loop sees a single
    error category; the original exception is available as ``__cause__``.
    """

    def __init__(self, message: str, *, identity: str | None = None) -> None:  # noqa: D107
        super().__init__(message)
        self.identity = identity


class TerminalFailureError(TransmuteError):
    """Recorded once a queued job has exhausted its attempts."""

    def __init__(self, attempts: int, cause: BaseException) -> None:  # noqa: D107
        super().__init__(
            f"Transformation failed after {attempts} attempt(s): {cause}"
        )
        self.attempts = attempts
        self.cause = cause


class EnvelopeError(TransmuteError):
    """Raised when a job envelope cannot be built or decoded."""


class HandlerResolutionError(EnvelopeError):
    """Raised when a handler cannot be resolved into an invocable."""
