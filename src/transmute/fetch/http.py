"""Async HTTP content fetcher with validation, caching and retries."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
import dataclasses
import logging
from typing import Any

import httpx

from transmute.cache.tiers import CacheTier
from transmute.config.types import FetchConfig
from transmute.core._validation import _freeze_mapping
from transmute.core.exceptions import ContentTooLargeError, FetchError
from transmute.telemetry import TelemetryContext, TelemetryContextProtocol

from .validation import UrlValidator

logger = logging.getLogger(__name__)

type Sleep = Callable[[float], Awaitable[None]]

_TOO_MANY_REQUESTS = 429


@dataclasses.dataclass(frozen=True, slots=True)
class FetchOptions:
    """Per-call request overrides.

    Only options that change the response participate in the cache key;
    credentials are reduced to their presence so secrets never reach a key.
    """

    method: str = "GET"
    headers: Mapping[str, str] = dataclasses.field(default_factory=dict)
    auth: tuple[str, str] | None = None
    cookies: Mapping[str, str] = dataclasses.field(default_factory=dict)
    follow_redirects: bool | None = None
    timeout: float | None = None

    def __post_init__(self) -> None:  # noqa: D105
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "headers", _freeze_mapping(self.headers))
        object.__setattr__(self, "cookies", _freeze_mapping(self.cookies))

    def cache_parts(self) -> dict[str, Any]:
        """The subset of options that distinguishes cached responses."""
        return {
            "method": self.method,
            "headers": {k.lower(): v for k, v in self.headers.items()},
            "auth": self.auth[0] if self.auth else None,
            "cookies": sorted(self.cookies),
            "follow_redirects": self.follow_redirects,
        }


def _is_retryable_status(status_code: int) -> bool:
    return status_code == _TOO_MANY_REQUESTS or 500 <= status_code < 600


class HttpContentFetcher:
    """Fetches remote text for transformation.

    Flow: validate -> content-fetch cache -> request with retries -> size
    check -> store non-blank body -> return text. Validation failures never
    touch the network and are never retried.
    """

    def __init__(
        self,
        config: FetchConfig,
        cache: CacheTier[str] | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        validator: UrlValidator | None = None,
        telemetry: TelemetryContextProtocol | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """Initialize the fetcher.

        Args:
            config: Timeouts, retry policy and URL rules.
            cache: Content-fetch tier; None disables fetch caching.
            client: Injected HTTP client. When omitted one is created lazily
                and closed by ``aclose()``.
            validator: URL validator; built from ``config`` when omitted.
            telemetry: Optional telemetry context.
            sleep: Awaitable sleep used between retries.
        """
        self.config = config
        self._cache = cache
        self._client = client
        self._owns_client = client is None
        self._validator = validator or UrlValidator.from_config(config)
        self._telemetry = telemetry or TelemetryContext()
        self._sleep = sleep

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    self.config.timeout, connect=self.config.connect_timeout
                ),
                headers={"User-Agent": self.config.user_agent},
                follow_redirects=True,
                max_redirects=self.config.max_redirects,
            )
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> HttpContentFetcher:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    async def fetch(self, url: str, options: FetchOptions | None = None) -> str:
        """Fetch ``url`` and return its body as text.

        Raises:
            UrlValidationError: If the URL fails validation (a ``FetchError``
                too, so callers handling fetch failures also see rejected URLs).
            ContentTooLargeError: If the body exceeds ``max_content_length``.
            FetchError: If the request fails after all attempts.
        """
        opts = options or FetchOptions()
        normalized = self._validator.validate(url)

        key = None
        if self._cache is not None and self._cache.enabled:
            key = self._cache.key_for(normalized, opts.cache_parts())
            entry = self._cache.get(key)
            if entry is not None:
                self._telemetry.count("fetch.cache_hit")
                return entry.value

        with self._telemetry("fetch", url=normalized):
            content = await self._fetch_with_retries(normalized, opts)

        if key is not None and content.strip():
            self._cache.put(key, content)  # type: ignore[union-attr]
        return content

    async def _fetch_with_retries(self, url: str, opts: FetchOptions) -> str:
        attempts = self.config.retry_attempts
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                with self._telemetry("fetch.attempt", attempt=attempt):
                    return await self._request_once(url, opts)
            except ContentTooLargeError:
                raise
            except httpx.HTTPStatusError as e:
                if not _is_retryable_status(e.response.status_code):
                    raise FetchError(
                        f"Failed to fetch content from {url}: HTTP {e.response.status_code}",
                        context=self._error_context(url, attempt, e),
                    ) from e
                last_error = e
            except httpx.TransportError as e:
                last_error = e
            except httpx.HTTPError as e:
                # Redirect loops and decoding errors will not improve on retry.
                raise FetchError(
                    f"Failed to fetch content from {url}: {e}",
                    context=self._error_context(url, attempt, e),
                ) from e

            if attempt < attempts:
                delay = (
                    self.config.retry_delay_ms
                    / 1000.0
                    * self.config.retry_backoff ** (attempt - 1)
                )
                logger.warning(
                    "Fetch attempt %d/%d for %s failed (%s); retrying in %.2fs",
                    attempt,
                    attempts,
                    url,
                    last_error,
                    delay,
                )
                self._telemetry.count("fetch.retry")
                await self._sleep(delay)

        raise FetchError(
            f"Failed to fetch content from {url} after {attempts} attempt(s)",
            context=self._error_context(url, attempts, last_error),
        ) from last_error

    async def _request_once(self, url: str, opts: FetchOptions) -> str:
        client = self._get_client()
        timeout: Any = httpx.USE_CLIENT_DEFAULT
        if opts.timeout is not None:
            timeout = httpx.Timeout(opts.timeout, connect=self.config.connect_timeout)

        request = client.build_request(
            opts.method,
            url,
            headers=dict(opts.headers),
            cookies=dict(opts.cookies) or None,
            timeout=timeout,
        )
        response = await client.send(
            request,
            auth=opts.auth if opts.auth else httpx.USE_CLIENT_DEFAULT,
            follow_redirects=(
                True if opts.follow_redirects is None else opts.follow_redirects
            ),
            stream=True,
        )
        try:
            response.raise_for_status()
            body = bytearray()
            limit = self.config.max_content_length
            async for chunk in response.aiter_bytes():
                body.extend(chunk)
                if len(body) > limit:
                    raise ContentTooLargeError(
                        f"Content from {url} exceeds {limit} bytes",
                        context={"url": url, "max_content_length": limit},
                    )
            encoding = response.encoding or "utf-8"
            return bytes(body).decode(encoding, errors="replace")
        finally:
            await response.aclose()

    @staticmethod
    def _error_context(
        url: str, attempts: int, error: Exception | None
    ) -> dict[str, Any]:
        context: dict[str, Any] = {
            "url": url,
            "attempts": attempts,
            "original_error": str(error),
            "error_type": type(error).__name__,
        }
        if isinstance(error, httpx.HTTPStatusError):
            context["status_code"] = error.response.status_code
        return context
