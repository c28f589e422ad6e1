"""Fixed-window admission control in front of the pipeline.

Counting rides on the backend's atomic ``increment`` so several processes
sharing a Redis backend share one budget. The window starts at the first hit
and is never extended by later hits; a companion ``<key>:timer`` entry records
when it started so callers can be told how long to wait.
"""

from __future__ import annotations

import logging
import time

from transmute.cache.backends import CacheBackend, Clock
from transmute.config.types import RateLimitConfig
from transmute.core.exceptions import RateLimitExceededError
from transmute.core.types import RateDecision, RateWindow

logger = logging.getLogger(__name__)


class RateLimiter:
    """Counts admissions per key inside a fixed window."""

    def __init__(
        self,
        config: RateLimitConfig,
        backend: CacheBackend,
        clock: Clock = time.time,
    ) -> None:
        """Initialize the limiter.

        Args:
            config: Limit, window length, key prefix and master switch.
            backend: Shared store providing the atomic counter.
            clock: Wall-clock source in seconds; injectable for tests.
        """
        self.config = config
        self._backend = backend
        self._clock = clock

    @property
    def enabled(self) -> bool:  # noqa: D102
        return self.config.enabled

    def _key(self, key: str | None) -> str:
        return key if key is not None else self.config.global_key

    def attempt(self, key: str | None = None) -> RateDecision:
        """Record one hit and decide whether it is admitted.

        Disabled limiters admit everything without touching the backend.
        """
        if not self.config.enabled:
            return RateDecision.ALLOWED

        full_key = self._key(key)
        count = self._backend.increment(full_key, self.config.decay_seconds)
        if count == 1:
            self._backend.put(
                f"{full_key}:timer", repr(self._clock()), self.config.decay_seconds
            )
        if count <= self.config.max_attempts:
            return RateDecision.ALLOWED
        logger.debug(
            "Rate limit denied %s (%d/%d)", full_key, count, self.config.max_attempts
        )
        return RateDecision.DENIED

    def admit(self, key: str | None = None) -> None:
        """Record one hit or raise when the window is exhausted.

        Raises:
            RateLimitExceededError: With the seconds until the window resets.
        """
        if self.attempt(key) is RateDecision.ALLOWED:
            return
        full_key = self._key(key)
        window = self.status(key)
        raise RateLimitExceededError(
            key=full_key,
            max_attempts=self.config.max_attempts,
            retry_after=window.retry_after(self._clock()),
        )

    def status(self, key: str | None = None) -> RateWindow:
        """Snapshot of the current window for ``key`` without counting a hit."""
        full_key = self._key(key)
        now = self._clock()
        raw_count = self._backend.get(full_key) if self.config.enabled else None
        count = int(raw_count) if raw_count is not None else 0
        raw_start = self._backend.get(f"{full_key}:timer") if count else None
        window_start = float(raw_start) if raw_start is not None else now
        return RateWindow(
            key=full_key,
            count=count,
            window_start=window_start,
            limit=self.config.max_attempts,
            window_seconds=self.config.decay_seconds,
        )

    def remaining(self, key: str | None = None) -> int:
        """Admissions left in the current window."""
        if not self.config.enabled:
            return self.config.max_attempts
        return max(0, self.config.max_attempts - self.status(key).count)

    def reset(self, key: str | None = None) -> None:
        """Forget the window for ``key`` so the next hit starts a new one."""
        full_key = self._key(key)
        self._backend.delete(full_key)
        self._backend.delete(f"{full_key}:timer")
