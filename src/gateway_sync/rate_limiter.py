"""
Rate Limiter module for the gateway sync system.

Cloudflare enforces an account-wide request budget (1200 requests per five
minutes) and answers 429 once it is spent. The limiter keeps the client
under that budget:

- one request at a time per gateway endpoint ("lists", "rules")
- sliding-window limits per endpoint and for the whole account
- growing waits after consecutive 429/503 answers
"""

import asyncio
import time
from collections import defaultdict, deque
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from .config import RateLimitConfig, RateLimitRule


@dataclass
class RateLimitStatus:
    """Result of a rate limit check."""

    allowed: bool
    wait_seconds: float
    reason: Optional[str] = None


class _SlidingWindow:
    """Request timestamps of one rule inside its window."""

    def __init__(self, name: str, rule: RateLimitRule) -> None:
        self.name = name
        self.rule = rule
        self._times: deque[float] = deque()

    def _expire(self, now: float) -> None:
        cutoff = now - self.rule.window_seconds
        while self._times and self._times[0] <= cutoff:
            self._times.popleft()

    def wait_time(self, now: float) -> tuple[float, Optional[str]]:
        """Seconds until another request fits this rule, with the reason."""
        self._expire(now)
        rule = self.rule

        if len(self._times) >= rule.max_requests:
            wait = self._times[0] + rule.window_seconds - now
            return max(wait, 0.0), f"Rate limit reached for {self.name}: {len(self._times)}/{rule.max_requests}"

        if rule.min_delay_seconds > 0 and self._times:
            since_last = now - self._times[-1]
            if since_last < rule.min_delay_seconds:
                return rule.min_delay_seconds - since_last, f"Minimum delay for {self.name}"

        return 0.0, None

    def record(self, now: float) -> None:
        self._times.append(now)


class RateLimiter:
    """
    Rate limiter with serial access control per endpoint.

    The global window is shared by every endpoint; endpoint windows only see
    their own requests.
    """

    # Growth factor per consecutive 429/503
    ADAPTIVE_DELAY_BASE = 2.0
    # Cap for grown delays (a longer explicit base delay is still honored)
    MAX_ADAPTIVE_DELAY = 300.0
    # Base delay for 429/503 when the caller has none
    DEFAULT_ERROR_DELAY = 5.0

    def __init__(self, config: RateLimitConfig) -> None:
        self._config = config
        self._endpoint_windows = {
            endpoint: _SlidingWindow(f"endpoint:{endpoint}", rule)
            for endpoint, rule in config.per_endpoint.items()
        }
        self._global_window: Optional[_SlidingWindow] = None
        if config.global_limit:
            self._global_window = _SlidingWindow("global", config.global_limit)
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._consecutive_errors: dict[str, int] = defaultdict(int)

    def _windows(self, endpoint: str) -> list[_SlidingWindow]:
        windows = []
        if endpoint in self._endpoint_windows:
            windows.append(self._endpoint_windows[endpoint])
        if self._global_window is not None:
            windows.append(self._global_window)
        return windows

    @asynccontextmanager
    async def acquire(self, endpoint: str) -> AsyncIterator[RateLimitStatus]:
        """
        Hold the endpoint's lock for the duration of the block.

        The yielded status tells the caller how long to wait before sending;
        the request itself belongs inside the block:

            async with rate_limiter.acquire("lists") as status:
                if not status.allowed:
                    await asyncio.sleep(status.wait_seconds)
                response = await make_request()
                rate_limiter.record_request("lists")
        """
        async with self._locks[endpoint]:
            now = time.monotonic()
            wait, reason = 0.0, None
            for window in self._windows(endpoint):
                window_wait, window_reason = window.wait_time(now)
                if window_wait > wait:
                    wait, reason = window_wait, window_reason

            yield RateLimitStatus(allowed=wait <= 0, wait_seconds=wait, reason=reason)

    def record_request(self, endpoint: str) -> None:
        now = time.monotonic()
        for window in self._windows(endpoint):
            window.record(now)

    def apply_adaptive_delay(
        self,
        endpoint: str,
        status_code: int,
        base_delay: Optional[float] = None,
    ) -> float:
        """
        Wait time after a 429 or 503 answer.

        delay = base_delay * 2^(consecutive_errors - 1), capped at
        MAX_ADAPTIVE_DELAY unless base_delay itself is larger.

        Args:
            endpoint: The endpoint that returned the error
            status_code: HTTP status code; anything but 429/503 gives 0
            base_delay: Starting delay, e.g. a Retry-After value or a fixed
                cooldown; defaults to DEFAULT_ERROR_DELAY or the endpoint's
                minimum delay, whichever is larger

        Returns:
            Recommended wait in seconds
        """
        if status_code not in (429, 503):
            return 0.0

        self._consecutive_errors[endpoint] += 1
        consecutive = self._consecutive_errors[endpoint]

        if base_delay is None:
            base_delay = self.DEFAULT_ERROR_DELAY
            if endpoint in self._config.per_endpoint:
                base_delay = max(base_delay, self._config.per_endpoint[endpoint].min_delay_seconds)

        delay = base_delay * (self.ADAPTIVE_DELAY_BASE ** (consecutive - 1))
        return min(delay, max(self.MAX_ADAPTIVE_DELAY, base_delay))

    def reset_error_count(self, endpoint: str) -> None:
        self._consecutive_errors[endpoint] = 0

    def consecutive_errors(self, endpoint: str) -> int:
        return self._consecutive_errors[endpoint]
