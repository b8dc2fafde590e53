"""
Retry Manager for the gateway sync system.

Feed downloads, gateway calls and notification deliveries all go through a
RetryManager. Errors whose code is transient are retried with exponential
backoff; the final outcome is handed back so the caller decides whether the
run aborts.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from .config import RetryConfig
from .exceptions import GatewaySyncError

T = TypeVar("T")

ErrorPredicate = Callable[[Exception], bool]


@dataclass
class RetryResult(Generic[T]):
    """Outcome of an operation run under a RetryManager."""

    success: bool
    result: Optional[T]
    attempts: int
    last_error: Optional[Exception]


class RetryManager:
    """
    Runs async operations with exponential backoff between attempts.

    The first attempt plus config.max_retries retries are made at most. A
    failure that is not retryable ends the run immediately.
    """

    # Always transient, whatever the configuration lists
    TRANSIENT_ERROR_CODES = frozenset({"timeout", "server_error", "rate_limited", "network_error"})

    def __init__(
        self,
        config: RetryConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Args:
            config: max_retries, backoff delays and extra retryable codes
            sleep: Coroutine awaited between attempts
        """
        self._config = config
        self._sleep = sleep

    @property
    def config(self) -> RetryConfig:
        return self._config

    @property
    def max_attempts(self) -> int:
        return self._config.max_retries + 1

    def _calculate_delay(self, attempt: int) -> float:
        """Wait after the given 0-indexed failed attempt: base * 2^attempt, capped at max_delay."""
        return min(
            self._config.base_delay_seconds * 2 ** attempt,
            self._config.max_delay_seconds,
        )

    def is_retryable_error(self, error_code) -> bool:
        """Accepts a code string or an error-code enum member."""
        code = getattr(error_code, "value", error_code)
        code = str(code)
        return code in self.TRANSIENT_ERROR_CODES or code in self._config.retryable_errors

    def is_retryable_exception(self, error: Exception) -> bool:
        if not isinstance(error, GatewaySyncError):
            return False
        return self.is_retryable_error(error.code)

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        is_retryable: Optional[ErrorPredicate] = None,
    ) -> RetryResult[T]:
        """
        Await operation until it succeeds, fails permanently or runs out of attempts.

        Args:
            operation: Zero-argument coroutine function, called once per attempt
            is_retryable: Decides whether a raised exception is worth another
                attempt; structured errors with a transient code by default

        Returns:
            RetryResult with the value on success or the last error otherwise
        """
        retryable = is_retryable or self.is_retryable_exception
        error: Optional[Exception] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                value = await operation()
            except Exception as e:
                error = e
            else:
                return RetryResult(success=True, result=value, attempts=attempt, last_error=None)

            if attempt == self.max_attempts or not retryable(error):
                return RetryResult(success=False, result=None, attempts=attempt, last_error=error)
            await self._sleep(self._calculate_delay(attempt - 1))

        # max_retries below zero leaves no attempt at all
        return RetryResult(success=False, result=None, attempts=0, last_error=error)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        is_retryable: Optional[ErrorPredicate] = None,
    ) -> T:
        """Like execute_with_retry, but return the value or raise the last error."""
        outcome = await self.execute_with_retry(operation, is_retryable)
        if outcome.success:
            return outcome.result
        if outcome.last_error is None:
            raise RuntimeError("operation was never attempted")
        raise outcome.last_error
