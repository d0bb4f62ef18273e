"""Timeout and retry primitives used by every network operation."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable

from neon_client.errors import ErrorCode, NeonTimeoutError
from neon_client.logging_abstraction import get_logger

__all__ = [
    "RetryPolicy",
    "retry",
    "with_timeout",
]

logger = get_logger(__name__)


async def with_timeout[T](
    awaitable: Awaitable[T],
    timeout: float,
    message: str = "Operation timed out",
    operation: str | None = None,
) -> T:
    """Await ``awaitable`` for at most ``timeout`` seconds.

    On expiry the wrapped operation is cancelled before the error is raised.

    Raises:
        NeonTimeoutError: OPERATION_TIMEOUT with ``timeout`` and ``operation`` in details.

    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except TimeoutError as e:
        raise NeonTimeoutError(
            message,
            ErrorCode.OPERATION_TIMEOUT,
            {"operation": operation or "unknown", "timeout": timeout},
        ) from e


class RetryPolicy:
    """Backoff delay calculation.

    ``delay(attempt) = min(base_delay * factor ** attempt, max_delay)`` plus a
    random jitter of up to ``jitter_factor`` times the delay. ``factor=1`` with
    no jitter gives a fixed interval.
    """

    def __init__(
        self,
        base_delay_seconds: float = 1.0,
        max_delay_seconds: float = 30.0,
        factor: float = 2.0,
        jitter_factor: float = 0.0,
    ) -> None:
        self.base_delay_seconds: float = base_delay_seconds
        self.max_delay_seconds: float = max_delay_seconds
        self.factor: float = factor
        self.jitter_factor: float = jitter_factor

    @classmethod
    def fixed(cls, interval_seconds: float) -> RetryPolicy:
        return cls(
            base_delay_seconds=interval_seconds,
            max_delay_seconds=interval_seconds,
            factor=1.0,
            jitter_factor=0.0,
        )

    def get_delay(self, attempt: int) -> float:
        """Delay in seconds before retry ``attempt`` (0-indexed)."""
        delay = min(self.base_delay_seconds * (self.factor**attempt), self.max_delay_seconds)
        if self.jitter_factor:
            delay += random.uniform(0, delay * self.jitter_factor)
        return delay

    def __repr__(self) -> str:
        return (
            f"RetryPolicy(base_delay={self.base_delay_seconds}s, "
            f"max_delay={self.max_delay_seconds}s, "
            f"factor={self.factor}, jitter_factor={self.jitter_factor})"
        )


async def retry[T](
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    max_attempts: int = 3,
    on_retry: Callable[[int, BaseException, float], None] | None = None,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
) -> T:
    """Run ``operation`` until it succeeds or ``max_attempts`` is reached.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        policy: Backoff between attempts (default: exponential from 1s).
        max_attempts: Total attempts including the first.
        on_retry: Called with ``(attempt, error, next_delay)`` before each sleep.
        retry_on: Exception types that trigger a retry; anything else propagates.

    Raises:
        The last error once attempts are exhausted.

    """
    policy = policy or RetryPolicy()
    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except retry_on as e:
            if attempt >= max_attempts:
                raise
            delay = policy.get_delay(attempt - 1)
            logger.debug(
                "Retrying after failure",
                extra={"attempt": attempt, "max_attempts": max_attempts, "delay": delay, "error": str(e)},
            )
            if on_retry:
                on_retry(attempt, e, delay)
            await asyncio.sleep(delay)
    msg = "max_attempts must be >= 1"
    raise ValueError(msg)
