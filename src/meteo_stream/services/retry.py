"""Exponential backoff with jitter around provider calls."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog
from prometheus_client import Counter
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)
from tenacity.wait import wait_base

from meteo_stream.config import Settings
from meteo_stream.services.provider import ProviderError

logger = structlog.get_logger()

T = TypeVar("T")

# Metrics
provider_attempts = Counter(
    "provider_attempts_total",
    "Provider call attempts by outcome",
    ["outcome"],
)


class RetryExhaustedError(Exception):
    """Raised when every attempt of an operation failed."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters, all in milliseconds.

    The wait before attempt ``n`` (n >= 2) is ``min(cap, base * 2**(n-2))``
    plus a uniform jitter in ``[0, jitter]``.
    """

    base_ms: int = 500
    cap_ms: int = 30000
    jitter_ms: int = 500

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            base_ms=settings.retry_base_ms,
            cap_ms=settings.retry_cap_ms,
            jitter_ms=settings.retry_jitter_ms,
        )

    def wait_strategy(self) -> wait_base:
        exponential = wait_exponential(multiplier=self.base_ms / 1000, max=self.cap_ms / 1000)
        return exponential + wait_random(0, self.jitter_ms / 1000)


def _log_failed_attempt(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    provider_attempts.labels(outcome="error").inc()
    logger.warning(
        "Attempt failed",
        attempt=retry_state.attempt_number,
        error_type=type(error).__name__,
        error=str(error),
    )


def _log_backoff(retry_state: RetryCallState) -> None:
    delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
    logger.debug(
        "Backing off before retry",
        attempt=retry_state.attempt_number + 1,
        delay_ms=round(delay * 1000, 1),
    )


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int,
    policy: RetryPolicy | None = None,
    *,
    retry_on: tuple[type[BaseException], ...] = (ProviderError,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` up to ``max_attempts + 1`` times.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        max_attempts: Number of retries after the initial try
        policy: Backoff parameters
        retry_on: Exception types that trigger another attempt
        sleep: Awaitable used for the backoff delay

    Returns:
        Result of the first successful attempt

    Raises:
        ValueError: If ``max_attempts`` is negative
        RetryExhaustedError: If every attempt failed with a retryable error
    """
    if max_attempts < 0:
        raise ValueError("max_attempts must be >= 0")

    policy = policy or RetryPolicy()
    total = max_attempts + 1
    retrying = AsyncRetrying(
        stop=stop_after_attempt(total),
        wait=policy.wait_strategy(),
        retry=retry_if_exception_type(retry_on),
        after=_log_failed_attempt,
        before_sleep=_log_backoff,
        sleep=sleep,
    )

    try:
        async for attempt in retrying:
            with attempt:
                result = await operation()
    except RetryError as e:
        last_error = e.last_attempt.exception()
        if last_error is None:
            raise
        raise RetryExhaustedError(total, last_error) from last_error

    provider_attempts.labels(outcome="success").inc()
    logger.info(
        "Attempt succeeded",
        attempt=attempt.retry_state.attempt_number,
        max_attempts=total,
    )
    return result
