"""Retry policy and jittered exponential backoff.

A RetryPolicy is a plain value: either a bounded number of retries or
unbounded ("forever"). The same policy type drives both the engine's
convergence waits and its transient-error retries, through
`retry_with_backoff` and `RetryPolicy.delay`.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

UNBOUNDED_KEYWORDS = ("forever", "infinity", "unbounded")

DEFAULT_BASE_DELAY_SECONDS = 1.0
DEFAULT_MAX_DELAY_SECONDS = 30.0
JITTER_RATIO = 0.2
# Doubling stops here so unbounded waits never overflow a float.
MAX_BACKOFF_EXPONENT = 32


@dataclass(frozen=True)
class RetryPolicy:
    """How many times, and how patiently, to retry.

    Attributes:
        max_retries: Retries after the first attempt. None means unbounded.
        base_delay_seconds: Delay before the first retry.
        max_delay_seconds: Cap on the exponential delay (before jitter).
    """

    max_retries: int | None = 0
    base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS
    max_delay_seconds: float = DEFAULT_MAX_DELAY_SECONDS

    def __post_init__(self) -> None:
        if self.max_retries is not None and self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0 or None: {self.max_retries}")
        if self.base_delay_seconds < 0:
            raise ValueError(f"base_delay_seconds must be >= 0: {self.base_delay_seconds}")
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")

    @classmethod
    def bounded(cls, retries: int, base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS) -> RetryPolicy:
        return cls(
            max_retries=retries,
            base_delay_seconds=base_delay_seconds,
            max_delay_seconds=max(DEFAULT_MAX_DELAY_SECONDS, base_delay_seconds),
        )

    @classmethod
    def unbounded(cls, base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS) -> RetryPolicy:
        return cls(
            max_retries=None,
            base_delay_seconds=base_delay_seconds,
            max_delay_seconds=max(DEFAULT_MAX_DELAY_SECONDS, base_delay_seconds),
        )

    @classmethod
    def parse(cls, value: int | str, base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS) -> RetryPolicy:
        """Build a policy from a count or one of the unbounded keywords.

        Raises:
            ValueError: If the value is neither.
        """
        if isinstance(value, str):
            text = value.strip().lower()
            if text in UNBOUNDED_KEYWORDS:
                return cls.unbounded(base_delay_seconds)
            value = int(text)
        return cls.bounded(value, base_delay_seconds)

    @property
    def is_unbounded(self) -> bool:
        return self.max_retries is None

    def allows_retry(self, retry_number: int) -> bool:
        """Check whether retry number `retry_number` (1-based) is within budget."""
        return self.max_retries is None or retry_number <= self.max_retries

    def delay(self, retry_number: int) -> float:
        """Backoff before retry `retry_number` (1-based), with up to 20% jitter."""
        backoff = min(
            self.base_delay_seconds * (2 ** min(max(retry_number - 1, 0), MAX_BACKOFF_EXPONENT)),
            self.max_delay_seconds,
        )
        jitter = random.uniform(0, backoff * JITTER_RATIO)
        return backoff + jitter

    def __str__(self) -> str:
        return "forever" if self.max_retries is None else str(self.max_retries)


class RetryExhaustedError(Exception):
    """Raised when every attempt allowed by a RetryPolicy failed."""

    def __init__(self, operation_name: str, attempts: int, last_error: BaseException) -> None:
        self.operation_name = operation_name
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{operation_name} failed after {attempts} attempt(s): {last_error}")


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    operation_name: str,
    should_retry: Callable[[BaseException], bool] = lambda _: True,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run an async operation, retrying failures with exponential backoff.

    Errors rejected by `should_retry` propagate immediately and untouched.

    Args:
        operation: Zero-argument coroutine factory.
        policy: Retry budget and backoff shape.
        operation_name: Human-readable name for logging.
        should_retry: Predicate selecting retryable errors.
        sleep: Awaitable sleep, injectable for tests.

    Returns:
        The operation's result.

    Raises:
        RetryExhaustedError: If the budget runs out; chained to the last error.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as e:
            if not should_retry(e):
                raise
            if not policy.allows_retry(attempt):
                raise RetryExhaustedError(operation_name, attempt, e) from e

            wait_time = policy.delay(attempt)
            logger.warning(
                f"{operation_name} failed, retrying",
                extra={
                    "attempt": attempt,
                    "max_attempts": "unbounded" if policy.is_unbounded else policy.max_retries + 1,
                    "wait_seconds": wait_time,
                    "error": str(e),
                },
            )
            await sleep(wait_time)
