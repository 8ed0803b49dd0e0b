"""Retry policies for transient failures.

A RetryPolicy is a value object handed to the component that performs a
side-effecting call. Retrying happens at the call site only, never by
re-running a whole pipeline phase.

Usage:
    policy = RetryPolicy(max_attempts=5, base_delay=0.5)
    result = call_with_retry(
        lambda: registry.publish(ref, content),
        policy=policy,
        is_retryable=lambda e: e.is_transient,
    )
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from .result import Ok, Result

__all__ = ["RetryPolicy", "call_with_retry", "NO_RETRY"]

T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded exponential backoff.

    Attributes:
        max_attempts: Total attempts including the first one (>= 1).
        base_delay: Delay in seconds before the second attempt.
        max_delay: Upper bound for any single delay.
        multiplier: Growth factor between consecutive delays.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given zero-based failed attempt."""
        delay = self.base_delay * (self.multiplier**attempt)
        return max(0.0, min(delay, self.max_delay))

    @property
    def attempts(self) -> int:
        return max(1, self.max_attempts)


NO_RETRY = RetryPolicy(max_attempts=1, base_delay=0.0)


def call_with_retry(
    fn: Callable[[], Result[T, E]],
    *,
    policy: RetryPolicy,
    is_retryable: Callable[[E], bool],
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Callable[[int, E], None] | None = None,
) -> Result[T, E]:
    """Call ``fn`` until it succeeds, fails permanently, or attempts run out.

    Returns the last Err when every attempt failed.
    """
    attempt = 0
    while True:
        result = fn()
        if isinstance(result, Ok):
            return result

        error = result.error
        if attempt >= policy.attempts - 1 or not is_retryable(error):
            return result

        if on_retry is not None:
            on_retry(attempt + 1, error)
        sleep(policy.delay_for(attempt))
        attempt += 1

