from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    stop_after_attempt,
    wait_exponential_jitter,
    wait_none,
)
from tenacity.retry import retry_base


@dataclass(frozen=True)
class RetryBackoffPolicy:
    """Configuration for retry attempt count and backoff boundaries."""

    attempts: int
    min_seconds: float
    max_seconds: float

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if self.min_seconds < 0:
            raise ValueError("min_seconds must be >= 0")
        if self.max_seconds < 0:
            raise ValueError("max_seconds must be >= 0")
        if self.max_seconds < self.min_seconds:
            raise ValueError("max_seconds must be >= min_seconds")


def build_exponential_jitter_retrying(
    *,
    retry: retry_base,
    policy: RetryBackoffPolicy,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    before_sleep: Callable[[RetryCallState], None] | None = None,
    reraise: bool = True,
) -> AsyncRetrying:
    """Build a bounded ``AsyncRetrying`` with exponential jitter backoff."""
    options: dict[str, Any] = {
        "retry": retry,
        "wait": wait_exponential_jitter(
            initial=policy.min_seconds,
            max=policy.max_seconds,
        ),
        "stop": stop_after_attempt(policy.attempts),
        "reraise": reraise,
    }
    if sleep is not None:
        options["sleep"] = sleep
    if before_sleep is not None:
        options["before_sleep"] = before_sleep
    return AsyncRetrying(**options)


def build_rotation_retrying(
    *,
    retry: retry_base,
    attempts: int,
    before_sleep: Callable[[RetryCallState], None] | None = None,
) -> AsyncRetrying:
    """Build an ``AsyncRetrying`` that moves to the next attempt without waiting.

    Used where each attempt switches to a different resource (for example the
    next API credential) rather than waiting for the same one to recover.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")
    options: dict[str, Any] = {
        "retry": retry,
        "wait": wait_none(),
        "stop": stop_after_attempt(attempts),
        "reraise": True,
    }
    if before_sleep is not None:
        options["before_sleep"] = before_sleep
    return AsyncRetrying(**options)
