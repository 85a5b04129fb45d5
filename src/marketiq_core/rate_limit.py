"""Best-effort fixed-window admission control.

Counters live in the shared key-value store under one key per
``(scope, subject, minute)``. Increments are read-modify-write against an
eventually consistent store, so concurrent callers can exceed the limit by a
small margin. This is a soft guard against abuse, not a security boundary;
exact admission control needs a store with atomic increments.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from marketiq_core.errors import StorageError
from marketiq_core.kv.keys import rate_limit_key
from marketiq_core.kv.storage import AbstractKeyValueStore
from marketiq_core.logging import AnyLogger, get_logger, log_warning

WINDOW_SECONDS = 60
COUNTER_TTL_SECONDS = 90


@dataclass(frozen=True)
class RateDecision:
    """Admission decision for one call."""

    allowed: bool
    count: int
    limit: int


def window_key(now: float) -> int:
    """Return the fixed 60-second window index containing ``now``."""
    return int(now // WINDOW_SECONDS)


class RateLimiter:
    """Per ``(scope, subject)`` per-minute counters that fail open."""

    def __init__(
        self,
        store: AbstractKeyValueStore,
        *,
        now_fn: Callable[[], float] = time.time,
        logger: AnyLogger | None = None,
    ) -> None:
        self._store = store
        self._now_fn = now_fn
        self._logger = get_logger(__name__) if logger is None else logger

    async def acquire(
        self,
        scope: str,
        subject: str,
        limit_per_minute: int,
    ) -> RateDecision:
        """Count one call and decide whether it is admitted.

        Rejected calls are not written back, so a flood of rejected calls does
        not keep bumping the stored counter.
        """
        key = rate_limit_key(scope, str(subject), window_key(self._now_fn()))
        try:
            raw = await self._store.get(key)
            count = _parse_count(raw) + 1
            if count > limit_per_minute:
                return RateDecision(allowed=False, count=count, limit=limit_per_minute)
            await self._store.put(key, str(count), ttl_seconds=COUNTER_TTL_SECONDS)
        except StorageError as exc:
            log_warning(
                self._logger,
                "rate_limit.storage_unavailable",
                scope=scope,
                error=str(exc),
            )
            return RateDecision(allowed=True, count=0, limit=limit_per_minute)
        return RateDecision(allowed=True, count=count, limit=limit_per_minute)


def _parse_count(raw: str | None) -> int:
    if raw is None:
        return 0
    try:
        return max(int(raw.strip()), 0)
    except ValueError:
        return 0
