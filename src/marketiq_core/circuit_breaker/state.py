"""Circuit breaker state primitives."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from enum import StrEnum


class BreakerStatus(StrEnum):
    """Circuit breaker status values derived from stored state."""

    CLOSED = "closed"
    OPEN = "open"


def _number(value: object) -> float:
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return 0.0
    return 0.0


@dataclass(frozen=True)
class CircuitState:
    """Persisted failure/availability state of one logical dependency.

    Attributes:
        name: Breaker name, one per logical dependency.
        consecutive_failures: Failures since the last recorded success.
        open_until: Epoch seconds until which calls are rejected, ``0`` if closed.
        last_failure_at: Epoch seconds of the last recorded failure, ``0`` if none.
        last_success_at: Epoch seconds of the last recorded success, ``0`` if none.
    """

    name: str
    consecutive_failures: int = 0
    open_until: float = 0.0
    last_failure_at: float = 0.0
    last_success_at: float = 0.0

    def is_open(self, now: float) -> bool:
        return self.open_until > now

    def status(self, now: float) -> BreakerStatus:
        return BreakerStatus.OPEN if self.is_open(now) else BreakerStatus.CLOSED

    def with_success(self, now: float) -> CircuitState:
        return replace(
            self,
            consecutive_failures=0,
            open_until=0.0,
            last_success_at=now,
        )

    def with_failure(
        self,
        now: float,
        *,
        failure_threshold: int,
        cooldown_seconds: float,
    ) -> CircuitState:
        failures = self.consecutive_failures + 1
        open_until = self.open_until
        if failures >= failure_threshold:
            open_until = now + cooldown_seconds
        return replace(
            self,
            consecutive_failures=failures,
            open_until=open_until,
            last_failure_at=now,
        )

    def to_record(self) -> dict[str, object]:
        return {
            "fails": self.consecutive_failures,
            "open_until": self.open_until,
            "last_fail_at": self.last_failure_at,
            "last_ok_at": self.last_success_at,
        }

    @classmethod
    def from_record(cls, name: str, record: object) -> CircuitState:
        """Build state from a stored record, tolerating partial or legacy data."""
        if not isinstance(record, Mapping):
            return cls(name=name)
        return cls(
            name=name,
            consecutive_failures=max(int(_number(record.get("fails"))), 0),
            open_until=_number(record.get("open_until")),
            last_failure_at=_number(record.get("last_fail_at")),
            last_success_at=_number(record.get("last_ok_at")),
        )
