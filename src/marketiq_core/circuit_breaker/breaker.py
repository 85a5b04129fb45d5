"""Core circuit breaker implementation."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, ParamSpec, TypeVar

from marketiq_core.circuit_breaker.exceptions import CircuitOpenError
from marketiq_core.circuit_breaker.metrics import BreakerListener
from marketiq_core.circuit_breaker.state import BreakerStatus, CircuitState
from marketiq_core.circuit_breaker.storage import (
    AbstractBreakerStorage,
    KeyValueBreakerStorage,
)
from marketiq_core.errors import StorageError
from marketiq_core.kv.storage import AbstractKeyValueStore
from marketiq_core.logging import AnyLogger, get_logger, log_warning
from marketiq_core.settings import CoreSettings

T = TypeVar("T")
P = ParamSpec("P")


@dataclass(slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Attributes:
        failure_threshold: Consecutive failures that open the circuit.
        cooldown_seconds: Seconds the circuit stays open once tripped.
        excluded_exceptions: Exceptions from ``call`` that are not failures.
    """

    failure_threshold: int = 3
    cooldown_seconds: float = 300.0
    excluded_exceptions: tuple[type[Exception], ...] = ()

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.cooldown_seconds < 0:
            raise ValueError("cooldown_seconds must be >= 0")


class CircuitBreaker:
    """Per-dependency failure tracking over shared storage.

    One instance serves every logical dependency; state is keyed by name so a
    failing dependency never throttles an unrelated one. Storage errors never
    escape: ``allows`` fails open and ``report_outcome`` drops the update.
    """

    def __init__(
        self,
        *,
        config: CircuitBreakerConfig | None = None,
        storage: AbstractBreakerStorage | None = None,
        listeners: Sequence[BreakerListener] | None = None,
        now_fn: Callable[[], float] = time.time,
        logger: AnyLogger | None = None,
    ) -> None:
        """Build a circuit breaker with optional custom dependencies.

        Args:
            config: Breaker behavior configuration. Defaults to
                ``CircuitBreakerConfig()``.
            storage: State storage backend. Defaults to key-value storage over
                an in-memory store.
            listeners: Optional listener hooks for breaker events.
            now_fn: Wall clock returning epoch seconds.
            logger: Structured logger for storage failures.
        """
        self.config = CircuitBreakerConfig() if config is None else config
        self._storage = KeyValueBreakerStorage() if storage is None else storage
        self._listeners = tuple(listeners) if listeners is not None else ()
        self._now_fn = now_fn
        self._logger = get_logger(__name__) if logger is None else logger

    @classmethod
    def from_settings(
        cls,
        settings: CoreSettings,
        store: AbstractKeyValueStore,
        **kwargs: Any,
    ) -> CircuitBreaker:
        """Build a breaker whose state lives in ``store`` with settings TTLs."""
        return cls(
            config=CircuitBreakerConfig(
                failure_threshold=settings.breaker_failure_threshold,
                cooldown_seconds=settings.breaker_cooldown_seconds,
            ),
            storage=KeyValueBreakerStorage(
                store, ttl_seconds=settings.breaker_state_ttl_seconds
            ),
            **kwargs,
        )

    async def _emit_state_change(
        self, name: str, old: BreakerStatus, new: BreakerStatus
    ) -> None:
        for listener in self._listeners:
            try:
                await listener.on_state_change(name, old, new)
            except Exception:
                continue

    async def _emit_call_rejected(self, name: str) -> None:
        for listener in self._listeners:
            try:
                await listener.on_call_rejected(name)
            except Exception:
                continue

    async def _emit_outcome(self, name: str, ok: bool, failures: int) -> None:
        for listener in self._listeners:
            try:
                await listener.on_outcome(name, ok, failures)
            except Exception:
                continue

    async def snapshot(self, name: str) -> CircuitState | None:
        """Return stored state for ``name``, or ``None`` if storage is down."""
        try:
            return await self._storage.get_state(name)
        except StorageError as exc:
            log_warning(
                self._logger,
                "circuit_breaker.storage_unavailable",
                breaker=name,
                operation="snapshot",
                error=str(exc),
            )
            return None

    async def allows(self, name: str) -> bool:
        """Return whether calls to ``name`` may proceed. Never raises."""
        state = await self.snapshot(name)
        if state is None:
            return True
        if state.is_open(self._now_fn()):
            await self._emit_call_rejected(name)
            return False
        return True

    async def report_outcome(self, name: str, ok: bool) -> None:
        """Record the outcome of one call to ``name``. Never raises."""
        now = self._now_fn()
        try:
            current = await self._storage.get_state(name)
        except StorageError as exc:
            log_warning(
                self._logger,
                "circuit_breaker.storage_unavailable",
                breaker=name,
                operation="report_outcome",
                error=str(exc),
            )
            return

        if ok:
            updated = current.with_success(now)
        else:
            updated = current.with_failure(
                now,
                failure_threshold=self.config.failure_threshold,
                cooldown_seconds=self.config.cooldown_seconds,
            )

        try:
            await self._storage.put_state(updated)
        except StorageError as exc:
            log_warning(
                self._logger,
                "circuit_breaker.storage_unavailable",
                breaker=name,
                operation="report_outcome",
                error=str(exc),
            )
            return

        await self._emit_outcome(name, ok, updated.consecutive_failures)
        old_status = current.status(now)
        new_status = updated.status(now)
        if old_status != new_status:
            await self._emit_state_change(name, old_status, new_status)

    async def call(
        self,
        name: str,
        func: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Invoke an async callable under circuit breaker protection.

        Args:
            name: Breaker name of the dependency ``func`` talks to.
            func: Async callable to execute.
            *args: Positional arguments forwarded to ``func``.
            **kwargs: Keyword arguments forwarded to ``func``.

        Returns:
            The result of ``func`` when allowed and successful.

        Raises:
            CircuitOpenError: When the circuit is open and the call is rejected.
            Exception: The original exception from ``func`` after the failure
                has been recorded.
        """
        state = await self.snapshot(name)
        now = self._now_fn()
        if state is not None and state.is_open(now):
            await self._emit_call_rejected(name)
            raise CircuitOpenError(name, retry_after=max(state.open_until - now, 0.0))

        try:
            result = await func(*args, **kwargs)
        except self.config.excluded_exceptions:
            raise
        except Exception:
            await self.report_outcome(name, False)
            raise
        await self.report_outcome(name, True)
        return result
