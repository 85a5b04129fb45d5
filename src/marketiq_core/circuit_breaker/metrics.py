"""Observability hooks for circuit breakers."""

from typing import Protocol

from marketiq_core.circuit_breaker.state import BreakerStatus


class BreakerListener(Protocol):
    """Listener protocol for circuit breaker events.

    Listener errors are suppressed; a failing hook never changes breaker
    behavior.
    """

    async def on_state_change(
        self, name: str, old: BreakerStatus, new: BreakerStatus
    ) -> None:
        """Handle circuit status transitions."""

    async def on_call_rejected(self, name: str) -> None:
        """Handle a dependency being skipped while its circuit is open."""

    async def on_outcome(self, name: str, ok: bool, consecutive_failures: int) -> None:
        """Handle a reported call outcome."""
