"""Per-dependency circuit breaker over shared key-value storage.

Key behavior notes:
  - State is keyed by logical dependency name (``data:binance:CRYPTO``,
    ``rss:<url>``, ``ai:openai:analysis``), so failures in one dependency never
    throttle unrelated ones.
  - After ``failure_threshold`` consecutive failures the circuit stays open for
    ``cooldown_seconds``. Once the cooldown elapses calls are allowed again; a
    further failure re-opens it immediately, a success resets the counter.
  - Storage outages fail open: ``allows`` returns True and outcome reports are
    dropped, so a storage incident cannot take down every integration.
"""

from marketiq_core.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig
from marketiq_core.circuit_breaker.exceptions import (
    CircuitBreakerError,
    CircuitOpenError,
)
from marketiq_core.circuit_breaker.metrics import BreakerListener
from marketiq_core.circuit_breaker.state import BreakerStatus, CircuitState
from marketiq_core.circuit_breaker.storage import (
    AbstractBreakerStorage,
    KeyValueBreakerStorage,
)

__all__ = [
    "AbstractBreakerStorage",
    "BreakerListener",
    "BreakerStatus",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitOpenError",
    "CircuitState",
    "KeyValueBreakerStorage",
]
