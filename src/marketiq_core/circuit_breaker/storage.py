"""State storage for circuit breakers.

Storage is decoupled from breaker logic. The default backend keeps one JSON
record per breaker in the shared key-value store with a TTL so idle breakers
expire passively. Read-modify-write is not atomic; concurrent reporters may
lose an increment, which only delays opening by one failure.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from marketiq_core.circuit_breaker.state import CircuitState
from marketiq_core.kv.keys import circuit_key
from marketiq_core.kv.storage import AbstractKeyValueStore, InMemoryKeyValueStore


class AbstractBreakerStorage(ABC):
    """Abstract breaker storage interface.

    Implementations raise ``StorageError`` when the backend is unavailable.
    """

    @abstractmethod
    async def get_state(self, name: str) -> CircuitState:
        """Return the stored state for ``name`` or a fresh closed state."""

    @abstractmethod
    async def put_state(self, state: CircuitState) -> None:
        """Persist ``state``."""


class KeyValueBreakerStorage(AbstractBreakerStorage):
    """Breaker state persisted in the shared key-value store."""

    def __init__(
        self,
        store: AbstractKeyValueStore | None = None,
        *,
        ttl_seconds: int = 3600,
    ) -> None:
        self._store = InMemoryKeyValueStore() if store is None else store
        self._ttl_seconds = ttl_seconds

    async def get_state(self, name: str) -> CircuitState:
        record = await self._store.get_json(circuit_key(name))
        return CircuitState.from_record(name, record)

    async def put_state(self, state: CircuitState) -> None:
        await self._store.put_json(
            circuit_key(state.name),
            state.to_record(),
            ttl_seconds=self._ttl_seconds,
        )
