"""Short-horizon duplicate suppression for inbound events."""

from __future__ import annotations

from marketiq_core.errors import StorageError
from marketiq_core.kv.keys import dedup_key
from marketiq_core.kv.storage import AbstractKeyValueStore
from marketiq_core.logging import AnyLogger, get_logger, log_warning

DEFAULT_DEDUP_TTL_SECONDS = 60


class DedupGuard:
    """At-most-once marker for recently seen event ids.

    Check-then-set against the shared store: two near-simultaneous deliveries
    of the same id can both be admitted, so handlers must tolerate rare double
    processing. Markers expire after their TTL and the id may then be
    processed again; this filters rapid redeliveries only.
    """

    def __init__(
        self,
        store: AbstractKeyValueStore,
        *,
        logger: AnyLogger | None = None,
    ) -> None:
        self._store = store
        self._logger = get_logger(__name__) if logger is None else logger

    async def mark_if_new(
        self,
        event_id: str | int,
        ttl_seconds: int = DEFAULT_DEDUP_TTL_SECONDS,
    ) -> bool:
        """Return True the first time ``event_id`` is seen within the TTL."""
        normalized = str(event_id).strip()
        if not normalized:
            return True
        key = dedup_key(normalized)
        try:
            if await self._store.get(key) is not None:
                return False
            await self._store.put(key, "1", ttl_seconds=ttl_seconds)
        except StorageError as exc:
            log_warning(
                self._logger,
                "dedup.storage_unavailable",
                event_id=normalized,
                error=str(exc),
            )
            return True
        return True
