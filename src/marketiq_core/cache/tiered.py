"""Content-addressed cache layered over progressively slower tiers.

Reads walk the tiers fastest first and backfill every faster tier on a hit.
Writes go through to all tiers. Freshness is judged against the entry's own
``created_at`` so a backfilled copy never outlives the original.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from marketiq_core.errors import StorageError
from marketiq_core.kv.keys import analysis_cache_key
from marketiq_core.kv.storage import AbstractKeyValueStore
from marketiq_core.logging import AnyLogger, get_logger, log_warning

DEFAULT_MEMORY_ENTRIES = 512


@dataclass(frozen=True)
class CacheEntry:
    """Cached JSON object and the epoch second it was produced."""

    value: dict[str, object]
    created_at: float

    def is_fresh(self, now: float, ttl_seconds: float) -> bool:
        return now - self.created_at < ttl_seconds


class CacheTier(ABC):
    """One storage level of the tiered cache.

    Implementations raise ``StorageError`` when their backend fails.
    """

    name: str

    @abstractmethod
    async def read(self, key: str) -> CacheEntry | None:
        """Return the stored entry for ``key`` regardless of age."""

    @abstractmethod
    async def write(self, key: str, entry: CacheEntry, ttl_seconds: int) -> None:
        """Store ``entry`` under ``key``."""


class MemoryCacheTier(CacheTier):
    """Instance-local LRU map."""

    name = "memory"

    def __init__(self, max_entries: int = DEFAULT_MEMORY_ENTRIES) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._max_entries = max_entries

    async def read(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is not None:
            self._entries.move_to_end(key)
        return entry

    async def write(self, key: str, entry: CacheEntry, ttl_seconds: int) -> None:
        del ttl_seconds
        self._entries[key] = entry
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class KeyValueCacheTier(CacheTier):
    """Entries in the shared key-value store with a store-side TTL."""

    name = "kv"

    def __init__(self, store: AbstractKeyValueStore) -> None:
        self._store = store

    async def read(self, key: str) -> CacheEntry | None:
        record = await self._store.get_json(analysis_cache_key(key))
        return entry_from_record(record)

    async def write(self, key: str, entry: CacheEntry, ttl_seconds: int) -> None:
        await self._store.put_json(
            analysis_cache_key(key),
            {"created_at": entry.created_at, "value": entry.value},
            ttl_seconds=ttl_seconds,
        )


def entry_from_record(record: object) -> CacheEntry | None:
    """Decode a stored ``{"created_at", "value"}`` record; malformed ones miss."""
    if not isinstance(record, dict):
        return None
    value = record.get("value")
    created_at = record.get("created_at")
    if not isinstance(value, dict):
        return None
    if isinstance(created_at, bool) or not isinstance(created_at, (int, float)):
        return None
    return CacheEntry(value=value, created_at=float(created_at))


class TieredCache:
    """Read-through, write-through cache over ``tiers``.

    The first tier is expected to be a ``MemoryCacheTier``; ``reset`` clears it.
    Tier failures never escape: a failed read is a miss for that tier and a
    failed write is logged and skipped.
    """

    def __init__(
        self,
        tiers: Sequence[CacheTier],
        *,
        now_fn: Callable[[], float] = time.time,
        logger: AnyLogger | None = None,
    ) -> None:
        if not tiers:
            raise ValueError("at least one cache tier is required")
        self._tiers = tuple(tiers)
        self._now_fn = now_fn
        self._logger = get_logger(__name__) if logger is None else logger

    @property
    def tiers(self) -> tuple[CacheTier, ...]:
        return self._tiers

    async def get(self, key: str, ttl_seconds: float) -> dict[str, object] | None:
        """Return the cached value for ``key`` if younger than ``ttl_seconds``."""
        now = self._now_fn()
        for index, tier in enumerate(self._tiers):
            try:
                entry = await tier.read(key)
            except StorageError as exc:
                log_warning(
                    self._logger,
                    "cache.read_failed",
                    tier=tier.name,
                    error=str(exc),
                )
                continue
            if entry is None or not entry.is_fresh(now, ttl_seconds):
                continue
            if index:
                await self._write_tiers(self._tiers[:index], key, entry, ttl_seconds)
            return entry.value
        return None

    async def put(self, key: str, value: dict[str, object], ttl_seconds: float) -> None:
        """Write ``value`` to every tier stamped with the current time."""
        entry = CacheEntry(value=value, created_at=self._now_fn())
        await self._write_tiers(self._tiers, key, entry, ttl_seconds)

    async def _write_tiers(
        self,
        tiers: Sequence[CacheTier],
        key: str,
        entry: CacheEntry,
        ttl_seconds: float,
    ) -> None:
        ttl = max(int(ttl_seconds), 1)
        for tier in tiers:
            try:
                await tier.write(key, entry, ttl)
            except StorageError as exc:
                log_warning(
                    self._logger,
                    "cache.write_failed",
                    tier=tier.name,
                    error=str(exc),
                )

    def reset(self) -> None:
        """Clear instance-local tiers."""
        for tier in self._tiers:
            if isinstance(tier, MemoryCacheTier):
                tier.clear()
