"""Durable key-value storage primitives.

The store is consumed as a given: get, put with optional TTL, delete and
prefix listing, all eventually consistent. No transactions or atomic
increments are assumed by any component built on top of it.

Backends raise ``StorageError`` for every infrastructure failure so callers can
choose their own fail-open or fail-closed behavior.
"""

from __future__ import annotations

import json
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

from marketiq_core.errors import StorageError


@dataclass(frozen=True)
class KeyPage:
    """One page of a prefix listing.

    Attributes:
        keys: Key names in lexicographic order.
        cursor: Opaque continuation token, ``None`` when the listing is complete.
    """

    keys: tuple[str, ...]
    cursor: str | None


class AbstractKeyValueStore(ABC):
    """Abstract key-value store interface."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the stored text for ``key`` or ``None`` when absent."""

    @abstractmethod
    async def put(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        """Store ``value`` under ``key``, expiring after ``ttl_seconds`` if given."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key``. Missing keys are not an error."""

    @abstractmethod
    async def list_prefix(
        self,
        prefix: str,
        *,
        limit: int = 100,
        cursor: str | None = None,
    ) -> KeyPage:
        """List keys starting with ``prefix`` one page at a time."""

    async def get_json(self, key: str) -> object | None:
        """Return the decoded JSON value for ``key``.

        Undecodable payloads are reported as ``StorageError`` because they can
        only come from a foreign writer or a corrupted record.
        """
        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise StorageError(f"invalid JSON stored under {key}") from exc

    async def put_json(
        self,
        key: str,
        value: object,
        *,
        ttl_seconds: int | None = None,
    ) -> None:
        """Encode ``value`` as JSON and store it under ``key``."""
        await self.put(
            key,
            json.dumps(value, separators=(",", ":"), ensure_ascii=False),
            ttl_seconds=ttl_seconds,
        )


@dataclass
class _Record:
    value: str
    expires_at: float | None


class InMemoryKeyValueStore(AbstractKeyValueStore):
    """Process-local store with lazy TTL expiry.

    Expired records are dropped when they are next read or listed. Setting
    ``fail_with`` makes every operation raise that error, which lets tests
    simulate a storage outage.
    """

    def __init__(self, *, now_fn: Callable[[], float] = time.time) -> None:
        self._records: dict[str, _Record] = {}
        self._now_fn = now_fn
        self.fail_with: Exception | None = None

    def _check_available(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def _live(self, key: str) -> _Record | None:
        record = self._records.get(key)
        if record is None:
            return None
        if record.expires_at is not None and record.expires_at <= self._now_fn():
            del self._records[key]
            return None
        return record

    async def get(self, key: str) -> str | None:
        self._check_available()
        record = self._live(key)
        return None if record is None else record.value

    async def put(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        self._check_available()
        expires_at = None
        if ttl_seconds is not None:
            expires_at = self._now_fn() + max(ttl_seconds, 0)
        self._records[key] = _Record(value=str(value), expires_at=expires_at)

    async def delete(self, key: str) -> None:
        self._check_available()
        self._records.pop(key, None)

    async def list_prefix(
        self,
        prefix: str,
        *,
        limit: int = 100,
        cursor: str | None = None,
    ) -> KeyPage:
        self._check_available()
        names = sorted(
            name
            for name in list(self._records)
            if name.startswith(prefix) and self._live(name) is not None
        )
        if cursor:
            names = [name for name in names if name > cursor]
        page = tuple(names[: max(limit, 0)])
        next_cursor = page[-1] if page and len(names) > len(page) else None
        return KeyPage(keys=page, cursor=next_cursor)

    def clear(self) -> None:
        """Drop every record. Intended for deterministic tests."""
        self._records.clear()
