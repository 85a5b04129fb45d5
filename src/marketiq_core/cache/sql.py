"""Relational cache tier on SQLAlchemy Core.

The engine API is blocking, so each operation runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import json

from sqlalchemy import (
    Column,
    Float,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    insert,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from marketiq_core.cache.tiered import CacheEntry, CacheTier
from marketiq_core.errors import StorageError
from marketiq_core.settings import CoreSettings

DEFAULT_TABLE_NAME = "analysis_cache"


class SqlCacheTier(CacheTier):
    """Cache rows ``(hash, payload, created_at)`` in a relational table.

    The table is created by ``ensure_schema``, which runs once per tier
    instance before the first read or write. Expired rows are not deleted;
    readers judge freshness from ``created_at``.
    """

    name = "sql"

    def __init__(self, engine: Engine, *, table_name: str = DEFAULT_TABLE_NAME) -> None:
        self._engine = engine
        self._metadata = MetaData()
        self._table = Table(
            table_name,
            self._metadata,
            Column("hash", String(64), primary_key=True),
            Column("payload", Text, nullable=False),
            Column("created_at", Float, nullable=False, index=True),
        )
        self._schema_ready = False

    @classmethod
    def from_url(cls, url: str, *, table_name: str = DEFAULT_TABLE_NAME) -> SqlCacheTier:
        """Create a tier with its own engine for ``url``."""
        return cls(create_engine(url, pool_pre_ping=True), table_name=table_name)

    @classmethod
    def from_settings(cls, settings: CoreSettings) -> SqlCacheTier | None:
        """Create a tier for ``cache_sql_url``, or ``None`` when it is unset."""
        url = (settings.cache_sql_url or "").strip()
        if not url:
            return None
        return cls.from_url(url)

    @property
    def table(self) -> Table:
        return self._table

    async def ensure_schema(self) -> None:
        """Create the cache table if it does not exist yet."""
        if self._schema_ready:
            return
        try:
            await asyncio.to_thread(self._metadata.create_all, self._engine)
        except SQLAlchemyError as exc:
            raise StorageError(f"cache schema setup failed: {exc}") from exc
        self._schema_ready = True

    async def read(self, key: str) -> CacheEntry | None:
        await self.ensure_schema()
        try:
            row = await asyncio.to_thread(self._select, key)
        except SQLAlchemyError as exc:
            raise StorageError(f"cache read failed: {exc}") from exc
        if row is None:
            return None
        payload, created_at = row
        try:
            value = json.loads(payload)
        except ValueError:
            return None
        if not isinstance(value, dict):
            return None
        return CacheEntry(value=value, created_at=float(created_at))

    async def write(self, key: str, entry: CacheEntry, ttl_seconds: int) -> None:
        del ttl_seconds
        await self.ensure_schema()
        payload = json.dumps(entry.value, separators=(",", ":"), ensure_ascii=False)
        try:
            await asyncio.to_thread(self._replace, key, payload, entry.created_at)
        except SQLAlchemyError as exc:
            raise StorageError(f"cache write failed: {exc}") from exc

    def _select(self, key: str) -> tuple[str, float] | None:
        statement = select(self._table.c.payload, self._table.c.created_at).where(
            self._table.c.hash == key
        )
        with self._engine.connect() as connection:
            row = connection.execute(statement).first()
        if row is None:
            return None
        return row[0], row[1]

    def _replace(self, key: str, payload: str, created_at: float) -> None:
        with self._engine.begin() as connection:
            connection.execute(delete(self._table).where(self._table.c.hash == key))
            connection.execute(
                insert(self._table).values(hash=key, payload=payload, created_at=created_at)
            )
