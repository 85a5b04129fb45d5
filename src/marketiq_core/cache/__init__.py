"""Content-addressed analysis cache."""

from marketiq_core.cache.hashing import content_hash
from marketiq_core.cache.sql import SqlCacheTier
from marketiq_core.cache.tiered import (
    CacheEntry,
    CacheTier,
    KeyValueCacheTier,
    MemoryCacheTier,
    TieredCache,
)

__all__ = [
    "CacheEntry",
    "CacheTier",
    "KeyValueCacheTier",
    "MemoryCacheTier",
    "SqlCacheTier",
    "TieredCache",
    "content_hash",
]
