"""Durable key-value store adapters and key layout."""

from marketiq_core.kv.cloudflare import CloudflareKvStore
from marketiq_core.kv.storage import (
    AbstractKeyValueStore,
    InMemoryKeyValueStore,
    KeyPage,
)

__all__ = [
    "AbstractKeyValueStore",
    "CloudflareKvStore",
    "InMemoryKeyValueStore",
    "KeyPage",
]
