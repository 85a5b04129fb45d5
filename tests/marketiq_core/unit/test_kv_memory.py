import pytest

from marketiq_core.errors import StorageError
from marketiq_core.kv import InMemoryKeyValueStore
from marketiq_core.kv.keys import (
    audit_key,
    config_version_key,
    rate_limit_key,
)
from tests.marketiq_core.support.fakes import FakeClock

pytestmark = pytest.mark.asyncio


async def test_get_put_delete(kv_store: InMemoryKeyValueStore) -> None:
    assert await kv_store.get("k") is None

    await kv_store.put("k", "v")
    assert await kv_store.get("k") == "v"

    await kv_store.delete("k")
    await kv_store.delete("k")
    assert await kv_store.get("k") is None


async def test_ttl_expires_lazily(kv_store: InMemoryKeyValueStore, clock: FakeClock) -> None:
    await kv_store.put("k", "v", ttl_seconds=60)

    clock.advance(59)
    assert await kv_store.get("k") == "v"

    clock.advance(1)
    assert await kv_store.get("k") is None


async def test_json_helpers(kv_store: InMemoryKeyValueStore) -> None:
    await kv_store.put_json("k", {"zones": [], "text": "سلام"})

    assert await kv_store.get("k") == '{"zones":[],"text":"سلام"}'
    assert await kv_store.get_json("k") == {"zones": [], "text": "سلام"}
    assert await kv_store.get_json("missing") is None


async def test_invalid_json_is_a_storage_error(kv_store: InMemoryKeyValueStore) -> None:
    await kv_store.put("k", "{not json")

    with pytest.raises(StorageError, match="invalid JSON stored under k"):
        await kv_store.get_json("k")


async def test_list_prefix_pages_in_key_order(
    kv_store: InMemoryKeyValueStore, clock: FakeClock
) -> None:
    for name in ("a:3", "a:1", "a:2", "b:1"):
        await kv_store.put(name, "x")
    await kv_store.put("a:0", "x", ttl_seconds=1)
    clock.advance(2)

    first = await kv_store.list_prefix("a:", limit=2)
    assert first.keys == ("a:1", "a:2")
    assert first.cursor == "a:2"

    second = await kv_store.list_prefix("a:", limit=2, cursor=first.cursor)
    assert second.keys == ("a:3",)
    assert second.cursor is None


async def test_fail_with_simulates_outage(kv_store: InMemoryKeyValueStore) -> None:
    kv_store.fail_with = StorageError("down")

    with pytest.raises(StorageError):
        await kv_store.get("k")
    with pytest.raises(StorageError):
        await kv_store.put("k", "v")
    with pytest.raises(StorageError):
        await kv_store.list_prefix("")


async def test_timestamped_keys_sort_chronologically() -> None:
    early = config_version_key(999, "ffff")
    late = config_version_key(1_700_000_000_000, "0000")

    assert early == "marketiq:config:ver:00000000000999:ffff"
    assert early < late
    assert audit_key(5, "ab") == "marketiq:audit:00000000000005:ab"
    assert rate_limit_key("analyze", "42", 28_333_333) == "marketiq:rl:analyze:42:28333333"
