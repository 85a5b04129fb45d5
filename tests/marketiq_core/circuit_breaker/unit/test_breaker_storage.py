import json

import pytest

from marketiq_core.circuit_breaker import CircuitState, KeyValueBreakerStorage
from marketiq_core.errors import StorageError
from marketiq_core.kv import InMemoryKeyValueStore

pytestmark = pytest.mark.asyncio


async def test_missing_state_is_fresh_and_closed(kv_store: InMemoryKeyValueStore) -> None:
    storage = KeyValueBreakerStorage(kv_store)

    state = await storage.get_state("svc")

    assert state == CircuitState(name="svc")
    assert state.is_open(0.0) is False


async def test_state_round_trips_under_circuit_key(kv_store: InMemoryKeyValueStore) -> None:
    storage = KeyValueBreakerStorage(kv_store)
    state = CircuitState(
        name="rss:https://example.com/feed",
        consecutive_failures=3,
        open_until=1_700_000_300.0,
        last_failure_at=1_700_000_000.0,
    )

    await storage.put_state(state)

    raw = json.loads(await kv_store.get("marketiq:cb:rss:https://example.com/feed"))
    assert raw == {
        "fails": 3,
        "open_until": 1_700_000_300.0,
        "last_fail_at": 1_700_000_000.0,
        "last_ok_at": 0.0,
    }
    assert await storage.get_state(state.name) == state


@pytest.mark.parametrize(
    "payload",
    ['"not-a-record"', "[]", '{"fails": "many", "open_until": null}'],
)
async def test_malformed_records_read_as_closed(
    kv_store: InMemoryKeyValueStore, payload: str
) -> None:
    await kv_store.put("marketiq:cb:svc", payload)
    storage = KeyValueBreakerStorage(kv_store)

    state = await storage.get_state("svc")

    assert state.consecutive_failures == 0
    assert state.open_until == 0.0


async def test_storage_errors_propagate(kv_store: InMemoryKeyValueStore) -> None:
    kv_store.fail_with = StorageError("down")
    storage = KeyValueBreakerStorage(kv_store)

    with pytest.raises(StorageError):
        await storage.get_state("svc")


async def test_with_failure_opens_at_threshold() -> None:
    state = CircuitState(name="svc", consecutive_failures=2)

    opened = state.with_failure(100.0, failure_threshold=3, cooldown_seconds=300.0)

    assert opened.consecutive_failures == 3
    assert opened.open_until == 400.0
    assert opened.is_open(399.9) is True
    assert opened.is_open(400.0) is False
