import itertools

import pytest

from marketiq_core.config import ConfigStore, Role, config_hash, default_config, propose_patch
from marketiq_core.config.store import (
    ERROR_ADMIN_ONLY,
    ERROR_STORAGE_UNAVAILABLE,
    ERROR_VERSION_NOT_FOUND,
    REASON_ROLLBACK,
    REASON_UPDATE,
)
from marketiq_core.errors import StorageError
from marketiq_core.kv import InMemoryKeyValueStore
from marketiq_core.settings import CoreSettings
from tests.marketiq_core.support.fakes import FakeClock, FakeLogger

pytestmark = pytest.mark.asyncio

CONFIG_KEY = "marketiq:config"
VERSION_PREFIX = "marketiq:config:ver:"


def _suffixes() -> object:
    counter = itertools.count()
    return lambda: f"s{next(counter):03d}"


@pytest.fixture
def store(
    kv_store: InMemoryKeyValueStore, clock: FakeClock, fake_logger: FakeLogger
) -> ConfigStore:
    return ConfigStore(
        kv_store,
        owner_ids={"1"},
        admin_ids={"2"},
        now_fn=clock.now,
        suffix_fn=_suffixes(),
        logger=fake_logger,
    )


async def _raise_daily(store: ConfigStore, actor: str, free_daily: int) -> None:
    current = await store.get_current()
    await store.save(actor, propose_patch(store.role_of(actor), current, {"limits": {"freeDaily": free_daily}}))


async def test_missing_config_reads_as_defaults(store: ConfigStore) -> None:
    assert await store.get_current() == default_config()


async def test_save_snapshots_previous_and_audits(
    store: ConfigStore, kv_store: InMemoryKeyValueStore
) -> None:
    before = default_config().to_payload()

    outcome = await store.save("2", propose_patch(Role.ADMIN, default_config(), {"limits": {"freeDaily": 5}}))

    assert outcome.ok is True
    saved = outcome.config
    assert saved is not None and saved.limits.free_daily == 5
    assert (await kv_store.get_json(CONFIG_KEY))["limits"]["freeDaily"] == 5

    [snapshot] = await store.list_versions()
    assert snapshot.payload == before
    assert snapshot.version_key.startswith(VERSION_PREFIX)

    [entry] = await store.list_audit()
    assert entry.actor_id == "2"
    assert entry.action == REASON_UPDATE
    assert entry.before_hash == config_hash(before)
    assert entry.after_hash == config_hash(saved.to_payload())
    assert entry.metadata == {"versionKey": snapshot.version_key}


async def test_rollback_restores_snapshot_byte_for_byte(
    store: ConfigStore, kv_store: InMemoryKeyValueStore, clock: FakeClock
) -> None:
    original = (await store.get_current()).to_payload()
    await _raise_daily(store, "1", 5)
    clock.advance(1)
    [snapshot] = await store.list_versions()

    outcome = await store.rollback("1", snapshot.version_key)

    assert outcome.ok is True
    assert await kv_store.get_json(CONFIG_KEY) == original
    assert outcome.config is not None and outcome.config.to_payload() == original

    versions = await store.list_versions()
    assert len(versions) == 2
    assert versions[0].payload["limits"]["freeDaily"] == 5

    latest = (await store.list_audit())[0]
    assert latest.action == REASON_ROLLBACK
    assert latest.after_hash == config_hash(original)


async def test_rollback_is_admin_only(store: ConfigStore) -> None:
    await _raise_daily(store, "1", 5)
    [snapshot] = await store.list_versions()

    outcome = await store.rollback("99", snapshot.version_key)

    assert outcome.ok is False
    assert outcome.error == ERROR_ADMIN_ONLY
    assert (await store.get_current()).limits.free_daily == 5


async def test_rollback_to_unknown_version(store: ConfigStore) -> None:
    missing = await store.rollback("2", f"{VERSION_PREFIX}00000000000001:none")
    foreign = await store.rollback("2", "marketiq:config")

    assert missing.error == ERROR_VERSION_NOT_FOUND
    assert foreign.error == ERROR_VERSION_NOT_FOUND


async def test_rollback_reports_storage_outage(
    store: ConfigStore, kv_store: InMemoryKeyValueStore
) -> None:
    kv_store.fail_with = StorageError("down")

    outcome = await store.rollback("1", f"{VERSION_PREFIX}00000000000001:x")

    assert outcome.ok is False
    assert outcome.error == ERROR_STORAGE_UNAVAILABLE


async def test_reads_are_cached_for_25_seconds(
    store: ConfigStore, kv_store: InMemoryKeyValueStore, clock: FakeClock
) -> None:
    await store.get_current()
    await kv_store.put_json(CONFIG_KEY, {"limits": {"freeDaily": 9}})

    clock.advance(24)
    assert (await store.get_current()).limits.free_daily == 3

    clock.advance(2)
    assert (await store.get_current()).limits.free_daily == 9


async def test_outage_serves_last_known_good(
    store: ConfigStore,
    kv_store: InMemoryKeyValueStore,
    clock: FakeClock,
    fake_logger: FakeLogger,
) -> None:
    await kv_store.put_json(CONFIG_KEY, {"limits": {"freeDaily": 9}})
    await store.get_current()
    kv_store.fail_with = StorageError("down")
    clock.advance(60)

    assert (await store.get_current()).limits.free_daily == 9
    assert "config.load_failed" in fake_logger.events


async def test_outage_before_first_load_serves_defaults(
    store: ConfigStore, kv_store: InMemoryKeyValueStore
) -> None:
    kv_store.fail_with = StorageError("down")

    assert await store.get_current() == default_config()


async def test_save_reports_storage_outage(
    store: ConfigStore, kv_store: InMemoryKeyValueStore, fake_logger: FakeLogger
) -> None:
    await store.get_current()
    kv_store.fail_with = StorageError("kv down")

    outcome = await store.save("1", default_config())

    assert outcome.ok is False
    assert outcome.config is None
    assert outcome.error == ERROR_STORAGE_UNAVAILABLE
    assert fake_logger.levels_for("config.save_failed") == ["warning"]
    assert "config.saved" not in fake_logger.events


async def test_save_outage_before_first_load_is_reported(
    store: ConfigStore, kv_store: InMemoryKeyValueStore
) -> None:
    kv_store.fail_with = StorageError("kv down")

    outcome = await store.save("1", default_config())

    assert outcome.ok is False
    assert outcome.error == ERROR_STORAGE_UNAVAILABLE


async def test_history_is_pruned_to_limit(
    kv_store: InMemoryKeyValueStore, clock: FakeClock, fake_logger: FakeLogger
) -> None:
    store = ConfigStore(
        kv_store,
        owner_ids={"1"},
        history_limit=2,
        now_fn=clock.now,
        suffix_fn=_suffixes(),
        logger=fake_logger,
    )
    for value in (4, 5, 6, 7):
        await _raise_daily(store, "1", value)
        clock.advance(1)

    versions = await store.list_versions(limit=10)
    audit = await store.list_audit(limit=10)

    assert len(versions) == 2
    assert len(audit) == 2
    assert [v.payload["limits"]["freeDaily"] for v in versions] == [6, 5]
    assert "config.history_pruned" in fake_logger.events


async def test_from_settings_reads_roles_and_limits(kv_store: InMemoryKeyValueStore) -> None:
    settings = CoreSettings(owner_ids="1", admin_ids="2,3", config_history_limit=5)

    store = ConfigStore.from_settings(kv_store, settings)

    assert store.role_of(1) is Role.OWNER
    assert store.role_of("3") is Role.ADMIN
    assert store.role_of("4") is Role.USER


async def test_history_limit_must_be_positive(kv_store: InMemoryKeyValueStore) -> None:
    with pytest.raises(ValueError, match="history_limit"):
        ConfigStore(kv_store, history_limit=0)
