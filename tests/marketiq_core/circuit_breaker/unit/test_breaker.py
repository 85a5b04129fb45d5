import pytest

from marketiq_core.circuit_breaker import (
    BreakerStatus,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
    KeyValueBreakerStorage,
)
from marketiq_core.errors import StorageError
from marketiq_core.kv import InMemoryKeyValueStore
from marketiq_core.settings import CoreSettings
from tests.marketiq_core.support.fakes import (
    ExplodingListener,
    FakeClock,
    FakeLogger,
    RecordingListener,
)

pytestmark = pytest.mark.asyncio


def _breaker(
    store: InMemoryKeyValueStore,
    clock: FakeClock,
    logger: FakeLogger,
    *,
    listeners=None,
    threshold: int = 3,
    cooldown: float = 300.0,
) -> CircuitBreaker:
    return CircuitBreaker(
        config=CircuitBreakerConfig(failure_threshold=threshold, cooldown_seconds=cooldown),
        storage=KeyValueBreakerStorage(store),
        listeners=listeners,
        now_fn=clock.now,
        logger=logger,
    )


async def test_unknown_breaker_allows_calls(breaker: CircuitBreaker) -> None:
    assert await breaker.allows("data:binance:CRYPTO") is True


async def test_three_failures_open_until_cooldown_elapses(
    breaker: CircuitBreaker, clock: FakeClock
) -> None:
    for _ in range(3):
        await breaker.report_outcome("ai:openai:analysis", False)

    assert await breaker.allows("ai:openai:analysis") is False

    clock.advance(299)
    assert await breaker.allows("ai:openai:analysis") is False

    clock.advance(2)
    assert await breaker.allows("ai:openai:analysis") is True


async def test_two_failures_keep_circuit_closed(breaker: CircuitBreaker) -> None:
    await breaker.report_outcome("svc", False)
    await breaker.report_outcome("svc", False)

    assert await breaker.allows("svc") is True
    state = await breaker.snapshot("svc")
    assert state is not None
    assert state.consecutive_failures == 2


async def test_success_resets_failure_count(breaker: CircuitBreaker, clock: FakeClock) -> None:
    await breaker.report_outcome("svc", False)
    await breaker.report_outcome("svc", False)
    await breaker.report_outcome("svc", True)
    await breaker.report_outcome("svc", False)

    state = await breaker.snapshot("svc")
    assert state is not None
    assert state.consecutive_failures == 1
    assert state.last_success_at == clock.now()
    assert await breaker.allows("svc") is True


async def test_failure_after_cooldown_reopens_immediately(
    breaker: CircuitBreaker, clock: FakeClock
) -> None:
    for _ in range(3):
        await breaker.report_outcome("svc", False)
    clock.advance(301)
    assert await breaker.allows("svc") is True

    await breaker.report_outcome("svc", False)

    assert await breaker.allows("svc") is False


async def test_breakers_are_isolated_by_name(breaker: CircuitBreaker) -> None:
    for _ in range(3):
        await breaker.report_outcome("data:binance:CRYPTO", False)

    assert await breaker.allows("data:binance:CRYPTO") is False
    assert await breaker.allows("data:yahoo:CRYPTO") is True


async def test_state_is_shared_through_the_store(
    kv_store: InMemoryKeyValueStore, clock: FakeClock, fake_logger: FakeLogger
) -> None:
    first = _breaker(kv_store, clock, fake_logger)
    second = _breaker(kv_store, clock, fake_logger)

    for _ in range(3):
        await first.report_outcome("svc", False)

    assert await second.allows("svc") is False


async def test_state_record_expires_with_ttl(
    kv_store: InMemoryKeyValueStore, clock: FakeClock, fake_logger: FakeLogger
) -> None:
    breaker = CircuitBreaker(
        config=CircuitBreakerConfig(failure_threshold=3, cooldown_seconds=300.0),
        storage=KeyValueBreakerStorage(kv_store, ttl_seconds=3600),
        now_fn=clock.now,
        logger=fake_logger,
    )
    await breaker.report_outcome("svc", False)
    assert await kv_store.get("marketiq:cb:svc") is not None

    clock.advance(3601)

    assert await kv_store.get("marketiq:cb:svc") is None


async def test_storage_outage_fails_open_and_drops_reports(
    breaker: CircuitBreaker, kv_store: InMemoryKeyValueStore, fake_logger: FakeLogger
) -> None:
    for _ in range(3):
        await breaker.report_outcome("svc", False)
    kv_store.fail_with = StorageError("kv down")

    assert await breaker.allows("svc") is True
    await breaker.report_outcome("svc", False)

    assert "circuit_breaker.storage_unavailable" in fake_logger.events
    assert fake_logger.levels_for("circuit_breaker.storage_unavailable")[0] == "warning"


async def test_listeners_see_outcomes_transitions_and_rejections(
    kv_store: InMemoryKeyValueStore, clock: FakeClock, fake_logger: FakeLogger
) -> None:
    listener = RecordingListener()
    breaker = _breaker(kv_store, clock, fake_logger, listeners=[listener], threshold=2)

    await breaker.report_outcome("svc", False)
    await breaker.report_outcome("svc", False)
    await breaker.allows("svc")

    assert listener.events == [
        ("outcome", ("svc", False, 1)),
        ("outcome", ("svc", False, 2)),
        ("state", ("svc", BreakerStatus.CLOSED, BreakerStatus.OPEN)),
        ("rejected", "svc"),
    ]


async def test_failing_listener_does_not_change_behavior(
    kv_store: InMemoryKeyValueStore, clock: FakeClock, fake_logger: FakeLogger
) -> None:
    breaker = _breaker(
        kv_store, clock, fake_logger, listeners=[ExplodingListener()], threshold=1
    )

    await breaker.report_outcome("svc", False)

    assert await breaker.allows("svc") is False


async def test_call_records_outcomes_and_rejects_when_open(
    kv_store: InMemoryKeyValueStore, clock: FakeClock, fake_logger: FakeLogger
) -> None:
    breaker = _breaker(kv_store, clock, fake_logger, threshold=1, cooldown=10.0)

    async def _ok(value: str) -> str:
        return value

    async def _fail() -> None:
        raise RuntimeError("nope")

    assert await breaker.call("svc", _ok, "ok") == "ok"

    with pytest.raises(RuntimeError):
        await breaker.call("svc", _fail)

    with pytest.raises(CircuitOpenError) as excinfo:
        await breaker.call("svc", _ok, "never")

    assert excinfo.value.breaker_name == "svc"
    assert excinfo.value.retry_after == pytest.approx(10.0)


async def test_excluded_exceptions_do_not_count_as_failures(
    kv_store: InMemoryKeyValueStore, clock: FakeClock, fake_logger: FakeLogger
) -> None:
    breaker = CircuitBreaker(
        config=CircuitBreakerConfig(
            failure_threshold=1,
            cooldown_seconds=10.0,
            excluded_exceptions=(ValueError,),
        ),
        storage=KeyValueBreakerStorage(kv_store),
        now_fn=clock.now,
        logger=fake_logger,
    )

    async def _bad_input() -> None:
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        await breaker.call("svc", _bad_input)

    assert await breaker.allows("svc") is True


@pytest.mark.parametrize(
    ("kwargs", "message"),
    [
        ({"failure_threshold": 0}, "failure_threshold must be >= 1"),
        ({"cooldown_seconds": -1}, "cooldown_seconds must be >= 0"),
    ],
)
async def test_config_validation(kwargs: dict[str, float], message: str) -> None:
    with pytest.raises(ValueError, match=message):
        CircuitBreakerConfig(**kwargs)


async def test_from_settings_uses_threshold_cooldown_and_state_ttl(
    kv_store: InMemoryKeyValueStore, clock: FakeClock, fake_logger: FakeLogger
) -> None:
    settings = CoreSettings(
        breaker_failure_threshold=2,
        breaker_cooldown_seconds=900,
        breaker_state_ttl_seconds=120,
    )
    breaker = CircuitBreaker.from_settings(
        settings, kv_store, now_fn=clock.now, logger=fake_logger
    )

    assert breaker.config.failure_threshold == 2
    assert breaker.config.cooldown_seconds == 900
    for _ in range(2):
        await breaker.report_outcome("data:polygon:STOCKS", False)
    assert await breaker.allows("data:polygon:STOCKS") is False

    # the stored record expires before the cooldown would
    clock.advance(121)
    assert await breaker.allows("data:polygon:STOCKS") is True
