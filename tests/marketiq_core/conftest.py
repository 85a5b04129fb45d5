from __future__ import annotations

import pytest

from marketiq_core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    KeyValueBreakerStorage,
)
from marketiq_core.kv import InMemoryKeyValueStore
from marketiq_core.providers import ProviderChain
from tests.marketiq_core.support.fakes import FakeClock, FakeLogger


@pytest.fixture
def fake_logger() -> FakeLogger:
    """Provide a fresh structured logger test double per test."""
    return FakeLogger()


@pytest.fixture
def clock() -> FakeClock:
    """Provide a controllable wall clock per test."""
    return FakeClock()


@pytest.fixture
def kv_store(clock: FakeClock) -> InMemoryKeyValueStore:
    """Provide an in-memory key-value store driven by the fake clock."""
    return InMemoryKeyValueStore(now_fn=clock.now)


@pytest.fixture
def breaker(
    kv_store: InMemoryKeyValueStore,
    clock: FakeClock,
    fake_logger: FakeLogger,
) -> CircuitBreaker:
    """Provide a breaker with production thresholds over the shared store."""
    return CircuitBreaker(
        config=CircuitBreakerConfig(failure_threshold=3, cooldown_seconds=300.0),
        storage=KeyValueBreakerStorage(kv_store),
        now_fn=clock.now,
        logger=fake_logger,
    )


@pytest.fixture
def chain(breaker: CircuitBreaker, fake_logger: FakeLogger) -> ProviderChain:
    """Provide a provider chain over the shared breaker."""
    return ProviderChain(breaker, logger=fake_logger)
