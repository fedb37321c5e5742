from __future__ import annotations

import pytest

from breakwater.circuit_breaker import (
    BreakerRegistry,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    InMemoryBreakerBackend,
)
from tests.breakwater.support.fakes import (
    FakeClock,
    FakeLogger,
    RecordingListener,
    ResourceUnavailable,
)


def test_get_or_create_returns_same_breaker(fake_logger: FakeLogger) -> None:
    registry = BreakerRegistry(logger=fake_logger)

    first = registry.get_or_create("svc")
    second = registry.get_or_create("svc", CircuitBreakerConfig(error_threshold=9))

    assert first is second
    assert first.config.error_threshold == 3
    assert "svc" in registry
    assert len(registry) == 1
    assert registry.get("missing") is None


def test_registry_breakers_share_listeners(
    fake_logger: FakeLogger, listener: RecordingListener
) -> None:
    registry = BreakerRegistry(listeners=[listener], logger=fake_logger)

    registry.get_or_create("a")
    registry.get_or_create("b")

    assert listener.events == [
        ("state_change", "a", CircuitState.CLOSED),
        ("state_change", "b", CircuitState.CLOSED),
    ]


def test_prune_keeps_breakers_with_recent_failures(
    clock: FakeClock, fake_logger: FakeLogger
) -> None:
    backend = InMemoryBreakerBackend()
    registry = BreakerRegistry(backend=backend, logger=fake_logger)
    registry.get_or_create("idle")
    failing = registry.get_or_create("failing")
    failing.mark_failed(ResourceUnavailable("down"))

    pruned = registry.prune()

    assert pruned == ["idle"]
    assert "idle" not in registry
    assert "idle" not in backend
    assert registry.get("failing") is failing


def test_prune_drops_breakers_once_error_timeout_passes(
    clock: FakeClock, fake_logger: FakeLogger
) -> None:
    registry = BreakerRegistry(logger=fake_logger)
    breaker = registry.get_or_create("svc", CircuitBreakerConfig(error_timeout=5.0))
    breaker.mark_failed(ResourceUnavailable("down"))

    assert registry.prune() == []
    clock.advance(5.0)

    assert registry.prune() == ["svc"]


def test_insert_past_max_size_prunes_idle_breakers(
    clock: FakeClock, fake_logger: FakeLogger
) -> None:
    registry = BreakerRegistry(max_size=2, logger=fake_logger)
    registry.get_or_create("idle")
    busy = registry.get_or_create("busy")
    busy.mark_failed(ResourceUnavailable("down"))

    registry.get_or_create("new")

    assert "idle" not in registry
    assert "busy" in registry
    assert "new" in registry


def test_remove_and_destroy_all(fake_logger: FakeLogger) -> None:
    backend = InMemoryBreakerBackend()
    registry = BreakerRegistry(backend=backend, logger=fake_logger)
    registry.get_or_create("a")
    registry.get_or_create("b")

    assert registry.remove("a") is True
    assert registry.remove("a") is False
    assert "a" not in backend

    registry.destroy_all()

    assert len(registry) == 0
    assert "b" not in backend


class _RegistryLookupListener:
    def __init__(self) -> None:
        self.registry: BreakerRegistry | None = None
        self.seen: list[tuple[str, bool]] = []

    def notify(
        self, event: str, breaker: CircuitBreaker, *, state: CircuitState
    ) -> None:
        assert self.registry is not None
        self.seen.append((breaker.name, self.registry.get(breaker.name) is not None))


def test_listener_can_read_registry_while_breaker_is_built(
    fake_logger: FakeLogger,
) -> None:
    listener = _RegistryLookupListener()
    registry = BreakerRegistry(listeners=[listener], logger=fake_logger)
    listener.registry = registry

    breaker = registry.get_or_create("svc")
    assert listener.seen == [("svc", False)]

    for _ in range(3):
        breaker.mark_failed(ResourceUnavailable("down"))

    assert breaker.is_open
    assert listener.seen == [("svc", False), ("svc", True)]


def test_registry_rejects_non_positive_max_size() -> None:
    with pytest.raises(ValueError, match="max_size"):
        BreakerRegistry(max_size=0)
