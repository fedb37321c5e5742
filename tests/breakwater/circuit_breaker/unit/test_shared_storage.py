from __future__ import annotations

import multiprocessing

import pytest

from breakwater.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    SharedMemoryBreakerBackend,
)
from tests.breakwater.support.fakes import FakeLogger, ResourceUnavailable

_fork_only = pytest.mark.skipif(
    "fork" not in multiprocessing.get_all_start_methods(),
    reason="requires the fork start method",
)


def _trip_in_child(breaker: CircuitBreaker) -> None:
    for _ in range(3):
        breaker.mark_failed(ResourceUnavailable("down"))


def test_shared_counter_and_error_counter() -> None:
    backend = SharedMemoryBreakerBackend()
    successes = backend.integer_counter("svc")
    errors = backend.error_counter("svc")

    assert successes.increment() == 1
    assert successes.value() == 1
    assert successes.reset() == 0

    assert errors.last_failure_at() is None
    errors.increment()
    errors.record_failure_at(1700.25)
    assert errors.is_empty() is False
    assert errors.last_failure_at() == 1700.25

    errors.reset()
    assert errors.is_empty() is True
    assert errors.last_failure_at() is None


def test_shared_state_store_round_trips_every_state() -> None:
    store = SharedMemoryBreakerBackend().state_store("svc")
    assert store.is_closed() is True

    for state in CircuitState:
        store.set(state)
        assert store.value() == state


def test_shared_backend_reuses_resources_and_releases_on_destroy() -> None:
    backend = SharedMemoryBreakerBackend()
    store = backend.state_store("svc")
    assert backend.state_store("svc") is store

    store.destroy()

    assert "svc" not in backend


def test_shared_backend_state_survives_pickling_hooks() -> None:
    backend = SharedMemoryBreakerBackend()
    counter = backend.integer_counter("svc")
    state = backend.__getstate__()

    assert "_lock" not in state
    assert "_context" not in state

    restored = SharedMemoryBreakerBackend.__new__(SharedMemoryBreakerBackend)
    restored.__setstate__(state)
    counter.increment()

    assert restored.integer_counter("svc").value() == 1


@_fork_only
def test_breaker_state_is_shared_with_forked_process() -> None:
    context = multiprocessing.get_context("fork")
    backend = SharedMemoryBreakerBackend(context)
    breaker = CircuitBreaker(
        "svc",
        config=CircuitBreakerConfig(error_threshold=3, error_timeout=60.0),
        backend=backend,
        logger=FakeLogger(),
    )

    process = context.Process(target=_trip_in_child, args=(breaker,))
    process.start()
    process.join(timeout=30)

    assert process.exitcode == 0
    assert breaker.is_open
    snapshot = breaker.snapshot()
    assert snapshot.error_count == 3
    assert snapshot.last_error_at is not None
    assert breaker.last_error is None
