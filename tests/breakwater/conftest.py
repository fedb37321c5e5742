from __future__ import annotations

import pytest

import breakwater.circuit_breaker.breaker as breaker_mod
from tests.breakwater.support.fakes import FakeClock, FakeLogger, RecordingListener


@pytest.fixture
def fake_logger() -> FakeLogger:
    """Provide a fresh structured logger test double per test."""
    return FakeLogger()


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    """Freeze breaker time at a controllable instant."""
    fake_clock = FakeClock()
    monkeypatch.setattr(breaker_mod, "_now", fake_clock.now)
    return fake_clock


@pytest.fixture
def listener() -> RecordingListener:
    """Provide a fresh state-change listener per test."""
    return RecordingListener()
