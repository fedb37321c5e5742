from __future__ import annotations

import logging
import sys
from typing import Any, cast

import pytest
import structlog
from pydantic import ValidationError

from breakwater.circuit_breaker import (
    InMemoryBreakerBackend,
    SharedMemoryBreakerBackend,
)
from breakwater.settings import BreakerSettings


def _build_settings(**overrides: object) -> BreakerSettings:
    values: dict[str, object] = {}
    values.update(overrides)
    return BreakerSettings(**cast(Any, values))


def test_breaker_settings_defaults_build_config() -> None:
    settings = _build_settings()
    config = settings.breaker_config()

    assert config.error_threshold == 3
    assert config.success_threshold == 2
    assert config.error_timeout == 10.0
    assert config.exceptions == (Exception,)
    assert config.half_open_resource_timeout is None
    assert config.error_threshold_timeout == 10.0
    assert config.error_threshold_timeout_enabled is True
    assert config.dryrun is False


def test_breaker_settings_read_prefixed_environment(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("BREAKER_ERROR_THRESHOLD", "5")
    monkeypatch.setenv("BREAKER_ERROR_TIMEOUT", "2.5")
    monkeypatch.setenv("BREAKER_DRYRUN", "true")
    monkeypatch.setenv("breaker_backend", "SHARED")
    monkeypatch.setenv("BREAKER_LOG_LEVEL", "debug")

    settings = BreakerSettings()

    assert settings.error_threshold == 5
    assert settings.error_timeout == 2.5
    assert settings.dryrun is True
    assert settings.backend == "shared"
    assert settings.log_level == "DEBUG"


def test_breaker_config_uses_given_classifier() -> None:
    settings = _build_settings(half_open_resource_timeout=0.25)
    config = settings.breaker_config((ConnectionError, TimeoutError))

    assert config.exceptions == (ConnectionError, TimeoutError)
    assert config.half_open_resource_timeout == 0.25


def test_configure_logging_applies_log_level(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(sys.stderr, "isatty", lambda: False, raising=False)
    settings = _build_settings(log_level="warning")

    try:
        logger = settings.configure_logging()
        assert logging.getLogger().level == logging.WARNING
        assert logger is not None
    finally:
        structlog.reset_defaults()
        logging.getLogger().handlers.clear()


def test_build_backend_selects_kind() -> None:
    assert isinstance(_build_settings().build_backend(), InMemoryBreakerBackend)
    assert isinstance(
        _build_settings(backend="shared").build_backend(),
        SharedMemoryBreakerBackend,
    )


@pytest.mark.parametrize(
    "overrides",
    [
        {"error_threshold": 0},
        {"success_threshold": 0},
        {"error_timeout": -1.0},
        {"half_open_resource_timeout": 0.0},
        {"error_threshold_timeout": -0.5},
        {"backend": "redis"},
        {"log_level": "TRACE"},
    ],
)
def test_breaker_settings_reject_invalid_values(overrides: dict[str, object]) -> None:
    with pytest.raises(ValidationError):
        _build_settings(**overrides)
