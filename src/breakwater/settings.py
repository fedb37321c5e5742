from __future__ import annotations

from typing import Literal

import structlog
from pydantic import ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from breakwater.circuit_breaker.breaker import CircuitBreakerConfig
from breakwater.circuit_breaker.shared_storage import SharedMemoryBreakerBackend
from breakwater.circuit_breaker.storage import (
    AbstractBreakerBackend,
    InMemoryBreakerBackend,
)
from breakwater.logging import configure_structlog, get_log_level_value

BackendKind = Literal["memory", "shared"]


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


class BreakerSettings(BaseSettings):
    """Circuit breaker settings read from ``BREAKER_*`` environment variables."""

    model_config = prefixed_settings_config("BREAKER_")

    error_threshold: int = 3
    success_threshold: int = 2
    error_timeout: float = 10.0
    half_open_resource_timeout: float | None = None
    error_threshold_timeout: float | None = None
    error_threshold_timeout_enabled: bool = True
    dryrun: bool = False
    backend: BackendKind = "memory"
    log_level: str = "INFO"

    @field_validator("backend", mode="before")
    @classmethod
    def _normalize_backend(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _validate_log_level(cls, value: object) -> object:
        if not isinstance(value, str):
            return value
        get_log_level_value(value)
        return value.strip().upper()

    @field_validator("error_threshold", "success_threshold")
    @classmethod
    def _validate_threshold(cls, value: int, info: ValidationInfo) -> int:
        if value < 1:
            raise ValueError(f"{info.field_name} must be >= 1")
        return value

    @model_validator(mode="after")
    def _validate_timeouts(self) -> BreakerSettings:
        if self.error_timeout < 0:
            raise ValueError("error_timeout must be >= 0")
        if (
            self.half_open_resource_timeout is not None
            and self.half_open_resource_timeout <= 0
        ):
            raise ValueError("half_open_resource_timeout must be > 0")
        if self.error_threshold_timeout is not None and self.error_threshold_timeout < 0:
            raise ValueError("error_threshold_timeout must be >= 0")
        return self

    def breaker_config(
        self,
        exceptions: tuple[type[BaseException], ...] = (Exception,),
    ) -> CircuitBreakerConfig:
        """Build a ``CircuitBreakerConfig`` with the given failure classifier."""
        return CircuitBreakerConfig(
            error_threshold=self.error_threshold,
            success_threshold=self.success_threshold,
            error_timeout=self.error_timeout,
            exceptions=exceptions,
            half_open_resource_timeout=self.half_open_resource_timeout,
            error_threshold_timeout=self.error_threshold_timeout,
            error_threshold_timeout_enabled=self.error_threshold_timeout_enabled,
            dryrun=self.dryrun,
        )

    def configure_logging(self) -> structlog.stdlib.BoundLogger:
        """Configure structlog at ``log_level`` and return the root logger."""
        return configure_structlog(log_level=self.log_level)

    def build_backend(self) -> AbstractBreakerBackend:
        """Return a new counter/state backend of the configured kind."""
        if self.backend == "shared":
            return SharedMemoryBreakerBackend()
        return InMemoryBreakerBackend()
