"""Core circuit breaker implementation."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable, Sequence
from contextlib import (
    AbstractAsyncContextManager,
    AbstractContextManager,
    nullcontext,
)
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, TypeVar

import structlog

from breakwater.circuit_breaker.capabilities import (
    MarksCircuits,
    SupportsAsyncResourceTimeout,
    SupportsResourceTimeout,
)
from breakwater.circuit_breaker.exceptions import OpenCircuitError
from breakwater.circuit_breaker.listeners import STATE_CHANGE, BreakerListener
from breakwater.circuit_breaker.state import BreakerSnapshot, CircuitState
from breakwater.circuit_breaker.storage import (
    AbstractBreakerBackend,
    InMemoryBreakerBackend,
)
from breakwater.logging import BreakerLogger, log_exception, log_info

T = TypeVar("T")


def _now() -> float:
    return time.time()


def _isoformat(timestamp: float | None) -> str:
    if timestamp is None:
        return ""
    return datetime.fromtimestamp(timestamp, UTC).isoformat()


@dataclass(slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Attributes:
        error_threshold: Failures required while ``CLOSED`` before opening.
        success_threshold: Successes required while ``HALF_OPEN`` before closing.
        error_timeout: Seconds after the last failure before an open breaker
            may probe.
        exceptions: Exceptions that count as failures.
        half_open_resource_timeout: Optional timeout applied to probe calls
            when the resource supports scoped timeouts.
        error_threshold_timeout: Accepted and stored but currently unused.
            Defaults to ``error_timeout``.
        error_threshold_timeout_enabled: Accepted and stored but currently
            unused.
        dryrun: Log instead of raising when a call would be blocked.
    """

    error_threshold: int = 3
    success_threshold: int = 2
    error_timeout: float = 10.0
    exceptions: tuple[type[BaseException], ...] = (Exception,)
    half_open_resource_timeout: float | None = None
    error_threshold_timeout: float | None = None
    error_threshold_timeout_enabled: bool = True
    dryrun: bool = False

    def __post_init__(self) -> None:
        if self.error_threshold < 1:
            raise ValueError("error_threshold must be >= 1")
        if self.success_threshold < 1:
            raise ValueError("success_threshold must be >= 1")
        if self.error_timeout < 0:
            raise ValueError("error_timeout must be >= 0")
        if not self.exceptions:
            raise ValueError("exceptions must name at least one exception type")
        if (
            self.half_open_resource_timeout is not None
            and self.half_open_resource_timeout <= 0
        ):
            raise ValueError("half_open_resource_timeout must be > 0")
        if self.error_threshold_timeout is None:
            self.error_threshold_timeout = self.error_timeout
        elif self.error_threshold_timeout < 0:
            raise ValueError("error_threshold_timeout must be >= 0")


class CircuitBreaker:
    """Stateful guard around calls to one failing-prone resource.

    ``CLOSED`` lets calls through and counts failures. Reaching
    ``error_threshold`` opens the circuit and calls are refused with
    ``OpenCircuitError``. Once ``error_timeout`` has passed since the last
    failure, the next call moves the breaker to ``HALF_OPEN`` and probes the
    resource: any probe failure reopens it, ``success_threshold`` successes
    close it. There is no background timer; the check runs on each call.

    Concurrent probes while ``HALF_OPEN`` are allowed. Counters and state
    come from the backend, which may share them across breakers and
    processes.
    """

    def __init__(
        self,
        name: str,
        *,
        config: CircuitBreakerConfig | None = None,
        backend: AbstractBreakerBackend | None = None,
        listeners: Sequence[BreakerListener] | None = None,
        logger: BreakerLogger | None = None,
    ) -> None:
        """Build a circuit breaker and reset it to ``CLOSED``.

        Args:
            name: Breaker name used for storage keys, logs and events.
            config: Breaker behavior configuration. Defaults to
                ``CircuitBreakerConfig()``.
            backend: Counter/state backend. Defaults to in-memory storage.
            listeners: Optional listeners notified of state changes.
            logger: Structured or stdlib logger. Defaults to a structlog
                logger for this module.
        """
        self.name = name
        self.config = CircuitBreakerConfig() if config is None else config
        backend = InMemoryBreakerBackend() if backend is None else backend
        self._errors = backend.error_counter(name)
        self._successes = backend.integer_counter(name)
        self._state = backend.state_store(name)
        self._listeners = tuple(listeners) if listeners is not None else ()
        self._logger = structlog.get_logger(__name__) if logger is None else logger
        self.last_error: BaseException | None = None
        self.reset()

    @property
    def state(self) -> CircuitState:
        return self._state.value()

    @property
    def is_closed(self) -> bool:
        return self._state.is_closed()

    @property
    def is_open(self) -> bool:
        return self._state.is_open()

    @property
    def is_half_open(self) -> bool:
        return self._state.is_half_open()

    @property
    def in_use(self) -> bool:
        """Whether the breaker has failures recent enough to be worth keeping."""
        return not self._error_timeout_expired() and not self._errors.is_empty()

    def snapshot(self) -> BreakerSnapshot:
        """Return a point-in-time view of state and counters."""
        return BreakerSnapshot(
            name=self.name,
            state=self._state.value(),
            error_count=self._errors.value(),
            success_count=self._successes.value(),
            last_error_at=self._errors.last_failure_at(),
            last_error=self.last_error,
        )

    def acquire(
        self,
        func: Callable[..., T],
        *args: Any,
        resource: object | None = None,
        **kwargs: Any,
    ) -> T:
        """Invoke a callable under circuit breaker protection.

        Args:
            func: Callable to execute.
            *args: Positional arguments forwarded to ``func``.
            resource: Optional resource handle. When it implements
                ``SupportsResourceTimeout``, half-open probes run inside its
                scoped timeout.
            **kwargs: Keyword arguments forwarded to ``func``.

        Returns:
            The result of ``func``.

        Raises:
            OpenCircuitError: When the circuit is open and dry-run is off.
            Exception: Any exception from ``func``, re-raised unchanged.
        """
        self._admit()
        try:
            with self._probe_timeout(resource):
                result = func(*args, **kwargs)
        except self.config.exceptions as error:
            self._record_failure(error)
            raise
        self._record_success()
        return result

    async def acquire_async(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        resource: object | None = None,
        **kwargs: Any,
    ) -> T:
        """Await an async callable under circuit breaker protection.

        Same protocol as ``acquire``; the breaker's own bookkeeping never
        awaits. Half-open probes are bounded when ``resource`` implements
        ``SupportsAsyncResourceTimeout``.
        """
        self._admit()
        try:
            async with self._async_probe_timeout(resource):
                result = await func(*args, **kwargs)
        except self.config.exceptions as error:
            self._record_failure(error)
            raise
        self._record_success()
        return result

    def mark_failed(self, error: BaseException) -> None:
        """Record one failure and open the circuit if warranted."""
        self.last_error = error
        log_info(
            self._logger,
            "circuit_breaker_failure",
            breaker=self.name,
            error_class=type(error).__name__,
            error_message=str(error),
        )
        self._errors.increment()
        self._errors.record_failure_at(_now())

        state = self._state.value()
        if state == CircuitState.CLOSED:
            if self._errors.value() >= self.config.error_threshold:
                self._transition_to(CircuitState.OPEN)
        elif state == CircuitState.HALF_OPEN:
            self._transition_to(CircuitState.OPEN)

    def mark_success(self) -> None:
        """Record one successful probe; no-op unless ``HALF_OPEN``."""
        if not self._state.is_half_open():
            return

        self._errors.reset()
        self._successes.increment()
        if self._successes.value() >= self.config.success_threshold:
            self._transition_to(CircuitState.CLOSED)

    def reset(self) -> None:
        """Zero both counters and close the circuit."""
        self._errors.reset()
        self._successes.reset()
        self._transition_to(CircuitState.CLOSED)

    def destroy(self) -> None:
        """Release counter and state storage. The breaker is unusable after."""
        self._errors.destroy()
        self._successes.destroy()
        self._state.destroy()

    def _admit(self) -> None:
        if self._should_transition_to_half_open():
            self._transition_to(CircuitState.HALF_OPEN)

        if self._state.is_closed() or self._state.is_half_open():
            return

        if self.config.dryrun:
            log_info(self._logger, "circuit_open_dryrun", breaker=self.name)
            return
        raise OpenCircuitError(self.name, retry_after=self._retry_after())

    def _should_transition_to_half_open(self) -> bool:
        return (
            self._state.is_open()
            and self._error_timeout_expired()
            and not self._state.is_half_open()
        )

    def _error_timeout_expired(self) -> bool:
        last_failure_at = self._errors.last_failure_at()
        if last_failure_at is None:
            return False
        return _now() - last_failure_at >= self.config.error_timeout

    def _retry_after(self) -> float:
        last_failure_at = self._errors.last_failure_at()
        if last_failure_at is None:
            return self.config.error_timeout
        return max(self.config.error_timeout - (_now() - last_failure_at), 0.0)

    def _probe_timeout(self, resource: object | None) -> AbstractContextManager[object]:
        timeout = self.config.half_open_resource_timeout
        if (
            timeout is not None
            and isinstance(resource, SupportsResourceTimeout)
            and self._state.is_half_open()
        ):
            return resource.with_resource_timeout(timeout)
        return nullcontext()

    def _async_probe_timeout(
        self, resource: object | None
    ) -> AbstractAsyncContextManager[object]:
        timeout = self.config.half_open_resource_timeout
        if (
            timeout is not None
            and isinstance(resource, SupportsAsyncResourceTimeout)
            and self._state.is_half_open()
        ):
            return resource.with_async_resource_timeout(timeout)
        return nullcontext()

    def _record_failure(self, error: BaseException) -> None:
        if isinstance(error, MarksCircuits) and not error.marks_circuits():
            return
        if not self._state.is_open():
            self.mark_failed(error)

    def _record_success(self) -> None:
        if not self._state.is_open():
            self.mark_success()

    def _transition_to(self, new_state: CircuitState) -> None:
        self._notify_state_change(new_state)
        self._log_state_transition(new_state, _now())
        self._state.set(new_state)
        if new_state != CircuitState.OPEN:
            self._errors.reset()
            self._successes.reset()

    def _notify_state_change(self, new_state: CircuitState) -> None:
        for listener in self._listeners:
            try:
                listener.notify(STATE_CHANGE, self, state=new_state)
            except Exception:
                log_exception(
                    self._logger,
                    "circuit_breaker_listener_failed",
                    breaker=self.name,
                    new_state=str(new_state),
                )

    def _log_state_transition(self, new_state: CircuitState, occurred_at: float) -> None:
        old_state = self._state.value()
        if new_state == old_state:
            return

        fields: dict[str, object] = {
            "breaker": self.name,
            "old_state": str(old_state),
            "new_state": str(new_state),
            "occurred_at": _isoformat(occurred_at),
            "success_count": self._successes.value(),
            "error_count": self._errors.value(),
            "success_threshold": self.config.success_threshold,
            "error_threshold": self.config.error_threshold,
            "error_timeout": self.config.error_timeout,
            "error_last_at": _isoformat(self._errors.last_failure_at()),
        }
        if new_state == CircuitState.OPEN and self.last_error is not None:
            fields["last_error_message"] = str(self.last_error)
        log_info(self._logger, "circuit_breaker_state_transition", **fields)
