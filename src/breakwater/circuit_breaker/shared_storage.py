"""Cross-process breaker storage backed by ``multiprocessing`` shared memory.

Counters and state live in raw shared ctypes values guarded by a
process-shared lock. Processes forked after the backend is created, or
spawned with the backend passed as an argument, see the same values, so
breakers with the same name in every worker trip and recover together.
"""

import multiprocessing
import threading
from functools import partial
from multiprocessing.context import BaseContext
from typing import Any

from breakwater.circuit_breaker.state import CircuitState
from breakwater.circuit_breaker.storage import (
    AbstractBreakerBackend,
    AbstractCounter,
    AbstractErrorCounter,
    AbstractStateStore,
    _ReleaseHook,
)

_NO_FAILURE = -1.0
_STATE_CODES: dict[CircuitState, int] = {
    CircuitState.CLOSED: 0,
    CircuitState.OPEN: 1,
    CircuitState.HALF_OPEN: 2,
}
_CODE_STATES: dict[int, CircuitState] = {
    code: state for state, code in _STATE_CODES.items()
}


class SharedCounter(AbstractCounter):
    """Integer counter stored in shared memory."""

    def __init__(
        self, context: BaseContext, release: _ReleaseHook | None = None
    ) -> None:
        self._lock = context.Lock()
        self._value = context.RawValue("q", 0)
        self._release = release

    def increment(self) -> int:
        with self._lock:
            self._value.value += 1
            return int(self._value.value)

    def reset(self) -> int:
        with self._lock:
            self._value.value = 0
            return 0

    def value(self) -> int:
        with self._lock:
            return int(self._value.value)

    def destroy(self) -> None:
        self.reset()
        if self._release is not None:
            self._release()


class SharedErrorCounter(SharedCounter, AbstractErrorCounter):
    """Shared error counter; the timestamp shares the counter's lock."""

    def __init__(
        self, context: BaseContext, release: _ReleaseHook | None = None
    ) -> None:
        super().__init__(context, release)
        self._last_failure_at = context.RawValue("d", _NO_FAILURE)

    def reset(self) -> int:
        with self._lock:
            self._value.value = 0
            self._last_failure_at.value = _NO_FAILURE
            return 0

    def record_failure_at(self, timestamp: float) -> None:
        with self._lock:
            self._last_failure_at.value = timestamp

    def last_failure_at(self) -> float | None:
        with self._lock:
            timestamp = float(self._last_failure_at.value)
        if timestamp == _NO_FAILURE:
            return None
        return timestamp


class SharedStateStore(AbstractStateStore):
    """State holder stored in shared memory as a small integer code."""

    def __init__(
        self, context: BaseContext, release: _ReleaseHook | None = None
    ) -> None:
        self._lock = context.Lock()
        self._code = context.RawValue("b", _STATE_CODES[CircuitState.CLOSED])
        self._release = release

    def value(self) -> CircuitState:
        with self._lock:
            return _CODE_STATES[int(self._code.value)]

    def set(self, state: CircuitState) -> None:
        with self._lock:
            self._code.value = _STATE_CODES[state]

    def destroy(self) -> None:
        if self._release is not None:
            self._release()


class SharedMemoryBreakerBackend(AbstractBreakerBackend):
    """Backend whose counters and state are shared between processes.

    Resources must be created before worker processes start; a resource
    first requested inside a worker is local to that worker and its children.
    """

    def __init__(self, context: BaseContext | None = None) -> None:
        """Create a backend bound to one multiprocessing context.

        Args:
            context: Multiprocessing context used to allocate shared values.
                Defaults to ``multiprocessing.get_context()``.
        """
        self._context = multiprocessing.get_context() if context is None else context
        self._lock = threading.Lock()
        self._resources: dict[tuple[str, str], Any] = {}

    def __getstate__(self) -> dict[str, Any]:
        state = self.__dict__.copy()
        del state["_lock"]
        del state["_context"]
        return state

    def __setstate__(self, state: dict[str, Any]) -> None:
        self.__dict__.update(state)
        self._context = multiprocessing.get_context()
        self._lock = threading.Lock()

    def _discard(self, key: tuple[str, str]) -> None:
        with self._lock:
            self._resources.pop(key, None)

    def integer_counter(self, name: str) -> SharedCounter:
        """Return the shared success counter for ``name``."""
        key = (name, "successes")
        with self._lock:
            if key not in self._resources:
                self._resources[key] = SharedCounter(
                    self._context, partial(self._discard, key)
                )
            return self._resources[key]

    def error_counter(self, name: str) -> SharedErrorCounter:
        """Return the shared error counter for ``name``."""
        key = (name, "errors")
        with self._lock:
            if key not in self._resources:
                self._resources[key] = SharedErrorCounter(
                    self._context, partial(self._discard, key)
                )
            return self._resources[key]

    def state_store(self, name: str) -> SharedStateStore:
        """Return the shared state store for ``name``."""
        key = (name, "state")
        with self._lock:
            if key not in self._resources:
                self._resources[key] = SharedStateStore(
                    self._context, partial(self._discard, key)
                )
            return self._resources[key]

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return any(key[0] == name for key in self._resources)
