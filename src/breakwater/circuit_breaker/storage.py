"""Counter and state storage for circuit breakers.

Storage is intentionally decoupled from breaker logic. A backend hands out
counters and state stores keyed by breaker name, so breakers sharing a name on
the same backend share their bookkeeping. Backends must make every individual
operation atomic; the breaker adds no locking of its own.
"""

import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from functools import partial

from breakwater.circuit_breaker.state import CircuitState

_ReleaseHook = Callable[[], None]


class AbstractCounter(ABC):
    """Integer counter interface."""

    @abstractmethod
    def increment(self) -> int:
        """Add one and return the new value."""

    @abstractmethod
    def reset(self) -> int:
        """Set the counter to zero and return it."""

    @abstractmethod
    def value(self) -> int:
        """Return the current value."""

    @abstractmethod
    def destroy(self) -> None:
        """Release the counter from its backend."""


class AbstractErrorCounter(AbstractCounter):
    """Counter that also remembers when the last failure was recorded.

    ``reset`` clears the last-failure timestamp together with the count.
    """

    @abstractmethod
    def record_failure_at(self, timestamp: float) -> None:
        """Store ``timestamp`` (epoch seconds) as the last failure time."""

    @abstractmethod
    def last_failure_at(self) -> float | None:
        """Return the last failure time, or ``None`` if none is recorded."""

    def is_empty(self) -> bool:
        return self.value() == 0


class AbstractStateStore(ABC):
    """Holder for one ``CircuitState`` value, initially ``CLOSED``."""

    @abstractmethod
    def value(self) -> CircuitState:
        """Return the current state."""

    @abstractmethod
    def set(self, state: CircuitState) -> None:
        """Replace the current state."""

    @abstractmethod
    def destroy(self) -> None:
        """Release the state store from its backend."""

    def is_closed(self) -> bool:
        return self.value() == CircuitState.CLOSED

    def is_open(self) -> bool:
        return self.value() == CircuitState.OPEN

    def is_half_open(self) -> bool:
        return self.value() == CircuitState.HALF_OPEN

    def set_closed(self) -> None:
        self.set(CircuitState.CLOSED)

    def set_open(self) -> None:
        self.set(CircuitState.OPEN)

    def set_half_open(self) -> None:
        self.set(CircuitState.HALF_OPEN)


class AbstractBreakerBackend(ABC):
    """Factory for the counters and state store one breaker needs."""

    @abstractmethod
    def integer_counter(self, name: str) -> AbstractCounter:
        """Return the success counter for breaker ``name``."""

    @abstractmethod
    def error_counter(self, name: str) -> AbstractErrorCounter:
        """Return the error counter for breaker ``name``."""

    @abstractmethod
    def state_store(self, name: str) -> AbstractStateStore:
        """Return the state store for breaker ``name``."""


class InMemoryCounter(AbstractCounter):
    """Process-local counter guarded by a thread lock."""

    def __init__(self, release: _ReleaseHook | None = None) -> None:
        self._lock = threading.Lock()
        self._value = 0
        self._release = release

    def increment(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    def reset(self) -> int:
        with self._lock:
            self._value = 0
            return self._value

    def value(self) -> int:
        with self._lock:
            return self._value

    def destroy(self) -> None:
        self.reset()
        if self._release is not None:
            self._release()


class InMemoryErrorCounter(InMemoryCounter, AbstractErrorCounter):
    """Process-local error counter with a last-failure timestamp."""

    def __init__(self, release: _ReleaseHook | None = None) -> None:
        super().__init__(release)
        self._last_failure_at: float | None = None

    def reset(self) -> int:
        with self._lock:
            self._value = 0
            self._last_failure_at = None
            return self._value

    def record_failure_at(self, timestamp: float) -> None:
        with self._lock:
            self._last_failure_at = timestamp

    def last_failure_at(self) -> float | None:
        with self._lock:
            return self._last_failure_at


class InMemoryStateStore(AbstractStateStore):
    """Process-local state holder guarded by a thread lock."""

    def __init__(self, release: _ReleaseHook | None = None) -> None:
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._release = release

    def value(self) -> CircuitState:
        with self._lock:
            return self._state

    def set(self, state: CircuitState) -> None:
        with self._lock:
            self._state = state

    def destroy(self) -> None:
        if self._release is not None:
            self._release()


class InMemoryBreakerBackend(AbstractBreakerBackend):
    """In-process backend; resources are shared per breaker name."""

    def __init__(self) -> None:
        """Initialize the per-name resource registry."""
        self._lock = threading.Lock()
        self._resources: dict[tuple[str, str], object] = {}

    def _discard(self, key: tuple[str, str]) -> None:
        with self._lock:
            self._resources.pop(key, None)

    def integer_counter(self, name: str) -> InMemoryCounter:
        """Return the shared success counter for ``name``, creating it if missing."""
        key = (name, "successes")
        with self._lock:
            counter = self._resources.get(key)
            if counter is None:
                counter = InMemoryCounter(partial(self._discard, key))
                self._resources[key] = counter
            return counter  # type: ignore[return-value]

    def error_counter(self, name: str) -> InMemoryErrorCounter:
        """Return the shared error counter for ``name``, creating it if missing."""
        key = (name, "errors")
        with self._lock:
            counter = self._resources.get(key)
            if counter is None:
                counter = InMemoryErrorCounter(partial(self._discard, key))
                self._resources[key] = counter
            return counter  # type: ignore[return-value]

    def state_store(self, name: str) -> InMemoryStateStore:
        """Return the shared state store for ``name``, creating it if missing."""
        key = (name, "state")
        with self._lock:
            store = self._resources.get(key)
            if store is None:
                store = InMemoryStateStore(partial(self._discard, key))
                self._resources[key] = store
            return store  # type: ignore[return-value]

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return any(key[0] == name for key in self._resources)
