"""Name-keyed registry of circuit breakers."""

from __future__ import annotations

import threading
from collections.abc import Sequence

from breakwater.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig
from breakwater.circuit_breaker.listeners import BreakerListener
from breakwater.circuit_breaker.storage import (
    AbstractBreakerBackend,
    InMemoryBreakerBackend,
)
from breakwater.logging import BreakerLogger


class BreakerRegistry:
    """Hold one breaker per name and drop idle ones when it grows too large.

    A breaker is idle when ``in_use`` is false: it has no recent failures, so
    rebuilding it later loses nothing. Pruning destroys the breaker's storage.
    """

    def __init__(
        self,
        *,
        max_size: int = 500,
        backend: AbstractBreakerBackend | None = None,
        listeners: Sequence[BreakerListener] | None = None,
        logger: BreakerLogger | None = None,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._max_size = max_size
        self._backend = InMemoryBreakerBackend() if backend is None else backend
        self._listeners = tuple(listeners) if listeners is not None else ()
        self._logger = logger
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._breakers)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._breakers

    def get(self, name: str) -> CircuitBreaker | None:
        with self._lock:
            return self._breakers.get(name)

    def get_or_create(
        self, name: str, config: CircuitBreakerConfig | None = None
    ) -> CircuitBreaker:
        """Return the breaker for ``name``, building it on first use.

        ``config`` only applies when the breaker is created.
        """
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is not None:
                return breaker
            if len(self._breakers) >= self._max_size:
                self._prune_locked()
            breaker = CircuitBreaker(
                name,
                config=config,
                backend=self._backend,
                listeners=self._listeners,
                logger=self._logger,
            )
            self._breakers[name] = breaker
            return breaker

    def remove(self, name: str) -> bool:
        """Destroy and forget the breaker for ``name``, if registered."""
        with self._lock:
            breaker = self._breakers.pop(name, None)
        if breaker is None:
            return False
        breaker.destroy()
        return True

    def prune(self) -> list[str]:
        """Destroy every breaker that is not in use and return their names."""
        with self._lock:
            return self._prune_locked()

    def destroy_all(self) -> None:
        with self._lock:
            breakers = list(self._breakers.values())
            self._breakers.clear()
        for breaker in breakers:
            breaker.destroy()

    def _prune_locked(self) -> list[str]:
        idle = [name for name, breaker in self._breakers.items() if not breaker.in_use]
        for name in idle:
            self._breakers.pop(name).destroy()
        return idle
