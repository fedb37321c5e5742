"""Synchronous circuit breaker with pluggable counter/state storage.

Key behavior notes:
  - ``CLOSED`` counts failures; reaching ``error_threshold`` opens the circuit.
  - ``OPEN`` refuses calls with ``OpenCircuitError`` (only logged under
    dry-run) until ``error_timeout`` has passed since the last failure.
  - The next call after that moves the breaker to ``HALF_OPEN``. Any probe
    failure reopens it and ``success_threshold`` probe successes close it.
    Several callers may probe at once; there is no single-prober gate.
  - Failures from the protected call are recorded and re-raised unchanged.
    Exceptions outside the configured classifier are never inspected.
"""

from breakwater.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig
from breakwater.circuit_breaker.capabilities import (
    MarksCircuits,
    SupportsAsyncResourceTimeout,
    SupportsResourceTimeout,
)
from breakwater.circuit_breaker.exceptions import (
    CircuitBreakerError,
    OpenCircuitError,
)
from breakwater.circuit_breaker.listeners import STATE_CHANGE, BreakerListener
from breakwater.circuit_breaker.registry import BreakerRegistry
from breakwater.circuit_breaker.shared_storage import SharedMemoryBreakerBackend
from breakwater.circuit_breaker.state import BreakerSnapshot, CircuitState
from breakwater.circuit_breaker.storage import (
    AbstractBreakerBackend,
    AbstractCounter,
    AbstractErrorCounter,
    AbstractStateStore,
    InMemoryBreakerBackend,
)

__all__ = [
    "STATE_CHANGE",
    "AbstractBreakerBackend",
    "AbstractCounter",
    "AbstractErrorCounter",
    "AbstractStateStore",
    "BreakerListener",
    "BreakerRegistry",
    "BreakerSnapshot",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitState",
    "InMemoryBreakerBackend",
    "MarksCircuits",
    "OpenCircuitError",
    "SharedMemoryBreakerBackend",
    "SupportsAsyncResourceTimeout",
    "SupportsResourceTimeout",
]
