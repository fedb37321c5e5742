"""Circuit breaker state primitives."""

from dataclasses import dataclass
from enum import StrEnum


class CircuitState(StrEnum):
    """Circuit breaker state values."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerSnapshot:
    """Point-in-time view of breaker internals useful for metrics/logging.

    Attributes:
        name: Breaker name.
        state: Current breaker state.
        error_count: Failures recorded since the last counter reset.
        success_count: Successes recorded while ``HALF_OPEN``.
        last_error_at: Epoch seconds of the last recorded failure, if any.
        last_error: Most recent recorded failure, kept for diagnostics only.
    """

    name: str
    state: CircuitState
    error_count: int
    success_count: int
    last_error_at: float | None
    last_error: BaseException | None
