"""Notification hooks for circuit breakers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from breakwater.circuit_breaker.state import CircuitState

if TYPE_CHECKING:
    from breakwater.circuit_breaker.breaker import CircuitBreaker

STATE_CHANGE = "state_change"


class BreakerListener(Protocol):
    """Listener protocol for circuit breaker events.

    Notes:
        Delivery is fire-and-forget. A listener raising is logged and skipped,
        it never affects the breaker or other listeners.
    """

    def notify(
        self, event: str, breaker: CircuitBreaker, *, state: CircuitState
    ) -> None:
        """Handle one breaker event, currently only ``STATE_CHANGE``."""
