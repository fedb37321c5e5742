"""Optional interfaces that resources and exceptions may implement."""

from contextlib import AbstractAsyncContextManager, AbstractContextManager
from typing import Protocol, runtime_checkable


@runtime_checkable
class SupportsResourceTimeout(Protocol):
    """Resource handle able to bound one call with a scoped timeout.

    Used only while the breaker is ``HALF_OPEN`` and a
    ``half_open_resource_timeout`` is configured.
    """

    def with_resource_timeout(self, timeout: float) -> AbstractContextManager[object]:
        """Return a context manager applying ``timeout`` to calls made inside it."""


@runtime_checkable
class SupportsAsyncResourceTimeout(Protocol):
    """Async resource handle able to bound one awaited call.

    Typically backed by ``asyncio.timeout``. Used by
    ``CircuitBreaker.acquire_async`` under the same conditions as
    ``SupportsResourceTimeout``. Expiry must raise from ``__aexit__`` so the
    breaker can record it.
    """

    def with_async_resource_timeout(
        self, timeout: float
    ) -> AbstractAsyncContextManager[object]:
        """Return an async context manager applying ``timeout`` inside it."""


@runtime_checkable
class MarksCircuits(Protocol):
    """Exception that decides whether it counts toward circuit accounting.

    Exceptions not implementing this protocol always count.
    """

    def marks_circuits(self) -> bool:
        """Return ``False`` to keep this failure out of the error counter."""
