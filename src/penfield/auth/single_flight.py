"""Single-flight coordination: one in-flight call per process, latecomers share its result."""

from __future__ import annotations

import threading
from concurrent.futures import Future
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """Collapse concurrent calls into one execution.

    The first thread to call :meth:`do` runs *fn*; threads arriving while it
    runs block on the same :class:`~concurrent.futures.Future` and receive its
    return value, or its exception re-raised. Once the call completes the
    next :meth:`do` starts a fresh execution.

    Example::

        flight = SingleFlight()
        token = flight.do(lambda: rotator.refresh(...))
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._future: Optional[Future[T]] = None

    @property
    def in_flight(self) -> bool:
        with self._lock:
            return self._future is not None

    def do(self, fn: Callable[[], T]) -> T:
        with self._lock:
            future = self._future
            leader = future is None
            if leader:
                future = self._future = Future()

        assert future is not None
        if not leader:
            return future.result()

        try:
            result = fn()
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._future = None
