"""
Serial Execution Boundary - single-writer funnel for store state

Face-tracking, audio and speech callbacks arrive on background threads. All
of them must pass through one ``SerialContext`` before touching the memory
store or the session recorder; the record store contexts underneath are not
safe for unsynchronized cross-thread mutation.

The context is a re-entrant lock, so a serialized method may call another
serialized method of a component sharing the same context.
"""

from __future__ import annotations

import functools
import threading
from typing import Any, Callable, TypeVar

R = TypeVar("R")


class SerialContext:
    """Mutex-guarded boundary; every public mutating call runs under it."""

    def __init__(self, name: str = "celiny.store") -> None:
        self.name = name
        self._lock = threading.RLock()

    def run(self, fn: Callable[..., R], *args: Any, **kwargs: Any) -> R:
        with self._lock:
            return fn(*args, **kwargs)

    def __enter__(self) -> "SerialContext":
        self._lock.acquire()
        return self

    def __exit__(self, exc_type, exc, exc_tb) -> bool:
        self._lock.release()
        return False


def serialized(method: Callable[..., R]) -> Callable[..., R]:
    """Route a method through ``self._serial``."""

    @functools.wraps(method)
    def wrapper(self, *args: Any, **kwargs: Any) -> R:
        return self._serial.run(method, self, *args, **kwargs)

    return wrapper


__all__ = ["SerialContext", "serialized"]
