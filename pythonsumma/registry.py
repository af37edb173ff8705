"""
Process-wide store for expensive read-only parameters (SRS, keys).

Entries are built once per key by the first caller, shared by every later
caller and dropped when the last holder releases them. Everything left is
cleared at interpreter exit.
"""

import atexit
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Hashable

import structlog

logger = structlog.get_logger(__name__)


class ParamsRegistry:
    def __init__(self):
        self._lock = threading.RLock()
        self._entries: Dict[Hashable, Any] = {}
        self._refcounts: Dict[Hashable, int] = {}

    def acquire(self, key: Hashable, factory: Callable[[], Any]) -> Any:
        """Return the entry for key, building it with factory if absent."""
        with self._lock:
            if key not in self._entries:
                # Built under the lock: concurrent callers wait rather than build twice
                self._entries[key] = factory()
                self._refcounts[key] = 0
                logger.debug("params_built", key=str(key))
            self._refcounts[key] += 1
            return self._entries[key]

    def release(self, key: Hashable) -> None:
        with self._lock:
            if key not in self._refcounts:
                raise KeyError(f"no shared parameters registered under {key!r}")
            self._refcounts[key] -= 1
            if self._refcounts[key] == 0:
                del self._entries[key]
                del self._refcounts[key]
                logger.debug("params_released", key=str(key))

    @contextmanager
    def borrow(self, key: Hashable, factory: Callable[[], Any]):
        value = self.acquire(key, factory)
        try:
            yield value
        finally:
            self.release(key)

    def refcount(self, key: Hashable) -> int:
        with self._lock:
            return self._refcounts.get(key, 0)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._entries

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._refcounts.clear()


SHARED_PARAMS = ParamsRegistry()
atexit.register(SHARED_PARAMS.clear)
