"""Thread-safe TTL cache for the read paths.

Entries carry their own lifetime because the stats TTL depends on the
degradation level at the time the value was computed.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Optional, Tuple


class TimedCache:
    """In-memory cache with per-entry TTL and LRU eviction.

    Parameters
    ----------
    max_items:
        Maximum number of entries to keep.
    default_ttl:
        Lifetime in seconds used when ``set`` is called without one.
    clock:
        Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        max_items: int = 64,
        default_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_items = max(1, int(max_items))
        self.default_ttl = float(default_ttl)
        self._clock = clock
        self._store: OrderedDict[str, Tuple[float, Any]] = OrderedDict()
        self._lock = threading.Lock()

    def _prune(self) -> None:
        """Remove expired and overflowing entries (caller must hold lock)."""
        now = self._clock()
        dead = [key for key, (expires, _val) in self._store.items() if expires <= now]
        for key in dead:
            self._store.pop(key, None)
        while len(self._store) > self.max_items:
            self._store.popitem(last=False)

    def get(self, key: str) -> Optional[Any]:
        """Return cached value or ``None`` if missing/expired."""
        with self._lock:
            item = self._store.get(key)
            if not item:
                return None
            expires, value = item
            if expires <= self._clock():
                self._store.pop(key, None)
                return None
            self._store.move_to_end(key)
            return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        lifetime = self.default_ttl if ttl is None else float(ttl)
        with self._lock:
            self._store[key] = (self._clock() + lifetime, value)
            self._store.move_to_end(key)
            self._prune()

    def get_or_set(
        self,
        key: str,
        factory: Callable[[], Any],
        ttl: Optional[float] = None,
    ) -> Tuple[Any, bool]:
        """Return ``(value, hit)``, calling *factory* on a miss.

        The factory runs outside the lock; two concurrent misses may both
        compute, and the later write wins.
        """
        cached = self.get(key)
        if cached is not None:
            return cached, True
        value = factory()
        self.set(key, value, ttl)
        return value, False

    def invalidate(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self._store.pop(key, None)

    def clear(self) -> None:
        """Drop all entries."""
        with self._lock:
            self._store.clear()
