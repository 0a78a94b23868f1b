"""
Rate Limiting

Fixed 60-second windows per (network hash, endpoint). Distinct from capacity:
this paces one caller, capacity closes admission for everyone.
"""
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Set, Tuple

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60
MAX_TRACKED_WINDOWS = 10_000


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: int  # unix seconds

    def retry_after(self, now: float) -> int:
        return max(0, math.ceil(self.reset_at - now))

    def headers(self, now: float) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after(now))
        return headers


class RateLimiter:
    """In-process fixed-window counter."""

    def __init__(
        self,
        limits: Dict[str, int],
        window_seconds: int = WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.limits = dict(limits)
        self.window_seconds = window_seconds
        self.clock = clock
        self._lock = threading.Lock()
        self._windows: Dict[Tuple[str, str], Tuple[int, int]] = {}
        self._unidentified_endpoints: Set[str] = set()

    def check(self, ip_hash: str, endpoint: str, limit: int) -> RateLimitResult:
        now = self.clock()
        window_start = int(now // self.window_seconds) * self.window_seconds
        reset_at = window_start + self.window_seconds
        key = (ip_hash, endpoint)

        with self._lock:
            started, count = self._windows.get(key, (window_start, 0))
            if started != window_start:
                started, count = window_start, 0
            if count >= limit:
                return RateLimitResult(allowed=False, limit=limit, remaining=0, reset_at=reset_at)
            count += 1
            self._windows[key] = (started, count)
            if len(self._windows) > MAX_TRACKED_WINDOWS:
                self._evict(window_start)

        return RateLimitResult(allowed=True, limit=limit, remaining=limit - count, reset_at=reset_at)

    def note_unidentified(self, endpoint: str) -> None:
        """Record an unlimited pass for a caller with no usable address (logged once per endpoint)."""
        with self._lock:
            if endpoint in self._unidentified_endpoints:
                return
            self._unidentified_endpoints.add(endpoint)
        logger.warning(f"Rate limiting skipped on {endpoint}: caller address unavailable")

    def _evict(self, window_start: int) -> None:
        # caller holds the lock
        stale = [key for key, (started, _count) in self._windows.items() if started < window_start]
        for key in stale:
            del self._windows[key]
