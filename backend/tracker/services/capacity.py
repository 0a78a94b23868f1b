"""
Capacity Monitor & Degradation State Machine

AUTHORITY: SYSTEM
Counts accepted requests per UTC day against a fixed daily budget and derives
the degradation level and feature flags from that count alone.

Levels (ordered):
    normal < elevated < high < critical < exceeded

Key behaviors:
- The level is recomputed from the counter on every read; there are no
  transitions to guard, only threshold comparisons.
- high and above: chart disabled, read-cache lifetime extended.
- exceeded: submissions disabled; stats stay readable.
- The counter is keyed by UTC day. A new day starts a new key, so the reset
  happens exactly once no matter how many requests race past midnight.
- If the counter store is unreachable the monitor fails open to normal.
"""
import logging
import math
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..models.db_models import CapacityCounterDB

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def day_key_for(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%d")


def next_midnight_utc(moment: datetime) -> datetime:
    current = moment.astimezone(timezone.utc)
    midnight = datetime(current.year, current.month, current.day, tzinfo=timezone.utc)
    return midnight + timedelta(days=1)


# =============================================================================
# LEVELS & FEATURE FLAGS
# =============================================================================

class DegradationLevel(str, Enum):
    NORMAL = "normal"
    ELEVATED = "elevated"
    HIGH = "high"
    CRITICAL = "critical"
    EXCEEDED = "exceeded"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)


_LEVEL_ORDER = [
    DegradationLevel.NORMAL,
    DegradationLevel.ELEVATED,
    DegradationLevel.HIGH,
    DegradationLevel.CRITICAL,
    DegradationLevel.EXCEEDED,
]


LEVEL_CONFIG = {
    DegradationLevel.NORMAL: {
        "stats_enabled": True,
        "submissions_enabled": True,
        "chart_enabled": True,
        "cache_extended": False,
        "message": None,
    },
    DegradationLevel.ELEVATED: {
        "stats_enabled": True,
        "submissions_enabled": True,
        "chart_enabled": True,
        "cache_extended": False,
        "message": None,  # logged, not shown
    },
    DegradationLevel.HIGH: {
        "stats_enabled": True,
        "submissions_enabled": True,
        "chart_enabled": False,
        "cache_extended": True,
        "message": "High traffic! Some features temporarily limited.",
    },
    DegradationLevel.CRITICAL: {
        "stats_enabled": True,
        "submissions_enabled": True,
        "chart_enabled": False,
        "cache_extended": True,
        "message": "High traffic! Some features temporarily limited.",
    },
    DegradationLevel.EXCEEDED: {
        "stats_enabled": True,
        "submissions_enabled": False,
        "chart_enabled": False,
        "cache_extended": True,
        "message": "We've reached capacity for today. Try again in {hours} hours.",
    },
}


def level_for(
    count: int,
    daily_budget: int,
    thresholds: Tuple[float, float, float, float],
) -> DegradationLevel:
    """Pure threshold comparison of today's count against the budget."""
    usage = count / daily_budget
    elevated, high, critical, exceeded = thresholds
    if usage >= exceeded:
        return DegradationLevel.EXCEEDED
    if usage >= critical:
        return DegradationLevel.CRITICAL
    if usage >= high:
        return DegradationLevel.HIGH
    if usage >= elevated:
        return DegradationLevel.ELEVATED
    return DegradationLevel.NORMAL


@dataclass(frozen=True)
class FeatureFlags:
    stats_enabled: bool
    submissions_enabled: bool
    chart_enabled: bool
    cache_extended: bool


@dataclass(frozen=True)
class DegradationState:
    """Derived view of the counter; never persisted."""
    level: DegradationLevel
    requests_today: int
    daily_budget: int
    reset_at: datetime
    features: FeatureFlags
    cache_ttl_seconds: int
    message: Optional[str] = None
    store_degraded: bool = False
    seconds_until_reset: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "requests_today": self.requests_today,
            "limit_today": self.daily_budget,
            "reset_at": self.reset_at.isoformat(),
            "features": asdict(self.features),
            "cache_ttl_seconds": self.cache_ttl_seconds,
            "message": self.message,
            "store_degraded": self.store_degraded,
        }


def hours_until(reset_at: datetime, now: datetime) -> int:
    return max(0, math.ceil((reset_at - now).total_seconds() / 3600))


def build_degradation_state(
    level: DegradationLevel,
    requests_today: int,
    daily_budget: int,
    reset_at: datetime,
    now: datetime,
    cache_ttl: int,
    cache_ttl_extended: int,
    store_degraded: bool = False,
) -> DegradationState:
    config = LEVEL_CONFIG[level]
    features = FeatureFlags(
        stats_enabled=config["stats_enabled"],
        submissions_enabled=config["submissions_enabled"],
        chart_enabled=config["chart_enabled"],
        cache_extended=config["cache_extended"],
    )
    message = config["message"]
    if message and "{hours}" in message:
        message = message.format(hours=hours_until(reset_at, now))

    return DegradationState(
        level=level,
        requests_today=requests_today,
        daily_budget=daily_budget,
        reset_at=reset_at,
        features=features,
        cache_ttl_seconds=cache_ttl_extended if features.cache_extended else cache_ttl,
        message=message,
        store_degraded=store_degraded,
        seconds_until_reset=max(0, math.ceil((reset_at - now).total_seconds())),
    )


# =============================================================================
# COUNTER STORES
# =============================================================================

class CounterStoreError(Exception):
    """The counter store could not be reached or answered garbage."""


class CounterStore(ABC):
    """Atomic per-day counter."""

    @abstractmethod
    def increment_and_read(self, day_key: str) -> int:
        """Atomically add one to the day's counter and return the new value."""

    @abstractmethod
    def read(self, day_key: str) -> int:
        """Current value for the day (0 if the day has no counter yet)."""

    @abstractmethod
    def reset(self, current_day_key: str) -> int:
        """Drop counters for days before `current_day_key`. Idempotent."""


class InMemoryCounterStore(CounterStore):
    """Process-local store guarded by a lock."""

    def __init__(self):
        self._lock = threading.Lock()
        self._day_key: Optional[str] = None
        self._count = 0
        self.reset_count = 0

    def _roll(self, day_key: str) -> None:
        # caller holds the lock
        if self._day_key == day_key:
            return
        if self._day_key is not None:
            if day_key < self._day_key:
                return
            self.reset_count += 1
        self._day_key = day_key
        self._count = 0

    def increment_and_read(self, day_key: str) -> int:
        with self._lock:
            self._roll(day_key)
            if self._day_key != day_key:
                # stale day from a slow clock; do not disturb today
                return 0
            self._count += 1
            return self._count

    def read(self, day_key: str) -> int:
        with self._lock:
            return self._count if self._day_key == day_key else 0

    def reset(self, current_day_key: str) -> int:
        with self._lock:
            if self._day_key is not None and self._day_key < current_day_key:
                self._day_key = current_day_key
                self._count = 0
                self.reset_count += 1
                return 1
            return 0

    def set(self, day_key: str, value: int) -> None:
        """Seed a count (tests and warm restarts)."""
        with self._lock:
            self._day_key = day_key
            self._count = value


class SQLCounterStore(CounterStore):
    """
    Database-backed store. The increment is a single UPDATE ... SET
    request_count = request_count + 1, so concurrent workers never lose
    updates. The first request of a day inserts the row; a racing insert
    loses on the primary key and retries the update.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def increment_and_read(self, day_key: str) -> int:
        db = self.session_factory()
        try:
            for _ in range(2):
                result = db.execute(
                    update(CapacityCounterDB)
                    .where(CapacityCounterDB.day_key == day_key)
                    .values(request_count=CapacityCounterDB.request_count + 1)
                )
                if result.rowcount:
                    count = db.query(CapacityCounterDB.request_count).filter(
                        CapacityCounterDB.day_key == day_key
                    ).scalar()
                    db.commit()
                    return int(count)
                try:
                    db.add(CapacityCounterDB(day_key=day_key, request_count=1))
                    db.commit()
                    return 1
                except IntegrityError:
                    db.rollback()
            raise CounterStoreError(f"Could not increment counter for {day_key}")
        except SQLAlchemyError as e:
            db.rollback()
            raise CounterStoreError(str(e)) from e
        finally:
            db.close()

    def read(self, day_key: str) -> int:
        db = self.session_factory()
        try:
            count = db.query(CapacityCounterDB.request_count).filter(
                CapacityCounterDB.day_key == day_key
            ).scalar()
            return int(count or 0)
        except SQLAlchemyError as e:
            raise CounterStoreError(str(e)) from e
        finally:
            db.close()

    def reset(self, current_day_key: str) -> int:
        db = self.session_factory()
        try:
            deleted = db.query(CapacityCounterDB).filter(
                CapacityCounterDB.day_key < current_day_key
            ).delete(synchronize_session=False)
            db.commit()
            return deleted
        except SQLAlchemyError as e:
            db.rollback()
            raise CounterStoreError(str(e)) from e
        finally:
            db.close()


# =============================================================================
# MONITOR
# =============================================================================

class CapacityMonitor:
    """
    Wraps a CounterStore with the daily budget and thresholds.

    The store's failure mode is a single named flag (`store_degraded`):
    entered and left with one log line each, and reported as normal capacity
    while it lasts.
    """

    def __init__(
        self,
        store: CounterStore,
        daily_budget: int,
        thresholds: Tuple[float, float, float, float],
        cache_ttl: int = 300,
        cache_ttl_extended: int = 900,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.daily_budget = daily_budget
        self.thresholds = thresholds
        self.cache_ttl = cache_ttl
        self.cache_ttl_extended = cache_ttl_extended
        self.clock = clock
        self.store_degraded = False
        self._last_level = DegradationLevel.NORMAL
        self._last_reset_day: Optional[str] = None
        self._flag_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # degraded-mode bookkeeping
    # -------------------------------------------------------------------------

    def _enter_degraded(self, error: Exception) -> None:
        with self._flag_lock:
            if self.store_degraded:
                return
            self.store_degraded = True
        logger.warning(f"Capacity counter store unavailable, failing open to normal: {error}")

    def _leave_degraded(self) -> None:
        with self._flag_lock:
            if not self.store_degraded:
                return
            self.store_degraded = False
        logger.info("Capacity counter store recovered")

    def _maybe_reset(self, day_key: str) -> None:
        with self._flag_lock:
            if self._last_reset_day == day_key:
                return
        # store.reset is idempotent; concurrent callers may both reach it
        self.store.reset(day_key)
        with self._flag_lock:
            self._last_reset_day = day_key

    def _note_level(self, level: DegradationLevel, count: int) -> None:
        if level != self._last_level:
            log = logger.warning if level.rank > self._last_level.rank else logger.info
            log(f"Capacity level {self._last_level.value} -> {level.value} ({count}/{self.daily_budget} requests today)")
            self._last_level = level

    # -------------------------------------------------------------------------
    # public API
    # -------------------------------------------------------------------------

    def record_request(self) -> DegradationState:
        """Count one accepted request and return the resulting state."""
        now = self.clock()
        day_key = day_key_for(now)
        try:
            self._maybe_reset(day_key)
            count = self.store.increment_and_read(day_key)
        except CounterStoreError as e:
            self._enter_degraded(e)
            return self._fail_open(now)
        self._leave_degraded()
        return self._state(count, now)

    def current_state(self) -> DegradationState:
        """Read-only view; does not count a request."""
        now = self.clock()
        try:
            count = self.store.read(day_key_for(now))
        except CounterStoreError as e:
            self._enter_degraded(e)
            return self._fail_open(now)
        self._leave_degraded()
        return self._state(count, now)

    def _state(self, count: int, now: datetime) -> DegradationState:
        level = level_for(count, self.daily_budget, self.thresholds)
        self._note_level(level, count)
        return build_degradation_state(
            level=level,
            requests_today=count,
            daily_budget=self.daily_budget,
            reset_at=next_midnight_utc(now),
            now=now,
            cache_ttl=self.cache_ttl,
            cache_ttl_extended=self.cache_ttl_extended,
        )

    def _fail_open(self, now: datetime) -> DegradationState:
        return build_degradation_state(
            level=DegradationLevel.NORMAL,
            requests_today=0,
            daily_budget=self.daily_budget,
            reset_at=next_midnight_utc(now),
            now=now,
            cache_ttl=self.cache_ttl,
            cache_ttl_extended=self.cache_ttl_extended,
            store_degraded=True,
        )
