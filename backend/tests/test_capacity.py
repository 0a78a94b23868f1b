"""
Tests for the Capacity Monitor & Degradation State Machine.

1. Level thresholds and feature flags
2. Flags are a monotonic step function of the counter
3. Exactly one reset per UTC day, even when requests race past midnight
4. Counter-store failures fail open to normal
5. SQL-backed counter store
"""
import threading
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tracker.database import init_db
from tracker.services.capacity import (
    CapacityMonitor,
    CounterStore,
    CounterStoreError,
    DegradationLevel,
    InMemoryCounterStore,
    SQLCounterStore,
    day_key_for,
    level_for,
    next_midnight_utc,
)

from conftest import FakeClock

THRESHOLDS = (0.80, 0.90, 0.95, 1.00)


def make_monitor(store, clock, budget=100):
    return CapacityMonitor(
        store,
        daily_budget=budget,
        thresholds=THRESHOLDS,
        cache_ttl=300,
        cache_ttl_extended=900,
        clock=clock,
    )


class BrokenStore(CounterStore):
    """Counter store that is always unreachable."""

    def increment_and_read(self, day_key):
        raise CounterStoreError("connection refused")

    def read(self, day_key):
        raise CounterStoreError("connection refused")

    def reset(self, current_day_key):
        raise CounterStoreError("connection refused")


# =============================================================================
# TEST: LEVELS
# =============================================================================

class TestLevelFor:
    """Tests for the pure threshold comparison."""

    @pytest.mark.parametrize("count,level", [
        (0, DegradationLevel.NORMAL),
        (79, DegradationLevel.NORMAL),
        (80, DegradationLevel.ELEVATED),
        (89, DegradationLevel.ELEVATED),
        (90, DegradationLevel.HIGH),
        (95, DegradationLevel.CRITICAL),
        (99, DegradationLevel.CRITICAL),
        (100, DegradationLevel.EXCEEDED),
        (250, DegradationLevel.EXCEEDED),
    ])
    def test_thresholds(self, count, level):
        assert level_for(count, 100, THRESHOLDS) == level

    def test_levels_are_ordered(self):
        ranks = [level.rank for level in DegradationLevel]
        assert ranks == sorted(ranks)


class TestDegradationState:
    """Tests for the derived feature flags."""

    def setup_method(self):
        self.clock = FakeClock(datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc))
        self.store = InMemoryCounterStore()
        self.monitor = make_monitor(self.store, self.clock)
        self.day_key = day_key_for(self.clock())

    def _state_at(self, count):
        self.store.set(self.day_key, count)
        return self.monitor.current_state()

    def test_normal(self):
        state = self._state_at(10)
        assert state.level == DegradationLevel.NORMAL
        assert state.features.chart_enabled
        assert state.features.submissions_enabled
        assert state.cache_ttl_seconds == 300
        assert state.message is None

    def test_elevated_has_no_message(self):
        state = self._state_at(85)
        assert state.level == DegradationLevel.ELEVATED
        assert state.message is None
        assert state.features.chart_enabled

    def test_high_disables_chart_and_extends_cache(self):
        state = self._state_at(90)
        assert state.level == DegradationLevel.HIGH
        assert not state.features.chart_enabled
        assert state.features.cache_extended
        assert state.cache_ttl_seconds == 900
        assert state.message == "High traffic! Some features temporarily limited."
        assert state.features.submissions_enabled

    def test_exceeded_disables_submissions_keeps_stats(self):
        state = self._state_at(100)
        assert state.level == DegradationLevel.EXCEEDED
        assert not state.features.submissions_enabled
        assert state.features.stats_enabled
        assert state.message == "We've reached capacity for today. Try again in 12 hours."
        assert state.seconds_until_reset == 12 * 3600

    def test_flags_are_monotonic_in_count(self):
        disabled_at = {}
        for count in range(0, 121):
            flags = self._state_at(count).features
            for name in ("chart_enabled", "submissions_enabled"):
                enabled = getattr(flags, name)
                if name in disabled_at:
                    assert not enabled, f"{name} re-enabled at {count}"
                elif not enabled:
                    disabled_at[name] = count
        assert disabled_at == {"chart_enabled": 90, "submissions_enabled": 100}

    def test_to_dict_shape(self):
        data = self._state_at(95).to_dict()
        assert data["level"] == "critical"
        assert data["requests_today"] == 95
        assert data["limit_today"] == 100
        assert data["reset_at"] == "2026-10-20T00:00:00+00:00"
        assert data["features"]["chart_enabled"] is False
        assert data["store_degraded"] is False


# =============================================================================
# TEST: COUNTING & RESET
# =============================================================================

class TestCapacityMonitor:
    """Tests for counting, daily reset and fail-open."""

    def setup_method(self):
        self.clock = FakeClock(datetime(2026, 10, 19, 23, 59, tzinfo=timezone.utc))
        self.store = InMemoryCounterStore()
        self.monitor = make_monitor(self.store, self.clock)

    def test_record_request_increments(self):
        for expected in (1, 2, 3):
            assert self.monitor.record_request().requests_today == expected

    def test_current_state_does_not_count(self):
        self.monitor.record_request()
        assert self.monitor.current_state().requests_today == 1
        assert self.monitor.current_state().requests_today == 1

    def test_new_day_resets_exactly_once(self):
        for _ in range(5):
            self.monitor.record_request()
        self.clock.advance(minutes=2)
        counts = [self.monitor.record_request().requests_today for _ in range(3)]
        assert counts == [1, 2, 3]
        assert self.store.reset_count == 1

    def test_concurrent_increments_are_not_lost(self):
        def worker():
            for _ in range(50):
                self.monitor.record_request()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert self.monitor.current_state().requests_today == 400

    def test_concurrent_requests_past_midnight_reset_once(self):
        self.monitor.record_request()
        self.clock.advance(minutes=2)
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            self.monitor.record_request()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert self.store.reset_count == 1
        assert self.monitor.current_state().requests_today == 8

    def test_reset_at_is_next_utc_midnight(self):
        state = self.monitor.record_request()
        assert state.reset_at == next_midnight_utc(self.clock())
        assert state.reset_at == datetime(2026, 10, 20, tzinfo=timezone.utc)

    def test_unreachable_store_fails_open(self):
        monitor = make_monitor(BrokenStore(), self.clock)
        state = monitor.record_request()
        assert state.level == DegradationLevel.NORMAL
        assert state.features.submissions_enabled
        assert state.store_degraded
        assert monitor.store_degraded
        assert state.to_dict()["store_degraded"] is True
        assert monitor.current_state().level == DegradationLevel.NORMAL

    def test_recovery_clears_degraded_flag(self):
        monitor = make_monitor(BrokenStore(), self.clock)
        monitor.record_request()
        monitor.store = self.store
        state = monitor.record_request()
        assert not state.store_degraded
        assert not monitor.store_degraded


class TestInMemoryCounterStore:
    """Tests for the process-local store."""

    def test_stale_day_does_not_disturb_today(self):
        store = InMemoryCounterStore()
        store.increment_and_read("2026-10-20")
        assert store.increment_and_read("2026-10-19") == 0
        assert store.read("2026-10-20") == 1

    def test_reset_is_idempotent(self):
        store = InMemoryCounterStore()
        store.increment_and_read("2026-10-19")
        assert store.reset("2026-10-20") == 1
        assert store.reset("2026-10-20") == 0
        assert store.reset_count == 1


# =============================================================================
# TEST: SQL COUNTER STORE
# =============================================================================

@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


class TestSQLCounterStore:
    """Tests for the database-backed counter."""

    def test_increment_and_read(self, session_factory):
        store = SQLCounterStore(session_factory)
        assert [store.increment_and_read("2026-10-19") for _ in range(3)] == [1, 2, 3]
        assert store.read("2026-10-19") == 3
        assert store.read("2026-10-20") == 0

    def test_reset_drops_earlier_days_only(self, session_factory):
        store = SQLCounterStore(session_factory)
        store.increment_and_read("2026-10-18")
        store.increment_and_read("2026-10-19")
        assert store.reset("2026-10-19") == 1
        assert store.reset("2026-10-19") == 0
        assert store.read("2026-10-19") == 1

    def test_monitor_over_sql_store(self, session_factory):
        clock = FakeClock(datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc))
        monitor = make_monitor(SQLCounterStore(session_factory), clock, budget=2)
        monitor.record_request()
        assert monitor.record_request().level == DegradationLevel.EXCEEDED
        clock.advance(days=1)
        assert monitor.record_request().level == DegradationLevel.NORMAL
