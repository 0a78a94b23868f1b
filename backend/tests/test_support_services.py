"""
Tests for the supporting services: read cache, rate limiter, bot
verification, configuration loading and log redaction.
"""
import logging
from datetime import date
from unittest.mock import MagicMock

import pytest
import requests

from tracker.config import ConfigurationError, Settings, load_settings
from tracker.logging_setup import SensitiveDataFilter
from tracker.services.bot_verification import TURNSTILE_VERIFY_URL, BotVerifier
from tracker.services.cache import TimedCache
from tracker.services.rate_limit import RateLimiter


# =============================================================================
# TEST: TIMED CACHE
# =============================================================================

class TestTimedCache:
    """Tests for TimedCache."""

    def setup_method(self):
        self.now = 0.0
        self.cache = TimedCache(max_items=3, default_ttl=10, clock=lambda: self.now)

    def test_get_or_set_reports_hit(self):
        calls = []

        def factory():
            calls.append(1)
            return {"count": 1}

        assert self.cache.get_or_set("k", factory) == ({"count": 1}, False)
        assert self.cache.get_or_set("k", factory) == ({"count": 1}, True)
        assert len(calls) == 1

    def test_per_entry_ttl(self):
        self.cache.set("short", 1, ttl=5)
        self.cache.set("long", 2, ttl=50)
        self.now = 6
        assert self.cache.get("short") is None
        assert self.cache.get("long") == 2

    def test_invalidate(self):
        self.cache.set("a", 1)
        self.cache.set("b", 2)
        self.cache.invalidate("a", "missing")
        assert self.cache.get("a") is None
        assert self.cache.get("b") == 2

    def test_lru_eviction(self):
        for key in ("a", "b", "c"):
            self.cache.set(key, key)
        self.cache.get("a")
        self.cache.set("d", "d")
        assert self.cache.get("b") is None
        assert self.cache.get("a") == "a"


# =============================================================================
# TEST: RATE LIMITER
# =============================================================================

class TestRateLimiter:
    """Tests for fixed 60-second windows."""

    def setup_method(self):
        self.now = 1_000_000.0
        self.limiter = RateLimiter({"submit": 2}, clock=lambda: self.now)

    def test_limit_then_reject(self):
        first = self.limiter.check("hash", "submit", 2)
        second = self.limiter.check("hash", "submit", 2)
        third = self.limiter.check("hash", "submit", 2)
        assert (first.allowed, first.remaining) == (True, 1)
        assert (second.allowed, second.remaining) == (True, 0)
        assert not third.allowed
        assert third.retry_after(self.now) == 20

    def test_rejected_headers_carry_retry_after(self):
        for _ in range(3):
            result = self.limiter.check("hash", "submit", 2)
        headers = result.headers(self.now)
        assert headers["X-RateLimit-Limit"] == "2"
        assert headers["X-RateLimit-Remaining"] == "0"
        assert headers["X-RateLimit-Reset"] == "1000020"
        assert headers["Retry-After"] == "20"

    def test_keys_are_independent(self):
        self.limiter.check("hash", "submit", 1)
        assert self.limiter.check("other", "submit", 1).allowed
        assert self.limiter.check("hash", "stats", 1).allowed

    def test_new_window_resets(self):
        self.limiter.check("hash", "submit", 1)
        assert not self.limiter.check("hash", "submit", 1).allowed
        self.now += 60
        assert self.limiter.check("hash", "submit", 1).allowed

    def test_unidentified_pass_logged_once_per_endpoint(self, caplog):
        with caplog.at_level(logging.WARNING, logger="tracker.services.rate_limit"):
            self.limiter.note_unidentified("stats")
            self.limiter.note_unidentified("stats")
            self.limiter.note_unidentified("submit")
        skipped = [r.getMessage() for r in caplog.records if "caller address unavailable" in r.getMessage()]
        assert len(skipped) == 2


# =============================================================================
# TEST: BOT VERIFICATION
# =============================================================================

def _session_returning(status_code=200, payload=None):
    session = MagicMock()
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload or {}
    session.post.return_value = response
    return session


class TestBotVerifier:
    """Tests for Turnstile verification and its fail-open policy."""

    def test_success(self):
        session = _session_returning(payload={"success": True, "hostname": "example.com"})
        verifier = BotVerifier("secret", session=session)
        result = verifier.verify("token")
        assert result.passed and not result.degraded
        session.post.assert_called_once_with(
            TURNSTILE_VERIFY_URL,
            data={"secret": "secret", "response": "token"},
            timeout=3.0,
        )

    def test_explicit_failure_rejects(self):
        session = _session_returning(payload={"success": False, "error-codes": ["invalid-input-response"]})
        result = BotVerifier("secret", session=session).verify("token")
        assert not result.passed
        assert result.error_codes == ["invalid-input-response"]

    def test_missing_secret_fails_open(self):
        session = MagicMock()
        verifier = BotVerifier("", session=session)
        assert verifier.degraded
        assert verifier.verify("token").passed
        session.post.assert_not_called()

    def test_missing_token_fails_open(self):
        session = MagicMock()
        result = BotVerifier("secret", session=session).verify(None)
        assert result.passed and result.degraded
        session.post.assert_not_called()

    @pytest.mark.parametrize("error", [requests.Timeout("slow"), requests.ConnectionError("down")])
    def test_network_errors_fail_open(self, error):
        session = MagicMock()
        session.post.side_effect = error
        verifier = BotVerifier("secret", session=session)
        result = verifier.verify("token")
        assert result.passed and result.degraded
        assert verifier.degraded

    def test_http_error_fails_open_then_recovers(self):
        session = _session_returning(status_code=502)
        verifier = BotVerifier("secret", session=session)
        assert verifier.verify("token").passed
        assert verifier.degraded

        session.post.return_value = _session_returning(payload={"success": True}).post.return_value
        assert verifier.verify("token").passed
        assert not verifier.degraded

    def test_degraded_mode_logged_once(self, caplog):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("down")
        verifier = BotVerifier("secret", session=session)
        with caplog.at_level(logging.WARNING, logger="tracker.services.bot_verification"):
            verifier.verify("token")
            verifier.verify("token")
        entered = [r for r in caplog.records if "degraded (network-error)" in r.getMessage()]
        assert len(entered) == 1


# =============================================================================
# TEST: CONFIGURATION
# =============================================================================

class TestConfiguration:
    """Tests for load_settings and startup validation."""

    def test_defaults(self):
        settings = load_settings({"SALT_V1": "s3cret"})
        assert settings.salt == "s3cret"
        assert settings.reference_date == date(2026, 11, 19)
        assert settings.min_prediction_date == date(2026, 11, 19)
        assert settings.max_prediction_date == date(2125, 12, 31)
        assert settings.daily_request_budget == 100_000
        assert settings.capacity_thresholds == (0.80, 0.90, 0.95, 1.00)
        assert settings.min_sample_count == 50
        assert settings.rate_limits == {"submit": 10, "update": 30, "stats": 60}

    def test_versioned_salt(self):
        settings = load_settings({"IP_HASH_SALT_VERSION": "v2", "SALT_V1": "old", "SALT_V2": "new"})
        assert settings.salt == "new"
        assert settings.salt_version == "v2"

    def test_legacy_salt_name_for_v1(self):
        assert load_settings({"IP_HASH_SALT": "legacy"}).salt == "legacy"

    def test_missing_salt_refuses_to_start(self):
        with pytest.raises(ConfigurationError):
            load_settings({})

    def test_missing_salt_for_active_version(self):
        with pytest.raises(ConfigurationError):
            load_settings({"IP_HASH_SALT_VERSION": "v2", "SALT_V1": "old"})

    @pytest.mark.parametrize("raw", ["0.8,0.9,0.95", "0.9,0.8,0.95,1.0", "a,b,c,d", "0,0.9,0.95,1.0"])
    def test_bad_thresholds(self, raw):
        with pytest.raises(ConfigurationError):
            load_settings({"SALT_V1": "s", "CAPACITY_THRESHOLDS": raw})

    def test_min_after_max(self):
        with pytest.raises(ConfigurationError):
            load_settings({"SALT_V1": "s", "MIN_PREDICTION_DATE": "2130-01-01"})

    def test_bad_date(self):
        with pytest.raises(ConfigurationError):
            load_settings({"SALT_V1": "s", "REFERENCE_DATE": "19/11/2026"})

    def test_settings_validate_directly(self):
        with pytest.raises(ConfigurationError):
            Settings(salt="s", daily_request_budget=0)


# =============================================================================
# TEST: LOG REDACTION
# =============================================================================

class TestSensitiveDataFilter:
    """Raw addresses and full tokens never reach a log line."""

    def _filtered(self, msg, *args):
        record = logging.LogRecord("t", logging.INFO, __file__, 1, msg, args, None)
        SensitiveDataFilter().filter(record)
        return record.getMessage()

    def test_ipv4_redacted(self):
        assert self._filtered("client 203.0.113.7 connected") == "client [ip] connected"

    def test_ipv6_redacted(self):
        assert "2001:db8::1" not in self._filtered("client %s", "2001:db8::1")

    def test_full_token_reduced_to_prefix(self):
        message = self._filtered("cookie=3f2b8c1a-9d4e-4b7a-8c2d-1e5f6a7b8c9d")
        assert message == "cookie=3f2b8c1a-****"

    def test_dates_untouched(self):
        assert self._filtered("date 2026-11-19 weight 1.0") == "date 2026-11-19 weight 1.0"
