"""
Launch Tracker - Configuration

All runtime settings come from the environment and are loaded once at
startup. Invalid configuration raises ConfigurationError so the service
refuses to start instead of running with, e.g., an unsalted network hash.
"""
import os
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Mapping, Optional, Tuple


class ConfigurationError(RuntimeError):
    """Raised when required configuration is missing or inconsistent."""


# =============================================================================
# DEFAULTS
# =============================================================================

DEFAULT_DATABASE_URL = "sqlite:///./tracker.db"
DEFAULT_REFERENCE_DATE = date(2026, 11, 19)
DEFAULT_MAX_PREDICTION_DATE = date(2125, 12, 31)
DEFAULT_DAILY_REQUEST_BUDGET = 100_000
DEFAULT_CAPACITY_THRESHOLDS = (0.80, 0.90, 0.95, 1.00)
DEFAULT_MIN_SAMPLE_COUNT = 50
DEFAULT_STATS_CACHE_TTL = 5 * 60
DEFAULT_STATS_CACHE_TTL_EXTENDED = 15 * 60
DEFAULT_RATE_LIMITS = {"submit": 10, "update": 30, "stats": 60}


@dataclass(frozen=True)
class Settings:
    """Resolved service configuration."""
    salt: str
    salt_version: str = "v1"
    database_url: str = DEFAULT_DATABASE_URL
    reference_date: date = DEFAULT_REFERENCE_DATE
    min_prediction_date: date = DEFAULT_REFERENCE_DATE
    max_prediction_date: date = DEFAULT_MAX_PREDICTION_DATE
    daily_request_budget: int = DEFAULT_DAILY_REQUEST_BUDGET
    capacity_thresholds: Tuple[float, float, float, float] = DEFAULT_CAPACITY_THRESHOLDS
    min_sample_count: int = DEFAULT_MIN_SAMPLE_COUNT
    stats_cache_ttl: int = DEFAULT_STATS_CACHE_TTL
    stats_cache_ttl_extended: int = DEFAULT_STATS_CACHE_TTL_EXTENDED
    turnstile_secret_key: str = ""
    rate_limits: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_RATE_LIMITS))
    log_level: str = "INFO"

    def __post_init__(self):
        validate_settings(self)


def validate_settings(settings: Settings) -> None:
    """Reject configurations the service cannot run safely with."""
    if not settings.salt or not settings.salt.strip():
        raise ConfigurationError(
            f"IP hash salt for version '{settings.salt_version}' is empty; "
            f"set SALT_{settings.salt_version.upper()}"
        )
    if not settings.salt_version or not settings.salt_version.strip():
        raise ConfigurationError("IP_HASH_SALT_VERSION cannot be empty")

    if settings.min_prediction_date > settings.max_prediction_date:
        raise ConfigurationError(
            f"MIN_PREDICTION_DATE {settings.min_prediction_date} is after "
            f"MAX_PREDICTION_DATE {settings.max_prediction_date}"
        )

    if settings.daily_request_budget <= 0:
        raise ConfigurationError("DAILY_REQUEST_BUDGET must be positive")

    thresholds = settings.capacity_thresholds
    if len(thresholds) != 4:
        raise ConfigurationError("CAPACITY_THRESHOLDS needs exactly four fractions")
    if any(t <= 0 for t in thresholds) or list(thresholds) != sorted(set(thresholds)):
        raise ConfigurationError(
            "CAPACITY_THRESHOLDS must be positive and strictly increasing"
        )

    if settings.min_sample_count < 1:
        raise ConfigurationError("MIN_SAMPLE_COUNT must be at least 1")
    if settings.stats_cache_ttl <= 0 or settings.stats_cache_ttl_extended < settings.stats_cache_ttl:
        raise ConfigurationError(
            "STATS_CACHE_TTL must be positive and not exceed STATS_CACHE_TTL_EXTENDED"
        )


# =============================================================================
# ENVIRONMENT PARSING
# =============================================================================

def _parse_date(name: str, raw: Optional[str], default: date) -> date:
    if raw is None or not raw.strip():
        return default
    try:
        return date.fromisoformat(raw.strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be an ISO date (YYYY-MM-DD), got '{raw}'")


def _parse_int(name: str, raw: Optional[str], default: int) -> int:
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got '{raw}'")


def _parse_thresholds(raw: Optional[str]) -> Tuple[float, float, float, float]:
    if raw is None or not raw.strip():
        return DEFAULT_CAPACITY_THRESHOLDS
    try:
        values = tuple(float(part) for part in raw.split(","))
    except ValueError:
        raise ConfigurationError(f"CAPACITY_THRESHOLDS must be comma-separated numbers, got '{raw}'")
    if len(values) != 4:
        raise ConfigurationError("CAPACITY_THRESHOLDS needs exactly four fractions")
    return values


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from environment variables.

    The active salt is SALT_<VERSION> for IP_HASH_SALT_VERSION (default v1).
    IP_HASH_SALT is accepted for the v1 slot when SALT_V1 is unset.
    """
    env = os.environ if environ is None else environ

    salt_version = env.get("IP_HASH_SALT_VERSION", "v1").strip() or "v1"
    salt = env.get(f"SALT_{salt_version.upper()}", "")
    if not salt and salt_version.lower() == "v1":
        salt = env.get("IP_HASH_SALT", "")

    reference_date = _parse_date("REFERENCE_DATE", env.get("REFERENCE_DATE"), DEFAULT_REFERENCE_DATE)

    rate_limits = {
        endpoint: _parse_int(f"RATE_LIMIT_{endpoint.upper()}", env.get(f"RATE_LIMIT_{endpoint.upper()}"), limit)
        for endpoint, limit in DEFAULT_RATE_LIMITS.items()
    }

    return Settings(
        salt=salt,
        salt_version=salt_version,
        database_url=env.get("DATABASE_URL", DEFAULT_DATABASE_URL),
        reference_date=reference_date,
        min_prediction_date=_parse_date(
            "MIN_PREDICTION_DATE", env.get("MIN_PREDICTION_DATE"), reference_date
        ),
        max_prediction_date=_parse_date(
            "MAX_PREDICTION_DATE", env.get("MAX_PREDICTION_DATE"), DEFAULT_MAX_PREDICTION_DATE
        ),
        daily_request_budget=_parse_int(
            "DAILY_REQUEST_BUDGET", env.get("DAILY_REQUEST_BUDGET"), DEFAULT_DAILY_REQUEST_BUDGET
        ),
        capacity_thresholds=_parse_thresholds(env.get("CAPACITY_THRESHOLDS")),
        min_sample_count=_parse_int(
            "MIN_SAMPLE_COUNT", env.get("MIN_SAMPLE_COUNT"), DEFAULT_MIN_SAMPLE_COUNT
        ),
        stats_cache_ttl=_parse_int(
            "STATS_CACHE_TTL", env.get("STATS_CACHE_TTL"), DEFAULT_STATS_CACHE_TTL
        ),
        stats_cache_ttl_extended=_parse_int(
            "STATS_CACHE_TTL_EXTENDED", env.get("STATS_CACHE_TTL_EXTENDED"), DEFAULT_STATS_CACHE_TTL_EXTENDED
        ),
        turnstile_secret_key=env.get("TURNSTILE_SECRET_KEY", ""),
        rate_limits=rate_limits,
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
    )
