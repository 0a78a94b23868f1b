"""
Tracker Services

Submission path: validation → identity → weighting → predictions.
Read path: statistics (cache-fronted) → aggregation.
Cross-cutting: capacity monitor, rate limiter, bot verification, server logs.
"""

from .aggregation import weighted_median, classify_status, StatusBucket
from .bot_verification import BotVerifier
from .cache import TimedCache
from .capacity import CapacityMonitor, DegradationLevel, InMemoryCounterStore, SQLCounterStore
from .identity import NetworkHasher
from .predictions import PredictionService
from .rate_limit import RateLimiter
from .server_logs import ServerLogService
from .statistics import StatisticsService
from .validation import SubmissionValidator
from .weighting import calculate_weight

__all__ = [
    'weighted_median',
    'classify_status',
    'StatusBucket',
    'BotVerifier',
    'TimedCache',
    'CapacityMonitor',
    'DegradationLevel',
    'InMemoryCounterStore',
    'SQLCounterStore',
    'NetworkHasher',
    'PredictionService',
    'RateLimiter',
    'ServerLogService',
    'StatisticsService',
    'SubmissionValidator',
    'calculate_weight',
]
