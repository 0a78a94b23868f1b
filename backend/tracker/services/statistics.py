"""
Statistics Service

Cache-fronted read models: aggregate stats, histogram, status badge and
sentiment. Each is recomputed from the full predictions relation on a cache
miss; the cache lifetime comes from the current degradation state.
"""
import logging
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Tuple

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from ..models.db_models import PredictionDB
from .aggregation import GATHERING_DATA, STATUS_COLORS, StatusBucket, classify_status
from .cache import TimedCache
from .predictions import PredictionService

logger = logging.getLogger(__name__)

STATS_CACHE_KEY = "stats:latest"
HISTOGRAM_CACHE_KEY = "predictions:histogram"
STATUS_CACHE_KEY = "status:latest"
SENTIMENT_CACHE_KEY = "sentiment:latest"

ALL_CACHE_KEYS = (STATS_CACHE_KEY, HISTOGRAM_CACHE_KEY, STATUS_CACHE_KEY, SENTIMENT_CACHE_KEY)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class StatisticsService:
    """
    Read side of the tracker. One instance lives on app.state and is shared
    across requests; every method takes the request's session.
    """

    def __init__(
        self,
        reference_date: date,
        min_sample_count: int,
        cache: TimedCache,
    ):
        self.reference_date = reference_date
        self.min_sample_count = min_sample_count
        self.cache = cache

    def invalidate_all(self) -> None:
        """Drop every cached read model (after any write or erasure)."""
        self.cache.invalidate(*ALL_CACHE_KEYS)
        logger.debug("Read caches invalidated")

    def _cached(self, key: str, ttl: int, factory: Callable[[], Dict[str, Any]]) -> Tuple[Dict[str, Any], bool]:
        value, hit = self.cache.get_or_set(key, factory, ttl)
        if not hit:
            logger.debug(f"Cache miss for {key}; recomputed (ttl={ttl}s)")
        return value, hit

    # =========================================================================
    # STATS
    # =========================================================================

    def compute_stats(self, db: Session) -> Dict[str, Any]:
        aggregate = PredictionService(db, self.reference_date).aggregate()
        stats = aggregate.to_dict()
        if aggregate.count < self.min_sample_count:
            stats["median"] = None
        stats["cached_at"] = _timestamp()
        return stats

    def stats(self, db: Session, ttl: int) -> Tuple[Dict[str, Any], bool]:
        """{median, min, max, count, cached_at}; median withheld below the sample minimum."""
        return self._cached(STATS_CACHE_KEY, ttl, lambda: self.compute_stats(db))

    # =========================================================================
    # HISTOGRAM
    # =========================================================================

    def compute_histogram(self, db: Session) -> Dict[str, Any]:
        total = db.query(func.count(PredictionDB.id)).scalar() or 0
        data = []
        if total >= self.min_sample_count:
            rows = db.query(
                PredictionDB.predicted_date,
                func.count(PredictionDB.id),
            ).group_by(PredictionDB.predicted_date).order_by(PredictionDB.predicted_date).all()
            data = [
                {"predicted_date": predicted_date.isoformat(), "count": count}
                for predicted_date, count in rows
            ]
        return {"data": data, "total_predictions": total, "cached_at": _timestamp()}

    def histogram(self, db: Session, ttl: int) -> Tuple[Dict[str, Any], bool]:
        return self._cached(HISTOGRAM_CACHE_KEY, ttl, lambda: self.compute_histogram(db))

    # =========================================================================
    # STATUS
    # =========================================================================

    def compute_status(self, db: Session) -> Dict[str, Any]:
        aggregate = PredictionService(db, self.reference_date).aggregate()
        result = {
            "reference_date": self.reference_date.isoformat(),
            "total_predictions": aggregate.count,
            "cached_at": _timestamp(),
        }
        if aggregate.count < self.min_sample_count or aggregate.median is None:
            result.update({
                "status": GATHERING_DATA,
                "status_color": STATUS_COLORS[StatusBucket.ON_TRACK],
                "median_date": None,
                "days_difference": 0,
                "message": f"Need {self.min_sample_count} predictions",
            })
            return result

        bucket, color, offset = classify_status(aggregate.median, self.reference_date)
        result.update({
            "status": bucket.value,
            "status_color": color,
            "median_date": aggregate.median.isoformat(),
            "days_difference": offset,
        })
        return result

    def status(self, db: Session, ttl: int) -> Tuple[Dict[str, Any], bool]:
        return self._cached(STATUS_CACHE_KEY, ttl, lambda: self.compute_status(db))

    # =========================================================================
    # SENTIMENT
    # =========================================================================

    def compute_sentiment(self, db: Session) -> Dict[str, Any]:
        optimistic, pessimistic, total = db.query(
            func.count(case((PredictionDB.predicted_date < self.reference_date, 1))),
            func.count(case((PredictionDB.predicted_date >= self.reference_date, 1))),
            func.count(PredictionDB.id),
        ).one()
        total = total or 0
        score = round((optimistic or 0) / total * 100, 1) if total else 0.0
        return {
            "optimism_score": score,
            "optimistic_count": optimistic or 0,
            "pessimistic_count": pessimistic or 0,
            "total_predictions": total,
            "reference_date": self.reference_date.isoformat(),
            "cached_at": _timestamp(),
        }

    def sentiment(self, db: Session, ttl: int) -> Tuple[Dict[str, Any], bool]:
        return self._cached(SENTIMENT_CACHE_KEY, ttl, lambda: self.compute_sentiment(db))
