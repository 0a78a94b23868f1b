"""
Statistics API Routes

Read-only aggregate views. These stay available at every degradation level;
higher levels only lengthen the cache lifetime.
"""
import logging

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import get_degradation_state, get_statistics, rate_limit
from ..services.capacity import DegradationState
from ..services.statistics import StatisticsService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["statistics"])


def _cache_headers(response: Response, state: DegradationState, hit: bool) -> None:
    response.headers["Cache-Control"] = f"public, max-age={state.cache_ttl_seconds}"
    response.headers["X-Cache"] = "HIT" if hit else "MISS"
    response.headers["X-Capacity-Level"] = state.level.value


@router.get("/stats", dependencies=[Depends(rate_limit("stats", require_identity=False))])
def get_stats(
    response: Response,
    db: Session = Depends(get_db),
    state: DegradationState = Depends(get_degradation_state),
    statistics: StatisticsService = Depends(get_statistics),
):
    """
    Community aggregate: {median, min, max, count, cached_at}.

    The median is null until the minimum sample count is reached.
    """
    stats, hit = statistics.stats(db, state.cache_ttl_seconds)
    _cache_headers(response, state, hit)
    return stats


@router.get("/predictions")
def get_predictions(
    response: Response,
    db: Session = Depends(get_db),
    state: DegradationState = Depends(get_degradation_state),
    statistics: StatisticsService = Depends(get_statistics),
):
    """Per-date counts for the histogram."""
    histogram, hit = statistics.histogram(db, state.cache_ttl_seconds)
    _cache_headers(response, state, hit)
    return histogram


@router.get("/status")
def get_status(
    response: Response,
    db: Session = Depends(get_db),
    state: DegradationState = Depends(get_degradation_state),
    statistics: StatisticsService = Depends(get_statistics),
):
    """Sentiment bucket, color token and signed day offset of the median."""
    status, hit = statistics.status(db, state.cache_ttl_seconds)
    _cache_headers(response, state, hit)
    return {"success": True, "data": status}


@router.get("/sentiment")
def get_sentiment(
    response: Response,
    db: Session = Depends(get_db),
    state: DegradationState = Depends(get_degradation_state),
    statistics: StatisticsService = Depends(get_statistics),
):
    sentiment, hit = statistics.sentiment(db, state.cache_ttl_seconds)
    _cache_headers(response, state, hit)
    return {"success": True, "data": sentiment}
