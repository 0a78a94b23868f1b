"""
Weighted Aggregation

Weighted median over (date, weight) pairs plus the status classifier that
buckets the aggregate against the reference date.
"""
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple


@dataclass(frozen=True)
class WeightedPrediction:
    predicted_date: date
    weight: float


def _coerce(items: Iterable) -> List[WeightedPrediction]:
    coerced = []
    for item in items:
        if isinstance(item, WeightedPrediction):
            coerced.append(item)
        else:
            predicted_date, weight = item
            coerced.append(WeightedPrediction(predicted_date, float(weight)))
    return coerced


def simple_median(dates: Sequence[date]) -> Optional[date]:
    """Unweighted median; the lower middle element on an even count."""
    if not dates:
        return None
    ordered = sorted(dates)
    return ordered[(len(ordered) - 1) // 2]


def weighted_median(predictions: Iterable) -> Optional[date]:
    """
    Date at which cumulative weight first reaches half the total weight.

    Accepts WeightedPrediction objects or (date, weight) tuples.
    Empty input returns None. A single element is returned regardless of
    its weight. All-zero weights fall back to the unweighted median.
    """
    items = _coerce(predictions)
    if not items:
        return None
    if len(items) == 1:
        return items[0].predicted_date

    ordered = sorted(items, key=lambda p: p.predicted_date)
    total = sum(p.weight for p in ordered)
    if total == 0:
        return simple_median([p.predicted_date for p in ordered])

    target = total / 2
    cumulative = 0.0
    for prediction in ordered:
        cumulative += prediction.weight
        if cumulative >= target:
            return prediction.predicted_date

    # Float rounding can leave cumulative a hair under target.
    return ordered[-1].predicted_date


# =============================================================================
# STATUS CLASSIFIER
# =============================================================================

class StatusBucket(str, Enum):
    EARLY_RELEASE = "Early Release Possible"
    ON_TRACK = "On Track"
    DELAY_LIKELY = "Delay Likely"
    MAJOR_DELAY = "Major Delay Expected"


GATHERING_DATA = "Gathering Data"

# Lower bound of each bucket (inclusive), in days from the reference date.
STATUS_THRESHOLDS = {
    StatusBucket.ON_TRACK: -60,
    StatusBucket.DELAY_LIKELY: 60,
    StatusBucket.MAJOR_DELAY: 180,
}

STATUS_COLORS: Dict[StatusBucket, str] = {
    StatusBucket.EARLY_RELEASE: "green",
    StatusBucket.ON_TRACK: "blue",
    StatusBucket.DELAY_LIKELY: "amber",
    StatusBucket.MAJOR_DELAY: "red",
}


def day_offset(aggregate: date, reference: date) -> int:
    """Signed days from the reference date (positive = later)."""
    return (aggregate - reference).days


def classify_offset(offset_days: int) -> StatusBucket:
    if offset_days >= STATUS_THRESHOLDS[StatusBucket.MAJOR_DELAY]:
        return StatusBucket.MAJOR_DELAY
    if offset_days >= STATUS_THRESHOLDS[StatusBucket.DELAY_LIKELY]:
        return StatusBucket.DELAY_LIKELY
    if offset_days >= STATUS_THRESHOLDS[StatusBucket.ON_TRACK]:
        return StatusBucket.ON_TRACK
    return StatusBucket.EARLY_RELEASE


def classify_status(aggregate: date, reference: date) -> Tuple[StatusBucket, str, int]:
    """Return (bucket, color token, signed day offset)."""
    offset = day_offset(aggregate, reference)
    bucket = classify_offset(offset)
    return bucket, STATUS_COLORS[bucket], offset


def compare_to_median(predicted: date, median: Optional[date]) -> Tuple[int, str]:
    """Return (delta_days, comparison) of a user's date against the aggregate."""
    if median is None:
        return 0, "aligned"
    delta = (predicted - median).days
    if delta == 0:
        return delta, "aligned"
    return delta, ("pessimistic" if delta > 0 else "optimistic")
