"""
Prediction Weighting

Maps a predicted date's distance from the reference date to an influence
weight. Implausible dates keep a small nonzero weight so the aggregate
always responds to new data.
"""
from datetime import date

from dateutil.relativedelta import relativedelta


WEIGHT_TIER_FULL_YEARS = 5.0
WEIGHT_TIER_REDUCED_YEARS = 50.0

WEIGHT_FULL = 1.0
WEIGHT_REDUCED = 0.3
WEIGHT_MINIMAL = 0.1


def years_between(first: date, second: date) -> float:
    """
    Absolute elapsed time between two dates in fractional years.

    Whole months are counted on the calendar (so 2026-11-19 to 2031-11-19 is
    exactly 5.0); the leftover days are the fraction of the month that
    follows the last whole month.
    """
    start, end = (first, second) if first <= second else (second, first)
    delta = relativedelta(end, start)
    whole_months = delta.years * 12 + delta.months

    anchor = start + relativedelta(months=whole_months)
    next_anchor = start + relativedelta(months=whole_months + 1)
    span = (next_anchor - anchor).days
    fraction = (end - anchor).days / span if span else 0.0

    return (whole_months + fraction) / 12.0


def calculate_weight(predicted: date, reference: date) -> float:
    """
    Weight tiers, inclusive at the upper edge of each tier:
      <= 5 years  -> 1.0
      <= 50 years -> 0.3
      beyond      -> 0.1
    """
    years = years_between(predicted, reference)
    if years <= WEIGHT_TIER_FULL_YEARS:
        return WEIGHT_FULL
    if years <= WEIGHT_TIER_REDUCED_YEARS:
        return WEIGHT_REDUCED
    return WEIGHT_MINIMAL
