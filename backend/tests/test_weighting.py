"""
Tests for prediction weighting: tier boundaries in fractional years.
"""
from datetime import date

import pytest

from tracker.services.weighting import (
    WEIGHT_FULL,
    WEIGHT_MINIMAL,
    WEIGHT_REDUCED,
    calculate_weight,
    years_between,
)

REFERENCE = date(2026, 11, 19)


class TestYearsBetween:
    """Tests for the fractional-year distance."""

    def test_whole_years_are_exact(self):
        assert years_between(REFERENCE, date(2031, 11, 19)) == 5.0
        assert years_between(REFERENCE, date(2076, 11, 19)) == 50.0

    def test_symmetric(self):
        assert years_between(REFERENCE, date(2021, 11, 19)) == years_between(date(2021, 11, 19), REFERENCE)

    def test_same_day_is_zero(self):
        assert years_between(REFERENCE, REFERENCE) == 0.0

    def test_partial_month(self):
        # 2026-11-19 -> 2026-12-04 is 15 of the 30 days to 2026-12-19
        assert years_between(REFERENCE, date(2026, 12, 4)) == pytest.approx(0.5 / 12)


class TestCalculateWeight:
    """Tests for the three weight tiers."""

    def test_reference_date_is_full_weight(self):
        assert calculate_weight(REFERENCE, REFERENCE) == WEIGHT_FULL

    def test_five_year_boundary_inclusive(self):
        assert calculate_weight(date(2031, 11, 19), REFERENCE) == WEIGHT_FULL
        assert calculate_weight(date(2031, 11, 20), REFERENCE) == WEIGHT_REDUCED

    def test_fifty_year_boundary_inclusive(self):
        assert calculate_weight(date(2076, 11, 19), REFERENCE) == WEIGHT_REDUCED
        assert calculate_weight(date(2076, 11, 20), REFERENCE) == WEIGHT_MINIMAL

    def test_boundaries_symmetric_before_reference(self):
        assert calculate_weight(date(2021, 11, 19), REFERENCE) == WEIGHT_FULL
        assert calculate_weight(date(2021, 11, 18), REFERENCE) == WEIGHT_REDUCED
        assert calculate_weight(date(1976, 11, 19), REFERENCE) == WEIGHT_REDUCED
        assert calculate_weight(date(1976, 11, 18), REFERENCE) == WEIGHT_MINIMAL

    def test_far_future_never_zero(self):
        assert calculate_weight(date(2125, 12, 31), REFERENCE) == WEIGHT_MINIMAL > 0
