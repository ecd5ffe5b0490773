"""Synthetic curves and dates for tests (no curve files needed)."""

from .dates import TEST_CURVE_NAME, make_curve, make_dates, point_dates

__all__ = ["TEST_CURVE_NAME", "make_curve", "make_dates", "point_dates"]
