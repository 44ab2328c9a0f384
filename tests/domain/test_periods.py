"""
Tests for month keys and periods.
"""

from datetime import date

import pytest

from agency_kernel.domain.periods import (
    is_month_key,
    month_keys_between,
    month_range,
    months_overlapping,
    next_month_key,
    parse_period,
)
from agency_kernel.exceptions import InvalidMonthKeyError, InvalidPeriodError


class TestMonthKeys:
    @pytest.mark.parametrize("value", ["2024-01", "2024-12", " 2024-03 "])
    def test_valid(self, value):
        assert is_month_key(value)

    @pytest.mark.parametrize("value", ["2024-13", "2024-00", "2024-3", "24-03", None, 202403])
    def test_invalid(self, value):
        assert not is_month_key(value)

    def test_month_range_leap_year(self):
        assert month_range("2024-02") == (date(2024, 2, 1), date(2024, 2, 29))
        assert month_range("bogus") is None

    def test_next_month_wraps_year(self):
        assert next_month_key("2023-12") == "2024-01"

    def test_keys_between(self):
        assert month_keys_between("2023-11", "2024-02") == ["2023-11", "2023-12", "2024-01", "2024-02"]

    def test_months_overlapping(self):
        assert months_overlapping(date(2024, 2, 26), date(2024, 3, 3)) == ["2024-02", "2024-03"]
        assert months_overlapping(date(2024, 3, 3), date(2024, 2, 26)) == []


class TestParsePeriod:
    def test_single_month(self):
        period = parse_period(month_key="2024-03")
        assert period.month_keys() == ["2024-03"]

    def test_range(self):
        period = parse_period(from_month_key="2024-01", to_month_key="2024-03")
        assert period.contains("2024-02")
        assert not period.contains("2024-04")

    def test_open_upper_bound_is_single_month(self):
        assert parse_period(from_month_key="2024-01").month_keys() == ["2024-01"]

    def test_nothing_supplied(self):
        with pytest.raises(InvalidPeriodError):
            parse_period()

    def test_inverted(self):
        with pytest.raises(InvalidPeriodError) as exc_info:
            parse_period(from_month_key="2024-05", to_month_key="2024-01")
        assert exc_info.value.code == "INVALID_PERIOD"

    def test_bad_key(self):
        with pytest.raises(InvalidMonthKeyError):
            parse_period(month_key="March")
