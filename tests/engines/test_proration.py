"""
Tests for Prorator.

Covers:
- Inclusive overlap day counts
- Week share in a month, including weeks straddling a month end
- Shares of a straddling week summing to one
- Degenerate weeks fall back to a 7-day length
"""

from datetime import date
from decimal import Decimal

from agency_engines.proration import Prorator
from tests.builders import make_week


class TestOverlapDays:
    def setup_method(self):
        self.prorator = Prorator()

    def test_inclusive_days(self):
        assert Prorator.inclusive_days(date(2024, 3, 4), date(2024, 3, 10)) == 7
        assert Prorator.inclusive_days(date(2024, 3, 4), date(2024, 3, 4)) == 1

    def test_inverted_interval_is_empty(self):
        assert Prorator.inclusive_days(date(2024, 3, 10), date(2024, 3, 4)) == 0

    def test_partial_overlap(self):
        days = self.prorator.overlap_days(
            date(2024, 2, 26), date(2024, 3, 3), date(2024, 3, 1), date(2024, 3, 31)
        )
        assert days == 3

    def test_no_overlap(self):
        days = self.prorator.overlap_days(
            date(2024, 4, 1), date(2024, 4, 7), date(2024, 3, 1), date(2024, 3, 31)
        )
        assert days == 0

    def test_missing_bound(self):
        assert self.prorator.overlap_days(None, date(2024, 3, 3), date(2024, 3, 1), date(2024, 3, 31)) == 0


class TestWeekShare:
    """Share = overlap days / week days."""

    def setup_method(self):
        self.prorator = Prorator()

    def test_week_inside_month(self):
        share = self.prorator.week_share_in_month(date(2024, 3, 4), date(2024, 3, 10), "2024-03")
        assert share == Decimal("1")

    def test_straddling_week(self):
        start, end = date(2024, 2, 26), date(2024, 3, 3)
        assert self.prorator.week_share_in_month(start, end, "2024-02") == Decimal(4) / Decimal(7)
        assert self.prorator.week_share_in_month(start, end, "2024-03") == Decimal(3) / Decimal(7)

    def test_straddling_shares_sum_to_one(self):
        start, end = date(2024, 1, 29), date(2024, 2, 4)
        total = sum(self.prorator.shares_by_month(start, end).values())
        assert abs(total - Decimal("1")) < Decimal("1e-9")

    def test_week_outside_month(self):
        assert self.prorator.week_share_in_month(date(2024, 4, 1), date(2024, 4, 7), "2024-03") == 0

    def test_invalid_month_key(self):
        assert self.prorator.week_share_in_month(date(2024, 3, 4), date(2024, 3, 10), "2024-13") == 0

    def test_degenerate_week_uses_seven_days(self, captured_logs):
        # end before start: no overlap, so the share is 0 and no fallback is needed
        assert self.prorator.week_share_in_month(date(2024, 3, 10), date(2024, 3, 4), "2024-03") == 0
        assert self.prorator.total_days_in_week(date(2024, 3, 10), date(2024, 3, 4)) == 7
        assert any(r["message"] == "week_length_fallback" for r in captured_logs())


class TestWeeksOverlapping:
    def test_filters_and_keeps_order(self, march_weeks):
        april = make_week("w14", date(2024, 4, 1), date(2024, 4, 7))
        weeks = [april, *march_weeks]
        result = Prorator().weeks_overlapping(weeks, "2024-03")
        assert [week.id for week in result] == ["w09", "w10", "w11", "w12", "w13"]

    def test_shares_by_month_keys(self):
        shares = Prorator().shares_by_month(date(2024, 3, 25), date(2024, 4, 2))
        assert set(shares) == {"2024-03", "2024-04"}
        assert shares["2024-03"] == Decimal(7) / Decimal(9)
