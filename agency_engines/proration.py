"""
agency_engines.proration -- Day-overlap proration of weeks into calendar months.

Responsibility:
    Compute how much of an inclusive week interval falls inside a calendar
    month, so weekly figures can be attributed to monthly aggregates.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Consumed by the forecast builder and ForecastProjector.

Invariants enforced:
    - Shares are Decimals in [0, 1].
    - The shares of one week across every month it overlaps sum to 1
      (to Decimal context precision).
    - Week length is computed from the record, never assumed; a malformed
      week (missing or inverted dates) falls back to 7 days.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Iterable

from agency_kernel.domain.periods import month_range, months_overlapping
from agency_kernel.domain.records import Week
from agency_kernel.logging_config import get_logger

logger = get_logger("engines.proration")

DEFAULT_WEEK_DAYS = 7

_ZERO_SHARE = Decimal("0")


class Prorator:
    """Inclusive-interval overlap arithmetic."""

    @staticmethod
    def inclusive_days(start: date | None, end: date | None) -> int:
        """Day count of ``[start, end]``; 0 when either bound is missing or inverted."""
        if start is None or end is None or end < start:
            return 0
        return (end - start).days + 1

    def overlap_days(
        self,
        week_start: date | None,
        week_end: date | None,
        range_start: date | None,
        range_end: date | None,
    ) -> int:
        """Inclusive day count of the intersection of two closed intervals."""
        if None in (week_start, week_end, range_start, range_end):
            return 0
        return self.inclusive_days(max(week_start, range_start), min(week_end, range_end))

    def total_days_in_week(self, week_start: date | None, week_end: date | None) -> int:
        days = self.inclusive_days(week_start, week_end)
        if days <= 0:
            logger.warning(
                "week_length_fallback",
                extra={
                    "week_start": str(week_start),
                    "week_end": str(week_end),
                    "fallback_days": DEFAULT_WEEK_DAYS,
                },
            )
            return DEFAULT_WEEK_DAYS
        return days

    def week_share_in_month(
        self,
        week_start: date | None,
        week_end: date | None,
        month_key: str,
    ) -> Decimal:
        """Fraction of the week's days that fall in ``month_key``."""
        bounds = month_range(month_key)
        if bounds is None:
            return _ZERO_SHARE
        overlap = self.overlap_days(week_start, week_end, bounds[0], bounds[1])
        if overlap == 0:
            return _ZERO_SHARE
        return Decimal(overlap) / Decimal(self.total_days_in_week(week_start, week_end))

    def shares_by_month(self, week_start: date, week_end: date) -> dict[str, Decimal]:
        """Share of the week in every month it touches."""
        return {
            month_key: self.week_share_in_month(week_start, week_end, month_key)
            for month_key in months_overlapping(week_start, week_end)
        }

    def weeks_overlapping(self, weeks: Iterable[Week], month_key: str) -> list[Week]:
        """The subset of ``weeks`` touching ``month_key``, in input order."""
        bounds = month_range(month_key)
        if bounds is None:
            return []
        return [
            week for week in weeks
            if self.overlap_days(week.start_date, week.end_date, bounds[0], bounds[1]) > 0
        ]

