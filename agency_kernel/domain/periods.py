"""
Periods -- month keys, calendar month ranges and reporting periods.

A period key is a ``YYYY-MM`` string. Week intervals are inclusive
``[start, end]`` calendar-day ranges.
"""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import date

from agency_kernel.exceptions import InvalidMonthKeyError, InvalidPeriodError

_MONTH_KEY_RE = re.compile(r"^\d{4}-\d{2}$")


def is_month_key(value: object) -> bool:
    """True when ``value`` is a ``YYYY-MM`` string with a month in 1..12."""
    if not isinstance(value, str):
        return False
    key = value.strip()
    if not _MONTH_KEY_RE.match(key):
        return False
    return 1 <= int(key[5:7]) <= 12


def require_month_key(value: object) -> str:
    """Return the stripped month key or raise InvalidMonthKeyError."""
    if not is_month_key(value):
        raise InvalidMonthKeyError(value)
    return str(value).strip()


def month_range(month_key: str) -> tuple[date, date] | None:
    """First and last calendar day of ``month_key``; None if the key is invalid."""
    if not is_month_key(month_key):
        return None
    year, month = int(month_key[:4]), int(month_key[5:7])
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def month_key_of(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def next_month_key(month_key: str) -> str:
    key = require_month_key(month_key)
    year, month = int(key[:4]), int(key[5:7])
    if month == 12:
        return f"{year + 1:04d}-01"
    return f"{year:04d}-{month + 1:02d}"


def month_keys_between(from_month_key: str, to_month_key: str) -> list[str]:
    """All month keys from ``from_month_key`` to ``to_month_key`` inclusive."""
    start = require_month_key(from_month_key)
    end = require_month_key(to_month_key)
    if start > end:
        raise InvalidPeriodError(start, end, "from_month_key must be <= to_month_key")
    keys = [start]
    while keys[-1] < end:
        keys.append(next_month_key(keys[-1]))
    return keys


def months_overlapping(start: date, end: date) -> list[str]:
    """Month keys touched by the inclusive interval ``[start, end]``."""
    if end < start:
        return []
    return month_keys_between(month_key_of(start), month_key_of(end))


@dataclass(frozen=True)
class Period:
    """An inclusive range of month keys."""

    from_month_key: str
    to_month_key: str

    def contains(self, month_key: str) -> bool:
        return self.from_month_key <= month_key <= self.to_month_key

    def month_keys(self) -> list[str]:
        return month_keys_between(self.from_month_key, self.to_month_key)


def parse_period(
    month_key: str | None = None,
    from_month_key: str | None = None,
    to_month_key: str | None = None,
) -> Period:
    """
    Normalize the accepted period forms into a Period.

    - ``month_key`` alone: a single-month period.
    - ``from_month_key`` (+ optional ``to_month_key``): a range; a missing
      upper bound means a single month.

    Raises:
        InvalidPeriodError: nothing supplied, or bounds inverted.
        InvalidMonthKeyError: a bound is not ``YYYY-MM``.
    """
    single = (month_key or "").strip()
    if single:
        key = require_month_key(single)
        return Period(key, key)
    start = (from_month_key or "").strip()
    end = (to_month_key or "").strip() or start
    if not start:
        raise InvalidPeriodError(
            from_month_key, to_month_key,
            "period required (month_key or from_month_key+to_month_key)",
        )
    start = require_month_key(start)
    end = require_month_key(end)
    if start > end:
        raise InvalidPeriodError(start, end, "from_month_key must be <= to_month_key")
    return Period(start, end)
