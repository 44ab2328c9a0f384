"""
Domain -- pure value objects, records and parsing for the agency engine.

Zero I/O. Engines import from here; nothing here imports engines,
services, or the database layer.
"""

from agency_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from agency_kernel.domain.periods import Period, month_range, parse_period
from agency_kernel.domain.references import (
    LegacyNumeric,
    LinkedId,
    Reference,
    ReferenceResolver,
    parse_reference,
)
from agency_kernel.domain.values import Currency, DualAmount, round2, to_decimal

__all__ = [
    "Clock",
    "Currency",
    "DeterministicClock",
    "DualAmount",
    "LegacyNumeric",
    "LinkedId",
    "Period",
    "Reference",
    "ReferenceResolver",
    "SystemClock",
    "month_range",
    "parse_period",
    "parse_reference",
    "round2",
    "to_decimal",
]
