"""
Values -- Decimal helpers and dual-currency value objects.

Responsibility:
    Provides the foundational numeric types for every engine: the two
    supported currencies, the single rounding policy (``round2``), safe
    conversion of loosely typed inputs to ``Decimal``, and ``DualAmount``,
    a monetary value held simultaneously in USD and EUR.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by every engine module.

Invariants enforced:
    - Decimal-only arithmetic: floats are converted via ``str`` at the
      boundary, never used in computation.
    - One rounding policy: 2 decimal places, ROUND_HALF_UP, applied only
      when a derived value is finalised.

Failure modes:
    - ``to_decimal`` returns ``None`` for empty / non-numeric / non-finite
      input; it never raises.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any

CENT = Decimal("0.01")
RATE_QUANTUM = Decimal("0.000001")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


class Currency(str, Enum):
    """Currencies the back-office keeps amounts in."""

    USD = "USD"
    EUR = "EUR"


def to_decimal(value: Any) -> Decimal | None:
    """
    Convert a loosely typed value to a finite Decimal.

    Accepts Decimal, int, float and numeric strings (thousands separators
    are stripped). Booleans, empty strings, NaN and infinities map to None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        trimmed = value.strip().replace(",", "")
        if not trimmed:
            return None
        try:
            result = Decimal(trimmed)
        except InvalidOperation:
            return None
    else:
        return None
    if not result.is_finite():
        return None
    return result


def round2(value: Decimal | int | float | str | None) -> Decimal:
    """Round to 2 decimal places (ROUND_HALF_UP). Non-numeric input rounds to 0.00."""
    dec = to_decimal(value)
    if dec is None:
        return ZERO.quantize(CENT)
    return dec.quantize(CENT, rounding=ROUND_HALF_UP)


def round_rate(value: Decimal) -> Decimal:
    """Round an exchange rate to 6 decimal places for stamping on derived rows."""
    return value.quantize(RATE_QUANTUM, rounding=ROUND_HALF_UP)


def pct_of(amount: Decimal, pct: Decimal) -> Decimal:
    """``amount * pct / 100`` at full precision."""
    return amount * pct / HUNDRED


@dataclass(frozen=True, slots=True)
class DualAmount:
    """
    A monetary value maintained in USD and EUR at once.

    Contract:
        Both legs are present after reconciliation. Legs are reconciled
        through a point-in-time rate by ``FxConverter.reconcile``; this
        type does not convert on its own.
    """

    usd: Decimal
    eur: Decimal

    @classmethod
    def zero(cls) -> DualAmount:
        return cls(usd=round2(0), eur=round2(0))

    def amount_in(self, currency: Currency) -> Decimal:
        return self.usd if currency == Currency.USD else self.eur

    def __add__(self, other: DualAmount) -> DualAmount:
        if not isinstance(other, DualAmount):
            return NotImplemented
        return DualAmount(usd=self.usd + other.usd, eur=self.eur + other.eur)

    def __neg__(self) -> DualAmount:
        return DualAmount(usd=-self.usd, eur=-self.eur)

    def rounded(self) -> DualAmount:
        return DualAmount(usd=round2(self.usd), eur=round2(self.eur))
