"""
agency_engines.fx -- USD/EUR conversion and dual-amount reconciliation.

Responsibility:
    Convert amounts between USD and EUR at a single point-in-time rate
    (EUR per 1 USD) and reconcile partially filled amounts into a
    ``DualAmount`` with both legs present.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    The rate is always injected by the caller; this module never fetches
    it.  The FX rate cache lives in agency_services.fx_rate_service.

Invariants enforced:
    - usd_to_eur(usd, rate) = round2(usd * rate)
    - eur_to_usd(eur, rate) = round2(eur / rate)
    - reconcile never cross-checks two supplied legs; each is trusted
      independently and only rounded.

Failure modes:
    - A non-positive or non-numeric rate converts to 0.00 (lenient path).
    - ``require_rate`` raises InvalidExchangeRateError (strict path used
      by ingestion before amounts are stored).

Usage:
    from agency_engines.fx import FxConverter

    fx = FxConverter()
    fx.usd_to_eur(Decimal("2000"), Decimal("0.92"))   # Decimal("1840.00")
    fx.reconcile(usd=None, eur=Decimal("46"), rate=Decimal("0.92"))
"""

from __future__ import annotations

from decimal import Decimal

from agency_kernel.domain.values import DualAmount, round2, to_decimal
from agency_kernel.exceptions import InvalidExchangeRateError
from agency_kernel.logging_config import get_logger
from agency_engines.tracer import traced_engine

logger = get_logger("engines.fx")

ZERO_AMOUNT = Decimal("0.00")


def _usable_rate(rate: Decimal | float | str | None) -> Decimal | None:
    value = to_decimal(rate)
    if value is None or value <= 0:
        return None
    return value


class FxConverter:
    """
    Bidirectional USD/EUR converter with a fixed rounding policy.

    Contract:
        All methods are pure functions of their arguments.

    Guarantees:
        - Results are rounded to cents with ROUND_HALF_UP.
        - ``eur_to_usd(usd_to_eur(x, r), r)`` is within one cent of ``x``
          for any positive x and r.

    Non-goals:
        - No rate fetching, caching, or historical rates.
    """

    def require_rate(self, rate: Decimal | float | str | None) -> Decimal:
        """Return ``rate`` as a positive Decimal.

        Raises:
            InvalidExchangeRateError: If the rate is missing, not finite,
                zero, or negative.
        """
        value = _usable_rate(rate)
        if value is None:
            raise InvalidExchangeRateError(rate)
        return value

    def usd_to_eur(self, usd: Decimal | float | str | None, rate: Decimal | float | str | None) -> Decimal:
        amount = to_decimal(usd)
        value = self._rate_for(amount, rate)
        if amount is None or value is None:
            return ZERO_AMOUNT
        return round2(amount * value)

    def eur_to_usd(self, eur: Decimal | float | str | None, rate: Decimal | float | str | None) -> Decimal:
        amount = to_decimal(eur)
        value = self._rate_for(amount, rate)
        if amount is None or value is None:
            return ZERO_AMOUNT
        return round2(amount / value)

    def _rate_for(self, amount: Decimal | None, rate: Decimal | float | str | None) -> Decimal | None:
        value = _usable_rate(rate)
        if value is None and amount is not None:
            logger.warning("fx_rate_unusable", extra={"rate": str(rate)})
        return value

    @traced_engine("fx_reconcile", "1.0", fingerprint_fields=("usd", "eur", "rate"))
    def reconcile(
        self,
        *,
        usd: Decimal | float | str | None,
        eur: Decimal | float | str | None,
        rate: Decimal | float | str | None,
    ) -> DualAmount:
        """Fill in whichever leg is missing.

        Postconditions:
            - Both present: both rounded, returned as-is.
            - One present: the other derived at ``rate``.
            - Neither present: ``DualAmount(0.00, 0.00)``.
        """
        usd_value = to_decimal(usd)
        eur_value = to_decimal(eur)
        if usd_value is not None and eur_value is not None:
            return DualAmount(usd=round2(usd_value), eur=round2(eur_value))
        if usd_value is not None:
            return DualAmount(usd=round2(usd_value), eur=self.usd_to_eur(usd_value, rate))
        if eur_value is not None:
            return DualAmount(usd=self.eur_to_usd(eur_value, rate), eur=round2(eur_value))
        return DualAmount.zero()
