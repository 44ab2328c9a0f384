"""
agency_engines.compensation -- Per-model compensation rule evaluation.

Responsibility:
    Given a model's compensation configuration and a period's net revenue,
    compute the payout owed to the model in USD.  Supports percentage,
    salary, hybrid and tiered (cliff) schemes.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Consumed by PayoutCalculator for model payout lines.

Invariants enforced:
    - A valid tiered deal takes priority over ``compensation_type``.
    - The tiered deal is a cliff: at or below the threshold the flat fee
      is paid, above it ``revenue * percent / 100`` replaces the flat fee
      entirely.  No blending.
    - Payouts are never negative.  Negative revenue yields zero.
    - Results are unrounded; the payout line rounds once.

Failure modes:
    - Missing optional fields degrade to a zero component (pct absent ->
      no percentage part; salary absent -> no salary part).
    - A tiered deal with an invalid configuration falls through to the
      compensation_type scheme and logs ``tiered_deal_incomplete``.

Usage:
    from agency_engines.compensation import CompensationEvaluator

    evaluator = CompensationEvaluator()
    evaluator.payout_usd(net_revenue=Decimal("10000"), model=model, fx_rate=Decimal("0.92"))
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from agency_kernel.domain.records import CompensationType, ModelProfile
from agency_kernel.domain.values import ZERO, pct_of, to_decimal
from agency_kernel.logging_config import get_logger
from agency_engines.tracer import traced_engine

logger = get_logger("engines.compensation")


class AppliedScheme(str, Enum):
    """Which rule produced a compensation result."""

    TIERED_FLAT = "tiered_flat"
    TIERED_PERCENT = "tiered_percent"
    PERCENTAGE = "percentage"
    SALARY = "salary"
    HYBRID = "hybrid"
    NONE = "none"


@dataclass(frozen=True)
class CompensationResult:
    payout_usd: Decimal
    scheme: AppliedScheme
    salary_usd: Decimal = ZERO
    percentage_usd: Decimal = ZERO


def _non_negative(value: Decimal) -> Decimal:
    return value if value > ZERO else ZERO


class CompensationEvaluator:
    """
    Evaluates a model's compensation scheme for one period.

    Contract:
        Input revenue is the period's NET revenue in USD.  Output is the
        model's payout in USD.

    Guarantees:
        - Deterministic: identical inputs produce identical results.
        - ``payout_usd >= 0``.

    Non-goals:
        - Does not round; does not convert the payout to EUR.
    """

    def has_valid_tiered_deal(self, model: ModelProfile | None) -> bool:
        """Threshold > 0, a non-negative flat fee in either currency, and a percent."""
        if model is None:
            return False
        threshold = to_decimal(model.deal_threshold)
        if threshold is None or threshold <= ZERO:
            return False
        flat_usd = to_decimal(model.deal_flat_under_threshold_usd)
        flat_eur = to_decimal(model.deal_flat_under_threshold_eur)
        has_flat = (flat_usd is not None and flat_usd >= ZERO) or (
            flat_eur is not None and flat_eur >= ZERO
        )
        percent = to_decimal(model.deal_percent_above_threshold)
        if not has_flat or percent is None:
            logger.warning(
                "tiered_deal_incomplete",
                extra={"model_id": model.id, "deal_threshold": str(threshold)},
            )
            return False
        return True

    def tiered_payout(
        self,
        revenue: Decimal,
        threshold: Decimal,
        flat: Decimal,
        percent: Decimal,
    ) -> Decimal:
        """Cliff function: ``flat`` at or below ``threshold``, else ``revenue * percent / 100``."""
        if revenue < ZERO or threshold <= ZERO:
            return ZERO
        if revenue <= threshold:
            return _non_negative(flat)
        return _non_negative(pct_of(revenue, percent))

    def resolve_salary_usd(self, model: ModelProfile, fx_rate: Decimal | None) -> Decimal:
        """``salary_usd`` when set, else ``salary_eur / rate``, else 0."""
        salary_usd = to_decimal(model.salary_usd)
        if salary_usd is not None:
            return salary_usd
        return self._eur_to_usd_unrounded(to_decimal(model.salary_eur), fx_rate)

    def resolve_flat_usd(self, model: ModelProfile, fx_rate: Decimal | None) -> Decimal:
        """Tiered flat fee in USD; EUR is converted only when no USD fee is set."""
        flat_usd = to_decimal(model.deal_flat_under_threshold_usd)
        if flat_usd is not None:
            return flat_usd
        return self._eur_to_usd_unrounded(to_decimal(model.deal_flat_under_threshold_eur), fx_rate)

    @staticmethod
    def _eur_to_usd_unrounded(eur: Decimal | None, fx_rate: Decimal | None) -> Decimal:
        rate = to_decimal(fx_rate)
        if eur is None or rate is None or rate <= ZERO:
            return ZERO
        return eur / rate

    @traced_engine("compensation", "1.0", fingerprint_fields=("net_revenue", "model", "fx_rate"))
    def evaluate(
        self,
        *,
        net_revenue: Decimal,
        model: ModelProfile,
        fx_rate: Decimal | None = None,
    ) -> CompensationResult:
        """Evaluate the model's scheme against ``net_revenue``.

        Args:
            net_revenue: Period net revenue in USD.
            model: Compensation configuration.
            fx_rate: EUR per 1 USD, used for EUR-denominated salary/flat fees.

        Returns:
            CompensationResult with the USD payout and the scheme applied.
        """
        revenue = to_decimal(net_revenue)
        if revenue is None or revenue < ZERO:
            logger.info(
                "compensation_negative_revenue",
                extra={"model_id": model.id, "net_revenue": str(net_revenue)},
            )
            return CompensationResult(payout_usd=ZERO, scheme=AppliedScheme.NONE)

        if self.has_valid_tiered_deal(model):
            threshold = to_decimal(model.deal_threshold)
            payout = self.tiered_payout(
                revenue,
                threshold,
                self.resolve_flat_usd(model, fx_rate),
                to_decimal(model.deal_percent_above_threshold),
            )
            scheme = AppliedScheme.TIERED_FLAT if revenue <= threshold else AppliedScheme.TIERED_PERCENT
            return CompensationResult(payout_usd=payout, scheme=scheme)

        pct = to_decimal(model.creator_payout_pct)
        comp = model.compensation_type

        if comp == CompensationType.PERCENTAGE and pct is not None:
            part = pct_of(revenue, pct)
            return CompensationResult(
                payout_usd=_non_negative(part),
                scheme=AppliedScheme.PERCENTAGE,
                percentage_usd=part,
            )
        if comp == CompensationType.SALARY:
            salary = self.resolve_salary_usd(model, fx_rate)
            return CompensationResult(
                payout_usd=_non_negative(salary),
                scheme=AppliedScheme.SALARY,
                salary_usd=salary,
            )
        if comp == CompensationType.HYBRID:
            part = pct_of(revenue, pct) if pct is not None else ZERO
            salary = self.resolve_salary_usd(model, fx_rate)
            return CompensationResult(
                payout_usd=_non_negative(part + salary),
                scheme=AppliedScheme.HYBRID,
                salary_usd=salary,
                percentage_usd=part,
            )
        return CompensationResult(payout_usd=ZERO, scheme=AppliedScheme.NONE)

    def payout_usd(
        self,
        *,
        net_revenue: Decimal,
        model: ModelProfile,
        fx_rate: Decimal | None = None,
    ) -> Decimal:
        return self.evaluate(net_revenue=net_revenue, model=model, fx_rate=fx_rate).payout_usd
