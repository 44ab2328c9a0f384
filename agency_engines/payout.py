"""
agency_engines.payout -- Monthly payout lines for every payee.

Responsibility:
    Combine a month's aggregated basis totals, agency revenue, model
    revenue and affiliate deals into one ``PayoutLine`` per team member,
    per model and per affiliator, grouped into the five payout buckets.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Depends on BasisAggregator output, CompensationEvaluator and
    FxConverter.  Consumed by agency_services.payout_service.

Invariants enforced:
    - ``final = base + bonus - fine + hourly``; the fine total is
      non-negative and subtracted exactly once.
    - Hourly pay is added after the percentage base; it never scales
      with a percentage.
    - Chatter, model and affiliate lines are USD of record; manager and
      VA lines are EUR of record.  The other leg is derived at the run's
      single rate, and the rate is stamped on every line.
    - Lines are sorted by (bucket order, line_key): identical input gives
      byte-identical output.
    - Affiliators never receive a generic member line.

Failure modes:
    - DoubleCountingError when a member takes both a total-net and a
      messages/tips-net share of the same revenue stream.
    - InvalidExchangeRateError when the run rate is not positive.
    - A model with positive gross but missing net revenue is paid 0 and
      flagged ``net_revenue_missing`` (counted in ``skipped``).

Usage:
    calculator = PayoutCalculator()
    run = calculator.compute(
        month_key="2024-03",
        members=members,
        models=models,
        basis=summary,
        agency_revenue=revenue,
        model_revenue=revenue_by_model(pnl_rows, "2024-03"),
        affiliate_deals=deals,
        fx_rate=Decimal("0.92"),
    )
    run.by_bucket[PayoutBucket.CHATTER]
"""

from __future__ import annotations

import time
from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Mapping

from agency_kernel.domain.records import (
    AffiliateDeal,
    AgencyRevenue,
    CompensationType,
    ModelProfile,
    PayoutBucket,
    PayoutLine,
    PayoutRun,
    PayoutType,
    PnlRow,
    PnlStatus,
    RevenueBasis,
    TeamMember,
)
from agency_kernel.domain.values import ZERO, Currency, pct_of, round2, round_rate
from agency_kernel.exceptions import DoubleCountingError
from agency_kernel.logging_config import get_logger
from agency_engines.basis import BasisSummary, PersonBasisTotals, bucket_for_role, is_affiliator
from agency_engines.compensation import CompensationEvaluator
from agency_engines.fx import FxConverter
from agency_engines.tracer import traced_engine

logger = get_logger("engines.payout")

MODEL_LINE_PREFIX = "model-"

SKIP_NET_REVENUE_MISSING = "net_revenue_missing"
SKIP_DEAL_INACTIVE = "affiliate_deal_inactive"
SKIP_DEAL_OUT_OF_RANGE = "affiliate_deal_out_of_range"
SKIP_DEAL_NOT_AFFILIATOR = "affiliate_deal_not_affiliator"

_MODEL_PAYOUT_TYPES = {
    CompensationType.PERCENTAGE: PayoutType.PERCENTAGE,
    CompensationType.TIERED_DEAL: PayoutType.HYBRID,
    CompensationType.HYBRID: PayoutType.HYBRID,
    CompensationType.SALARY: PayoutType.FLAT_FEE,
    CompensationType.NONE: PayoutType.NONE,
}


@dataclass(frozen=True)
class ModelMonthRevenue:
    """A model's actual revenue for the month, summed over its P&L rows (USD)."""

    gross_usd: Decimal = ZERO
    net_usd: Decimal | None = None


def revenue_by_model(pnl_rows: Iterable[PnlRow], month_key: str) -> dict[str, ModelMonthRevenue]:
    """Sum ACTUAL P&L rows for ``month_key`` per model."""
    gross: dict[str, Decimal] = {}
    net: dict[str, Decimal] = {}
    for row in pnl_rows:
        if row.status != PnlStatus.ACTUAL or row.month_key != month_key:
            continue
        gross[row.model_id] = gross.get(row.model_id, ZERO) + row.gross_revenue
        net[row.model_id] = net.get(row.model_id, ZERO) + row.net_revenue
    return {
        model_id: ModelMonthRevenue(gross_usd=gross[model_id], net_usd=net[model_id])
        for model_id in gross
    }


@dataclass(frozen=True)
class PayoutRangeSummary:
    """USD payout totals across several months."""

    by_model: Mapping[str, Decimal] = field(default_factory=dict)
    by_member: Mapping[str, Decimal] = field(default_factory=dict)
    affiliate_total_usd: Decimal = ZERO
    total_usd: Decimal = ZERO
    item_count: int = 0


class PayoutCalculator:
    """
    Builds a month's PayoutRun.

    Contract:
        Receives fully resolved inputs: basis totals keyed by canonical
        member id, model revenue keyed by model id, one positive FX rate.

    Guarantees:
        - One line per non-affiliator member, one per model, one per
          affiliator with at least one in-range active deal.
        - Every line's ``fx_rate_used`` is the run rate at 6 dp.

    Non-goals:
        - Persistence.  The returned lines are full replacement values for
          the store's natural-key upsert.
    """

    def __init__(
        self,
        fx: FxConverter | None = None,
        compensation: CompensationEvaluator | None = None,
    ):
        self._fx = fx or FxConverter()
        self._compensation = compensation or CompensationEvaluator()

    @traced_engine(
        "payout",
        "1.0",
        fingerprint_fields=("month_key", "members", "models", "basis", "model_revenue", "fx_rate"),
    )
    def compute(
        self,
        *,
        month_key: str,
        members: Iterable[TeamMember],
        models: Iterable[ModelProfile],
        basis: BasisSummary,
        agency_revenue: AgencyRevenue | None,
        model_revenue: Mapping[str, ModelMonthRevenue],
        affiliate_deals: Iterable[AffiliateDeal] = (),
        fx_rate: Decimal,
    ) -> PayoutRun:
        t0 = time.monotonic()
        rate = self._fx.require_rate(fx_rate)
        members = tuple(members)
        skipped: Counter[str] = Counter(basis.skipped)
        lines: list[PayoutLine] = []

        logger.info(
            "payout_run_started",
            extra={"month_key": month_key, "member_count": len(members), "fx_rate": str(rate)},
        )

        for member in members:
            if is_affiliator(member):
                continue
            totals = basis.for_person(member.id)
            if bucket_for_role(member.role, member.department) == PayoutBucket.CHATTER:
                lines.append(self.chatter_line(month_key, member, totals, rate))
            else:
                lines.append(self.staff_line(month_key, member, totals, agency_revenue, rate))

        for model in models:
            line = self.model_line(month_key, model, model_revenue.get(model.id), rate)
            if line.breakdown.get(SKIP_NET_REVENUE_MISSING):
                skipped[SKIP_NET_REVENUE_MISSING] += 1
            lines.append(line)

        lines.extend(
            self.affiliate_lines(month_key, members, affiliate_deals, basis, model_revenue, rate, skipped)
        )

        lines.sort(key=lambda line: (line.bucket.position, line.line_key))
        run = PayoutRun(
            month_key=month_key,
            fx_rate_used=round_rate(rate),
            lines=tuple(lines),
            skipped=dict(sorted(skipped.items())),
        )

        duration_ms = round((time.monotonic() - t0) * 1000, 2)
        logger.info(
            "payout_run_completed",
            extra={
                "month_key": month_key,
                "line_count": len(run.lines),
                "total_usd": str(run.total_usd),
                "skipped": run.skipped,
                "duration_ms": duration_ms,
            },
        )
        return run

    # ------------------------------------------------------------------
    # Member lines
    # ------------------------------------------------------------------

    def chatter_line(
        self,
        month_key: str,
        member: TeamMember,
        totals: PersonBasisTotals,
        rate: Decimal,
    ) -> PayoutLine:
        """USD of record: ``sales * pct / 100`` and/or flat fee, then bonus - fine + hourly."""
        payout_type = member.payout_type
        pct = totals.payout_pct_override
        if pct is None:
            pct = member.payout_percentage if member.payout_percentage is not None else ZERO
        flat = member.payout_flat_fee if member.payout_flat_fee is not None else ZERO

        percent_part = ZERO
        flat_part = ZERO
        if payout_type in (PayoutType.PERCENTAGE, PayoutType.HYBRID):
            percent_part = pct_of(totals.sales_usd, pct)
        if payout_type in (PayoutType.FLAT_FEE, PayoutType.HYBRID):
            flat_part = flat
        final = percent_part + flat_part + totals.bonus_usd - totals.fine_usd + totals.hourly_usd

        return self._member_line(
            month_key,
            member,
            bucket=PayoutBucket.CHATTER,
            currency=Currency.USD,
            final=final,
            rate=rate,
            basis_total=totals.sales_usd,
            bonus=totals.bonus_usd,
            fine=totals.fine_usd,
            hourly=totals.hourly_usd,
            pct=pct,
            flat=flat,
            breakdown={
                "sales_usd": totals.sales_usd,
                "payout_pct": pct,
                "pct_override": totals.payout_pct_override is not None,
                "percent_part_usd": percent_part,
                "flat_usd": flat_part,
                "bonus_usd": totals.bonus_usd,
                "fine_usd": totals.fine_usd,
                "hourly_usd": totals.hourly_usd,
            },
        )

    def agency_share_eur(
        self,
        member: TeamMember,
        agency_revenue: AgencyRevenue | None,
    ) -> tuple[Decimal, dict[str, Decimal]]:
        """Sum of the member's revenue-stream percentages, in EUR.

        Raises:
            DoubleCountingError: Both bases carry a positive percentage on
                one stream.
        """
        by_stream: dict[str, set[RevenueBasis]] = {}
        for share in member.revenue_shares:
            if share.pct > ZERO:
                by_stream.setdefault(share.stream, set()).add(share.basis)
        for stream, bases in sorted(by_stream.items()):
            if len(bases) > 1:
                raise DoubleCountingError(member.id, stream)

        parts: dict[str, Decimal] = {}
        total = ZERO
        streams = agency_revenue.streams if agency_revenue is not None else {}
        for share in member.revenue_shares:
            revenue = streams.get(share.stream)
            amount = pct_of(revenue.amount_for(share.basis), share.pct) if revenue is not None else ZERO
            parts[f"{share.stream}:{share.basis.value}"] = amount
            total += amount
        return total, parts

    def staff_line(
        self,
        month_key: str,
        member: TeamMember,
        totals: PersonBasisTotals,
        agency_revenue: AgencyRevenue | None,
        rate: Decimal,
    ) -> PayoutLine:
        """EUR of record: agency revenue shares and/or flat fee, then bonus - fine + hourly."""
        payout_type = member.payout_type
        share_total, parts = self.agency_share_eur(member, agency_revenue)
        flat = member.payout_flat_fee if member.payout_flat_fee is not None else ZERO

        percent_part = share_total if payout_type in (PayoutType.PERCENTAGE, PayoutType.HYBRID) else ZERO
        flat_part = flat if payout_type in (PayoutType.FLAT_FEE, PayoutType.HYBRID) else ZERO
        final = percent_part + flat_part + totals.bonus_eur - totals.fine_eur + totals.hourly_eur

        return self._member_line(
            month_key,
            member,
            bucket=bucket_for_role(member.role, member.department),
            currency=Currency.EUR,
            final=final,
            rate=rate,
            basis_total=ZERO,
            bonus=totals.bonus_eur,
            fine=totals.fine_eur,
            hourly=totals.hourly_eur,
            pct=member.payout_percentage,
            flat=flat,
            breakdown={
                "agency_part_eur": percent_part,
                "stream_parts_eur": parts,
                "flat_eur": flat_part,
                "bonus_eur": totals.bonus_eur,
                "fine_eur": totals.fine_eur,
                "hourly_eur": totals.hourly_eur,
            },
        )

    def _member_line(
        self,
        month_key: str,
        member: TeamMember,
        *,
        bucket: PayoutBucket,
        currency: Currency,
        final: Decimal,
        rate: Decimal,
        basis_total: Decimal,
        bonus: Decimal,
        fine: Decimal,
        hourly: Decimal,
        pct: Decimal | None,
        flat: Decimal,
        breakdown: dict[str, Any],
    ) -> PayoutLine:
        payout_type = member.payout_type
        if currency == Currency.USD:
            amount_usd = round2(final)
            amount_eur = self._fx.usd_to_eur(final, rate)
        else:
            amount_eur = round2(final)
            amount_usd = self._fx.eur_to_usd(final, rate)
        has_pct = payout_type in (PayoutType.PERCENTAGE, PayoutType.HYBRID)
        has_flat = payout_type in (PayoutType.FLAT_FEE, PayoutType.HYBRID)
        return PayoutLine(
            month_key=month_key,
            line_key=member.id,
            payee_id=member.id,
            name=member.name,
            role=member.role,
            department=member.department or "ops",
            bucket=bucket,
            payout_type=payout_type,
            basis_total=round2(basis_total),
            bonus_total=round2(bonus),
            fine_total=round2(fine),
            hourly_total=round2(hourly),
            payout_amount=round2(final),
            amount_usd=amount_usd,
            amount_eur=amount_eur,
            currency_of_record=currency,
            fx_rate_used=round_rate(rate),
            payout_percentage=pct if has_pct else None,
            payout_flat_fee=flat if has_flat else None,
            breakdown={**breakdown, "payout_type": payout_type.value, "fx_rate": rate},
        )

    # ------------------------------------------------------------------
    # Model lines
    # ------------------------------------------------------------------

    def model_line(
        self,
        month_key: str,
        model: ModelProfile,
        revenue: ModelMonthRevenue | None,
        rate: Decimal,
    ) -> PayoutLine:
        """Compensation on the month's net revenue; 0 when net is missing but gross is positive."""
        revenue = revenue or ModelMonthRevenue()
        net = revenue.net_usd
        net_missing = (net is None or net == ZERO) and revenue.gross_usd > ZERO
        base = ZERO if net_missing or net is None else net

        if net_missing:
            logger.warning(
                "model_net_revenue_missing",
                extra={
                    "model_id": model.id,
                    "month_key": month_key,
                    "gross_usd": str(revenue.gross_usd),
                },
            )
            payout = ZERO
            scheme = "none"
        else:
            result = self._compensation.evaluate(net_revenue=base, model=model, fx_rate=rate)
            payout = result.payout_usd
            scheme = result.scheme.value

        return PayoutLine(
            month_key=month_key,
            line_key=f"{MODEL_LINE_PREFIX}{model.id}",
            payee_id=model.payee_member_id,
            name=model.name,
            role="model",
            department="models",
            bucket=PayoutBucket.MODEL,
            payout_type=_MODEL_PAYOUT_TYPES.get(model.compensation_type, PayoutType.NONE),
            basis_total=round2(base),
            bonus_total=round2(ZERO),
            fine_total=round2(ZERO),
            hourly_total=round2(ZERO),
            payout_amount=round2(payout),
            amount_usd=round2(payout),
            amount_eur=self._fx.usd_to_eur(payout, rate),
            currency_of_record=Currency.USD,
            fx_rate_used=round_rate(rate),
            payout_percentage=model.creator_payout_pct,
            model_id=model.id,
            breakdown={
                "gross_revenue_usd": revenue.gross_usd,
                "net_revenue_usd": net,
                SKIP_NET_REVENUE_MISSING: net_missing,
                "compensation_type": model.compensation_type.value,
                "scheme": scheme,
                "computed_payout_usd": payout,
                "fx_rate": rate,
            },
        )

    # ------------------------------------------------------------------
    # Affiliate lines
    # ------------------------------------------------------------------

    def affiliate_lines(
        self,
        month_key: str,
        members: Iterable[TeamMember],
        deals: Iterable[AffiliateDeal],
        basis: BasisSummary,
        model_revenue: Mapping[str, ModelMonthRevenue],
        rate: Decimal,
        skipped: Counter[str],
    ) -> list[PayoutLine]:
        """One USD line per affiliator: ``model_net * pct / 100`` per in-range deal."""
        affiliators = {member.id: member for member in members if is_affiliator(member)}
        per_affiliator: dict[str, list[dict[str, Any]]] = {}

        for deal in deals:
            if not deal.is_active:
                skipped[SKIP_DEAL_INACTIVE] += 1
                continue
            if deal.affiliator_id not in affiliators:
                skipped[SKIP_DEAL_NOT_AFFILIATOR] += 1
                continue
            if not deal.covers(month_key):
                skipped[SKIP_DEAL_OUT_OF_RANGE] += 1
                continue
            revenue = model_revenue.get(deal.model_id)
            net = revenue.net_usd if revenue is not None and revenue.net_usd is not None else ZERO
            per_affiliator.setdefault(deal.affiliator_id, []).append(
                {
                    "deal_id": deal.id,
                    "model_id": deal.model_id,
                    "pct": deal.percentage,
                    "net_revenue_usd": net,
                    "amount_usd": pct_of(net, deal.percentage),
                }
            )

        lines: list[PayoutLine] = []
        for affiliator_id, items in per_affiliator.items():
            member = affiliators[affiliator_id]
            totals = basis.for_person(affiliator_id)
            deal_total = sum((item["amount_usd"] for item in items), ZERO)
            final = deal_total + totals.bonus_usd - totals.fine_usd + totals.hourly_usd
            lines.append(
                PayoutLine(
                    month_key=month_key,
                    line_key=affiliator_id,
                    payee_id=affiliator_id,
                    name=member.name,
                    role="affiliator",
                    department="affiliate",
                    bucket=PayoutBucket.AFFILIATE,
                    payout_type=PayoutType.AFFILIATE,
                    basis_total=round2(ZERO),
                    bonus_total=round2(totals.bonus_usd),
                    fine_total=round2(totals.fine_usd),
                    hourly_total=round2(totals.hourly_usd),
                    payout_amount=round2(final),
                    amount_usd=round2(final),
                    amount_eur=self._fx.usd_to_eur(final, rate),
                    currency_of_record=Currency.USD,
                    fx_rate_used=round_rate(rate),
                    breakdown={
                        "payout_type": PayoutType.AFFILIATE.value,
                        "fx_rate": rate,
                        "models": sorted(items, key=lambda item: (item["model_id"], item["deal_id"])),
                        "deal_total_usd": deal_total,
                        "bonus_usd": totals.bonus_usd,
                        "fine_usd": totals.fine_usd,
                        "hourly_usd": totals.hourly_usd,
                    },
                )
            )
        return lines


def summarize_payouts_in_range(runs: Iterable[PayoutRun]) -> PayoutRangeSummary:
    """USD totals by model, by member and for affiliates; zero lines are not counted."""
    by_model: dict[str, Decimal] = {}
    by_member: dict[str, Decimal] = {}
    affiliate_total = ZERO
    total = ZERO
    count = 0
    for run in runs:
        for line in run.lines:
            if line.amount_usd == ZERO:
                continue
            count += 1
            total += line.amount_usd
            if line.bucket == PayoutBucket.AFFILIATE:
                affiliate_total += line.amount_usd
            elif line.model_id:
                by_model[line.model_id] = by_model.get(line.model_id, ZERO) + line.amount_usd
            else:
                by_member[line.line_key] = by_member.get(line.line_key, ZERO) + line.amount_usd
    return PayoutRangeSummary(
        by_model=by_model,
        by_member=by_member,
        affiliate_total_usd=affiliate_total,
        total_usd=total,
        item_count=count,
    )


def to_upsert_payload(line: PayoutLine) -> dict[str, Any]:
    """Column values for the ``month_key + line_key`` upsert."""
    return {
        "month_key": line.month_key,
        "line_key": line.line_key,
        "payee_id": line.payee_id,
        "model_id": line.model_id,
        "name": line.name,
        "role": line.role,
        "department": line.department,
        "bucket": line.bucket.value,
        "payout_type": line.payout_type.value,
        "payout_percentage": line.payout_percentage,
        "payout_flat_fee": line.payout_flat_fee,
        "basis_total": line.basis_total,
        "bonus_total": line.bonus_total,
        "fine_total": line.fine_total,
        "hourly_total": line.hourly_total,
        "payout_amount": line.payout_amount,
        "amount_usd": line.amount_usd,
        "amount_eur": line.amount_eur,
        "currency": line.currency_of_record.value,
        "fx_rate_used": line.fx_rate_used,
        "breakdown_json": line.breakdown_json,
    }
