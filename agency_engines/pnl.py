"""
agency_engines.pnl -- P&L row derivation and margin banding.

Responsibility:
    Convert one raw revenue/expense input for a model and month into a
    full ``PnlRow``: platform fee, net revenue, per-category and total
    expenses, net profit, profit margin and its colour band.  Also totals
    a set of rows for the agency overview.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Independent of the other engines.

Invariants enforced:
    - platform_fee = gross * fee_pct; net = gross - platform_fee unless a
      stored net revenue is supplied (explicit strategy order).
    - total_expenses = sum of the named expense categories.
    - profit_margin_pct = net_profit / net_revenue, 0 when net is 0.
    - Banding is a pure function of the margin: >= green -> green,
      >= yellow -> yellow, else red.  The band is taken from the unrounded
      margin; only the stored profit_margin_pct is quantized to 4 places.
    - Monetary outputs are rounded once, when the row is built.

Failure modes:
    - InvalidAmountError for a negative gross revenue or expense.
    - Unknown expense categories are ignored and logged
      (``pnl_expense_category_unknown``).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable

from agency_kernel.domain.records import MarginBand, PnlInput, PnlRow
from agency_kernel.domain.values import ZERO, round2, to_decimal
from agency_kernel.exceptions import InvalidAmountError
from agency_kernel.logging_config import get_logger
from agency_engines.tracer import traced_engine

logger = get_logger("engines.pnl")

EXPENSE_CATEGORIES: tuple[str, ...] = (
    "chatting_costs_team",
    "marketing_costs_team",
    "production_costs_team",
    "ads_spend",
    "other_marketing_costs",
    "salary",
    "affiliate_fee",
    "bonuses",
    "airbnbs",
    "softwares",
    "fx_withdrawal_fees",
    "other_costs",
)

MARKETING_CATEGORIES: tuple[str, ...] = ("ads_spend", "other_marketing_costs")

MARGIN_QUANTUM = Decimal("0.0001")


@dataclass(frozen=True)
class PnlSettings:
    """Fee and banding cutoffs, all fractions (0.20 == 20%)."""

    platform_fee_pct: Decimal = Decimal("0.20")
    green_threshold: Decimal = Decimal("0.30")
    yellow_threshold: Decimal = Decimal("0.15")


NetStrategy = Callable[[PnlInput, Decimal], "Decimal | None"]


def _stored_net_revenue(row: PnlInput, platform_fee: Decimal) -> Decimal | None:
    return to_decimal(row.net_revenue)


def _gross_minus_platform_fee(row: PnlInput, platform_fee: Decimal) -> Decimal | None:
    gross = to_decimal(row.gross_revenue)
    return None if gross is None else gross - platform_fee


NET_REVENUE_STRATEGIES: tuple[tuple[str, NetStrategy], ...] = (
    ("stored_net_revenue", _stored_net_revenue),
    ("gross_minus_platform_fee", _gross_minus_platform_fee),
)


@dataclass(frozen=True)
class PnlTotals:
    """Totals across rows, with the margin recomputed on the totals."""

    gross_revenue: Decimal
    platform_fee: Decimal
    net_revenue: Decimal
    total_expenses: Decimal
    total_marketing_costs: Decimal
    net_profit: Decimal
    profit_margin_pct: Decimal
    row_count: int


def margin_of(net_profit: Decimal, net_revenue: Decimal) -> Decimal:
    """``net_profit / net_revenue`` to 4 dp; 0 when net revenue is 0."""
    if net_revenue == ZERO:
        return ZERO.quantize(MARGIN_QUANTUM)
    return (net_profit / net_revenue).quantize(MARGIN_QUANTUM, rounding=ROUND_HALF_UP)


class PnlDeriver:
    """
    Derives P&L rows.

    Contract:
        Settings are plain inputs; nothing is read from configuration here.

    Guarantees:
        - Never divides by zero.
        - The returned row is a full replacement for the store's
          ``model_id + month_key + status`` upsert.
    """

    def band(self, margin: Decimal, settings: PnlSettings) -> MarginBand:
        if margin >= settings.green_threshold:
            return MarginBand.GREEN
        if margin >= settings.yellow_threshold:
            return MarginBand.YELLOW
        return MarginBand.RED

    def resolve_net_revenue(self, row: PnlInput, platform_fee: Decimal) -> tuple[Decimal, str]:
        """First strategy producing a value wins."""
        for name, strategy in NET_REVENUE_STRATEGIES:
            value = strategy(row, platform_fee)
            if value is not None:
                return value, name
        return ZERO, "none"

    def expense_totals(self, row: PnlInput) -> dict[str, Decimal]:
        expenses: dict[str, Decimal] = {name: ZERO for name in EXPENSE_CATEGORIES}
        for name, raw in row.expenses.items():
            if name not in expenses:
                logger.warning(
                    "pnl_expense_category_unknown",
                    extra={"model_id": row.model_id, "month_key": row.month_key, "category": name},
                )
                continue
            value = to_decimal(raw)
            if value is None:
                continue
            if value < ZERO:
                raise InvalidAmountError(name, raw)
            expenses[name] = value
        return expenses

    @traced_engine("pnl", "1.0", fingerprint_fields=("row", "settings"))
    def derive(self, *, row: PnlInput, settings: PnlSettings) -> PnlRow:
        """Build the derived P&L row.

        Raises:
            InvalidAmountError: Negative gross revenue or expense.
        """
        gross = to_decimal(row.gross_revenue)
        if gross is None:
            gross = ZERO
        if gross < ZERO:
            raise InvalidAmountError("gross_revenue", row.gross_revenue)

        platform_fee = gross * settings.platform_fee_pct
        net, strategy = self.resolve_net_revenue(row, platform_fee)
        expenses = self.expense_totals(row)
        total_expenses = sum(expenses.values(), ZERO)
        total_marketing = sum((expenses[name] for name in MARKETING_CATEGORIES), ZERO)

        net_r = round2(net)
        profit = net - total_expenses
        exact_margin = profit / net if net != ZERO else ZERO
        band = self.band(exact_margin, settings)
        margin = exact_margin.quantize(MARGIN_QUANTUM, rounding=ROUND_HALF_UP)

        logger.debug(
            "pnl_row_derived",
            extra={
                "model_id": row.model_id,
                "month_key": row.month_key,
                "net_strategy": strategy,
                "net_revenue": str(net_r),
                "profit_margin_pct": str(margin),
                "margin_band": band.value,
            },
        )

        return PnlRow(
            model_id=row.model_id,
            month_key=row.month_key,
            status=row.status,
            gross_revenue=round2(gross),
            platform_fee=round2(platform_fee),
            net_revenue=net_r,
            expenses={name: round2(value) for name, value in expenses.items()},
            total_marketing_costs=round2(total_marketing),
            total_expenses=round2(total_expenses),
            net_profit=round2(profit),
            profit_margin_pct=margin,
            margin_band=band,
            notes=row.notes,
        )


def summarize_pnl(rows: Iterable[PnlRow]) -> PnlTotals:
    """Sum derived rows and recompute the margin on the sums."""
    gross = fee = net = expenses = marketing = profit = ZERO
    count = 0
    for row in rows:
        gross += row.gross_revenue
        fee += row.platform_fee
        net += row.net_revenue
        expenses += row.total_expenses
        marketing += row.total_marketing_costs
        profit += row.net_profit
        count += 1
    return PnlTotals(
        gross_revenue=gross,
        platform_fee=fee,
        net_revenue=net,
        total_expenses=expenses,
        total_marketing_costs=marketing,
        net_profit=profit,
        profit_margin_pct=margin_of(profit, net),
        row_count=count,
    )

