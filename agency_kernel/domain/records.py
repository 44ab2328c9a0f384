"""
Records -- immutable domain records read and produced by the engines.

Responsibility:
    Canonical in-memory shapes for the rows the external record store
    supplies (months, weeks, models, team members, basis entries, weekly
    stats and forecasts, affiliate deals, agency revenue) and the rows the
    engines derive (model forecasts, P&L rows, payout lines).

Architecture position:
    Kernel > Domain -- pure data, zero I/O. References to other records are
    already resolved to canonical string ids here (see ``references``).

Invariants enforced:
    - Monetary fields are Decimal.
    - Derived records expose ``natural_key`` -- the store upserts by it and
      never holds two rows for one key.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping

from agency_kernel.domain.values import Currency


class CompensationType(str, Enum):
    """How a model is paid."""

    PERCENTAGE = "Percentage"
    SALARY = "Salary"
    HYBRID = "Hybrid"
    TIERED_DEAL = "TieredDeal"
    NONE = "None"

    @classmethod
    def parse(cls, raw: object) -> CompensationType:
        """Map stored labels (including legacy ones) to a type; unknown -> NONE."""
        if isinstance(raw, cls):
            return raw
        label = str(raw or "").strip().lower()
        if label.startswith("tiered"):
            return cls.TIERED_DEAL
        for member in cls:
            if member.value.lower() == label:
                return member
        return cls.NONE


class PayoutType(str, Enum):
    """How a team member is paid (``affiliate`` only appears on lines)."""

    PERCENTAGE = "percentage"
    FLAT_FEE = "flat_fee"
    HYBRID = "hybrid"
    NONE = "none"
    AFFILIATE = "affiliate"

    @classmethod
    def parse(cls, raw: object) -> PayoutType:
        label = str(raw or "").strip().lower()
        for member in cls:
            if member.value == label:
                return member
        return cls.NONE


class BasisType(str, Enum):
    CHATTER_SALES = "chatter_sales"
    BONUS = "bonus"
    ADJUSTMENT = "adjustment"
    FINE = "fine"
    HOURLY = "hourly"


class Scenario(str, Enum):
    EXPECTED = "expected"
    CONSERVATIVE = "conservative"
    AGGRESSIVE = "aggressive"


class ForecastSourceType(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"
    HYBRID = "hybrid"


class PayoutBucket(str, Enum):
    """Tabbed payout views; declaration order is display order."""

    CHATTER = "chatter"
    MANAGER = "manager"
    VA = "va"
    MODEL = "model"
    AFFILIATE = "affiliate"

    @property
    def position(self) -> int:
        return list(PayoutBucket).index(self)


class MarginBand(str, Enum):
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"


class PnlStatus(str, Enum):
    ACTUAL = "actual"
    FORECAST = "forecast"


class RevenueBasis(str, Enum):
    """Which agency revenue figure a manager/VA percentage applies to."""

    TOTAL_NET = "total_net"
    MESSAGES_TIPS_NET = "messages_tips_net"


# ---------------------------------------------------------------------------
# Store-supplied records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Month:
    id: str
    month_key: str
    display_name: str = ""


@dataclass(frozen=True)
class Week:
    """Inclusive ``[start_date, end_date]`` interval."""

    id: str
    start_date: date
    end_date: date

    @property
    def week_key(self) -> str:
        return f"{self.start_date.isoformat()}_to_{self.end_date.isoformat()}"


@dataclass(frozen=True)
class ModelProfile:
    """
    A model and its compensation configuration.

    Which optional fields are mandatory depends on ``compensation_type``;
    that is validated at write time, and the evaluator degrades to a zero
    payout when fields are absent.
    """

    id: str
    name: str = ""
    status: str = "active"
    compensation_type: CompensationType = CompensationType.NONE
    creator_payout_pct: Decimal | None = None
    salary_usd: Decimal | None = None
    salary_eur: Decimal | None = None
    deal_threshold: Decimal | None = None
    deal_flat_under_threshold_usd: Decimal | None = None
    deal_flat_under_threshold_eur: Decimal | None = None
    deal_percent_above_threshold: Decimal | None = None
    payee_member_id: str | None = None


@dataclass(frozen=True)
class RevenueShare:
    """A manager/VA percentage of one agency revenue stream."""

    stream: str
    basis: RevenueBasis
    pct: Decimal


@dataclass(frozen=True)
class TeamMember:
    id: str
    name: str = ""
    role: str = ""
    department: str = ""
    payout_type: PayoutType = PayoutType.NONE
    payout_percentage: Decimal | None = None
    payout_flat_fee: Decimal | None = None
    payout_frequency: str = "monthly"
    member_id: int | None = None
    revenue_shares: tuple[RevenueShare, ...] = ()
    notes: str = ""


@dataclass(frozen=True)
class BasisEntry:
    """
    One normalized financial fact for a person in a month.

    ``person_id`` is the canonical team member id, or None when the stored
    link could not be resolved. The notes side-channel has already been
    parsed into ``payout_pct_override`` / ``is_fine`` / ``is_hourly``.
    """

    id: str
    month_id: str
    person_id: str | None
    basis_type: BasisType
    amount_usd: Decimal | None = None
    amount_eur: Decimal | None = None
    notes: str = ""
    payout_pct_override: Decimal | None = None
    is_fine: bool = False
    is_hourly: bool = False


@dataclass(frozen=True)
class AffiliateDeal:
    """An affiliator's percentage of one model's net revenue over a month window."""

    id: str
    affiliator_id: str
    model_id: str
    percentage: Decimal
    is_active: bool = True
    start_month_key: str | None = None
    end_month_key: str | None = None

    def covers(self, month_key: str) -> bool:
        if self.start_month_key and month_key < self.start_month_key:
            return False
        if self.end_month_key and month_key > self.end_month_key:
            return False
        return True


@dataclass(frozen=True)
class StreamRevenue:
    total_net_eur: Decimal = Decimal("0")
    messages_tips_net_eur: Decimal = Decimal("0")

    def amount_for(self, basis: RevenueBasis) -> Decimal:
        if basis == RevenueBasis.MESSAGES_TIPS_NET:
            return self.messages_tips_net_eur
        return self.total_net_eur


@dataclass(frozen=True)
class AgencyRevenue:
    """Agency revenue for one month (EUR), per revenue stream."""

    month_key: str
    streams: Mapping[str, StreamRevenue] = field(default_factory=dict)


@dataclass(frozen=True)
class WeeklyModelStat:
    """
    Weekly actuals for a model. One of gross/net is the source value;
    ``computed_*`` are store-side derived fallbacks.
    """

    id: str
    model_id: str
    week_id: str
    gross_revenue: Decimal | None = None
    net_revenue: Decimal | None = None
    computed_gross_usd: Decimal | None = None
    computed_net_usd: Decimal | None = None
    amount_usd: Decimal | None = None
    amount_eur: Decimal | None = None


@dataclass(frozen=True)
class WeeklyForecast:
    model_id: str
    week_id: str
    week_key: str
    scenario: Scenario
    projected_net_usd: Decimal
    projected_gross_usd: Decimal
    projected_net_eur: Decimal
    projected_gross_eur: Decimal
    fx_rate_used: Decimal
    source_type: ForecastSourceType = ForecastSourceType.AUTO
    is_locked: bool = False
    notes: str = ""

    @property
    def natural_key(self) -> str:
        return f"{self.model_id}-{self.week_key}-{self.scenario.value}"


# ---------------------------------------------------------------------------
# Derived records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelForecast:
    model_id: str
    month_key: str
    scenario: Scenario
    projected_net_usd: Decimal
    projected_gross_usd: Decimal
    projected_net_eur: Decimal
    projected_gross_eur: Decimal
    fx_rate_used: Decimal
    source_type: ForecastSourceType = ForecastSourceType.AUTO
    is_locked: bool = False
    notes: str = ""

    @property
    def natural_key(self) -> str:
        return f"{self.model_id}-{self.month_key}-{self.scenario.value}"


@dataclass(frozen=True)
class PnlInput:
    """Raw revenue/expense row for one model and month."""

    model_id: str
    month_key: str
    gross_revenue: Decimal = Decimal("0")
    status: PnlStatus = PnlStatus.ACTUAL
    net_revenue: Decimal | None = None
    expenses: Mapping[str, Decimal] = field(default_factory=dict)
    notes: str = ""


@dataclass(frozen=True)
class PnlRow:
    model_id: str
    month_key: str
    status: PnlStatus
    gross_revenue: Decimal
    platform_fee: Decimal
    net_revenue: Decimal
    expenses: Mapping[str, Decimal]
    total_marketing_costs: Decimal
    total_expenses: Decimal
    net_profit: Decimal
    profit_margin_pct: Decimal
    margin_band: MarginBand
    notes: str = ""

    @property
    def natural_key(self) -> str:
        return f"{self.model_id}-{self.month_key}-{self.status.value}"


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    raise TypeError(f"Not JSON serializable: {type(obj).__name__}")


@dataclass(frozen=True)
class PayoutLine:
    """
    One person's or model's fully aggregated payout for a month.

    ``fine_total`` is non-negative and has been subtracted exactly once
    from ``payout_amount``. ``payout_amount`` is in ``currency_of_record``.
    """

    month_key: str
    line_key: str
    payee_id: str | None
    name: str
    role: str
    department: str
    bucket: PayoutBucket
    payout_type: PayoutType
    basis_total: Decimal
    bonus_total: Decimal
    fine_total: Decimal
    hourly_total: Decimal
    payout_amount: Decimal
    amount_usd: Decimal
    amount_eur: Decimal
    currency_of_record: Currency
    fx_rate_used: Decimal
    payout_percentage: Decimal | None = None
    payout_flat_fee: Decimal | None = None
    model_id: str | None = None
    breakdown: Mapping[str, Any] = field(default_factory=dict)

    @property
    def natural_key(self) -> str:
        return f"{self.month_key}-{self.line_key}"

    @property
    def breakdown_json(self) -> str:
        return json.dumps(dict(self.breakdown), sort_keys=True, default=_json_default)


@dataclass(frozen=True)
class PayoutRun:
    """All payout lines for one month plus the per-bucket views."""

    month_key: str
    fx_rate_used: Decimal
    lines: tuple[PayoutLine, ...]
    skipped: Mapping[str, int] = field(default_factory=dict)

    @property
    def by_bucket(self) -> dict[PayoutBucket, tuple[PayoutLine, ...]]:
        return {
            bucket: tuple(line for line in self.lines if line.bucket == bucket)
            for bucket in PayoutBucket
        }

    @property
    def total_usd(self) -> Decimal:
        return sum((line.amount_usd for line in self.lines), Decimal("0"))
