"""
Pure calculation engines for the agency back-office.

Every engine is a pure function of its explicit inputs plus an injected
FX rate: no clock, no network, no database.  Entry points are traced
with ``@traced_engine``.
"""

from agency_engines.basis import (
    BasisAggregator,
    BasisEntryNormalizer,
    BasisSummary,
    PersonBasisTotals,
    bucket_for_role,
)
from agency_engines.compensation import CompensationEvaluator, CompensationResult
from agency_engines.forecast import ForecastProjector, ForecastSettings, WeeklyForecastBuilder
from agency_engines.fx import FxConverter
from agency_engines.payout import (
    ModelMonthRevenue,
    PayoutCalculator,
    revenue_by_model,
    summarize_payouts_in_range,
    to_upsert_payload,
)
from agency_engines.pnl import EXPENSE_CATEGORIES, PnlDeriver, PnlSettings, summarize_pnl
from agency_engines.proration import Prorator
from agency_engines.weekly import WeeklyStatNormalizer, derive_net_usd

__all__ = [
    "BasisAggregator",
    "BasisEntryNormalizer",
    "BasisSummary",
    "CompensationEvaluator",
    "CompensationResult",
    "EXPENSE_CATEGORIES",
    "ForecastProjector",
    "ForecastSettings",
    "FxConverter",
    "ModelMonthRevenue",
    "PayoutCalculator",
    "PersonBasisTotals",
    "PnlDeriver",
    "PnlSettings",
    "Prorator",
    "WeeklyForecastBuilder",
    "WeeklyStatNormalizer",
    "bucket_for_role",
    "derive_net_usd",
    "revenue_by_model",
    "summarize_payouts_in_range",
    "summarize_pnl",
    "to_upsert_payload",
]
