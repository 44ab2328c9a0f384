"""
Imperative shell for the agency engines.

Services read the current FX rate, call the pure engines and hand full
replacement rows to the derived-row store.  They flush; callers commit.
"""

from agency_services.derived_store import DerivedRowStore
from agency_services.forecast_service import ForecastService
from agency_services.fx_rate_service import (
    FrankfurterRateSource,
    FxRateCache,
    RateOrigin,
    RateQuote,
    RateSource,
)
from agency_services.payout_service import PayoutService
from agency_services.pnl_service import PnlService

__all__ = [
    "DerivedRowStore",
    "ForecastService",
    "FrankfurterRateSource",
    "FxRateCache",
    "PayoutService",
    "PnlService",
    "RateOrigin",
    "RateQuote",
    "RateSource",
]
