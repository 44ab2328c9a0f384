"""ORM rows for derived records, upserted by natural key."""

from agency_kernel.models.model_forecast import ModelForecastRow
from agency_kernel.models.payout_line import PayoutLineRow
from agency_kernel.models.pnl_line import PnlLineRow

__all__ = ["ModelForecastRow", "PayoutLineRow", "PnlLineRow"]
