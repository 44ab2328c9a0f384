"""
Module: agency_kernel.models.model_forecast
Responsibility: ORM persistence for monthly model forecasts, one row per
    ``model_id + month_key + scenario``.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Natural key uniqueness via UniqueConstraint; writers upsert by it.
    - A locked row's financial columns are never rewritten by recompute;
      the lock check lives in DerivedRowStore.upsert_model_forecast.
"""

from decimal import Decimal

from sqlalchemy import Boolean, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from agency_kernel.db.base import TrackedBase


class ModelForecastRow(TrackedBase):
    """Persisted ModelForecast."""

    __tablename__ = "model_forecasts"

    __table_args__ = (
        UniqueConstraint("model_id", "month_key", "scenario", name="uq_model_forecast_key"),
    )

    model_id: Mapped[str] = mapped_column(String(64), nullable=False)
    month_key: Mapped[str] = mapped_column(String(7), nullable=False)
    scenario: Mapped[str] = mapped_column(String(16), nullable=False)

    projected_net_usd: Mapped[Decimal] = mapped_column(nullable=False)
    projected_gross_usd: Mapped[Decimal] = mapped_column(nullable=False)
    projected_net_eur: Mapped[Decimal] = mapped_column(nullable=False)
    projected_gross_eur: Mapped[Decimal] = mapped_column(nullable=False)
    fx_rate_used: Mapped[Decimal] = mapped_column(nullable=False)

    source_type: Mapped[str] = mapped_column(String(16), nullable=False, default="auto")
    is_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")

    def __repr__(self) -> str:
        return f"<ModelForecastRow {self.model_id}-{self.month_key}-{self.scenario}>"
