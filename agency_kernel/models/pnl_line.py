"""
Module: agency_kernel.models.pnl_line
Responsibility: ORM persistence for derived P&L rows, one row per
    ``model_id + month_key + status``.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from decimal import Decimal

from sqlalchemy import String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from agency_kernel.db.base import TrackedBase


class PnlLineRow(TrackedBase):
    """Persisted PnlRow.  Per-category expenses are kept as a JSON object."""

    __tablename__ = "pnl_lines"

    __table_args__ = (
        UniqueConstraint("model_id", "month_key", "status", name="uq_pnl_line_key"),
    )

    model_id: Mapped[str] = mapped_column(String(64), nullable=False)
    month_key: Mapped[str] = mapped_column(String(7), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)

    gross_revenue: Mapped[Decimal] = mapped_column(nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(nullable=False)
    net_revenue: Mapped[Decimal] = mapped_column(nullable=False)
    expenses_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    total_marketing_costs: Mapped[Decimal] = mapped_column(nullable=False)
    total_expenses: Mapped[Decimal] = mapped_column(nullable=False)
    net_profit: Mapped[Decimal] = mapped_column(nullable=False)
    profit_margin_pct: Mapped[Decimal] = mapped_column(nullable=False)
    margin_band: Mapped[str] = mapped_column(String(8), nullable=False)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")

    def __repr__(self) -> str:
        return f"<PnlLineRow {self.model_id}-{self.month_key}-{self.status}>"
