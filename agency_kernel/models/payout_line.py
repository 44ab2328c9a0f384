"""
Module: agency_kernel.models.payout_line
Responsibility: ORM persistence for payout lines, one row per
    ``month_key + line_key`` (person id, or ``model-<id>`` for models).
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from decimal import Decimal

from sqlalchemy import String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from agency_kernel.db.base import TrackedBase


class PayoutLineRow(TrackedBase):
    """Persisted PayoutLine."""

    __tablename__ = "payout_lines"

    __table_args__ = (
        UniqueConstraint("month_key", "line_key", name="uq_payout_line_key"),
    )

    month_key: Mapped[str] = mapped_column(String(7), nullable=False)
    line_key: Mapped[str] = mapped_column(String(80), nullable=False)
    payee_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    model_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    department: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    bucket: Mapped[str] = mapped_column(String(16), nullable=False)
    payout_type: Mapped[str] = mapped_column(String(16), nullable=False)

    payout_percentage: Mapped[Decimal | None] = mapped_column(nullable=True)
    payout_flat_fee: Mapped[Decimal | None] = mapped_column(nullable=True)
    basis_total: Mapped[Decimal] = mapped_column(nullable=False)
    bonus_total: Mapped[Decimal] = mapped_column(nullable=False)
    fine_total: Mapped[Decimal] = mapped_column(nullable=False)
    hourly_total: Mapped[Decimal] = mapped_column(nullable=False)
    payout_amount: Mapped[Decimal] = mapped_column(nullable=False)
    amount_usd: Mapped[Decimal] = mapped_column(nullable=False)
    amount_eur: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    fx_rate_used: Mapped[Decimal] = mapped_column(nullable=False)
    breakdown_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    def __repr__(self) -> str:
        return f"<PayoutLineRow {self.month_key}-{self.line_key} {self.amount_usd} USD>"
