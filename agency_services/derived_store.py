"""
agency_services.derived_store -- Natural-key upserts for derived rows.

Responsibility:
    Persists the full replacement rows the engines produce (model
    forecasts, P&L rows, payout lines) and reads them back as domain
    records.  Each row type has one natural key; a write either updates
    the row holding that key or inserts it.

Architecture position:
    Services -- imperative shell.  The only module that maps between
    ``agency_kernel.models`` ORM rows and ``agency_kernel.domain`` records.

Invariants enforced:
    - One row per natural key (also backed by a UniqueConstraint).
    - A locked forecast's financial columns are not rewritten unless the
      caller passes ``allow_locked=True`` (manual unlock).
    - flush() only; the caller owns the transaction.

Failure modes:
    - ForecastLockedError on an upsert over a locked forecast.
    - ValidationError when a notes or lock update targets a missing
      forecast.

Known limitation:
    The lock check reads the row and then writes it in two steps.  Two
    concurrent writers for the same key can both pass the check; the
    workload is single-writer per key.
"""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Any, Iterable, Mapping

from sqlalchemy import select

from agency_kernel.domain.records import (
    ForecastSourceType,
    MarginBand,
    ModelForecast,
    PayoutBucket,
    PayoutLine,
    PayoutType,
    PnlRow,
    PnlStatus,
    Scenario,
)
from agency_kernel.domain.values import Currency, round2, round_rate
from agency_kernel.exceptions import ForecastLockedError, ValidationError
from agency_kernel.logging_config import get_logger
from agency_kernel.models import ModelForecastRow, PayoutLineRow, PnlLineRow
from agency_engines.payout import to_upsert_payload
from agency_engines.pnl import MARGIN_QUANTUM
from agency_services.base import BaseService

logger = get_logger("services.derived_store")


def _assign(row: Any, values: Mapping[str, Any]) -> None:
    for name, value in values.items():
        setattr(row, name, value)


def _optional_money(value: Decimal | None) -> Decimal | None:
    return None if value is None else round2(value)


def _forecast_from_row(row: ModelForecastRow) -> ModelForecast:
    return ModelForecast(
        model_id=row.model_id,
        month_key=row.month_key,
        scenario=Scenario(row.scenario),
        projected_net_usd=round2(row.projected_net_usd),
        projected_gross_usd=round2(row.projected_gross_usd),
        projected_net_eur=round2(row.projected_net_eur),
        projected_gross_eur=round2(row.projected_gross_eur),
        fx_rate_used=round_rate(row.fx_rate_used),
        source_type=ForecastSourceType(row.source_type),
        is_locked=bool(row.is_locked),
        notes=row.notes or "",
    )


def _pnl_from_row(row: PnlLineRow) -> PnlRow:
    expenses = json.loads(row.expenses_json or "{}")
    return PnlRow(
        model_id=row.model_id,
        month_key=row.month_key,
        status=PnlStatus(row.status),
        gross_revenue=round2(row.gross_revenue),
        platform_fee=round2(row.platform_fee),
        net_revenue=round2(row.net_revenue),
        expenses={name: round2(value) for name, value in expenses.items()},
        total_marketing_costs=round2(row.total_marketing_costs),
        total_expenses=round2(row.total_expenses),
        net_profit=round2(row.net_profit),
        profit_margin_pct=Decimal(row.profit_margin_pct).quantize(MARGIN_QUANTUM),
        margin_band=MarginBand(row.margin_band),
        notes=row.notes or "",
    )


def _payout_from_row(row: PayoutLineRow) -> PayoutLine:
    return PayoutLine(
        month_key=row.month_key,
        line_key=row.line_key,
        payee_id=row.payee_id,
        name=row.name,
        role=row.role,
        department=row.department,
        bucket=PayoutBucket(row.bucket),
        payout_type=PayoutType(row.payout_type),
        basis_total=round2(row.basis_total),
        bonus_total=round2(row.bonus_total),
        fine_total=round2(row.fine_total),
        hourly_total=round2(row.hourly_total),
        payout_amount=round2(row.payout_amount),
        amount_usd=round2(row.amount_usd),
        amount_eur=round2(row.amount_eur),
        currency_of_record=Currency(row.currency),
        fx_rate_used=round_rate(row.fx_rate_used),
        payout_percentage=row.payout_percentage,
        payout_flat_fee=_optional_money(row.payout_flat_fee),
        model_id=row.model_id,
        breakdown=json.loads(row.breakdown_json or "{}"),
    )


class DerivedRowStore(BaseService):
    """
    SQLAlchemy-backed store for derived records.

    Contract:
        Callers hand in complete records; partial updates exist only for
        forecast notes and the forecast lock flag.

    Guarantees:
        - Upserts are idempotent: writing the same record twice leaves one
          row with the same values.
    """

    # ------------------------------------------------------------------
    # Model forecasts
    # ------------------------------------------------------------------

    def _forecast_row(self, model_id: str, month_key: str, scenario: Scenario) -> ModelForecastRow | None:
        return self.session.execute(
            select(ModelForecastRow).where(
                ModelForecastRow.model_id == model_id,
                ModelForecastRow.month_key == month_key,
                ModelForecastRow.scenario == scenario.value,
            )
        ).scalar_one_or_none()

    def get_model_forecast(self, model_id: str, month_key: str, scenario: Scenario) -> ModelForecast | None:
        row = self._forecast_row(model_id, month_key, scenario)
        return None if row is None else _forecast_from_row(row)

    def list_model_forecasts(self, month_key: str) -> list[ModelForecast]:
        rows = self.session.execute(
            select(ModelForecastRow)
            .where(ModelForecastRow.month_key == month_key)
            .order_by(ModelForecastRow.model_id, ModelForecastRow.scenario)
        ).scalars()
        return [_forecast_from_row(row) for row in rows]

    def upsert_model_forecast(self, forecast: ModelForecast, *, allow_locked: bool = False) -> ModelForecast:
        """Write ``forecast`` under its natural key.

        Args:
            forecast: Full replacement record.
            allow_locked: Permit overwriting a locked row (manual unlock).

        Raises:
            ForecastLockedError: The stored row is locked and
                ``allow_locked`` is False.
        """
        row = self._forecast_row(forecast.model_id, forecast.month_key, forecast.scenario)
        if row is not None and row.is_locked and not allow_locked:
            logger.warning("forecast_locked_conflict", extra={"natural_key": forecast.natural_key})
            raise ForecastLockedError(forecast.natural_key)

        values = {
            "projected_net_usd": forecast.projected_net_usd,
            "projected_gross_usd": forecast.projected_gross_usd,
            "projected_net_eur": forecast.projected_net_eur,
            "projected_gross_eur": forecast.projected_gross_eur,
            "fx_rate_used": forecast.fx_rate_used,
            "source_type": forecast.source_type.value,
            "is_locked": forecast.is_locked,
            "notes": forecast.notes,
        }
        if row is None:
            row = ModelForecastRow(
                model_id=forecast.model_id,
                month_key=forecast.month_key,
                scenario=forecast.scenario.value,
            )
            self.session.add(row)
            action = "inserted"
        else:
            action = "updated"
        _assign(row, values)
        self.session.flush()

        logger.info(
            "model_forecast_upserted",
            extra={
                "natural_key": forecast.natural_key,
                "action": action,
                "projected_net_usd": str(forecast.projected_net_usd),
            },
        )
        return forecast

    def update_forecast_notes(
        self, model_id: str, month_key: str, scenario: Scenario, notes: str
    ) -> ModelForecast:
        """Replace notes only; succeeds on locked forecasts."""
        row = self._require_forecast_row(model_id, month_key, scenario)
        row.notes = notes or ""
        self.session.flush()
        return _forecast_from_row(row)

    def set_forecast_lock(
        self, model_id: str, month_key: str, scenario: Scenario, locked: bool
    ) -> ModelForecast:
        row = self._require_forecast_row(model_id, month_key, scenario)
        row.is_locked = locked
        self.session.flush()
        logger.info(
            "model_forecast_lock_changed",
            extra={"natural_key": f"{model_id}-{month_key}-{scenario.value}", "is_locked": locked},
        )
        return _forecast_from_row(row)

    def _require_forecast_row(self, model_id: str, month_key: str, scenario: Scenario) -> ModelForecastRow:
        row = self._forecast_row(model_id, month_key, scenario)
        if row is None:
            raise ValidationError(f"No forecast for {model_id}-{month_key}-{scenario.value}")
        return row

    # ------------------------------------------------------------------
    # P&L rows
    # ------------------------------------------------------------------

    def upsert_pnl_row(self, pnl: PnlRow) -> PnlRow:
        row = self.session.execute(
            select(PnlLineRow).where(
                PnlLineRow.model_id == pnl.model_id,
                PnlLineRow.month_key == pnl.month_key,
                PnlLineRow.status == pnl.status.value,
            )
        ).scalar_one_or_none()

        values = {
            "gross_revenue": pnl.gross_revenue,
            "platform_fee": pnl.platform_fee,
            "net_revenue": pnl.net_revenue,
            "expenses_json": json.dumps(
                {name: str(value) for name, value in pnl.expenses.items()}, sort_keys=True
            ),
            "total_marketing_costs": pnl.total_marketing_costs,
            "total_expenses": pnl.total_expenses,
            "net_profit": pnl.net_profit,
            "profit_margin_pct": pnl.profit_margin_pct,
            "margin_band": pnl.margin_band.value,
            "notes": pnl.notes,
        }
        if row is None:
            row = PnlLineRow(model_id=pnl.model_id, month_key=pnl.month_key, status=pnl.status.value)
            self.session.add(row)
        _assign(row, values)
        self.session.flush()
        logger.debug("pnl_row_upserted", extra={"natural_key": pnl.natural_key})
        return pnl

    def list_pnl_rows(self, month_key: str, status: PnlStatus | None = None) -> list[PnlRow]:
        stmt = select(PnlLineRow).where(PnlLineRow.month_key == month_key)
        if status is not None:
            stmt = stmt.where(PnlLineRow.status == status.value)
        rows = self.session.execute(stmt.order_by(PnlLineRow.model_id, PnlLineRow.status)).scalars()
        return [_pnl_from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Payout lines
    # ------------------------------------------------------------------

    def upsert_payout_lines(self, lines: Iterable[PayoutLine]) -> int:
        """Upsert every line by ``month_key + line_key``; returns the count written."""
        count = 0
        for line in lines:
            payload = to_upsert_payload(line)
            row = self.session.execute(
                select(PayoutLineRow).where(
                    PayoutLineRow.month_key == line.month_key,
                    PayoutLineRow.line_key == line.line_key,
                )
            ).scalar_one_or_none()
            if row is None:
                row = PayoutLineRow()
                self.session.add(row)
            _assign(row, payload)
            count += 1
        self.session.flush()
        logger.info("payout_lines_upserted", extra={"line_count": count})
        return count

    def list_payout_lines(self, month_keys: Iterable[str]) -> list[PayoutLine]:
        keys = sorted(set(month_keys))
        if not keys:
            return []
        rows = self.session.execute(
            select(PayoutLineRow)
            .where(PayoutLineRow.month_key.in_(keys))
            .order_by(PayoutLineRow.month_key, PayoutLineRow.line_key)
        ).scalars()
        return [_payout_from_row(row) for row in rows]
