"""
agency_services.pnl_service -- Derive and persist P&L rows.

Responsibility:
    Runs ``PnlDeriver`` for raw revenue/expense inputs with the configured
    fee and margin thresholds, and upserts the results by
    ``model_id + month_key + status``.

Architecture position:
    Services -- imperative shell.  Engines + DerivedRowStore.
"""

from __future__ import annotations

from typing import Iterable

from sqlalchemy.orm import Session

from agency_config.bridges import pnl_settings
from agency_config.schema import EngineSettings
from agency_kernel.domain.records import PnlInput, PnlRow, PnlStatus
from agency_kernel.logging_config import LogContext, get_logger
from agency_engines.pnl import PnlDeriver, PnlTotals, summarize_pnl
from agency_services.base import BaseService
from agency_services.derived_store import DerivedRowStore

logger = get_logger("services.pnl")


class PnlService(BaseService):
    """
    P&L recompute for one or many rows.

    Guarantees:
        - Every stored row is a full replacement built by the engine.
    """

    def __init__(
        self,
        session: Session,
        settings: EngineSettings,
        deriver: PnlDeriver | None = None,
        store: DerivedRowStore | None = None,
    ):
        super().__init__(session)
        self._settings = pnl_settings(settings)
        self._deriver = deriver or PnlDeriver()
        self._store = store or DerivedRowStore(session)

    def recalculate(self, row: PnlInput) -> PnlRow:
        with LogContext.bind(model_id=row.model_id, month_key=row.month_key):
            derived = self._deriver.derive(row=row, settings=self._settings)
            self._store.upsert_pnl_row(derived)
            logger.info(
                "pnl_row_recalculated",
                extra={
                    "natural_key": derived.natural_key,
                    "net_profit": str(derived.net_profit),
                    "margin_band": derived.margin_band.value,
                },
            )
            return derived

    def recalculate_many(self, rows: Iterable[PnlInput]) -> list[PnlRow]:
        return [self.recalculate(row) for row in rows]

    def overview(self, month_key: str, status: PnlStatus = PnlStatus.ACTUAL) -> PnlTotals:
        """Totals over the stored rows of a month."""
        return summarize_pnl(self._store.list_pnl_rows(month_key, status))
