"""
agency_services.payout_service -- Monthly payout computation and storage.

Responsibility:
    Turns one month's stored basis rows, team members, models, agency
    revenue, P&L rows and affiliate deals into a ``PayoutRun`` and upserts
    its lines by ``month_key + line_key``.  Also validates new basis
    entries for ingestion and totals stored payouts over a period.

Architecture position:
    Services -- imperative shell.  Engines + DerivedRowStore + FxRateCache.

Invariants enforced:
    - One FX rate per run, read once from the cache.
    - Members whose payout type column is unset take their terms from
      the ``PAYOUT_JSON:`` marker in their notes.
    - Person references are resolved once, through a ReferenceResolver
      built from the month's team members, before aggregation.
    - Basis rows with an unknown basis type or an unresolvable person are
      skipped and counted, never raised.

Usage:
    with session_scope() as session:
        run = PayoutService(session, fx_cache).compute_month(
            month=month,
            members=members,
            models=models,
            basis_rows=rows,
            agency_revenue=revenue,
        )
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
from typing import Any, Iterable, Mapping

from sqlalchemy.orm import Session

from agency_kernel.domain.notes import apply_payout_settings
from agency_kernel.domain.periods import parse_period
from agency_kernel.domain.records import (
    AffiliateDeal,
    AgencyRevenue,
    BasisEntry,
    ModelProfile,
    Month,
    PayoutLine,
    PayoutRun,
    PnlRow,
    PnlStatus,
    TeamMember,
)
from agency_kernel.domain.references import ReferenceResolver
from agency_kernel.logging_config import LogContext, get_logger
from agency_engines.basis import BasisAggregator, BasisEntryNormalizer
from agency_engines.payout import (
    PayoutCalculator,
    PayoutRangeSummary,
    revenue_by_model,
    summarize_payouts_in_range,
)
from agency_services.base import BaseService
from agency_services.derived_store import DerivedRowStore
from agency_services.fx_rate_service import FxRateCache

logger = get_logger("services.payout")

SKIP_UNKNOWN_BASIS_TYPE = "unknown_basis_type"


class PayoutService(BaseService):
    """
    Payout orchestration for one month.

    Contract:
        ``basis_rows`` are stored basis rows as the record store returns
        them (person as a linked reference, notes side-channel unparsed).
        When ``pnl_rows`` is omitted, the month's stored actual P&L rows
        supply model revenue.

    Guarantees:
        - The stored lines are exactly ``run.lines``.
    """

    def __init__(
        self,
        session: Session,
        fx_cache: FxRateCache,
        normalizer: BasisEntryNormalizer | None = None,
        aggregator: BasisAggregator | None = None,
        calculator: PayoutCalculator | None = None,
        store: DerivedRowStore | None = None,
    ):
        super().__init__(session)
        self._fx_cache = fx_cache
        self._normalizer = normalizer or BasisEntryNormalizer()
        self._aggregator = aggregator or BasisAggregator()
        self._calculator = calculator or PayoutCalculator()
        self._store = store or DerivedRowStore(session)

    def ingest_basis_entry(self, raw: Mapping[str, Any], *, members: Iterable[TeamMember]) -> BasisEntry:
        """Validate a new basis entry and fill both currency legs.

        Raises:
            ValidationError: (or a subclass) for any invalid field.
        """
        return self._normalizer.normalize(
            raw,
            resolver=ReferenceResolver(members),
            fx_rate=self._fx_cache.current_rate().rate,
        )

    def compute_month(
        self,
        *,
        month: Month,
        members: Iterable[TeamMember],
        models: Iterable[ModelProfile],
        basis_rows: Iterable[Mapping[str, Any]],
        agency_revenue: AgencyRevenue | None,
        pnl_rows: Iterable[PnlRow] | None = None,
        affiliate_deals: Iterable[AffiliateDeal] = (),
    ) -> PayoutRun:
        members = tuple(members)
        with LogContext.bind(month_key=month.month_key):
            rate = self._fx_cache.current_rate().rate
            entries, unknown_types = self._normalize_rows(basis_rows, members, rate)
            summary = self._aggregator.aggregate(month_id=month.id, entries=entries, members=members)

            if pnl_rows is None:
                pnl_rows = self._store.list_pnl_rows(month.month_key, PnlStatus.ACTUAL)

            run = self._calculator.compute(
                month_key=month.month_key,
                members=members,
                models=models,
                basis=summary,
                agency_revenue=agency_revenue,
                model_revenue=revenue_by_model(pnl_rows, month.month_key),
                affiliate_deals=affiliate_deals,
                fx_rate=rate,
            )
            if unknown_types:
                skipped = dict(run.skipped)
                skipped[SKIP_UNKNOWN_BASIS_TYPE] = unknown_types
                run = PayoutRun(
                    month_key=run.month_key,
                    fx_rate_used=run.fx_rate_used,
                    lines=run.lines,
                    skipped=dict(sorted(skipped.items())),
                )

            written = self._store.upsert_payout_lines(run.lines)
            logger.info(
                "payout_month_stored",
                extra={"line_count": written, "total_usd": str(run.total_usd), "skipped": run.skipped},
            )
            return run

    def _normalize_rows(
        self,
        rows: Iterable[Mapping[str, Any]],
        members: tuple[TeamMember, ...],
        rate: Decimal,
    ) -> tuple[list[BasisEntry], int]:
        resolver = ReferenceResolver(members)
        entries: list[BasisEntry] = []
        unknown_types = 0
        for row in rows:
            entry = self._normalizer.from_stored(row, resolver=resolver, fx_rate=rate)
            if entry is None:
                unknown_types += 1
                continue
            entries.append(entry)
        return entries, unknown_types

    def summarize_range(
        self,
        *,
        month_key: str | None = None,
        from_month_key: str | None = None,
        to_month_key: str | None = None,
    ) -> PayoutRangeSummary:
        """Totals over the stored payout lines of a period.

        Raises:
            InvalidPeriodError: No period given, or bounds inverted.
            InvalidMonthKeyError: A bound is not ``YYYY-MM``.
        """
        period = parse_period(month_key=month_key, from_month_key=from_month_key, to_month_key=to_month_key)
        by_month: dict[str, list[PayoutLine]] = defaultdict(list)
        for line in self._store.list_payout_lines(period.month_keys()):
            by_month[line.month_key].append(line)
        runs = [
            PayoutRun(month_key=key, fx_rate_used=lines[0].fx_rate_used, lines=tuple(lines))
            for key, lines in sorted(by_month.items())
        ]
        return summarize_payouts_in_range(runs)
