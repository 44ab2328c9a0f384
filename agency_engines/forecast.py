"""
agency_engines.forecast -- Weekly and monthly revenue forecasts per model.

Responsibility:
    ``WeeklyForecastBuilder`` turns weekly actuals into per-week forecasts
    for the three scenarios, applying the scenario multipliers.
    ``ForecastProjector`` prorates a model's weekly forecasts into one
    monthly forecast for a scenario, falling back to a trailing average
    of recent weekly actuals for weeks that have no forecast.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Depends on Prorator, FxConverter and the weekly net strategies.
    Consumed by agency_services.forecast_service.

Invariants enforced:
    - Scenario multipliers are applied only when weekly forecasts are
      built.  The projector prorates weekly forecasts as they are, and the
      trailing-average fallback is the same for every scenario.
    - A locked forecast's financial fields are never replaced: the weekly
      builder skips locked weeks, the projector raises ForecastLockedError.
      Notes-only updates on a locked forecast always succeed.
    - Monthly sums keep full precision until the final round to cents.

Failure modes:
    - ForecastLockedError (a ConflictError) for recompute or manual edits
      of a locked forecast.
    - ValidationError for unknown manual-update fields.

Usage:
    projector = ForecastProjector()
    forecast = projector.project(
        model_id="recModel",
        month_key="2024-03",
        scenario=Scenario.EXPECTED,
        weeks=weeks,
        weekly_forecasts=weekly,
        recent_weeks=recent,
        recent_stats=stats,
        existing=None,
        settings=ForecastSettings(),
        fx_rate=Decimal("0.92"),
    )
"""

from __future__ import annotations

import dataclasses
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Mapping

from agency_kernel.domain.records import (
    ForecastSourceType,
    ModelForecast,
    Scenario,
    Week,
    WeeklyForecast,
    WeeklyModelStat,
)
from agency_kernel.domain.values import ZERO, round2, round_rate, to_decimal
from agency_kernel.exceptions import ForecastLockedError, ValidationError
from agency_kernel.logging_config import get_logger
from agency_engines.fx import FxConverter
from agency_engines.proration import Prorator
from agency_engines.tracer import traced_engine
from agency_engines.weekly import derive_net_usd, gross_from_net

logger = get_logger("engines.forecast")

DEFAULT_MULTIPLIERS: Mapping[Scenario, Decimal] = {
    Scenario.EXPECTED: Decimal("1.0"),
    Scenario.CONSERVATIVE: Decimal("0.85"),
    Scenario.AGGRESSIVE: Decimal("1.15"),
}

MANUAL_FIELDS = frozenset(
    {
        "projected_net_usd",
        "projected_gross_usd",
        "projected_net_eur",
        "projected_gross_eur",
        "fx_rate_used",
    }
)


@dataclass(frozen=True)
class ForecastSettings:
    platform_fee_pct: Decimal = Decimal("0.20")
    trailing_weeks: int = 4
    recent_weeks_limit: int = 52
    scenario_multipliers: Mapping[Scenario, Decimal] = field(
        default_factory=lambda: dict(DEFAULT_MULTIPLIERS)
    )

    def multiplier(self, scenario: Scenario) -> Decimal:
        return self.scenario_multipliers.get(scenario, DEFAULT_MULTIPLIERS[scenario])


@dataclass(frozen=True)
class WeeklyForecastBuild:
    forecasts: tuple[WeeklyForecast, ...]
    skipped_locked: int = 0


def _stats_by_week(stats: Iterable[WeeklyModelStat], model_id: str) -> dict[str, WeeklyModelStat]:
    return {stat.week_id: stat for stat in stats if stat.model_id == model_id}


class WeeklyForecastBuilder:
    """
    Builds weekly forecasts from weekly actuals.

    Contract:
        ``projected_net_usd = base_net_usd * multiplier`` per scenario,
        where the base is the week's derived net (0 when the week has no
        stat).  Gross is ``net / (1 - fee)``; EUR legs use the run rate.

    Guarantees:
        - Locked existing weekly forecasts are skipped and counted.
        - Results are stamped ``source_type=auto`` with the run rate.
    """

    def __init__(self, fx: FxConverter | None = None, prorator: Prorator | None = None):
        self._fx = fx or FxConverter()
        self._prorator = prorator or Prorator()

    @traced_engine(
        "weekly_forecast",
        "1.0",
        fingerprint_fields=("model_id", "month_key", "weeks", "stats", "fx_rate"),
    )
    def build(
        self,
        *,
        model_id: str,
        month_key: str,
        weeks: Iterable[Week],
        stats: Iterable[WeeklyModelStat],
        existing: Iterable[WeeklyForecast] = (),
        settings: ForecastSettings,
        fx_rate: Decimal,
    ) -> WeeklyForecastBuild:
        rate = self._fx.require_rate(fx_rate)
        stat_by_week = _stats_by_week(stats, model_id)
        existing_by_key = {
            (forecast.week_id, forecast.scenario): forecast
            for forecast in existing
            if forecast.model_id == model_id
        }

        forecasts: list[WeeklyForecast] = []
        skipped_locked = 0
        for week in self._prorator.weeks_overlapping(weeks, month_key):
            stat = stat_by_week.get(week.id)
            base = derive_net_usd(stat, settings.platform_fee_pct)[0] if stat else None
            base = base if base is not None else ZERO
            for scenario in Scenario:
                current = existing_by_key.get((week.id, scenario))
                if current is not None and current.is_locked:
                    skipped_locked += 1
                    continue
                net_usd = round2(base * settings.multiplier(scenario))
                gross_usd = round2(gross_from_net(net_usd, settings.platform_fee_pct))
                forecasts.append(
                    WeeklyForecast(
                        model_id=model_id,
                        week_id=week.id,
                        week_key=week.week_key,
                        scenario=scenario,
                        projected_net_usd=net_usd,
                        projected_gross_usd=gross_usd,
                        projected_net_eur=self._fx.usd_to_eur(net_usd, rate),
                        projected_gross_eur=self._fx.usd_to_eur(gross_usd, rate),
                        fx_rate_used=round_rate(rate),
                        source_type=ForecastSourceType.AUTO,
                        notes=current.notes if current is not None else "",
                    )
                )

        if skipped_locked:
            logger.info(
                "weekly_forecast_locked_skipped",
                extra={"model_id": model_id, "month_key": month_key, "skipped_locked": skipped_locked},
            )
        return WeeklyForecastBuild(forecasts=tuple(forecasts), skipped_locked=skipped_locked)


class ForecastProjector:
    """
    Projects a monthly forecast for one model and scenario.

    Contract:
        ``weeks`` are the weeks to consider for the month (non-overlapping
        ones are ignored).  ``weekly_forecasts`` may contain any scenario;
        only the requested one is used.  ``recent_weeks``/``recent_stats``
        feed the trailing-average fallback.

    Guarantees:
        - Deterministic for identical inputs.
        - Refuses to replace a locked forecast.
    """

    def __init__(self, fx: FxConverter | None = None, prorator: Prorator | None = None):
        self._fx = fx or FxConverter()
        self._prorator = prorator or Prorator()

    def fallback_baseline(
        self,
        *,
        recent_weeks: Iterable[Week],
        recent_stats: Iterable[WeeklyModelStat],
        model_id: str,
        settings: ForecastSettings,
    ) -> Decimal:
        """Average derived net of the most recent weeks with positive net, to cents."""
        ordered = sorted(
            (week for week in recent_weeks if week.start_date and week.end_date),
            key=lambda week: (week.end_date, week.id),
            reverse=True,
        )[: settings.recent_weeks_limit]
        end_by_week = {week.id: week.end_date for week in ordered}

        candidates = []
        for stat in _stats_by_week(recent_stats, model_id).values():
            if stat.week_id not in end_by_week:
                continue
            net = derive_net_usd(stat, settings.platform_fee_pct)[0]
            if net is not None and net > ZERO:
                candidates.append((end_by_week[stat.week_id], stat.week_id, net))
        candidates.sort(reverse=True)
        window = candidates[: settings.trailing_weeks]
        if not window:
            return round2(ZERO)
        return round2(sum((net for _, _, net in window), ZERO) / Decimal(len(window)))

    @traced_engine(
        "forecast_projection",
        "1.0",
        fingerprint_fields=("model_id", "month_key", "scenario", "weekly_forecasts", "fx_rate"),
    )
    def project(
        self,
        *,
        model_id: str,
        month_key: str,
        scenario: Scenario,
        weeks: Iterable[Week],
        weekly_forecasts: Iterable[WeeklyForecast],
        recent_weeks: Iterable[Week] = (),
        recent_stats: Iterable[WeeklyModelStat] = (),
        existing: ModelForecast | None,
        settings: ForecastSettings,
        fx_rate: Decimal,
    ) -> ModelForecast:
        """Compute the replacement ModelForecast.

        Raises:
            ForecastLockedError: ``existing`` is locked.
            InvalidExchangeRateError: ``fx_rate`` is not positive.
        """
        t0 = time.monotonic()
        natural_key = f"{model_id}-{month_key}-{scenario.value}"
        if existing is not None and existing.is_locked:
            logger.warning("forecast_locked_conflict", extra={"natural_key": natural_key})
            raise ForecastLockedError(natural_key)

        rate = self._fx.require_rate(fx_rate)
        overlapping = self._prorator.weeks_overlapping(weeks, month_key)
        notes = existing.notes if existing is not None else ""

        if not overlapping:
            logger.info("forecast_no_weeks", extra={"natural_key": natural_key})
            return ModelForecast(
                model_id=model_id,
                month_key=month_key,
                scenario=scenario,
                projected_net_usd=round2(ZERO),
                projected_gross_usd=round2(ZERO),
                projected_net_eur=round2(ZERO),
                projected_gross_eur=round2(ZERO),
                fx_rate_used=round_rate(rate),
                source_type=ForecastSourceType.AUTO,
                is_locked=False,
                notes=notes,
            )

        forecast_by_week = {
            forecast.week_id: forecast
            for forecast in weekly_forecasts
            if forecast.model_id == model_id and forecast.scenario == scenario
        }
        fallback_usd = self.fallback_baseline(
            recent_weeks=recent_weeks,
            recent_stats=recent_stats,
            model_id=model_id,
            settings=settings,
        )
        fallback_eur = self._fx.usd_to_eur(fallback_usd, rate)

        total_usd = ZERO
        total_eur = ZERO
        fallback_weeks = 0
        for week in overlapping:
            share = self._prorator.week_share_in_month(week.start_date, week.end_date, month_key)
            if share <= ZERO:
                continue
            weekly = forecast_by_week.get(week.id)
            if weekly is not None:
                total_usd += weekly.projected_net_usd * share
                total_eur += weekly.projected_net_eur * share
            else:
                fallback_weeks += 1
                total_usd += fallback_usd * share
                total_eur += fallback_eur * share

        net_usd = round2(total_usd)
        net_eur = round2(total_eur)
        stamped_rate = self._stamped_rate(net_usd, net_eur, existing, rate)
        source_type = ForecastSourceType.HYBRID if fallback_weeks else ForecastSourceType.AUTO
        if fallback_weeks:
            logger.info(
                "forecast_fallback_used",
                extra={
                    "natural_key": natural_key,
                    "fallback_weeks": fallback_weeks,
                    "fallback_net_usd": str(fallback_usd),
                },
            )

        result = ModelForecast(
            model_id=model_id,
            month_key=month_key,
            scenario=scenario,
            projected_net_usd=net_usd,
            projected_gross_usd=round2(gross_from_net(net_usd, settings.platform_fee_pct)),
            projected_net_eur=net_eur,
            projected_gross_eur=round2(gross_from_net(net_eur, settings.platform_fee_pct)),
            fx_rate_used=stamped_rate,
            source_type=source_type,
            is_locked=False,
            notes=notes,
        )

        duration_ms = round((time.monotonic() - t0) * 1000, 2)
        logger.info(
            "forecast_projected",
            extra={
                "natural_key": natural_key,
                "projected_net_usd": str(result.projected_net_usd),
                "source_type": result.source_type.value,
                "duration_ms": duration_ms,
            },
        )
        return result

    @staticmethod
    def _stamped_rate(
        net_usd: Decimal,
        net_eur: Decimal,
        existing: ModelForecast | None,
        rate: Decimal,
    ) -> Decimal:
        """Implied rate of the projection, else the existing stamp, else the run rate."""
        if net_usd > ZERO:
            return round_rate(net_eur / net_usd)
        if existing is not None and existing.fx_rate_used is not None:
            return round_rate(existing.fx_rate_used)
        return round_rate(rate)

    def apply_notes_update(self, existing: ModelForecast, notes: str) -> ModelForecast:
        """Replace notes only; allowed whether or not the forecast is locked."""
        return dataclasses.replace(existing, notes=notes or "")

    def set_locked(self, existing: ModelForecast, locked: bool) -> ModelForecast:
        return dataclasses.replace(existing, is_locked=locked)

    def apply_manual_update(
        self,
        existing: ModelForecast,
        *,
        unlock: bool = False,
        notes: str | None = None,
        **fields: Decimal,
    ) -> ModelForecast:
        """Overwrite financial fields by hand and stamp ``source_type=manual``.

        Args:
            existing: Current forecast.
            unlock: Clear the lock as part of this edit.
            notes: Optional replacement notes.
            **fields: Any of the projected amounts or ``fx_rate_used``.

        Raises:
            ForecastLockedError: ``existing`` is locked and ``unlock`` is False.
            ValidationError: Unknown or non-numeric field.
        """
        unknown = set(fields) - MANUAL_FIELDS
        if unknown:
            raise ValidationError(f"Unknown forecast fields: {', '.join(sorted(unknown))}")
        if existing.is_locked and not unlock and fields:
            logger.warning("forecast_locked_conflict", extra={"natural_key": existing.natural_key})
            raise ForecastLockedError(existing.natural_key)

        changes: dict[str, object] = {}
        for name, raw in fields.items():
            value = to_decimal(raw)
            if value is None:
                raise ValidationError(f"{name} must be a number (got {raw!r})")
            changes[name] = round_rate(value) if name == "fx_rate_used" else round2(value)
        if fields:
            changes["source_type"] = ForecastSourceType.MANUAL
        if unlock:
            changes["is_locked"] = False
        if notes is not None:
            changes["notes"] = notes
        return dataclasses.replace(existing, **changes)
