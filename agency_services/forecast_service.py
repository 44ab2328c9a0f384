"""
agency_services.forecast_service -- Monthly model forecast recompute.

Responsibility:
    Reads the current rate, loads the stored forecast for the lock check,
    runs ``ForecastProjector`` and upserts the result.  Also exposes the
    notes-only, lock and manual-edit paths and the weekly forecast build.

Architecture position:
    Services -- imperative shell.  Engines + DerivedRowStore + FxRateCache.

Invariants enforced:
    - The lock check happens immediately before the upsert decision.
    - Notes-only updates succeed on locked forecasts.

Failure modes:
    - ForecastLockedError when recomputing or hand-editing a locked
      forecast without unlocking it.
    - ValidationError when editing a forecast that does not exist.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from sqlalchemy.orm import Session

from agency_config.bridges import forecast_settings
from agency_config.schema import EngineSettings
from agency_kernel.domain.records import (
    ModelForecast,
    Scenario,
    Week,
    WeeklyForecast,
    WeeklyModelStat,
)
from agency_kernel.exceptions import ValidationError
from agency_kernel.logging_config import LogContext, get_logger
from agency_engines.forecast import ForecastProjector, WeeklyForecastBuild, WeeklyForecastBuilder
from agency_services.base import BaseService
from agency_services.derived_store import DerivedRowStore
from agency_services.fx_rate_service import FxRateCache

logger = get_logger("services.forecast")


class ForecastService(BaseService):
    """
    Forecast orchestration for one model and month.

    Contract:
        Weeks, weekly forecasts and weekly stats come from the record
        store; this service persists only monthly forecasts.
    """

    def __init__(
        self,
        session: Session,
        fx_cache: FxRateCache,
        settings: EngineSettings,
        projector: ForecastProjector | None = None,
        builder: WeeklyForecastBuilder | None = None,
        store: DerivedRowStore | None = None,
    ):
        super().__init__(session)
        self._fx_cache = fx_cache
        self._settings = forecast_settings(settings)
        self._projector = projector or ForecastProjector()
        self._builder = builder or WeeklyForecastBuilder()
        self._store = store or DerivedRowStore(session)

    def _rate(self) -> Decimal:
        return self._fx_cache.current_rate().rate

    def build_weekly(
        self,
        *,
        model_id: str,
        month_key: str,
        weeks: Iterable[Week],
        stats: Iterable[WeeklyModelStat],
        existing: Iterable[WeeklyForecast] = (),
    ) -> WeeklyForecastBuild:
        """Weekly forecasts for every scenario, for the record store to upsert."""
        with LogContext.bind(model_id=model_id, month_key=month_key):
            return self._builder.build(
                model_id=model_id,
                month_key=month_key,
                weeks=weeks,
                stats=stats,
                existing=existing,
                settings=self._settings,
                fx_rate=self._rate(),
            )

    def recalculate(
        self,
        *,
        model_id: str,
        month_key: str,
        scenario: Scenario,
        weeks: Iterable[Week],
        weekly_forecasts: Iterable[WeeklyForecast],
        recent_weeks: Iterable[Week] = (),
        recent_stats: Iterable[WeeklyModelStat] = (),
    ) -> ModelForecast:
        """Recompute and store the monthly forecast.

        Raises:
            ForecastLockedError: The stored forecast is locked.
        """
        with LogContext.bind(model_id=model_id, month_key=month_key):
            existing = self._store.get_model_forecast(model_id, month_key, scenario)
            forecast = self._projector.project(
                model_id=model_id,
                month_key=month_key,
                scenario=scenario,
                weeks=weeks,
                weekly_forecasts=weekly_forecasts,
                recent_weeks=recent_weeks,
                recent_stats=recent_stats,
                existing=existing,
                settings=self._settings,
                fx_rate=self._rate(),
            )
            return self._store.upsert_model_forecast(forecast)

    def recalculate_all_scenarios(
        self,
        *,
        model_id: str,
        month_key: str,
        weeks: Iterable[Week],
        weekly_forecasts: Iterable[WeeklyForecast],
        recent_weeks: Iterable[Week] = (),
        recent_stats: Iterable[WeeklyModelStat] = (),
    ) -> dict[Scenario, ModelForecast]:
        """Recompute every scenario; locked scenarios keep their stored value."""
        weeks = tuple(weeks)
        weekly_forecasts = tuple(weekly_forecasts)
        recent_weeks = tuple(recent_weeks)
        recent_stats = tuple(recent_stats)
        results: dict[Scenario, ModelForecast] = {}
        for scenario in Scenario:
            existing = self._store.get_model_forecast(model_id, month_key, scenario)
            if existing is not None and existing.is_locked:
                results[scenario] = existing
                continue
            results[scenario] = self.recalculate(
                model_id=model_id,
                month_key=month_key,
                scenario=scenario,
                weeks=weeks,
                weekly_forecasts=weekly_forecasts,
                recent_weeks=recent_weeks,
                recent_stats=recent_stats,
            )
        return results

    def update_notes(self, *, model_id: str, month_key: str, scenario: Scenario, notes: str) -> ModelForecast:
        with LogContext.bind(model_id=model_id, month_key=month_key):
            return self._store.update_forecast_notes(model_id, month_key, scenario, notes)

    def set_locked(self, *, model_id: str, month_key: str, scenario: Scenario, locked: bool) -> ModelForecast:
        with LogContext.bind(model_id=model_id, month_key=month_key):
            return self._store.set_forecast_lock(model_id, month_key, scenario, locked)

    def manual_update(
        self,
        *,
        model_id: str,
        month_key: str,
        scenario: Scenario,
        unlock: bool = False,
        notes: str | None = None,
        **fields: Decimal,
    ) -> ModelForecast:
        """Hand-edit financial fields; stamps ``source_type=manual``.

        Raises:
            ForecastLockedError: Locked and ``unlock`` is False.
            ValidationError: No stored forecast, or an unknown field.
        """
        with LogContext.bind(model_id=model_id, month_key=month_key):
            existing = self._store.get_model_forecast(model_id, month_key, scenario)
            if existing is None:
                raise ValidationError(f"No forecast for {model_id}-{month_key}-{scenario.value}")
            updated = self._projector.apply_manual_update(existing, unlock=unlock, notes=notes, **fields)
            return self._store.upsert_model_forecast(updated, allow_locked=unlock or not fields)
