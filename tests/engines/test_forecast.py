"""
Tests for WeeklyForecastBuilder and ForecastProjector.

Covers:
- Scenario multipliers applied when weekly forecasts are built
- Locked weekly forecasts skipped
- Monthly prorating of weekly forecasts across straddling weeks
- Trailing-average fallback for weeks without a forecast
- Lock semantics: recompute refused, notes always allowed
- Manual updates stamp source_type=manual
"""

from datetime import date
from decimal import Decimal

import pytest

from agency_engines.forecast import ForecastProjector, ForecastSettings, WeeklyForecastBuilder
from agency_kernel.domain.records import (
    ForecastSourceType,
    ModelForecast,
    Scenario,
    WeeklyForecast,
)
from agency_kernel.exceptions import ForecastLockedError, InvalidExchangeRateError, ValidationError
from tests.builders import make_stat, make_week

MONTH = "2024-03"
RATE = Decimal("0.92")


def weekly(week, scenario=Scenario.EXPECTED, net="700", eur=None, **kwargs):
    net = Decimal(net)
    return WeeklyForecast(
        model_id=kwargs.pop("model_id", "recModel"),
        week_id=week.id,
        week_key=week.week_key,
        scenario=scenario,
        projected_net_usd=net,
        projected_gross_usd=net / Decimal("0.8"),
        projected_net_eur=Decimal(eur) if eur is not None else net * RATE,
        projected_gross_eur=net / Decimal("0.8") * RATE,
        fx_rate_used=RATE,
        **kwargs,
    )


def stored_forecast(**kwargs):
    kwargs.setdefault("projected_net_usd", Decimal("1000.00"))
    kwargs.setdefault("projected_gross_usd", Decimal("1250.00"))
    kwargs.setdefault("projected_net_eur", Decimal("920.00"))
    kwargs.setdefault("projected_gross_eur", Decimal("1150.00"))
    kwargs.setdefault("fx_rate_used", Decimal("0.920000"))
    return ModelForecast(model_id="recModel", month_key=MONTH, scenario=Scenario.EXPECTED, **kwargs)


@pytest.fixture
def february_weeks():
    return [
        make_week("f05", date(2024, 1, 29), date(2024, 2, 4)),
        make_week("f06", date(2024, 2, 5), date(2024, 2, 11)),
        make_week("f07", date(2024, 2, 12), date(2024, 2, 18)),
        make_week("f08", date(2024, 2, 19), date(2024, 2, 25)),
        make_week("f09", date(2024, 2, 26), date(2024, 3, 3)),
    ]


class TestWeeklyForecastBuilder:
    def setup_method(self):
        self.builder = WeeklyForecastBuilder()

    def test_multipliers_per_scenario(self, march_weeks):
        result = self.builder.build(
            model_id="recModel",
            month_key=MONTH,
            weeks=march_weeks,
            stats=[make_stat("w10", net_revenue="1000")],
            settings=ForecastSettings(),
            fx_rate=RATE,
        )
        by_key = {(f.week_id, f.scenario): f for f in result.forecasts}
        assert len(result.forecasts) == len(march_weeks) * 3
        assert by_key[("w10", Scenario.EXPECTED)].projected_net_usd == Decimal("1000.00")
        conservative = by_key[("w10", Scenario.CONSERVATIVE)]
        assert conservative.projected_net_usd == Decimal("850.00")
        assert conservative.projected_gross_usd == Decimal("1062.50")
        assert conservative.projected_net_eur == Decimal("782.00")
        assert by_key[("w10", Scenario.AGGRESSIVE)].projected_net_usd == Decimal("1150.00")
        assert by_key[("w11", Scenario.EXPECTED)].projected_net_usd == Decimal("0.00")
        assert all(f.fx_rate_used == Decimal("0.920000") for f in result.forecasts)

    def test_locked_weeks_skipped(self, march_weeks, captured_logs):
        locked = weekly(march_weeks[1], net="5", is_locked=True, notes="agreed")
        result = self.builder.build(
            model_id="recModel",
            month_key=MONTH,
            weeks=march_weeks,
            stats=[make_stat("w10", net_revenue="1000")],
            existing=[locked],
            settings=ForecastSettings(),
            fx_rate=RATE,
        )
        assert result.skipped_locked == 1
        assert ("w10", Scenario.EXPECTED) not in {(f.week_id, f.scenario) for f in result.forecasts}
        assert any(r["message"] == "weekly_forecast_locked_skipped" for r in captured_logs())

    def test_invalid_rate(self, march_weeks):
        with pytest.raises(InvalidExchangeRateError):
            self.builder.build(
                model_id="recModel",
                month_key=MONTH,
                weeks=march_weeks,
                stats=[],
                settings=ForecastSettings(),
                fx_rate=Decimal("0"),
            )


class TestProjector:
    def setup_method(self):
        self.projector = ForecastProjector()
        self.settings = ForecastSettings()

    def test_prorates_straddling_week(self, march_weeks):
        forecasts = [weekly(week) for week in march_weeks]
        result = self.projector.project(
            model_id="recModel",
            month_key=MONTH,
            scenario=Scenario.EXPECTED,
            weeks=march_weeks,
            weekly_forecasts=forecasts,
            existing=None,
            settings=self.settings,
            fx_rate=RATE,
        )
        # w09 contributes 3/7 of its 700
        assert result.projected_net_usd == Decimal("3100.00")
        assert result.projected_gross_usd == Decimal("3875.00")
        assert result.projected_net_eur == Decimal("2852.00")
        assert result.fx_rate_used == Decimal("0.920000")
        assert result.source_type == ForecastSourceType.AUTO
        assert result.is_locked is False

    def test_other_scenarios_ignored(self, march_weeks):
        forecasts = [weekly(week, scenario=Scenario.AGGRESSIVE, net="999") for week in march_weeks]
        forecasts += [weekly(week) for week in march_weeks]
        result = self.projector.project(
            model_id="recModel",
            month_key=MONTH,
            scenario=Scenario.EXPECTED,
            weeks=march_weeks,
            weekly_forecasts=forecasts,
            existing=None,
            settings=self.settings,
            fx_rate=RATE,
        )
        assert result.projected_net_usd == Decimal("3100.00")

    def test_fallback_for_missing_week(self, march_weeks, february_weeks, captured_logs):
        forecasts = [weekly(week) for week in march_weeks[1:]]
        stats = [
            make_stat("f05", net_revenue="100"),
            make_stat("f06", net_revenue="400"),
            make_stat("f07", net_revenue="500"),
            make_stat("f08", net_revenue="600"),
            make_stat("f09", net_revenue="700"),
        ]
        result = self.projector.project(
            model_id="recModel",
            month_key=MONTH,
            scenario=Scenario.EXPECTED,
            weeks=march_weeks,
            weekly_forecasts=forecasts,
            recent_weeks=february_weeks,
            recent_stats=stats,
            existing=None,
            settings=self.settings,
            fx_rate=RATE,
        )
        # trailing average of the last four weeks is 550, w09 takes 3/7 of it
        assert result.projected_net_usd == Decimal("3035.71")
        assert result.source_type == ForecastSourceType.HYBRID
        assert any(r["message"] == "forecast_fallback_used" for r in captured_logs())

    def test_fallback_baseline_ignores_zero_weeks(self, february_weeks):
        stats = [make_stat("f08", net_revenue="0"), make_stat("f07", net_revenue="300")]
        baseline = self.projector.fallback_baseline(
            recent_weeks=february_weeks,
            recent_stats=stats,
            model_id="recModel",
            settings=self.settings,
        )
        assert baseline == Decimal("300.00")

    def test_fallback_baseline_empty(self):
        baseline = self.projector.fallback_baseline(
            recent_weeks=[], recent_stats=[], model_id="recModel", settings=self.settings
        )
        assert baseline == Decimal("0.00")

    def test_no_overlapping_weeks(self, captured_logs):
        result = self.projector.project(
            model_id="recModel",
            month_key=MONTH,
            scenario=Scenario.EXPECTED,
            weeks=[make_week("w01", date(2024, 1, 1), date(2024, 1, 7))],
            weekly_forecasts=[],
            existing=stored_forecast(notes="keep"),
            settings=self.settings,
            fx_rate=RATE,
        )
        assert result.projected_net_usd == Decimal("0.00")
        assert result.fx_rate_used == Decimal("0.920000")
        assert result.notes == "keep"
        assert any(r["message"] == "forecast_no_weeks" for r in captured_logs())

    def test_zero_projection_keeps_existing_stamp(self, march_weeks):
        forecasts = [weekly(week, net="0", eur="0") for week in march_weeks]
        result = self.projector.project(
            model_id="recModel",
            month_key=MONTH,
            scenario=Scenario.EXPECTED,
            weeks=march_weeks,
            weekly_forecasts=forecasts,
            existing=stored_forecast(fx_rate_used=Decimal("0.9")),
            settings=self.settings,
            fx_rate=RATE,
        )
        assert result.fx_rate_used == Decimal("0.900000")

    def test_locked_existing_raises(self, march_weeks):
        with pytest.raises(ForecastLockedError) as exc_info:
            self.projector.project(
                model_id="recModel",
                month_key=MONTH,
                scenario=Scenario.EXPECTED,
                weeks=march_weeks,
                weekly_forecasts=[],
                existing=stored_forecast(is_locked=True),
                settings=self.settings,
                fx_rate=RATE,
            )
        assert exc_info.value.code == "FORECAST_LOCKED"

    def test_deterministic(self, march_weeks):
        forecasts = [weekly(week, net="123.45") for week in march_weeks]
        kwargs = dict(
            model_id="recModel",
            month_key=MONTH,
            scenario=Scenario.EXPECTED,
            weeks=march_weeks,
            weekly_forecasts=forecasts,
            existing=None,
            settings=self.settings,
            fx_rate=RATE,
        )
        assert self.projector.project(**kwargs) == self.projector.project(**kwargs)


class TestManualEdits:
    def setup_method(self):
        self.projector = ForecastProjector()

    def test_notes_on_locked_forecast(self):
        updated = self.projector.apply_notes_update(stored_forecast(is_locked=True), "reviewed")
        assert updated.notes == "reviewed"
        assert updated.is_locked is True

    def test_manual_update_stamps_manual(self):
        updated = self.projector.apply_manual_update(
            stored_forecast(), projected_net_usd=Decimal("1500.555")
        )
        assert updated.projected_net_usd == Decimal("1500.56")
        assert updated.source_type == ForecastSourceType.MANUAL

    def test_manual_update_on_locked_raises(self):
        with pytest.raises(ForecastLockedError):
            self.projector.apply_manual_update(
                stored_forecast(is_locked=True), projected_net_usd=Decimal("1")
            )

    def test_manual_update_with_unlock(self):
        updated = self.projector.apply_manual_update(
            stored_forecast(is_locked=True), unlock=True, projected_net_usd=Decimal("1")
        )
        assert updated.is_locked is False
        assert updated.projected_net_usd == Decimal("1.00")

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            self.projector.apply_manual_update(stored_forecast(), margin=Decimal("1"))

    def test_non_numeric_rejected(self):
        with pytest.raises(ValidationError):
            self.projector.apply_manual_update(stored_forecast(), projected_net_usd="lots")

    def test_set_locked(self):
        assert self.projector.set_locked(stored_forecast(), True).is_locked is True
