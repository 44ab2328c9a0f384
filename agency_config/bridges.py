"""
Bridges: translate EngineSettings into engine inputs.

The engines never import ``agency_config``; services call these helpers
to hand each engine its plain settings object.
"""

from __future__ import annotations

from agency_config.schema import EngineSettings
from agency_engines.forecast import ForecastSettings
from agency_engines.pnl import PnlSettings


def pnl_settings(settings: EngineSettings) -> PnlSettings:
    return PnlSettings(
        platform_fee_pct=settings.platform_fee_pct,
        green_threshold=settings.margin_green_threshold,
        yellow_threshold=settings.margin_yellow_threshold,
    )


def forecast_settings(settings: EngineSettings) -> ForecastSettings:
    return ForecastSettings(
        platform_fee_pct=settings.platform_fee_pct,
        trailing_weeks=settings.forecast_trailing_weeks,
        recent_weeks_limit=settings.recent_weeks_limit,
        scenario_multipliers=dict(settings.scenario_multipliers),
    )
