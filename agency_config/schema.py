"""
EngineSettings schema.

The small numeric configuration the engines take as plain inputs: the
platform fee, margin banding cutoffs, FX fallback and feed settings, the
forecast windows and scenario multipliers, and the database URL for the
derived-row store.  All percentages are fractions (0.20 == 20%).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Mapping

from agency_kernel.domain.records import Scenario
from agency_kernel.exceptions import ConfigurationError

DEFAULT_FX_API_URL = "https://api.frankfurter.app/latest?from=USD&to=EUR"


def _default_multipliers() -> dict[Scenario, Decimal]:
    return {
        Scenario.EXPECTED: Decimal("1.0"),
        Scenario.CONSERVATIVE: Decimal("0.85"),
        Scenario.AGGRESSIVE: Decimal("1.15"),
    }


@dataclass(frozen=True)
class EngineSettings:
    """Effective engine configuration."""

    platform_fee_pct: Decimal = Decimal("0.20")
    margin_green_threshold: Decimal = Decimal("0.30")
    margin_yellow_threshold: Decimal = Decimal("0.15")
    fx_fallback_rate: Decimal = Decimal("0.92")
    fx_api_url: str = DEFAULT_FX_API_URL
    fx_cache_ttl_seconds: int = 600
    fx_request_timeout_seconds: float = 5.0
    forecast_trailing_weeks: int = 4
    recent_weeks_limit: int = 52
    scenario_multipliers: Mapping[Scenario, Decimal] = field(default_factory=_default_multipliers)
    database_url: str = "sqlite+pysqlite:///:memory:"

    def as_dict(self) -> dict[str, object]:
        """Plain representation used for checksums and logging."""
        return {
            "platform_fee_pct": str(self.platform_fee_pct),
            "margin_green_threshold": str(self.margin_green_threshold),
            "margin_yellow_threshold": str(self.margin_yellow_threshold),
            "fx_fallback_rate": str(self.fx_fallback_rate),
            "fx_api_url": self.fx_api_url,
            "fx_cache_ttl_seconds": self.fx_cache_ttl_seconds,
            "fx_request_timeout_seconds": self.fx_request_timeout_seconds,
            "forecast_trailing_weeks": self.forecast_trailing_weeks,
            "recent_weeks_limit": self.recent_weeks_limit,
            "scenario_multipliers": {
                scenario.value: str(value)
                for scenario, value in sorted(self.scenario_multipliers.items(), key=lambda kv: kv[0].value)
            },
            "database_url": self.database_url,
        }


def validate_settings(settings: EngineSettings) -> EngineSettings:
    """Return ``settings`` unchanged or raise ConfigurationError on the first violation."""
    fee = settings.platform_fee_pct
    if not (Decimal("0") <= fee < Decimal("1")):
        raise ConfigurationError("platform_fee_pct", fee, "must be a fraction in [0, 1)")
    if settings.margin_yellow_threshold > settings.margin_green_threshold:
        raise ConfigurationError(
            "margin_yellow_threshold",
            settings.margin_yellow_threshold,
            f"must not exceed margin_green_threshold ({settings.margin_green_threshold})",
        )
    if settings.fx_fallback_rate <= 0:
        raise ConfigurationError("fx_fallback_rate", settings.fx_fallback_rate, "must be positive")
    if settings.fx_cache_ttl_seconds < 0:
        raise ConfigurationError("fx_cache_ttl_seconds", settings.fx_cache_ttl_seconds, "must be >= 0")
    if settings.fx_request_timeout_seconds <= 0:
        raise ConfigurationError(
            "fx_request_timeout_seconds", settings.fx_request_timeout_seconds, "must be positive"
        )
    if settings.forecast_trailing_weeks < 1:
        raise ConfigurationError(
            "forecast_trailing_weeks", settings.forecast_trailing_weeks, "must be at least 1"
        )
    if settings.recent_weeks_limit < settings.forecast_trailing_weeks:
        raise ConfigurationError(
            "recent_weeks_limit",
            settings.recent_weeks_limit,
            "must be at least forecast_trailing_weeks",
        )
    for scenario in Scenario:
        value = settings.scenario_multipliers.get(scenario)
        if value is None or value < 0:
            raise ConfigurationError(
                f"scenario_multipliers.{scenario.value}", value, "must be a non-negative number"
            )
    if not settings.database_url.strip():
        raise ConfigurationError("database_url", settings.database_url, "must not be empty")
    return settings
