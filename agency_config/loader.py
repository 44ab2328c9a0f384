"""
Configuration Loader (``agency_config.loader``).

Responsibility
--------------
Loads the packaged YAML defaults (and an optional override file) and
parses them into a frozen ``EngineSettings``.  Applies store-provided
settings rows.  Runtime callers go through
``agency_config.get_engine_settings()``; this module is its tooling.

Invariants enforced
-------------------
* Numeric values are converted to ``Decimal`` through ``str``; floats from
  YAML never reach the engines.
* Values of the wrong type raise ``ConfigurationError`` naming the key.
* ``compute_checksum`` is a deterministic SHA-256 over the effective
  settings.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Bad values -> ``ConfigurationError``.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Mapping

import yaml

from agency_config.schema import EngineSettings
from agency_kernel.domain.records import Scenario
from agency_kernel.domain.values import to_decimal
from agency_kernel.exceptions import ConfigurationError
from agency_kernel.logging_config import get_logger

logger = get_logger("config.loader")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

# Store setting names -> EngineSettings fields.
SETTINGS_ROW_FIELDS = {
    "of_fee_pct": "platform_fee_pct",
    "green_threshold": "margin_green_threshold",
    "yellow_threshold_low": "margin_yellow_threshold",
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively overlay ``override`` on ``base``; nested mappings merge key by key."""
    merged: dict[str, Any] = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _decimal(key: str, value: Any) -> Decimal:
    result = to_decimal(value)
    if result is None:
        raise ConfigurationError(key, value, "must be a number")
    return result


def _int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(key, value, "must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(key, value, "must be an integer") from None


def _text(key: str, value: Any) -> str:
    if not isinstance(value, str):
        raise ConfigurationError(key, value, "must be a string")
    return value


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, Mapping):
        raise ConfigurationError(name, section, "must be a mapping")
    return section


def settings_from_mapping(data: Mapping[str, Any], base: EngineSettings | None = None) -> EngineSettings:
    """
    Parse the YAML document shape into EngineSettings.

    Keys absent from ``data`` keep their value from ``base``.
    """
    base = base or EngineSettings()
    changes: dict[str, Any] = {}

    if "platform_fee_pct" in data:
        changes["platform_fee_pct"] = _decimal("platform_fee_pct", data["platform_fee_pct"])

    margin = _section(data, "margin")
    if "green_threshold" in margin:
        changes["margin_green_threshold"] = _decimal("margin.green_threshold", margin["green_threshold"])
    if "yellow_threshold" in margin:
        changes["margin_yellow_threshold"] = _decimal("margin.yellow_threshold", margin["yellow_threshold"])

    fx = _section(data, "fx")
    if "fallback_rate" in fx:
        changes["fx_fallback_rate"] = _decimal("fx.fallback_rate", fx["fallback_rate"])
    if "api_url" in fx:
        changes["fx_api_url"] = _text("fx.api_url", fx["api_url"])
    if "cache_ttl_seconds" in fx:
        changes["fx_cache_ttl_seconds"] = _int("fx.cache_ttl_seconds", fx["cache_ttl_seconds"])
    if "request_timeout_seconds" in fx:
        changes["fx_request_timeout_seconds"] = float(
            _decimal("fx.request_timeout_seconds", fx["request_timeout_seconds"])
        )

    forecast = _section(data, "forecast")
    if "trailing_weeks" in forecast:
        changes["forecast_trailing_weeks"] = _int("forecast.trailing_weeks", forecast["trailing_weeks"])
    if "recent_weeks_limit" in forecast:
        changes["recent_weeks_limit"] = _int("forecast.recent_weeks_limit", forecast["recent_weeks_limit"])
    multipliers = forecast.get("scenario_multipliers")
    if multipliers is not None:
        if not isinstance(multipliers, Mapping):
            raise ConfigurationError("forecast.scenario_multipliers", multipliers, "must be a mapping")
        parsed = dict(base.scenario_multipliers)
        for name, value in multipliers.items():
            try:
                scenario = Scenario(str(name))
            except ValueError:
                raise ConfigurationError(
                    f"forecast.scenario_multipliers.{name}", value, "unknown scenario"
                ) from None
            parsed[scenario] = _decimal(f"forecast.scenario_multipliers.{name}", value)
        changes["scenario_multipliers"] = parsed

    database = _section(data, "database")
    if "url" in database:
        changes["database_url"] = _text("database.url", database["url"])

    return dataclasses.replace(base, **changes)


def load_settings(path: Path | None = None) -> EngineSettings:
    """Packaged defaults, overlaid with the YAML file at ``path`` when given."""
    data = load_yaml_file(DEFAULTS_PATH)
    if path is not None:
        data = deep_merge(data, load_yaml_file(path))
    return settings_from_mapping(data)


def normalize_fee_pct(value: Decimal) -> Decimal:
    """A fee of 1 or more is a whole percent (20 -> 0.20)."""
    return value / Decimal("100") if value >= 1 else value


def settings_from_rows(rows: Iterable[Mapping[str, Any]], base: EngineSettings) -> EngineSettings:
    """
    Apply ``{setting_name, value}`` rows from the record store.

    Unknown names and non-numeric values are ignored with a warning.
    """
    changes: dict[str, Decimal] = {}
    for row in rows:
        name = str(row.get("setting_name") or "").strip()
        field_name = SETTINGS_ROW_FIELDS.get(name)
        if field_name is None:
            continue
        value = to_decimal(row.get("value"))
        if value is None:
            logger.warning("setting_row_ignored", extra={"setting_name": name, "reason": "non-numeric"})
            continue
        if name == "of_fee_pct":
            value = normalize_fee_pct(value)
        changes[field_name] = value
    return dataclasses.replace(base, **changes)


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
