"""
agency_config -- single public entrypoint for engine configuration.

Responsibility:
    ``get_engine_settings()`` is the only place that reads configuration
    files or environment variables.  Engines receive plain settings
    objects built from its result (see ``agency_config.bridges``).

Invariants enforced:
    - Single entrypoint: environment overrides are read here and nowhere
      else.
    - Every returned EngineSettings has passed ``validate_settings``.
    - Invalid environment override values are ignored with a warning;
      the previous value is kept.

Failure modes:
    - ``FileNotFoundError`` / ``yaml.YAMLError`` for a bad override file.
    - ``ConfigurationError`` for out-of-range or inconsistent settings.

Audit relevance:
    Every successful call emits a ``config_loaded`` log entry carrying
    the SHA-256 checksum of the effective settings.
"""

from __future__ import annotations

import dataclasses
import os
from pathlib import Path
from typing import Any, Iterable, Mapping

from agency_config.loader import compute_checksum, load_settings, settings_from_rows
from agency_config.schema import EngineSettings, validate_settings
from agency_kernel.domain.values import to_decimal
from agency_kernel.logging_config import get_logger

_logger = get_logger("config")

ENV_CONFIG_FILE = "AGENCY_CONFIG_FILE"
ENV_FX_FALLBACK_RATE = "FX_FALLBACK_RATE"
ENV_FX_API_URL = "FX_API_URL"
ENV_DATABASE_URL = "DATABASE_URL"

__all__ = ["EngineSettings", "get_engine_settings"]


def _apply_environment(settings: EngineSettings, environ: Mapping[str, str]) -> EngineSettings:
    changes: dict[str, Any] = {}

    raw_rate = (environ.get(ENV_FX_FALLBACK_RATE) or "").strip()
    if raw_rate:
        rate = to_decimal(raw_rate)
        if rate is not None and rate > 0:
            changes["fx_fallback_rate"] = rate
        else:
            _logger.warning(
                "env_override_ignored",
                extra={"variable": ENV_FX_FALLBACK_RATE, "value": raw_rate, "reason": "not a positive number"},
            )

    api_url = (environ.get(ENV_FX_API_URL) or "").strip()
    if api_url:
        if api_url.startswith(("http://", "https://")):
            changes["fx_api_url"] = api_url
        else:
            _logger.warning(
                "env_override_ignored",
                extra={"variable": ENV_FX_API_URL, "value": api_url, "reason": "not an http(s) URL"},
            )

    database_url = (environ.get(ENV_DATABASE_URL) or "").strip()
    if database_url:
        changes["database_url"] = database_url

    return dataclasses.replace(settings, **changes) if changes else settings


def get_engine_settings(
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
    setting_rows: Iterable[Mapping[str, Any]] = (),
) -> EngineSettings:
    """The ONLY public configuration entrypoint.

    Resolution order, later wins: packaged ``defaults.yaml``; the YAML
    file at ``config_path`` (or ``$AGENCY_CONFIG_FILE``); environment
    overrides; store-provided ``setting_rows``.

    Args:
        config_path: Optional YAML override file.
        environ: Environment mapping; defaults to ``os.environ``.
        setting_rows: ``{setting_name, value}`` rows from the record store.

    Returns:
        Validated EngineSettings.

    Raises:
        ConfigurationError: If the effective settings are invalid.
    """
    env = os.environ if environ is None else environ
    path = config_path
    if path is None and (env.get(ENV_CONFIG_FILE) or "").strip():
        path = Path(env[ENV_CONFIG_FILE].strip())

    settings = load_settings(path)
    settings = _apply_environment(settings, env)
    settings = settings_from_rows(setting_rows, settings)
    validate_settings(settings)

    _logger.info(
        "config_loaded",
        extra={
            "checksum": compute_checksum(settings.as_dict()),
            "config_file": str(path) if path else None,
            "platform_fee_pct": str(settings.platform_fee_pct),
            "fx_fallback_rate": str(settings.fx_fallback_rate),
        },
    )
    return settings
