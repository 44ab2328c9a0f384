"""
agency_engines.tracer -- Engine invocation tracer emitting AGENCY_ENGINE_TRACE.

Responsibility:
    Provide a decorator (``@traced_engine``) that wraps pure engine
    invocations with one structured trace record: engine_name,
    engine_version, input_fingerprint (SHA-256 prefix of selected keyword
    arguments) and duration_ms.

Architecture position:
    Engines -- infrastructure support for the pure calculation layer.
    Emits a log record only; introduces no other I/O.

Invariants enforced:
    - Fingerprints are deterministic: Decimals, dates and enums render
      through stable strings, dict keys are sorted, dataclasses render
      field by field.
    - The decorator never mutates inputs or results.

Failure modes:
    - Fingerprint fields missing from the call's kwargs are recorded as
      "null".  Positional arguments are not fingerprinted.

Usage:
    from agency_engines.tracer import traced_engine

    @traced_engine("pnl", "1.0", fingerprint_fields=("row",))
    def derive(self, row, settings):
        ...
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import time
from collections.abc import Callable, Mapping
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from agency_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")

TRACE_TYPE = "AGENCY_ENGINE_TRACE"


def _canonicalize(value: Any) -> str:
    """Stable string form of ``value`` for fingerprinting."""
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return format(value.normalize(), "f") if value.is_finite() else str(value)
    if isinstance(value, (int, float, str)):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        fields = {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
        return type(value).__name__ + _canonicalize(fields)
    if isinstance(value, Mapping):
        items = sorted((str(k), v) for k, v in value.items())
        return "{" + ",".join(f"{k}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple, frozenset, set)):
        seq = sorted(value, key=str) if isinstance(value, (set, frozenset)) else value
        return "[" + ",".join(_canonicalize(v) for v in seq) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: dict[str, Any],
) -> str:
    """16-hex-char SHA-256 prefix over the canonical form of the named kwargs."""
    parts = [f"{name}={_canonicalize(kwargs.get(name))}" for name in fingerprint_fields]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Decorator that emits AGENCY_ENGINE_TRACE for pure engine invocations.

    Args:
        engine_name: Engine identifier (e.g., "compensation").
        engine_version: Engine version (e.g., "1.0").
        fingerprint_fields: Keyword argument names to include in the
            input fingerprint hash.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fp = compute_input_fingerprint(fingerprint_fields, kwargs) if fingerprint_fields else ""

            t0 = time.monotonic()
            result = func(*args, **kwargs)
            duration_ms = round((time.monotonic() - t0) * 1000, 2)

            _logger.info(
                TRACE_TYPE,
                extra={
                    "trace_type": TRACE_TYPE,
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fp,
                    "duration_ms": duration_ms,
                    "function": func.__qualname__,
                },
            )
            return result

        return wrapper

    return decorator
