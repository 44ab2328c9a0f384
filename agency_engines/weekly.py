"""
agency_engines.weekly -- Weekly model stat normalization and net derivation.

Responsibility:
    Validate a weekly actuals submission (gross XOR net), derive the
    counterpart through the platform fee, and resolve the net revenue of
    stored stats through an explicit, ordered list of named strategies.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Consumed by the forecast builder/projector and by ingestion.

Invariants enforced:
    - net = gross * (1 - fee); gross = net / (1 - fee).
    - Exactly one of gross/net is the source value of a submission.
    - Net derivation order: stored_net_revenue -> computed_net_usd ->
      gross_minus_platform_fee.  Stored and computed nets count only when
      positive; the first strategy yielding a value wins.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Callable, Mapping

from agency_kernel.domain.records import WeeklyModelStat
from agency_kernel.domain.values import ZERO, round2, to_decimal
from agency_kernel.exceptions import InvalidAmountError, MissingFieldError, ValidationError
from agency_kernel.logging_config import get_logger
from agency_engines.fx import FxConverter
from agency_engines.tracer import traced_engine

logger = get_logger("engines.weekly")

ONE = Decimal("1")


def net_from_gross(gross: Decimal, fee_pct: Decimal) -> Decimal:
    return gross * (ONE - fee_pct)


def gross_from_net(net: Decimal, fee_pct: Decimal) -> Decimal:
    """``net / (1 - fee)``; 0 for a zero net."""
    if net == ZERO:
        return ZERO
    return net / (ONE - fee_pct)


NetStrategy = Callable[[WeeklyModelStat, Decimal], "Decimal | None"]


def _positive(value: object) -> Decimal | None:
    dec = to_decimal(value)
    return dec if dec is not None and dec > ZERO else None


def _stored_net_revenue(stat: WeeklyModelStat, fee_pct: Decimal) -> Decimal | None:
    return _positive(stat.net_revenue)


def _computed_net_usd(stat: WeeklyModelStat, fee_pct: Decimal) -> Decimal | None:
    return _positive(stat.computed_net_usd)


def _gross_minus_platform_fee(stat: WeeklyModelStat, fee_pct: Decimal) -> Decimal | None:
    gross = to_decimal(stat.gross_revenue)
    if gross is None:
        gross = to_decimal(stat.computed_gross_usd)
    if gross is None:
        return None
    return net_from_gross(gross, fee_pct) if gross > ZERO else ZERO


NET_STRATEGIES: tuple[tuple[str, NetStrategy], ...] = (
    ("stored_net_revenue", _stored_net_revenue),
    ("computed_net_usd", _computed_net_usd),
    ("gross_minus_platform_fee", _gross_minus_platform_fee),
)


def derive_net_usd(stat: WeeklyModelStat, fee_pct: Decimal) -> tuple[Decimal | None, str | None]:
    """Net revenue of ``stat`` and the name of the strategy that produced it."""
    for name, strategy in NET_STRATEGIES:
        value = strategy(stat, fee_pct)
        if value is not None:
            return value, name
    return None, None


class WeeklyStatNormalizer:
    """
    Normalizes weekly model stat submissions.

    Contract:
        ``normalize`` takes ``{id, model_id, week_id, gross_revenue | net_revenue}``
        with exactly one revenue field set.

    Guarantees:
        - The returned stat has gross, net, amount_usd (= net) and
          amount_eur set, all rounded to cents.
    """

    def __init__(self, fx: FxConverter | None = None):
        self._fx = fx or FxConverter()

    @traced_engine("weekly_stat", "1.0", fingerprint_fields=("raw", "platform_fee_pct", "fx_rate"))
    def normalize(
        self,
        raw: Mapping[str, Any],
        *,
        platform_fee_pct: Decimal,
        fx_rate: Decimal,
    ) -> WeeklyModelStat:
        """Validate and complete one weekly stat.

        Raises:
            MissingFieldError: model_id or week_id absent.
            ValidationError: both or neither of gross/net supplied.
            InvalidAmountError: revenue is non-numeric or negative.
        """
        for key in ("model_id", "week_id"):
            if not str(raw.get(key) or "").strip():
                raise MissingFieldError(key, "weekly model stat")

        has_gross = raw.get("gross_revenue") not in (None, "")
        has_net = raw.get("net_revenue") not in (None, "")
        if has_gross == has_net:
            raise ValidationError("Provide exactly one of gross_revenue or net_revenue")

        key = "gross_revenue" if has_gross else "net_revenue"
        value = to_decimal(raw.get(key))
        if value is None or value < ZERO:
            raise InvalidAmountError(key, raw.get(key))

        if has_gross:
            gross, net = value, net_from_gross(value, platform_fee_pct)
        else:
            gross, net = gross_from_net(value, platform_fee_pct), value

        return WeeklyModelStat(
            id=str(raw.get("id") or ""),
            model_id=str(raw["model_id"]).strip(),
            week_id=str(raw["week_id"]).strip(),
            gross_revenue=round2(gross),
            net_revenue=round2(net),
            amount_usd=round2(net),
            amount_eur=self._fx.usd_to_eur(net, fx_rate),
        )
