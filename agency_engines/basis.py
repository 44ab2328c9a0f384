"""
agency_engines.basis -- Basis entry normalization and per-person aggregation.

Responsibility:
    1. ``BasisEntryNormalizer`` validates a raw basis submission (or reads
       back a stored basis row), resolves its person link, parses the notes
       side-channel once, normalizes the fine sign and fills both currency
       legs.
    2. ``BasisAggregator`` reduces a month's normalized entries into one
       ``PersonBasisTotals`` per person and groups people into the five
       payout buckets.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Consumed by PayoutCalculator and by ingestion in the services layer.

Invariants enforced:
    - A fine (or an adjustment carrying the ``FINE:`` prefix) is stored
      with negative amounts and aggregated as a non-negative fine total.
    - Hourly pay is accumulated separately and never enters percentage
      math.
    - A person maps to exactly one bucket.
    - Aggregation is a pure fold over the input sequence: identical input
      produces identical output.

Failure modes:
    - ValidationError subclasses from ``normalize`` for missing or
      out-of-range required fields.
    - Entries whose person link does not resolve (or resolves to a person
      outside the supplied member set) are dropped, counted by reason in
      ``BasisSummary.skipped`` and listed in ``dead_letter``.  Never raised.

Usage:
    normalizer = BasisEntryNormalizer()
    entry = normalizer.normalize(raw, resolver=resolver, fx_rate=Decimal("0.92"))

    summary = BasisAggregator().aggregate(
        month_id="recMonth", entries=[entry], members=members,
    )
    summary.totals["recAlice"].sales_usd
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Mapping

from agency_kernel.domain.notes import (
    build_fine_notes,
    build_hourly_notes,
    build_sales_notes,
    parse_basis_notes,
)
from agency_kernel.domain.records import BasisEntry, BasisType, PayoutBucket, TeamMember
from agency_kernel.domain.references import ReferenceResolver
from agency_kernel.domain.values import HUNDRED, ZERO, to_decimal
from agency_kernel.exceptions import (
    InvalidAmountError,
    MissingFieldError,
    PercentageOutOfRangeError,
    ValidationError,
)
from agency_kernel.logging_config import get_logger
from agency_engines.fx import FxConverter
from agency_engines.tracer import traced_engine

logger = get_logger("engines.basis")


# ---------------------------------------------------------------------------
# Role bucketing
# ---------------------------------------------------------------------------

_ROLE_BUCKETS: dict[str, PayoutBucket] = {
    "chatter": PayoutBucket.CHATTER,
    "chatting_manager": PayoutBucket.MANAGER,
    "va_manager": PayoutBucket.MANAGER,
    "marketing_manager": PayoutBucket.MANAGER,
    "editor": PayoutBucket.MANAGER,
    "production": PayoutBucket.MANAGER,
    "va": PayoutBucket.VA,
    "model": PayoutBucket.MODEL,
    "affiliator": PayoutBucket.AFFILIATE,
    "other": PayoutBucket.MODEL,
}
_DEFAULT_BUCKET = PayoutBucket.MODEL


def bucket_for_role(role: str | None, department: str | None) -> PayoutBucket:
    """Payout bucket for a role/department pair (case-insensitive)."""
    r = (role or "").strip().lower()
    d = (department or "").strip().lower()
    if r == "chatter":
        return PayoutBucket.CHATTER
    if r == "va":
        return PayoutBucket.VA
    if r == "affiliator" or d == "affiliate":
        return PayoutBucket.AFFILIATE
    if r in _ROLE_BUCKETS:
        return _ROLE_BUCKETS[r]
    if d == "production":
        return PayoutBucket.MANAGER
    return _DEFAULT_BUCKET


def is_affiliator(member: TeamMember) -> bool:
    return bucket_for_role(member.role, member.department) == PayoutBucket.AFFILIATE


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def _text(raw: Mapping[str, Any], key: str) -> str:
    value = raw.get(key)
    return str(value).strip() if value is not None else ""


def _non_negative(raw: Mapping[str, Any], key: str) -> Decimal | None:
    """Decimal value of ``raw[key]``; None when absent; raises when invalid or negative."""
    if raw.get(key) is None or raw.get(key) == "":
        return None
    value = to_decimal(raw.get(key))
    if value is None or value < ZERO:
        raise InvalidAmountError(key, raw.get(key))
    return value


class BasisEntryNormalizer:
    """
    Turns raw basis input into a normalized ``BasisEntry``.

    Contract:
        ``normalize`` is the strict write path (user submissions).
        ``from_stored`` is the lenient read path (rows already in the
        store).  Both resolve the person link through the supplied
        ``ReferenceResolver`` and parse notes exactly once.

    Guarantees:
        - Both ``amount_usd`` and ``amount_eur`` are set on the result.
        - Fine amounts are negative.
    """

    def __init__(self, fx: FxConverter | None = None):
        self._fx = fx or FxConverter()

    @traced_engine("basis_normalize", "1.0", fingerprint_fields=("raw", "fx_rate"))
    def normalize(
        self,
        raw: Mapping[str, Any],
        *,
        resolver: ReferenceResolver,
        fx_rate: Decimal,
    ) -> BasisEntry:
        """Validate and normalize one submitted basis entry.

        Preconditions:
            ``raw`` carries ``month_id``, ``basis_type`` and a ``person``
            reference (one-element list, record id or legacy number).

        Raises:
            MissingFieldError: A field required for the basis type is absent.
            InvalidAmountError: An amount is non-numeric or negative.
            PercentageOutOfRangeError: ``payout_pct`` outside [0, 100].
            ValidationError: Unknown ``basis_type``.
            InvalidExchangeRateError: ``fx_rate`` is not positive.
        """
        rate = self._fx.require_rate(fx_rate)
        basis_type = self._basis_type(raw)
        month_id = _text(raw, "month_id")
        if not month_id:
            raise MissingFieldError("month_id", basis_type.value)

        usd: Decimal | None = None
        eur: Decimal | None = None
        notes = ""

        if basis_type == BasisType.CHATTER_SALES:
            gross = _non_negative(raw, "gross_usd")
            if gross is None:
                gross = _non_negative(raw, "amount_usd")
            if gross is None:
                raise MissingFieldError("gross_usd", basis_type.value)
            pct = self._payout_pct(raw)
            usd = gross
            notes = build_sales_notes(pct, _text(raw, "notes") or _text(raw, "reason"))

        elif basis_type in (BasisType.BONUS, BasisType.FINE):
            amount = _non_negative(raw, "amount_eur")
            if amount is None:
                amount = _non_negative(raw, "amount")
            if amount is None:
                raise MissingFieldError("amount_eur", basis_type.value)
            reason = _text(raw, "reason")
            if basis_type == BasisType.FINE:
                if not reason:
                    raise MissingFieldError("reason", basis_type.value)
                eur = -amount
                notes = build_fine_notes(reason)
            else:
                notes = reason or _text(raw, "notes")
                if not notes:
                    raise MissingFieldError("reason", basis_type.value)
                eur = amount

        elif basis_type == BasisType.ADJUSTMENT:
            usd = _non_negative(raw, "amount_usd")
            eur = _non_negative(raw, "amount_eur")
            if eur is None:
                eur = _non_negative(raw, "amount")
            if usd is None and eur is None:
                raise MissingFieldError("amount", basis_type.value)
            notes = _text(raw, "reason") or _text(raw, "notes")

        else:
            usd = self._hourly_amount(raw)
            hours = to_decimal(raw.get("hours_worked"))
            hourly_rate = to_decimal(raw.get("hourly_rate_usd"))
            notes = build_hourly_notes(
                hours if hours is not None else ZERO,
                hourly_rate if hourly_rate is not None else ZERO,
                _text(raw, "notes"),
            )

        directives = parse_basis_notes(basis_type, notes)
        if directives.is_fine:
            usd = -abs(usd) if usd is not None else None
            eur = -abs(eur) if eur is not None else None
        amounts = self._fx.reconcile(usd=usd, eur=eur, rate=rate)

        return BasisEntry(
            id=_text(raw, "id"),
            month_id=month_id,
            person_id=resolver.resolve_raw(raw.get("person")),
            basis_type=basis_type,
            amount_usd=amounts.usd,
            amount_eur=amounts.eur,
            notes=notes,
            payout_pct_override=directives.payout_pct_override,
            is_fine=directives.is_fine,
            is_hourly=directives.is_hourly,
        )

    def from_stored(
        self,
        row: Mapping[str, Any],
        *,
        resolver: ReferenceResolver,
        fx_rate: Decimal | None,
    ) -> BasisEntry | None:
        """Read back a stored basis row; None when its basis type is unknown."""
        try:
            basis_type = BasisType(_text(row, "basis_type"))
        except ValueError:
            logger.warning(
                "basis_type_unknown",
                extra={"entry_id": _text(row, "id"), "basis_type": _text(row, "basis_type")},
            )
            return None
        notes = _text(row, "notes")
        directives = parse_basis_notes(basis_type, notes)
        usd = to_decimal(row.get("amount_usd"))
        eur = to_decimal(row.get("amount_eur"))
        if usd is None and eur is None:
            eur = to_decimal(row.get("amount"))
        if directives.is_fine:
            usd = -abs(usd) if usd is not None else None
            eur = -abs(eur) if eur is not None else None
        amounts = self._fx.reconcile(usd=usd, eur=eur, rate=fx_rate)
        return BasisEntry(
            id=_text(row, "id"),
            month_id=_text(row, "month_id"),
            person_id=resolver.resolve_raw(row.get("person")),
            basis_type=basis_type,
            amount_usd=amounts.usd,
            amount_eur=amounts.eur,
            notes=notes,
            payout_pct_override=directives.payout_pct_override,
            is_fine=directives.is_fine,
            is_hourly=directives.is_hourly,
        )

    @staticmethod
    def _basis_type(raw: Mapping[str, Any]) -> BasisType:
        label = _text(raw, "basis_type")
        if not label:
            raise MissingFieldError("basis_type", "basis entry")
        try:
            return BasisType(label)
        except ValueError:
            allowed = ", ".join(t.value for t in BasisType)
            raise ValidationError(f"basis_type must be one of: {allowed} (got {label!r})") from None

    @staticmethod
    def _payout_pct(raw: Mapping[str, Any]) -> Decimal | None:
        if raw.get("payout_pct") is None or raw.get("payout_pct") == "":
            return None
        pct = to_decimal(raw.get("payout_pct"))
        if pct is None or pct < ZERO or pct > HUNDRED:
            raise PercentageOutOfRangeError("payout_pct", raw.get("payout_pct"))
        return pct

    @staticmethod
    def _hourly_amount(raw: Mapping[str, Any]) -> Decimal:
        hours = _non_negative(raw, "hours_worked")
        rate = _non_negative(raw, "hourly_rate_usd")
        if hours is not None and rate is not None:
            return hours * rate
        explicit = _non_negative(raw, "amount_usd")
        if explicit is None:
            explicit = _non_negative(raw, "amount")
        if explicit is None:
            raise MissingFieldError("hours_worked", "hourly")
        return explicit


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

SKIP_UNRESOLVED_PERSON = "unresolved_person"
SKIP_UNKNOWN_PERSON = "unknown_person"


@dataclass(frozen=True)
class PersonBasisTotals:
    """
    One person's month of basis entries, reduced.

    ``bonus_*`` includes non-fine adjustments (signed).  ``fine_*`` are
    absolute values.  ``hourly_*`` are kept apart from the percentage base.
    """

    person_id: str
    sales_usd: Decimal = ZERO
    bonus_usd: Decimal = ZERO
    bonus_eur: Decimal = ZERO
    fine_usd: Decimal = ZERO
    fine_eur: Decimal = ZERO
    hourly_usd: Decimal = ZERO
    hourly_eur: Decimal = ZERO
    payout_pct_override: Decimal | None = None
    entry_count: int = 0


@dataclass(frozen=True)
class BasisSummary:
    month_id: str
    totals: Mapping[str, PersonBasisTotals]
    skipped: Mapping[str, int] = field(default_factory=dict)
    dead_letter: tuple[str, ...] = ()

    def for_person(self, person_id: str) -> PersonBasisTotals:
        return self.totals.get(person_id) or PersonBasisTotals(person_id=person_id)


class _Accumulator:
    __slots__ = (
        "sales_usd", "bonus_usd", "bonus_eur", "fine_usd", "fine_eur",
        "hourly_usd", "hourly_eur", "override", "count",
    )

    def __init__(self) -> None:
        self.sales_usd = ZERO
        self.bonus_usd = ZERO
        self.bonus_eur = ZERO
        self.fine_usd = ZERO
        self.fine_eur = ZERO
        self.hourly_usd = ZERO
        self.hourly_eur = ZERO
        self.override: Decimal | None = None
        self.count = 0


class BasisAggregator:
    """
    Reduces basis entries to per-person totals.

    Contract:
        ``entries`` are already normalized (both currency legs present,
        notes parsed).  ``members`` is the set of people the month is
        computed for; entries pointing elsewhere are dead-lettered.

    Guarantees:
        - Output depends only on the input sequence.
        - Conflicting ``PCT:`` overrides for one person resolve to the
          last entry in input order and log ``payout_pct_override_conflict``.
    """

    @traced_engine("basis_aggregate", "1.0", fingerprint_fields=("month_id", "entries"))
    def aggregate(
        self,
        *,
        month_id: str,
        entries: Iterable[BasisEntry],
        members: Iterable[TeamMember],
    ) -> BasisSummary:
        known = {member.id for member in members}
        accumulators: dict[str, _Accumulator] = {}
        skipped: Counter[str] = Counter()
        dead_letter: list[str] = []

        for entry in entries:
            if entry.person_id is None:
                reason = SKIP_UNRESOLVED_PERSON
            elif entry.person_id not in known:
                reason = SKIP_UNKNOWN_PERSON
            else:
                reason = None
            if reason is not None:
                skipped[reason] += 1
                dead_letter.append(entry.id)
                logger.info(
                    "basis_entry_skipped",
                    extra={
                        "entry_id": entry.id,
                        "person_id": entry.person_id,
                        "reason": reason,
                        "month_id": month_id,
                    },
                )
                continue

            acc = accumulators.setdefault(entry.person_id, _Accumulator())
            acc.count += 1
            usd = entry.amount_usd if entry.amount_usd is not None else ZERO
            eur = entry.amount_eur if entry.amount_eur is not None else ZERO

            if entry.is_hourly:
                acc.hourly_usd += usd
                acc.hourly_eur += eur
            elif entry.is_fine:
                acc.fine_usd += abs(usd)
                acc.fine_eur += abs(eur)
            elif entry.basis_type == BasisType.CHATTER_SALES:
                acc.sales_usd += usd
                if entry.payout_pct_override is not None:
                    if acc.override is not None and acc.override != entry.payout_pct_override:
                        logger.warning(
                            "payout_pct_override_conflict",
                            extra={
                                "person_id": entry.person_id,
                                "previous_pct": str(acc.override),
                                "winning_pct": str(entry.payout_pct_override),
                                "entry_id": entry.id,
                            },
                        )
                    acc.override = entry.payout_pct_override
            else:
                acc.bonus_usd += usd
                acc.bonus_eur += eur

        totals = {
            person_id: PersonBasisTotals(
                person_id=person_id,
                sales_usd=acc.sales_usd,
                bonus_usd=acc.bonus_usd,
                bonus_eur=acc.bonus_eur,
                fine_usd=acc.fine_usd,
                fine_eur=acc.fine_eur,
                hourly_usd=acc.hourly_usd,
                hourly_eur=acc.hourly_eur,
                payout_pct_override=acc.override,
                entry_count=acc.count,
            )
            for person_id, acc in accumulators.items()
        }

        if skipped:
            logger.warning(
                "basis_entries_dead_lettered",
                extra={"month_id": month_id, "skipped": dict(skipped)},
            )

        return BasisSummary(
            month_id=month_id,
            totals=totals,
            skipped=dict(skipped),
            dead_letter=tuple(dead_letter),
        )

    def group_by_bucket(self, members: Iterable[TeamMember]) -> dict[PayoutBucket, tuple[TeamMember, ...]]:
        """Members per payout bucket, in bucket order; each member appears once."""
        grouped: dict[PayoutBucket, list[TeamMember]] = {bucket: [] for bucket in PayoutBucket}
        for member in members:
            grouped[bucket_for_role(member.role, member.department)].append(member)
        return {bucket: tuple(items) for bucket, items in grouped.items()}
