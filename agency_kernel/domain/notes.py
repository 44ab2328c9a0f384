"""
Notes -- the structured side-channel carried in free-text ``notes`` fields.

Responsibility:
    The record store has no dedicated columns for a few facts, so they are
    encoded in ``notes`` with reserved markers:

    ========================  =====================================================
    Marker                    Meaning
    ========================  =====================================================
    ``PCT:<n>`` (first line)  chatter_sales: payout percentage for this month only
    ``FINE:`` (prefix)        adjustment/fine: the entry is a fine
    ``{"payout_type":         bonus/hourly: the entry is hourly pay
    "hourly", ...}``
    ``PAYOUT_JSON:{...}``     team member: compensation settings
    ========================  =====================================================

    Everything here parses once, at ingestion, into typed values
    (``NotesDirectives``). Engines never look at raw notes.

Architecture position:
    Kernel > Domain -- pure parsing, zero I/O.
"""

from __future__ import annotations

import json
import re
import dataclasses
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from agency_kernel.domain.records import BasisType, PayoutType, TeamMember
from agency_kernel.domain.values import to_decimal

PCT_DIRECTIVE_RE = re.compile(r"^PCT:(\d+(?:\.\d+)?)$", re.IGNORECASE)
FINE_PREFIX = "FINE:"
HOURLY_MARKER = "hourly"
PAYOUT_MARKER = "PAYOUT_JSON:"


@dataclass(frozen=True)
class NotesDirectives:
    payout_pct_override: Decimal | None = None
    is_fine: bool = False
    is_hourly: bool = False


def parse_pct_directive(notes: str | None) -> Decimal | None:
    """Percentage from a ``PCT:<n>`` first line, else None."""
    if not notes or not notes.strip():
        return None
    first = notes.strip().split("\n")[0].strip()
    match = PCT_DIRECTIVE_RE.match(first)
    return Decimal(match.group(1)) if match else None


def has_fine_prefix(notes: str | None) -> bool:
    return bool(notes) and notes.strip().upper().startswith(FINE_PREFIX)


def parse_hourly_payload(notes: str | None) -> dict[str, Any] | None:
    """The hourly JSON payload when ``notes`` is one, else None."""
    if not notes or not notes.strip():
        return None
    try:
        payload = json.loads(notes)
    except ValueError:
        return None
    if isinstance(payload, dict) and payload.get("payout_type") == HOURLY_MARKER:
        return payload
    return None


def parse_basis_notes(basis_type: BasisType, notes: str | None) -> NotesDirectives:
    """
    Parse the directives relevant to ``basis_type``.

    - chatter_sales: ``PCT:`` override
    - fine: always a fine
    - adjustment: a fine only with the ``FINE:`` prefix
    - bonus: hourly when the notes are the hourly JSON payload
    - hourly: always hourly
    """
    if basis_type == BasisType.CHATTER_SALES:
        return NotesDirectives(payout_pct_override=parse_pct_directive(notes))
    if basis_type == BasisType.FINE:
        return NotesDirectives(is_fine=True)
    if basis_type == BasisType.ADJUSTMENT:
        return NotesDirectives(is_fine=has_fine_prefix(notes))
    if basis_type == BasisType.HOURLY:
        return NotesDirectives(is_hourly=True)
    return NotesDirectives(is_hourly=parse_hourly_payload(notes) is not None)


def build_sales_notes(payout_pct: Decimal | None, text: str = "") -> str:
    text = (text or "").strip()
    if payout_pct is None:
        return text
    directive = f"PCT:{payout_pct.normalize():f}"
    return f"{directive}\n{text}" if text else directive


def build_fine_notes(reason: str) -> str:
    return f"{FINE_PREFIX} {(reason or '').strip()}".strip()


def build_hourly_notes(hours_worked: Decimal, hourly_rate_usd: Decimal, text: str = "") -> str:
    payload: dict[str, Any] = {
        "payout_type": HOURLY_MARKER,
        "hours_worked": str(hours_worked),
        "hourly_rate_usd": str(hourly_rate_usd),
    }
    if text and text.strip():
        payload["notes"] = text.strip()
    return json.dumps(payload, sort_keys=True)


# ---------------------------------------------------------------------------
# Team member compensation marker
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PayoutSettings:
    payout_type: PayoutType
    pct: Decimal | None = None
    flat: Decimal | None = None
    scope: tuple[str, ...] = ()


def _marker_span(notes: str) -> tuple[int, int] | None:
    """Start/end of ``PAYOUT_JSON:{...}`` including the balanced JSON object."""
    idx = notes.find(PAYOUT_MARKER)
    if idx == -1:
        return None
    start = idx + len(PAYOUT_MARKER)
    depth = 0
    for pos in range(start, len(notes)):
        char = notes[pos]
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return idx, pos + 1
    return idx, len(notes)


def parse_payout_settings(notes: str | None) -> PayoutSettings | None:
    """Compensation settings from the ``PAYOUT_JSON:`` marker, else None."""
    if not notes:
        return None
    span = _marker_span(notes)
    if span is None:
        return None
    raw = notes[span[0] + len(PAYOUT_MARKER):span[1]]
    try:
        data = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    scope = data.get("scope")
    return PayoutSettings(
        payout_type=PayoutType.parse(data.get("type")),
        pct=to_decimal(data.get("pct")),
        flat=to_decimal(data.get("flat")),
        scope=tuple(s for s in scope if isinstance(s, str)) if isinstance(scope, list) else (),
    )


def merge_payout_settings(notes: str | None, settings: PayoutSettings | None) -> str:
    """
    Replace (or remove, for None / ``none``) the ``PAYOUT_JSON:`` marker in
    ``notes`` while keeping the surrounding free text.
    """
    rest = notes or ""
    span = _marker_span(rest)
    while span is not None:
        rest = rest[:span[0]] + rest[span[1]:]
        span = _marker_span(rest)
    rest = rest.strip()
    if settings is None or settings.payout_type == PayoutType.NONE:
        return rest
    payload: dict[str, Any] = {"type": settings.payout_type.value}
    if settings.pct is not None:
        payload["pct"] = float(settings.pct)
    if settings.flat is not None:
        payload["flat"] = float(settings.flat)
    if settings.scope:
        payload["scope"] = list(settings.scope)
    line = PAYOUT_MARKER + json.dumps(payload, separators=(",", ":"))
    return f"{rest}\n{line}" if rest else line


def apply_payout_settings(member: TeamMember) -> TeamMember:
    """
    Fill a member's payout terms from the ``PAYOUT_JSON:`` marker in its
    notes.  Only members whose payout type column is unset (``none``) are
    touched; the columns always win.
    """
    if member.payout_type != PayoutType.NONE:
        return member
    settings = parse_payout_settings(member.notes)
    if settings is None or settings.payout_type in (PayoutType.NONE, PayoutType.AFFILIATE):
        return member
    return dataclasses.replace(
        member,
        payout_type=settings.payout_type,
        payout_percentage=settings.pct if settings.pct is not None else member.payout_percentage,
        payout_flat_fee=settings.flat if settings.flat is not None else member.payout_flat_fee,
    )
