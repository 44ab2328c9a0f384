"""
References -- resolving person/model links to canonical ids.

Responsibility:
    Stored links arrive as one-element arrays of record ids, as bare record
    ids, or (for legacy rows) as a numeric ``member_id``. They are parsed
    into a tagged union ``Reference = LinkedId | LegacyNumeric`` and resolved
    through an explicit lookup table to one canonical record id before any
    engine sees them.

Architecture position:
    Kernel > Domain -- data-model boundary. Engines only ever receive the
    resolved ``str | None`` id, never a Reference.

Failure modes:
    - Unparseable or unknown references resolve to None; callers skip and
      count them rather than raise.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from agency_kernel.domain.records import TeamMember
from agency_kernel.logging_config import get_logger

logger = get_logger("domain.references")


@dataclass(frozen=True, slots=True)
class LinkedId:
    """A link to a record by its record id."""

    value: str


@dataclass(frozen=True, slots=True)
class LegacyNumeric:
    """A legacy link by numeric ``member_id``."""

    value: int


Reference = LinkedId | LegacyNumeric


def parse_reference(raw: object) -> Reference | None:
    """
    Parse a stored link field into a Reference.

    Accepts ``["rec123"]``, ``"rec123"``, ``[42]``, ``42`` and ``"42"``.
    Empty arrays, empty strings and None yield None.
    """
    if isinstance(raw, (list, tuple)):
        if not raw:
            return None
        raw = raw[0]
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return LegacyNumeric(raw)
    if isinstance(raw, float):
        return LegacyNumeric(int(raw)) if raw.is_integer() else None
    text = str(raw).strip()
    if not text:
        return None
    if text.lstrip("-").isdigit():
        return LegacyNumeric(int(text))
    return LinkedId(text)


@dataclass(frozen=True)
class ResolvedName:
    display_name: str
    row_key: str


class ReferenceResolver:
    """
    Lookup table from references to canonical team member ids.

    Contract:
        Built once per computation from the team member rows in scope.
        ``resolve`` is a pure lookup with no fallbacks beyond the two
        documented reference forms.
    """

    UNASSIGNED = "Unassigned"

    def __init__(self, members: Iterable[TeamMember]):
        self._by_id: dict[str, TeamMember] = {}
        self._by_member_id: dict[int, TeamMember] = {}
        for member in members:
            self._by_id[member.id] = member
            if member.member_id is not None:
                self._by_member_id[member.member_id] = member

    def __contains__(self, person_id: object) -> bool:
        return person_id in self._by_id

    @property
    def known_ids(self) -> frozenset[str]:
        return frozenset(self._by_id)

    def get(self, person_id: str) -> TeamMember | None:
        return self._by_id.get(person_id)

    def resolve(self, ref: Reference | None) -> str | None:
        """Canonical record id for ``ref``, or None when it does not resolve."""
        if isinstance(ref, LinkedId):
            return ref.value if ref.value in self._by_id else None
        if isinstance(ref, LegacyNumeric):
            member = self._by_member_id.get(ref.value)
            return member.id if member else None
        return None

    def resolve_raw(self, raw: object) -> str | None:
        return self.resolve(parse_reference(raw))

    def display_name(self, raw: object) -> ResolvedName:
        """
        Display name and stable aggregation row key for a stored link.

        Unknown links keep their raw value in the key so distinct dangling
        references do not collapse into one row.
        """
        ref = parse_reference(raw)
        if ref is None:
            return ResolvedName(self.UNASSIGNED, "_unassigned")
        if isinstance(ref, LinkedId):
            member = self._by_id.get(ref.value)
            if member:
                return ResolvedName(member.name.strip() or "(no name)", ref.value)
            logger.debug("linked_id_not_found", extra={"reference": ref.value})
            return ResolvedName(f"unassigned (id: {ref.value})", f"_unassigned_{ref.value}")
        member = self._by_member_id.get(ref.value)
        if member:
            return ResolvedName(member.name.strip() or "(no name)", f"_tm_{member.id}")
        logger.debug("member_id_not_found", extra={"member_id": ref.value})
        return ResolvedName(f"unassigned (id: {ref.value})", f"_unassigned_{ref.value}")
