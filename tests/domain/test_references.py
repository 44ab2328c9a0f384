"""
Tests for reference parsing and resolution.

Covers:
- The two reference forms (record id, legacy numeric member_id)
- Dangling references resolve to None
- Display names keep distinct dangling references apart
"""

import pytest

from agency_kernel.domain.references import (
    LegacyNumeric,
    LinkedId,
    ReferenceResolver,
    parse_reference,
)
from tests.builders import make_member


class TestParseReference:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            (["rec123"], LinkedId("rec123")),
            ("rec123", LinkedId("rec123")),
            ([42], LegacyNumeric(42)),
            (42, LegacyNumeric(42)),
            ("42", LegacyNumeric(42)),
            (42.0, LegacyNumeric(42)),
            ([], None),
            ("", None),
            (None, None),
            (True, None),
        ],
    )
    def test_forms(self, raw, expected):
        assert parse_reference(raw) == expected


class TestResolver:
    def setup_method(self):
        self.resolver = ReferenceResolver(
            [make_member("recAlice", name="Alice", member_id=7), make_member("recBob", name="  ")]
        )

    def test_resolve_linked_id(self):
        assert self.resolver.resolve_raw(["recAlice"]) == "recAlice"

    def test_resolve_legacy_numeric(self):
        assert self.resolver.resolve_raw(7) == "recAlice"

    def test_dangling(self):
        assert self.resolver.resolve_raw(["recGhost"]) is None
        assert self.resolver.resolve_raw(99) is None

    def test_membership(self):
        assert "recBob" in self.resolver
        assert self.resolver.known_ids == frozenset({"recAlice", "recBob"})

    def test_display_names(self):
        assert self.resolver.display_name("recAlice").display_name == "Alice"
        assert self.resolver.display_name(7).row_key == "_tm_recAlice"
        assert self.resolver.display_name("recBob").display_name == "(no name)"
        assert self.resolver.display_name(None).row_key == "_unassigned"

    def test_dangling_display_names_stay_distinct(self):
        first = self.resolver.display_name("recGhost1")
        second = self.resolver.display_name("recGhost2")
        assert first.row_key != second.row_key
        assert first.display_name == "unassigned (id: recGhost1)"
