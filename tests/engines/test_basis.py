"""
Tests for basis entry normalization and aggregation.

Covers:
- Strict normalization per basis type (sales, bonus, fine, adjustment, hourly)
- Fine sign normalization (stored negative, aggregated as absolute)
- Lenient read-back of stored rows
- Dangling person links are skipped and counted, never raised
- PCT override conflicts resolve last-wins
- Role -> bucket mapping
"""

from decimal import Decimal

import pytest

from agency_engines.basis import (
    SKIP_UNKNOWN_PERSON,
    SKIP_UNRESOLVED_PERSON,
    BasisAggregator,
    BasisEntryNormalizer,
    bucket_for_role,
)
from agency_kernel.domain.records import BasisType, PayoutBucket, PayoutType
from agency_kernel.domain.references import ReferenceResolver
from agency_kernel.exceptions import (
    InvalidAmountError,
    MissingFieldError,
    PercentageOutOfRangeError,
    ValidationError,
)
from tests.builders import make_entry, make_member

RATE = Decimal("0.92")


@pytest.fixture
def members():
    return [
        make_member("recAlice", member_id=7),
        make_member("recBob", role="va", payout_type=PayoutType.NONE),
    ]


@pytest.fixture
def resolver(members):
    return ReferenceResolver(members)


class TestNormalizeSales:
    def setup_method(self):
        self.normalizer = BasisEntryNormalizer()

    def test_sales_with_override(self, resolver):
        entry = self.normalizer.normalize(
            {
                "id": "b1",
                "month_id": "recMonth",
                "person": ["recAlice"],
                "basis_type": "chatter_sales",
                "gross_usd": "1000",
                "payout_pct": "15",
                "notes": "weekend push",
            },
            resolver=resolver,
            fx_rate=RATE,
        )
        assert entry.person_id == "recAlice"
        assert entry.amount_usd == Decimal("1000.00")
        assert entry.amount_eur == Decimal("920.00")
        assert entry.notes == "PCT:15\nweekend push"
        assert entry.payout_pct_override == Decimal("15")

    def test_sales_requires_gross(self, resolver):
        with pytest.raises(MissingFieldError) as exc_info:
            self.normalizer.normalize(
                {"month_id": "recMonth", "person": "recAlice", "basis_type": "chatter_sales"},
                resolver=resolver,
                fx_rate=RATE,
            )
        assert exc_info.value.field == "gross_usd"

    @pytest.mark.parametrize("pct", ["-1", "100.5", "abc"])
    def test_pct_out_of_range(self, resolver, pct):
        with pytest.raises(PercentageOutOfRangeError):
            self.normalizer.normalize(
                {
                    "month_id": "recMonth",
                    "person": "recAlice",
                    "basis_type": "chatter_sales",
                    "gross_usd": "10",
                    "payout_pct": pct,
                },
                resolver=resolver,
                fx_rate=RATE,
            )

    def test_negative_gross_rejected(self, resolver):
        with pytest.raises(InvalidAmountError):
            self.normalizer.normalize(
                {"month_id": "recMonth", "person": "recAlice", "basis_type": "chatter_sales", "gross_usd": "-5"},
                resolver=resolver,
                fx_rate=RATE,
            )

    def test_unknown_basis_type(self, resolver):
        with pytest.raises(ValidationError):
            self.normalizer.normalize(
                {"month_id": "recMonth", "person": "recAlice", "basis_type": "tip"},
                resolver=resolver,
                fx_rate=RATE,
            )

    def test_legacy_numeric_person(self, resolver):
        entry = self.normalizer.normalize(
            {"month_id": "recMonth", "person": [7], "basis_type": "chatter_sales", "gross_usd": "10"},
            resolver=resolver,
            fx_rate=RATE,
        )
        assert entry.person_id == "recAlice"


class TestNormalizeFinesAndBonuses:
    def setup_method(self):
        self.normalizer = BasisEntryNormalizer()

    def test_fine_stored_negative(self, resolver):
        entry = self.normalizer.normalize(
            {
                "month_id": "recMonth",
                "person": "recAlice",
                "basis_type": "fine",
                "amount": "50",
                "reason": "late shift",
            },
            resolver=resolver,
            fx_rate=RATE,
        )
        assert entry.amount_eur == Decimal("-50.00")
        assert entry.amount_usd < 0
        assert entry.is_fine is True
        assert entry.notes == "FINE: late shift"

    def test_fine_requires_reason(self, resolver):
        with pytest.raises(MissingFieldError):
            self.normalizer.normalize(
                {"month_id": "recMonth", "person": "recAlice", "basis_type": "fine", "amount": "50"},
                resolver=resolver,
                fx_rate=RATE,
            )

    def test_bonus(self, resolver):
        entry = self.normalizer.normalize(
            {"month_id": "recMonth", "person": "recAlice", "basis_type": "bonus", "amount_eur": "92", "reason": "top seller"},
            resolver=resolver,
            fx_rate=RATE,
        )
        assert entry.amount_eur == Decimal("92.00")
        assert entry.amount_usd == Decimal("100.00")
        assert entry.is_fine is False

    def test_bonus_requires_reason_or_notes(self, resolver):
        with pytest.raises(MissingFieldError):
            self.normalizer.normalize(
                {"month_id": "recMonth", "person": "recAlice", "basis_type": "bonus", "amount": "10"},
                resolver=resolver,
                fx_rate=RATE,
            )

    def test_adjustment_with_fine_prefix_is_fine(self, resolver):
        entry = self.normalizer.normalize(
            {"month_id": "recMonth", "person": "recAlice", "basis_type": "adjustment", "amount_usd": "30", "reason": "FINE: broke rules"},
            resolver=resolver,
            fx_rate=RATE,
        )
        assert entry.is_fine is True
        assert entry.amount_usd == Decimal("-30.00")

    def test_hourly_from_hours_and_rate(self, resolver):
        entry = self.normalizer.normalize(
            {"month_id": "recMonth", "person": "recAlice", "basis_type": "hourly", "hours_worked": "10", "hourly_rate_usd": "12.5"},
            resolver=resolver,
            fx_rate=RATE,
        )
        assert entry.is_hourly is True
        assert entry.amount_usd == Decimal("125.00")
        assert '"payout_type": "hourly"' in entry.notes

    def test_hourly_requires_hours_or_amount(self, resolver):
        with pytest.raises(MissingFieldError):
            self.normalizer.normalize(
                {"month_id": "recMonth", "person": "recAlice", "basis_type": "hourly"},
                resolver=resolver,
                fx_rate=RATE,
            )


class TestFromStored:
    def setup_method(self):
        self.normalizer = BasisEntryNormalizer()

    def test_stored_fine_sign_normalized(self, resolver):
        entry = self.normalizer.from_stored(
            {"id": "b9", "month_id": "recMonth", "person": ["recAlice"], "basis_type": "fine", "amount_eur": 50},
            resolver=resolver,
            fx_rate=RATE,
        )
        assert entry.amount_eur == Decimal("-50.00")
        assert entry.is_fine is True

    def test_unknown_type_returns_none(self, resolver):
        assert self.normalizer.from_stored(
            {"id": "b9", "basis_type": "mystery"}, resolver=resolver, fx_rate=RATE
        ) is None

    def test_dangling_person_resolves_to_none(self, resolver):
        entry = self.normalizer.from_stored(
            {"id": "b9", "person": ["recGhost"], "basis_type": "bonus", "amount_eur": 5},
            resolver=resolver,
            fx_rate=RATE,
        )
        assert entry.person_id is None


class TestAggregate:
    """Per-person totals are a pure fold over the input."""

    def setup_method(self):
        self.aggregator = BasisAggregator()

    def test_totals_by_kind(self, members):
        entries = [
            make_entry("e1", "recAlice", usd="1000", eur="920"),
            make_entry("e2", "recAlice", BasisType.BONUS, usd="100", eur="92"),
            make_entry("e3", "recAlice", BasisType.FINE, usd="-50", eur="-46", is_fine=True),
            make_entry("e4", "recAlice", BasisType.HOURLY, usd="125", eur="115", is_hourly=True),
        ]
        summary = self.aggregator.aggregate(month_id="recMonth", entries=entries, members=members)
        totals = summary.for_person("recAlice")
        assert totals.sales_usd == Decimal("1000")
        assert totals.bonus_usd == Decimal("100")
        assert totals.fine_usd == Decimal("50")
        assert totals.fine_eur == Decimal("46")
        assert totals.hourly_usd == Decimal("125")
        assert totals.entry_count == 4

    def test_dangling_references_are_skipped(self, members, captured_logs):
        entries = [
            make_entry("e1", None, usd="10"),
            make_entry("e2", "recGhost", usd="10"),
            make_entry("e3", "recAlice", usd="10"),
        ]
        summary = self.aggregator.aggregate(month_id="recMonth", entries=entries, members=members)
        assert summary.skipped == {SKIP_UNRESOLVED_PERSON: 1, SKIP_UNKNOWN_PERSON: 1}
        assert summary.dead_letter == ("e1", "e2")
        assert summary.for_person("recAlice").sales_usd == Decimal("10")
        messages = [r["message"] for r in captured_logs()]
        assert messages.count("basis_entry_skipped") == 2
        assert "basis_entries_dead_lettered" in messages

    def test_conflicting_override_last_wins(self, members, captured_logs):
        entries = [
            make_entry("e1", "recAlice", usd="100", payout_pct_override=Decimal("10")),
            make_entry("e2", "recAlice", usd="100", payout_pct_override=Decimal("20")),
        ]
        summary = self.aggregator.aggregate(month_id="recMonth", entries=entries, members=members)
        assert summary.for_person("recAlice").payout_pct_override == Decimal("20")
        assert any(r["message"] == "payout_pct_override_conflict" for r in captured_logs())

    def test_unknown_person_gets_empty_totals(self, members):
        summary = self.aggregator.aggregate(month_id="recMonth", entries=[], members=members)
        assert summary.for_person("recBob").sales_usd == Decimal("0")

    def test_identical_input_identical_output(self, members):
        entries = [make_entry(f"e{i}", "recAlice", usd=str(i)) for i in range(5)]
        first = self.aggregator.aggregate(month_id="recMonth", entries=entries, members=members)
        second = self.aggregator.aggregate(month_id="recMonth", entries=entries, members=members)
        assert first == second


class TestBuckets:
    @pytest.mark.parametrize(
        "role, department, bucket",
        [
            ("chatter", "", PayoutBucket.CHATTER),
            ("Chatting_Manager", "", PayoutBucket.MANAGER),
            ("va", "", PayoutBucket.VA),
            ("affiliator", "", PayoutBucket.AFFILIATE),
            ("other", "affiliate", PayoutBucket.AFFILIATE),
            ("", "production", PayoutBucket.MANAGER),
            ("model", "", PayoutBucket.MODEL),
            ("", "", PayoutBucket.MODEL),
        ],
    )
    def test_bucket_for_role(self, role, department, bucket):
        assert bucket_for_role(role, department) == bucket

    def test_group_by_bucket(self, members):
        grouped = BasisAggregator().group_by_bucket(members)
        assert [m.id for m in grouped[PayoutBucket.CHATTER]] == ["recAlice"]
        assert [m.id for m in grouped[PayoutBucket.VA]] == ["recBob"]
        assert list(grouped) == list(PayoutBucket)
