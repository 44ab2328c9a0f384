"""
Tests for Decimal helpers and DualAmount.
"""

from decimal import Decimal

import pytest

from agency_kernel.domain.values import Currency, DualAmount, pct_of, round2, round_rate, to_decimal


class TestToDecimal:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("1,234.50", Decimal("1234.50")),
            (12, Decimal("12")),
            (0.1, Decimal("0.1")),
            (Decimal("3"), Decimal("3")),
        ],
    )
    def test_numeric(self, raw, expected):
        assert to_decimal(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "  ", "abc", True, "NaN", "Infinity", [1]])
    def test_non_numeric(self, raw):
        assert to_decimal(raw) is None


class TestRounding:
    def test_half_up(self):
        assert round2(Decimal("2.675")) == Decimal("2.68")
        assert round2(Decimal("-2.675")) == Decimal("-2.68")

    def test_non_numeric_is_zero(self):
        assert round2(None) == Decimal("0.00")

    def test_rate(self):
        assert round_rate(Decimal("0.9234565")) == Decimal("0.923457")

    def test_pct_of(self):
        assert pct_of(Decimal("1000"), Decimal("15")) == Decimal("150")


class TestDualAmount:
    def test_add_and_negate(self):
        total = DualAmount(Decimal("1"), Decimal("2")) + DualAmount(Decimal("3"), Decimal("4"))
        assert total == DualAmount(Decimal("4"), Decimal("6"))
        assert -total == DualAmount(Decimal("-4"), Decimal("-6"))

    def test_amount_in(self):
        amount = DualAmount(Decimal("100"), Decimal("92"))
        assert amount.amount_in(Currency.USD) == Decimal("100")
        assert amount.amount_in(Currency.EUR) == Decimal("92")

    def test_zero_and_rounded(self):
        assert DualAmount.zero() == DualAmount(Decimal("0.00"), Decimal("0.00"))
        assert DualAmount(Decimal("1.005"), Decimal("2.004")).rounded() == DualAmount(
            Decimal("1.01"), Decimal("2.00")
        )
