"""
Unit tests for the money rounding primitive.

Verifies:
- Half-away-from-zero rounding, including negative amounts
- Float inputs are taken at their decimal representation
- Non-finite and garbage input degrade to 0.00
- Two-decimal rendering
"""

from decimal import Decimal

import pytest

from billing_kernel.domain.money import (
    ZERO,
    format_amount,
    round_money,
    sum_money,
    to_decimal,
)


class TestRoundMoney:
    """Tests for round_money."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("1.005", Decimal("1.01")),
            ("1.004", Decimal("1.00")),
            ("2.675", Decimal("2.68")),
            ("-0.005", Decimal("-0.01")),
            ("-1.005", Decimal("-1.01")),
            ("100", Decimal("100.00")),
        ],
    )
    def test_half_away_from_zero(self, raw, expected):
        assert round_money(Decimal(raw)) == expected

    def test_float_uses_decimal_representation(self):
        """1.005 as a float is 1.00499999... in binary; the repr is used."""
        assert round_money(1.005) == Decimal("1.01")

    def test_result_has_two_places(self):
        assert round_money(7).as_tuple().exponent == -2

    @pytest.mark.parametrize("raw", [None, float("nan"), float("inf"), "abc", "", Decimal("NaN")])
    def test_garbage_yields_zero(self, raw):
        assert round_money(raw) == ZERO

    def test_idempotent(self):
        once = round_money("12.345")
        assert round_money(once) == once


class TestHelpers:
    def test_to_decimal_keeps_precision(self):
        assert to_decimal("1.23456") == Decimal("1.23456")

    def test_to_decimal_bool(self):
        assert to_decimal(True) == Decimal(1)

    def test_sum_money_rounds_each_term(self):
        assert sum_money(["0.005", "0.005", "0.005"]) == Decimal("0.03")

    def test_sum_money_empty(self):
        assert sum_money([]) == ZERO

    def test_format_amount(self):
        assert format_amount("1234.5") == "1234.50"
        assert format_amount(None) == "0.00"
