"""Tests for expense categorization and Austrian VAT rates."""

from decimal import Decimal

import pytest

from billing_engines.categorization import (
    ExpenseCategory,
    categorize_expense,
    invoice_vat_rate,
    vat_from_gross,
    vat_rate_for,
)


class TestCategorizeExpense:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("Rücklage 2025", ExpenseCategory.RUECKLAGE),
            ("RUECKLAGE", ExpenseCategory.RUECKLAGE),
            ("Fernwärme Wien", ExpenseCategory.HEIZUNG),
            ("Warmwasser", ExpenseCategory.HEIZUNG),
            ("Reparatur Lift", ExpenseCategory.INSTANDHALTUNG),
            ("Hausverwaltung", ExpenseCategory.VERWALTUNG),
            ("Müllabfuhr", ExpenseCategory.BETRIEBSKOSTEN),
            ("", ExpenseCategory.BETRIEBSKOSTEN),
            (None, ExpenseCategory.BETRIEBSKOSTEN),
        ],
    )
    def test_keyword_rules(self, raw, expected):
        assert categorize_expense(raw) is expected

    def test_reserve_wins_over_repair(self):
        """Rules are checked in order; reserve comes first."""
        assert categorize_expense("Rücklage für Reparatur") is ExpenseCategory.RUECKLAGE


class TestVatRates:
    def test_category_rates(self):
        assert vat_rate_for(ExpenseCategory.BETRIEBSKOSTEN) == Decimal("10")
        assert vat_rate_for(ExpenseCategory.HEIZUNG) == Decimal("20")
        assert vat_rate_for(ExpenseCategory.RUECKLAGE) == Decimal("0")

    def test_rate_from_raw_category(self):
        assert vat_rate_for("Heizkosten") == Decimal("20")

    def test_invoice_line_rates(self):
        assert invoice_vat_rate("grundmiete") == Decimal("10")
        assert invoice_vat_rate("grundmiete", commercial=True) == Decimal("20")
        assert invoice_vat_rate("heizungskosten") == Decimal("20")
        assert invoice_vat_rate("betriebskosten") == Decimal("10")
        assert invoice_vat_rate("wasserkosten") == Decimal("10")

    def test_vat_from_gross(self):
        assert vat_from_gross("110", "10") == Decimal("10.00")
        assert vat_from_gross("120", "20") == Decimal("20.00")
        assert vat_from_gross("100", "0") == Decimal("0.00")
