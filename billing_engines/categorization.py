"""
Module: billing_engines.categorization
Responsibility:
    Map free-text expense categories onto the fixed set of legal cost
    categories and provide the statutory Austrian VAT rates that go with
    them.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - The keyword table is evaluated top-to-bottom; the first rule with a
      matching keyword wins.  Order matters: "Heizungsreparatur" is
      heating, not maintenance.
    - Unmatched input maps to ``BETRIEBSKOSTEN``.
    - VAT rates are a legal constant (UStG §10) and are not configurable.

Audit relevance:
    The mapping decides which distribution key and which VAT rate applies
    to an expense.  Keeping it as one ordered table lets a reviewer check
    the legal classification in a single place.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum

from billing_kernel.domain.money import MoneyLike, round_money, to_decimal


class ExpenseCategory(str, Enum):
    BETRIEBSKOSTEN = "betriebskosten"
    HEIZUNG = "heizung"
    RUECKLAGE = "ruecklage"
    INSTANDHALTUNG = "instandhaltung"
    VERWALTUNG = "verwaltung"


CATEGORY_RULES: tuple[tuple[frozenset[str], ExpenseCategory], ...] = (
    (frozenset({"rücklage", "ruecklage", "rucklage", "reserve"}), ExpenseCategory.RUECKLAGE),
    (
        frozenset({"heizung", "fernwärme", "fernwaerme", "heating", "heizkosten", "warmwasser"}),
        ExpenseCategory.HEIZUNG,
    ),
    (
        frozenset({"instandhaltung", "reparatur", "sanierung", "maintenance", "repair"}),
        ExpenseCategory.INSTANDHALTUNG,
    ),
    (
        frozenset({"verwaltung", "hausverwaltung", "management", "administration"}),
        ExpenseCategory.VERWALTUNG,
    ),
)

VAT_RATES: dict[ExpenseCategory, Decimal] = {
    ExpenseCategory.BETRIEBSKOSTEN: Decimal("10"),
    ExpenseCategory.HEIZUNG: Decimal("20"),
    ExpenseCategory.INSTANDHALTUNG: Decimal("20"),
    ExpenseCategory.VERWALTUNG: Decimal("20"),
    ExpenseCategory.RUECKLAGE: Decimal("0"),
}

# Monthly invoice (Vorschreibung) line rates.
RENT_VAT_RESIDENTIAL = Decimal("10")
RENT_VAT_COMMERCIAL = Decimal("20")


def categorize_expense(raw_category: str | None) -> ExpenseCategory:
    """Case-insensitive substring match against ``CATEGORY_RULES``."""
    text = (raw_category or "").casefold()
    for keywords, category in CATEGORY_RULES:
        if any(keyword in text for keyword in keywords):
            return category
    return ExpenseCategory.BETRIEBSKOSTEN


def vat_rate_for(category: ExpenseCategory | str) -> Decimal:
    if not isinstance(category, ExpenseCategory):
        category = categorize_expense(category)
    return VAT_RATES[category]


def invoice_vat_rate(line_type: str, *, commercial: bool = False) -> Decimal:
    """
    VAT rate of a monthly invoice line.

    Rent is 10% for residential and 20% for commercial units; operating
    costs are 10%; heating is 20%.
    """
    match line_type.casefold():
        case "grundmiete" | "miete":
            return RENT_VAT_COMMERCIAL if commercial else RENT_VAT_RESIDENTIAL
        case "heizungskosten" | "heizung":
            return VAT_RATES[ExpenseCategory.HEIZUNG]
        case "betriebskosten" | "wasserkosten":
            return VAT_RATES[ExpenseCategory.BETRIEBSKOSTEN]
    return vat_rate_for(line_type)


def vat_from_gross(gross: MoneyLike, rate: MoneyLike) -> Decimal:
    """VAT contained in a gross amount: ``gross - gross / (1 + rate/100)``."""
    gross_amount = to_decimal(gross)
    divisor = Decimal("1") + to_decimal(rate) / Decimal("100")
    return round_money(gross_amount - gross_amount / divisor)
