"""Tests for the immutable value objects in billing_kernel.domain.dtos."""

from dataclasses import FrozenInstanceError
from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from billing_kernel.domain.clock import DeterministicClock
from billing_kernel.domain.dtos import (
    BookingPeriod,
    Expense,
    Invoice,
    InvoiceLine,
    InvoiceStatus,
    OccupancyPeriod,
    normalize_description,
)


class TestNormalizeDescription:
    def test_case_and_whitespace(self):
        assert normalize_description("  Betriebskosten   März ") == "betriebskosten märz"

    def test_zero_width_removed(self):
        assert normalize_description("Heiz\u200bung") == "heizung"

    def test_nfc_composition(self):
        decomposed = "Ma\u0308rz"
        assert normalize_description(decomposed) == normalize_description("März")

    def test_none(self):
        assert normalize_description(None) == ""


class TestOccupancyPeriod:
    def test_open_ended(self):
        period = OccupancyPeriod("t1", date(2025, 1, 1))
        assert period.move_out is None

    def test_move_in_after_move_out_rejected(self):
        with pytest.raises(ValueError, match="move_in"):
            OccupancyPeriod("t1", date(2025, 6, 1), date(2025, 5, 31))

    def test_same_day_allowed(self):
        OccupancyPeriod("t1", date(2025, 6, 1), date(2025, 6, 1))


class TestBookingPeriod:
    def test_month_range(self):
        with pytest.raises(ValueError):
            BookingPeriod("org", 2025, 13)

    def test_locked_requires_actor_and_timestamp(self):
        with pytest.raises(ValueError):
            BookingPeriod("org", 2025, 1, is_locked=True)

    def test_lock_and_unlock_transitions(self):
        at = DeterministicClock().now()
        locked = BookingPeriod("org", 2025, 1).locked("alice", at)
        assert locked.is_locked and locked.locked_by == "alice" and locked.locked_at == at
        reopened = locked.unlocked()
        assert not reopened.is_locked and reopened.locked_by is None

    def test_frozen(self):
        period = BookingPeriod("org", 2025, 1)
        with pytest.raises(FrozenInstanceError):
            period.is_locked = True  # type: ignore[misc]


class TestInvoice:
    def test_gesamtbetrag_sums_buckets(self):
        invoice = Invoice(
            "INV-1", "t1", 2025, 1,
            betriebskosten="150", heizungskosten="80", grundmiete="500", wasserkosten="20",
        )
        assert invoice.gesamtbetrag == Decimal("750.00")

    def test_status(self):
        assert Invoice("I", "t", 2025, 1, grundmiete=10).status is InvoiceStatus.OFFEN
        assert (
            Invoice("I", "t", 2025, 1, grundmiete=10, paid_amount=5).status
            is InvoiceStatus.TEILBEZAHLT
        )
        assert Invoice("I", "t", 2025, 1, paid_amount=5).status is InvoiceStatus.BEZAHLT

    def test_negative_bucket_rejected(self):
        with pytest.raises(ValueError, match="grundmiete"):
            Invoice("I", "t", 2025, 1, grundmiete="-1")

    def test_amounts_rounded(self):
        assert Invoice("I", "t", 2025, 1, betriebskosten="10.005").betriebskosten == Decimal("10.01")


class TestInvoiceLine:
    def test_idempotency_key_uses_normalized_description(self):
        a = InvoiceLine("INV-1", "U1", "betriebskosten", "Betriebskosten  Jänner", "10")
        b = InvoiceLine("INV-1", "U1", "betriebskosten", "betriebskosten jänner\u200b", "12")
        assert a.idempotency_key == b.idempotency_key

    def test_amount_rounded_and_tax_decimal(self):
        line = InvoiceLine("INV-1", None, "grundmiete", "Miete", 10.005, tax_rate=10)
        assert line.amount == Decimal("10.01")
        assert line.tax_rate == Decimal("10")

    def test_meta_not_part_of_equality(self):
        a = InvoiceLine("I", None, "x", "d", "1", meta={"a": 1})
        b = InvoiceLine("I", None, "x", "d", "1", meta={"b": 2})
        assert a == b


class TestExpense:
    def test_amount_rounded(self):
        assert Expense("E1", "Müllabfuhr", "99.999").amount == Decimal("100.00")


class TestClock:
    def test_deterministic_clock_advances(self):
        clock = DeterministicClock(datetime(2025, 1, 1, tzinfo=UTC))
        clock.advance(60)
        assert clock.now() == datetime(2025, 1, 1, 0, 1, tzinfo=UTC)
        assert clock.today() == date(2025, 1, 1)
