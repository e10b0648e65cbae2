"""Tests for the idempotent invoice line upsert."""

from decimal import Decimal

import pytest

from billing_kernel.domain.dtos import InvoiceLine
from billing_kernel.exceptions import PeriodLockError
from billing_services.invoice_lines import InvoiceLineService
from tests.conftest import TEST_ACTOR_ID, TEST_ORG_ID


@pytest.fixture
def service(line_store, guard) -> InvoiceLineService:
    return InvoiceLineService(line_store, guard)


def _batch() -> list[InvoiceLine]:
    return [
        InvoiceLine("INV-2025-03-T1", "U1", "grundmiete", "Miete März", Decimal("650.00"), Decimal("10")),
        InvoiceLine("INV-2025-03-T1", "U1", "betriebskosten", "BK-Akonto", Decimal("120.00"), Decimal("10")),
        InvoiceLine("INV-2025-03-T1", "U1", "heizungskosten", "Heizung", Decimal("80.00"), Decimal("20")),
    ]


class TestUpsertLines:
    def test_first_run_inserts(self, service, line_store):
        result = service.upsert_lines(TEST_ORG_ID, 2025, 3, _batch(), TEST_ACTOR_ID)
        assert result.inserted == 3
        assert result.updated == 0
        assert len(line_store) == 3

    def test_rerun_inserts_nothing(self, service, line_store):
        service.upsert_lines(TEST_ORG_ID, 2025, 3, _batch(), TEST_ACTOR_ID)
        result = service.upsert_lines(TEST_ORG_ID, 2025, 3, _batch(), TEST_ACTOR_ID)
        assert result.inserted == 0
        assert result.updated == 3
        assert result.total == 3
        assert len(line_store) == 3

    def test_description_variants_address_same_line(self, service, line_store):
        service.upsert_lines(TEST_ORG_ID, 2025, 3, _batch(), TEST_ACTOR_ID)
        variant = InvoiceLine(
            "INV-2025-03-T1", "U1", "grundmiete", "  MIETE\u200b  Ma\u0308rz ", Decimal("700.00")
        )
        result = service.upsert_lines(TEST_ORG_ID, 2025, 3, [variant], TEST_ACTOR_ID)
        assert result.updated == 1
        assert len(line_store) == 3

        [rent] = [
            line for line in line_store.lines_for_invoice("INV-2025-03-T1")
            if line.line_type == "grundmiete"
        ]
        assert rent.amount == Decimal("700.00")
        assert rent.description == "Miete März"

    def test_conflict_replaces_amount_and_merges_meta(self, service, line_store):
        original = InvoiceLine(
            "INV-1", None, "mahngebuehr", "Mahnung", Decimal("5"), meta={"level": 2, "source": "run-1"}
        )
        service.upsert_lines(TEST_ORG_ID, 2025, 3, [original], TEST_ACTOR_ID)
        rerun = InvoiceLine(
            "INV-1", None, "mahngebuehr", "Mahnung", Decimal("10"), Decimal("20"), meta={"level": 3}
        )
        service.upsert_lines(TEST_ORG_ID, 2025, 3, [rerun], TEST_ACTOR_ID)

        stored = line_store.get_by_key(original.idempotency_key)
        assert stored.amount == Decimal("10.00")
        assert stored.tax_rate == Decimal("20")
        assert stored.meta == {"level": 3, "source": "run-1"}

    def test_locked_period_writes_nothing(self, service, guard, line_store):
        guard.lock_period(TEST_ORG_ID, 2025, 3, TEST_ACTOR_ID)
        with pytest.raises(PeriodLockError):
            service.upsert_lines(TEST_ORG_ID, 2025, 3, _batch(), TEST_ACTOR_ID)
        assert len(line_store) == 0

    def test_run_logged_with_context(self, service, captured_logs):
        service.upsert_lines(TEST_ORG_ID, 2025, 3, _batch(), TEST_ACTOR_ID, run_id="run-7")
        [record] = [r for r in captured_logs() if r["message"] == "invoice_lines_upserted"]
        assert record["inserted"] == 3
        assert record["organization_id"] == TEST_ORG_ID
        assert record["actor_id"] == TEST_ACTOR_ID
        assert record["run_id"] == "run-7"
