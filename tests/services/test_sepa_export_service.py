"""Tests for SepaExportService and the scripts/sepa_export.py command line."""

import importlib.util
import json
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from billing_engines.sepa import SepaAccount, SepaCreditor, SepaTransfer, parse_group_header
from billing_kernel.domain.dtos import Invoice
from billing_kernel.exceptions import SepaValidationError
from billing_services.sepa_export import (
    NO_COLLECTABLE_INVOICES,
    SepaExportService,
    SepaMandate,
)

SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "sepa_export.py"

CREDITOR = SepaCreditor(
    name="Hausverwaltung Muster GmbH",
    iban="AT611904300234573201",
    bic="BKAUATWW",
    creditor_id="AT12ZZZ00000000001",
)


def _load_script():
    spec = importlib.util.spec_from_file_location("sepa_export_cli", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def service(settings, clock) -> SepaExportService:
    return SepaExportService(settings, clock)


@pytest.fixture
def mandates() -> dict[str, SepaMandate]:
    return {
        "tenant-0001": SepaMandate(
            "tenant-0001", "Anna Berger", "DE89370400440532013000", "M-1", date(2023, 5, 2)
        ),
        "tenant-0002": SepaMandate(
            "tenant-0002", "Karl Huber", "", "M-2", date(2023, 5, 2)
        ),
    }


def _invoice(tenant_id: str, invoice_id: str, rent: str = "650") -> Invoice:
    return Invoice(invoice_id, tenant_id, 2025, 3, betriebskosten="120", grundmiete=rent)


class TestMessageId:
    def test_format(self, service):
        msg_id = service.new_message_id()
        assert msg_id.startswith("MSG-20250315093000-")
        assert len(msg_id) <= 35
        assert msg_id == msg_id.upper()

    def test_unique(self, service):
        assert service.new_message_id() != service.new_message_id()


class TestDebtorsForInvoices:
    def test_skips_missing_mandate_and_iban(self, service, mandates, captured_logs):
        invoices = [
            _invoice("tenant-0001", "INV-1"),
            _invoice("tenant-0002", "INV-2"),
            _invoice("tenant-0003", "INV-3"),
        ]
        debtors = service.debtors_for_invoices(invoices, mandates)
        assert [d.debtor_id for d in debtors] == ["tenant-0001"]
        skipped = [r for r in captured_logs() if r["message"] == "sepa_invoice_skipped"]
        assert {r["invoice_id"] for r in skipped} == {"INV-2", "INV-3"}

    def test_debtor_fields(self, service, mandates):
        [debtor] = service.debtors_for_invoices([_invoice("tenant-0001", "INV-1")], mandates)
        assert debtor.amount == Decimal("770.00")
        assert debtor.remittance_info == "Miete 3/2025"
        assert debtor.end_to_end_id == "E2E-202503-TENANT-0"
        assert debtor.bic == "NOTPROVIDED"

    def test_paid_invoice_skipped(self, service, mandates):
        paid = Invoice("INV-9", "tenant-0001", 2025, 2, paid_amount="500")
        assert service.debtors_for_invoices([paid], mandates) == []


class TestExports:
    def test_direct_debit_uses_clock_and_settings(self, service):
        debtors = [
            service.debtors_for_invoices(
                [_invoice("tenant-0001", "INV-1")],
                {"tenant-0001": SepaMandate("tenant-0001", "Anna", "AT611904300234573201", "M-1", date(2023, 1, 1), "BKAUATWW")},
            )[0]
        ]
        export = service.export_direct_debits(CREDITOR, debtors, message_id="MSG-FIX")
        assert export.message_id == "MSG-FIX"
        assert export.number_of_transactions == 1
        assert export.control_sum == Decimal("770.00")
        assert "<ReqdColltnDt>2025-03-15</ReqdColltnDt>" in export.xml
        assert "<SeqTp>RCUR</SeqTp>" in export.xml
        assert parse_group_header(export.xml).control_sum == Decimal("770.00")

    def test_export_invoices_nothing_collectable(self, service, mandates):
        with pytest.raises(SepaValidationError) as exc_info:
            service.export_invoices(CREDITOR, [_invoice("tenant-0002", "INV-2")], mandates)
        assert exc_info.value.errors == [NO_COLLECTABLE_INVOICES]

    def test_export_invoices(self, service, mandates, captured_logs):
        export = service.export_invoices(
            CREDITOR,
            [_invoice("tenant-0001", "INV-1"), _invoice("tenant-0002", "INV-2")],
            mandates,
            date(2025, 4, 1),
        )
        assert export.number_of_transactions == 1
        assert "<ReqdColltnDt>2025-04-01</ReqdColltnDt>" in export.xml
        assert any(r["message"] == "sepa_direct_debit_exported" for r in captured_logs())

    def test_credit_transfer(self, service):
        account = SepaAccount("Hausverwaltung Muster GmbH", "AT611904300234573201", "BKAUATWW")
        transfer = SepaTransfer(
            "Anna Berger", "DE89370400440532013000", None, Decimal("85.40"), "Guthaben BK 2024", "BKA-2024-T1"
        )
        export = service.export_credit_transfers(account, [transfer], message_id="TRF-1")
        assert export.control_sum == Decimal("85.40")
        assert "<ReqdExctnDt>2025-03-15</ReqdExctnDt>" in export.xml


class TestCommandLine:
    @pytest.fixture
    def cli(self):
        return _load_script()

    def _write(self, tmp_path, payload) -> Path:
        path = tmp_path / "batch.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    def test_direct_debit_to_file(self, cli, tmp_path):
        source = self._write(
            tmp_path,
            {
                "creditor": {
                    "name": CREDITOR.name,
                    "iban": CREDITOR.iban,
                    "bic": CREDITOR.bic,
                    "creditor_id": CREDITOR.creditor_id,
                },
                "collection_date": "2025-03-05",
                "debtors": [
                    {
                        "debtor_id": "T1",
                        "name": "Anna Berger",
                        "iban": "DE89370400440532013000",
                        "mandate_id": "M-1",
                        "mandate_date": "2024-01-15",
                        "amount": "850.00",
                        "remittance_info": "Miete 03/2025",
                    }
                ],
            },
        )
        target = tmp_path / "out.xml"
        code = cli.main(["--input", str(source), "--output", str(target), "--message-id", "MSG-CLI"])
        assert code == 0
        totals = parse_group_header(target.read_text(encoding="utf-8"))
        assert totals.message_id == "MSG-CLI"
        assert totals.control_sum == Decimal("850.00")

    def test_validation_errors_exit_one(self, cli, tmp_path, capsys):
        source = self._write(
            tmp_path,
            {
                "creditor": {"name": "", "iban": "AT611904300234573202", "bic": "BKAUATWW", "creditor_id": "X"},
                "debtors": [],
            },
        )
        assert cli.main(["--input", str(source)]) == 1
        err = capsys.readouterr().err
        assert "ERROR: Firmenname ist erforderlich" in err
        assert "ERROR: IBAN ist ungültig" in err
        assert "ERROR: Keine Lastschriften zum Exportieren" in err

    def test_control_character_reported_not_raised(self, cli, tmp_path, capsys):
        source = self._write(
            tmp_path,
            {
                "creditor": {
                    "name": CREDITOR.name,
                    "iban": CREDITOR.iban,
                    "bic": CREDITOR.bic,
                    "creditor_id": CREDITOR.creditor_id,
                },
                "debtors": [
                    {
                        "debtor_id": "T1",
                        "name": "Max\x0cMuster",
                        "iban": "DE89370400440532013000",
                        "mandate_id": "M-1",
                        "mandate_date": "2024-01-15",
                        "amount": "850.00",
                        "remittance_info": "Miete 03/2025",
                    }
                ],
            },
        )
        assert cli.main(["--input", str(source)]) == 1
        assert "Name enthält ungültige Zeichen" in capsys.readouterr().err

    def test_credit_transfer_to_stdout(self, cli, tmp_path, capsys):
        source = self._write(
            tmp_path,
            {
                "account": {"name": "HV GmbH", "iban": "AT611904300234573201", "bic": "BKAUATWW"},
                "execution_date": "2025-03-03",
                "transfers": [
                    {
                        "recipient_name": "Anna Berger",
                        "iban": "GB82WEST12345698765432",
                        "amount": "30.00",
                        "reference": "Kaution",
                        "end_to_end_id": "KAU-1",
                    }
                ],
            },
        )
        assert cli.main(["--input", str(source), "--credit-transfer"]) == 0
        out = capsys.readouterr().out
        assert "<CstmrCdtTrfInitn>" in out
        assert "<CtrlSum>30.00</CtrlSum>" in out
