"""
Tests for the SEPA pain.008 / pain.001 generators.

Verifies:
- Control sums and transaction counts agree in GrpHdr and PmtInf
- XML escaping, field truncation and IBAN/BIC normalization
- German validation messages, aggregated per batch
- Byte-identical output for identical inputs
"""

from datetime import UTC, date, datetime
from decimal import Decimal

import pytest
from lxml import etree

from billing_engines.sepa import (
    BIC_NOT_PROVIDED,
    DIRECT_DEBIT_NAMESPACE,
    FieldLimits,
    SepaAccount,
    SepaCreditor,
    SepaDebtor,
    SepaTransfer,
    _verify_totals,
    escape_xml,
    generate_credit_transfer_xml,
    generate_direct_debit_xml,
    iban_checksum_valid,
    parse_group_header,
    validate_batch,
)
from billing_kernel.exceptions import SepaControlSumMismatchError, SepaValidationError

CREATED_AT = datetime(2025, 3, 1, 8, 0, 0, tzinfo=UTC)
COLLECTION = date(2025, 3, 5)
NS = {"p": DIRECT_DEBIT_NAMESPACE}


@pytest.fixture
def creditor() -> SepaCreditor:
    return SepaCreditor(
        name="Hausverwaltung Muster GmbH",
        iban="AT611904300234573201",
        bic="BKAUATWW",
        creditor_id="AT12ZZZ00000000001",
    )


def _debtor(index: int = 1, **overrides) -> SepaDebtor:
    values = {
        "debtor_id": f"tenant-{index}",
        "name": f"Mieter {index}",
        "iban": "DE89370400440532013000",
        "bic": "GIBAATWWXXX",
        "mandate_id": f"MANDATE-{index}",
        "mandate_date": date(2024, 1, 15),
        "amount": Decimal("850.00"),
        "remittance_info": "Miete 3/2025",
    }
    values.update(overrides)
    return SepaDebtor(**values)


def _render(creditor, debtors, **kwargs) -> str:
    return generate_direct_debit_xml(
        creditor, debtors, COLLECTION, message_id="MSG-1", created_at=CREATED_AT, **kwargs
    )


def _tree(xml: str):
    return etree.fromstring(xml.encode("utf-8"))


class TestControlTotals:
    def test_fifty_debtors_control_sum(self, creditor):
        debtors = [_debtor(i, amount=Decimal(100 + i)) for i in range(50)]
        xml = _render(creditor, debtors)

        totals = parse_group_header(xml)
        assert totals.number_of_transactions == 50
        assert totals.payment_number_of_transactions == 50
        assert totals.control_sum == Decimal("6225.00")
        assert totals.payment_control_sum == Decimal("6225.00")
        assert sum(totals.transaction_amounts) == Decimal("6225.00")
        assert xml.count("<CtrlSum>6225.00</CtrlSum>") == 2

    def test_tampered_document_detected(self, creditor):
        xml = _render(creditor, [_debtor()])
        tampered = xml.replace("<CtrlSum>850.00</CtrlSum>", "<CtrlSum>850.01</CtrlSum>", 1)
        with pytest.raises(SepaControlSumMismatchError) as exc_info:
            _verify_totals(tampered, 1, Decimal("850.00"))
        assert exc_info.value.element == "GrpHdr/CtrlSum"

    def test_missing_header_element(self):
        doc = (
            f'<Document xmlns="{DIRECT_DEBIT_NAMESPACE}"><CstmrDrctDbtInitn>'
            "<GrpHdr><NbOfTxs>1</NbOfTxs></GrpHdr><PmtInf/></CstmrDrctDbtInitn></Document>"
        )
        with pytest.raises(SepaControlSumMismatchError):
            parse_group_header(doc)

    def test_malformed_document(self):
        with pytest.raises(SepaControlSumMismatchError) as exc_info:
            parse_group_header("<Document><GrpHdr>")
        assert exc_info.value.element == "document"


class TestDocumentContent:
    def test_header_fields(self, creditor):
        root = _tree(_render(creditor, [_debtor()]))
        assert root.findtext("p:CstmrDrctDbtInitn/p:GrpHdr/p:MsgId", namespaces=NS) == "MSG-1"
        assert (
            root.findtext("p:CstmrDrctDbtInitn/p:GrpHdr/p:CreDtTm", namespaces=NS)
            == "2025-03-01T08:00:00"
        )
        payment = root.find("p:CstmrDrctDbtInitn/p:PmtInf", namespaces=NS)
        assert payment.findtext("p:PmtInfId", namespaces=NS) == "MSG-1-1"
        assert payment.findtext("p:ReqdColltnDt", namespaces=NS) == "2025-03-05"
        assert payment.findtext("p:PmtTpInf/p:SeqTp", namespaces=NS) == "RCUR"
        assert payment.findtext("p:PmtTpInf/p:LclInstrm/p:Cd", namespaces=NS) == "CORE"

    def test_only_document_namespace_declared(self, creditor):
        root = _tree(_render(creditor, [_debtor()]))
        assert root.nsmap == {None: DIRECT_DEBIT_NAMESPACE}

    def test_generated_end_to_end_ids(self, creditor):
        root = _tree(_render(creditor, [_debtor(1), _debtor(2, end_to_end_id="E2E-OWN")]))
        ids = root.xpath("//p:EndToEndId/text()", namespaces=NS)
        assert ids == ["MSG-1-1-1", "E2E-OWN"]

    def test_escaping(self, creditor):
        xml = _render(creditor, [_debtor(name="Müller & Söhne <GmbH>")])
        assert "Müller &amp; Söhne &lt;GmbH&gt;" in xml
        root = _tree(xml)
        assert root.xpath("//p:Dbtr/p:Nm/text()", namespaces=NS) == ["Müller & Söhne <GmbH>"]

    def test_truncation(self, creditor):
        long_name = "A" * 100
        xml = _render(creditor, [_debtor(name=long_name, remittance_info="R" * 200)])
        root = _tree(xml)
        assert len(root.xpath("//p:Dbtr/p:Nm/text()", namespaces=NS)[0]) == 70
        assert len(root.xpath("//p:Ustrd/text()", namespaces=NS)[0]) == 140

    def test_custom_limits(self, creditor):
        xml = _render(creditor, [_debtor(name="Abcdefghij")], limits=FieldLimits(name=5))
        assert _tree(xml).xpath("//p:Dbtr/p:Nm/text()", namespaces=NS) == ["Abcde"]

    def test_iban_normalized_and_missing_bic(self, creditor):
        xml = _render(creditor, [_debtor(iban="de89 3704 0044 0532 0130 00", bic="")])
        root = _tree(xml)
        assert root.xpath("//p:DbtrAcct/p:Id/p:IBAN/text()", namespaces=NS) == [
            "DE89370400440532013000"
        ]
        assert root.xpath("//p:DbtrAgt//p:BIC/text()", namespaces=NS) == [BIC_NOT_PROVIDED]

    def test_amount_format(self, creditor):
        xml = _render(creditor, [_debtor(amount=Decimal("1234.5"))])
        assert '<InstdAmt Ccy="EUR">1234.50</InstdAmt>' in xml

    def test_deterministic(self, creditor):
        debtors = [_debtor(i) for i in range(1, 4)]
        assert _render(creditor, debtors) == _render(creditor, debtors)

    def test_rendering_options_change_trace_fingerprint(self, creditor, captured_logs):
        debtors = [_debtor()]
        _render(creditor, debtors)
        _render(creditor, debtors, sequence_type="FRST")
        generate_direct_debit_xml(
            creditor, debtors, COLLECTION, message_id="MSG-1", created_at=datetime(2025, 3, 2, tzinfo=UTC)
        )
        fingerprints = {
            r["input_fingerprint"]
            for r in captured_logs()
            if r["message"] == "BILLING_ENGINE_TRACE" and r["engine_name"] == "sepa_direct_debit"
        }
        assert len(fingerprints) == 3


class TestValidation:
    def test_invalid_iban_checksum(self, creditor):
        with pytest.raises(SepaValidationError) as exc_info:
            _render(creditor, [_debtor(iban="AT611904300234573202")])
        assert exc_info.value.errors == ["Lastschrift 1 (Mieter 1): IBAN ist ungültig"]

    def test_errors_aggregated(self):
        bad_creditor = SepaCreditor(name="", iban="", bic="X", creditor_id="")
        errors = validate_batch(bad_creditor, [_debtor(amount=Decimal("0"), mandate_id="")])
        assert "Firmenname ist erforderlich" in errors
        assert "IBAN ist erforderlich" in errors
        assert "BIC ist ungültig" in errors
        assert "Gläubiger-ID ist erforderlich" in errors
        assert "Lastschrift 1 (Mieter 1): Mandatsreferenz ist erforderlich" in errors
        assert "Lastschrift 1 (Mieter 1): Betrag muss größer als 0 sein" in errors

    def test_empty_batch(self, creditor):
        with pytest.raises(SepaValidationError) as exc_info:
            _render(creditor, [])
        assert "Keine Lastschriften zum Exportieren" in exc_info.value.errors

    def test_missing_mandate_date(self, creditor):
        errors = validate_batch(creditor, [_debtor(mandate_date=None)])
        assert errors == ["Lastschrift 1 (Mieter 1): Mandatsdatum ist erforderlich"]

    def test_unknown_sequence_type(self, creditor):
        with pytest.raises(SepaValidationError) as exc_info:
            _render(creditor, [_debtor()], sequence_type="XXXX")
        assert exc_info.value.errors == ["Sequenztyp ist ungültig: XXXX"]

    def test_rejection_logged(self, creditor, captured_logs):
        with pytest.raises(SepaValidationError):
            _render(creditor, [])
        assert any(r["message"] == "sepa_direct_debit_rejected" for r in captured_logs())

    def test_control_character_in_name_rejected(self, creditor):
        with pytest.raises(SepaValidationError) as exc_info:
            _render(creditor, [_debtor(name="Max\x0cMuster")])
        assert exc_info.value.errors == ["Lastschrift 1 (Max\x0cMuster): Name enthält ungültige Zeichen"]

    def test_control_characters_in_creditor_and_message_id(self, creditor):
        bad_creditor = SepaCreditor(creditor.name + "\x00", creditor.iban, creditor.bic, creditor.creditor_id)
        with pytest.raises(SepaValidationError) as exc_info:
            generate_direct_debit_xml(
                bad_creditor, [_debtor()], COLLECTION, message_id="MSG\x1b1", created_at=CREATED_AT
            )
        assert exc_info.value.errors == [
            "Firmenname enthält ungültige Zeichen",
            "MsgId enthält ungültige Zeichen",
        ]

    def test_tabs_and_umlauts_allowed(self, creditor):
        xml = _render(creditor, [_debtor(name="Jürgen\tÖsterreicher", remittance_info="Miete \u20ac")])
        assert parse_group_header(xml).number_of_transactions == 1


class TestCreditTransfer:
    @pytest.fixture
    def account(self) -> SepaAccount:
        return SepaAccount(name="Hausverwaltung Muster GmbH", iban="AT611904300234573201", bic="BKAUATWW")

    def test_totals_and_missing_bic(self, account):
        transfers = [
            SepaTransfer("Mieter 1", "DE89370400440532013000", None, Decimal("120.00"), "Guthaben BK 2024", "BKA-1"),
            SepaTransfer("Mieter 2", "GB82WEST12345698765432", "GIBAATWWXXX", Decimal("30.55"), "Kaution", "KAU-2"),
        ]
        xml = generate_credit_transfer_xml(
            account, transfers, date(2025, 3, 3), message_id="TRF-1", created_at=CREATED_AT
        )
        totals = parse_group_header(xml)
        assert totals.number_of_transactions == 2
        assert totals.control_sum == Decimal("150.55")
        assert "<BIC>NOTPROVIDED</BIC>" in xml
        assert "<PmtMtd>TRF</PmtMtd>" in xml

    def test_validation(self, account):
        bad = SepaTransfer("", "AT611904300234573202", None, Decimal("-5"), "", "")
        with pytest.raises(SepaValidationError) as exc_info:
            generate_credit_transfer_xml(
                account, [bad], date(2025, 3, 3), message_id="TRF-1", created_at=CREATED_AT
            )
        errors = exc_info.value.errors
        assert "Überweisung 1 (): Empfänger ist erforderlich" in errors
        assert "Überweisung 1 (): IBAN ist ungültig" in errors
        assert "Überweisung 1 (): End-to-End-ID ist erforderlich" in errors
        assert "Überweisung 1 (): Betrag muss größer als 0 sein" in errors

    def test_control_character_in_reference(self, account):
        transfer = SepaTransfer("Anna", "GB82WEST12345698765432", None, Decimal("5"), "Kaution\x07", "K-1")
        with pytest.raises(SepaValidationError) as exc_info:
            generate_credit_transfer_xml(
                account, [transfer], date(2025, 3, 3), message_id="TRF-1", created_at=CREATED_AT
            )
        assert exc_info.value.errors == ["Überweisung 1 (Anna): Verwendungszweck enthält ungültige Zeichen"]


class TestHelpers:
    @pytest.mark.parametrize(
        "iban, valid",
        [
            ("AT611904300234573201", True),
            ("DE89 3704 0044 0532 0130 00", True),
            ("GB82WEST12345698765432", True),
            ("AT611904300234573202", False),
            ("AT61", False),
            ("", False),
        ],
    )
    def test_iban_checksum(self, iban, valid):
        assert iban_checksum_valid(iban) is valid

    def test_escape_xml(self):
        assert escape_xml("a&b<c>\"d'") == "a&amp;b&lt;c&gt;&quot;d&apos;"
