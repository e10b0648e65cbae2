"""
Module: billing_engines.sepa
Responsibility:
    Validate creditor, debtor and transfer data and render ISO 20022 SEPA
    documents: pain.008 direct debit batches (rent collection) and pain.001
    credit transfers (refunds, supplier payouts).

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Message ids and timestamps are passed in; the caller takes them from
    an injected clock.

Invariants enforced:
    - Validation collects every problem before failing; an export is
      rejected as a whole, never partially rendered.
    - Amounts are cent-rounded with ``round_money`` and rendered with
      exactly two decimals.  CtrlSum is the exact Decimal sum of the
      rendered amounts.
    - Text fields are truncated to the SEPA field limits before XML
      escaping (names 70, identifiers 35, remittance 140 by default).
    - Every rendered document is parsed back with lxml; NbOfTxs and
      CtrlSum in GrpHdr and PmtInf must match the batch and the sum of
      the transaction amounts.

Failure modes:
    - SepaValidationError with all collected messages when input data is
      invalid or the batch is empty.
    - SepaControlSumMismatchError when the parsed document disagrees with
      the batch.  This is a hard failure; the document must not be sent.

Audit relevance:
    A SEPA file is an instruction to a bank.  The parse-back check is the
    last gate between the calculated batch and money actually moving.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from xml.sax.saxutils import escape

from lxml import etree

from billing_engines.tracer import traced_engine
from billing_kernel.domain.money import ZERO, MoneyLike, format_amount, round_money, sum_money
from billing_kernel.exceptions import SepaControlSumMismatchError, SepaValidationError
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.sepa")

DIRECT_DEBIT_NAMESPACE = "urn:iso:std:iso:20022:tech:xsd:pain.008.001.02"
CREDIT_TRANSFER_NAMESPACE = "urn:iso:std:iso:20022:tech:xsd:pain.001.001.03"

SEQUENCE_TYPES = frozenset({"FRST", "RCUR", "OOFF", "FNAL"})
BIC_NOT_PROVIDED = "NOTPROVIDED"

_IBAN_PATTERN = re.compile(r"^[A-Z]{2}[0-9]{2}[A-Z0-9]{4,30}$")
_BIC_PATTERN = re.compile(r"^[A-Z]{4}[A-Z]{2}[A-Z0-9]{2}([A-Z0-9]{3})?$")
_WHITESPACE = re.compile(r"\s+")
# Characters outside the XML 1.0 Char production.
_INVALID_XML_CHAR = re.compile("[^\t\n\r\x20-\ud7ff\ue000-\ufffd\U00010000-\U0010ffff]")

_XML_ENTITIES = {'"': "&quot;", "'": "&apos;"}


@dataclass(frozen=True)
class FieldLimits:
    name: int = 70
    identifier: int = 35
    remittance: int = 140


@dataclass(frozen=True)
class SepaCreditor:
    """Collecting party of a direct debit batch (the property manager)."""

    name: str
    iban: str
    bic: str
    creditor_id: str  # Gläubiger-ID


@dataclass(frozen=True)
class SepaDebtor:
    """One tenant debit with its mandate."""

    debtor_id: str
    name: str
    iban: str
    bic: str
    mandate_id: str
    mandate_date: date
    amount: Decimal
    remittance_info: str
    end_to_end_id: str | None = None


@dataclass(frozen=True)
class SepaAccount:
    """Ordering account of a credit transfer batch."""

    name: str
    iban: str
    bic: str


@dataclass(frozen=True)
class SepaTransfer:
    recipient_name: str
    iban: str
    bic: str | None
    amount: Decimal
    reference: str
    end_to_end_id: str


@dataclass(frozen=True)
class SepaControlTotals:
    """NbOfTxs / CtrlSum as rendered in a SEPA document."""

    message_id: str
    number_of_transactions: int
    control_sum: Decimal
    payment_number_of_transactions: int
    payment_control_sum: Decimal
    transaction_amounts: tuple[Decimal, ...]


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def escape_xml(text: str) -> str:
    """Escape ``& < > " '`` for element content."""
    return escape(str(text), _XML_ENTITIES)


def truncate(text: str | None, max_length: int) -> str:
    text = text or ""
    return text if len(text) <= max_length else text[:max_length]


def normalize_iban(iban: str | None) -> str:
    return _WHITESPACE.sub("", iban or "").upper()


def normalize_bic(bic: str | None) -> str:
    return _WHITESPACE.sub("", bic or "").upper()


def iban_checksum_valid(iban: str | None) -> bool:
    """ISO 13616 mod-97 check: the rearranged IBAN as a number mod 97 is 1."""
    normalized = normalize_iban(iban)
    if not _IBAN_PATTERN.match(normalized):
        return False
    rearranged = normalized[4:] + normalized[:4]
    digits = "".join(str(int(ch, 36)) for ch in rearranged)
    return int(digits) % 97 == 1


def _iban_valid(iban: str | None) -> bool:
    return bool(_IBAN_PATTERN.match(normalize_iban(iban))) and iban_checksum_valid(iban)


def _bic_valid(bic: str | None) -> bool:
    return bool(_BIC_PATTERN.match(normalize_bic(bic)))


def _positive_amount(amount: MoneyLike) -> bool:
    return round_money(amount) > ZERO


def has_invalid_xml_chars(text: str | None) -> bool:
    return bool(_INVALID_XML_CHAR.search(text or ""))


def _invalid_characters(fields: dict[str, str | None]) -> list[str]:
    return [
        f"{label} enthält ungültige Zeichen"
        for label, value in fields.items()
        if has_invalid_xml_chars(value)
    ]


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_creditor(creditor: SepaCreditor) -> list[str]:
    errors: list[str] = []
    if not (creditor.name or "").strip():
        errors.append("Firmenname ist erforderlich")
    if not (creditor.iban or "").strip():
        errors.append("IBAN ist erforderlich")
    elif not _iban_valid(creditor.iban):
        errors.append("IBAN ist ungültig")
    if not (creditor.bic or "").strip():
        errors.append("BIC ist erforderlich")
    elif not _bic_valid(creditor.bic):
        errors.append("BIC ist ungültig")
    if not (creditor.creditor_id or "").strip():
        errors.append("Gläubiger-ID ist erforderlich")
    errors.extend(
        _invalid_characters({"Firmenname": creditor.name, "Gläubiger-ID": creditor.creditor_id})
    )
    return errors


def validate_debtor(debtor: SepaDebtor) -> list[str]:
    errors: list[str] = []
    if not (debtor.name or "").strip():
        errors.append("Name ist erforderlich")
    if not (debtor.iban or "").strip():
        errors.append("IBAN ist erforderlich")
    elif not _iban_valid(debtor.iban):
        errors.append("IBAN ist ungültig")
    if (debtor.bic or "").strip() and not _bic_valid(debtor.bic):
        errors.append("BIC ist ungültig")
    if not (debtor.mandate_id or "").strip():
        errors.append("Mandatsreferenz ist erforderlich")
    if not isinstance(debtor.mandate_date, date):
        errors.append("Mandatsdatum ist erforderlich")
    if not _positive_amount(debtor.amount):
        errors.append("Betrag muss größer als 0 sein")
    errors.extend(
        _invalid_characters(
            {
                "Name": debtor.name,
                "Mandatsreferenz": debtor.mandate_id,
                "Verwendungszweck": debtor.remittance_info,
                "End-to-End-ID": debtor.end_to_end_id,
            }
        )
    )
    return errors


def validate_batch(creditor: SepaCreditor, debtors: Sequence[SepaDebtor]) -> list[str]:
    """All creditor and debtor problems; debtor messages name their position."""
    errors = validate_creditor(creditor)
    if not debtors:
        errors.append("Keine Lastschriften zum Exportieren")
    for index, debtor in enumerate(debtors, start=1):
        for message in validate_debtor(debtor):
            errors.append(f"Lastschrift {index} ({debtor.name or debtor.debtor_id}): {message}")
    return errors


def validate_account(account: SepaAccount) -> list[str]:
    errors: list[str] = []
    if not (account.name or "").strip():
        errors.append("Kontoinhaber ist erforderlich")
    errors.extend(_invalid_characters({"Kontoinhaber": account.name}))
    if not (account.iban or "").strip():
        errors.append("IBAN ist erforderlich")
    elif not _iban_valid(account.iban):
        errors.append("IBAN ist ungültig")
    if not (account.bic or "").strip():
        errors.append("BIC ist erforderlich")
    elif not _bic_valid(account.bic):
        errors.append("BIC ist ungültig")
    return errors


def validate_transfer(transfer: SepaTransfer) -> list[str]:
    errors: list[str] = []
    if not (transfer.recipient_name or "").strip():
        errors.append("Empfänger ist erforderlich")
    if not (transfer.iban or "").strip():
        errors.append("IBAN ist erforderlich")
    elif not _iban_valid(transfer.iban):
        errors.append("IBAN ist ungültig")
    if (transfer.bic or "").strip() and not _bic_valid(transfer.bic):
        errors.append("BIC ist ungültig")
    if not (transfer.end_to_end_id or "").strip():
        errors.append("End-to-End-ID ist erforderlich")
    if not _positive_amount(transfer.amount):
        errors.append("Betrag muss größer als 0 sein")
    errors.extend(
        _invalid_characters(
            {
                "Empfänger": transfer.recipient_name,
                "Verwendungszweck": transfer.reference,
                "End-to-End-ID": transfer.end_to_end_id,
            }
        )
    )
    return errors


# ---------------------------------------------------------------------------
# Parse-back
# ---------------------------------------------------------------------------


def _local(path: str) -> str:
    return "/".join(f"*[local-name()='{step}']" for step in path.split("/"))


def _node(parent, path: str):
    found = parent.xpath(_local(path))
    if not found:
        raise SepaControlSumMismatchError(path, "element present", "missing")
    return found[0]


def _text(node, path: str) -> str:
    found = node.xpath(_local(path))
    if not found or found[0].text is None:
        raise SepaControlSumMismatchError(path, "element present", "missing")
    return found[0].text.strip()


def parse_group_header(xml: str | bytes) -> SepaControlTotals:
    """
    Read MsgId, NbOfTxs and CtrlSum from GrpHdr and the first PmtInf, and
    every InstdAmt in the document.

    Raises:
        SepaControlSumMismatchError: if the document is not well-formed or
            a required element is missing.
    """
    raw = xml.encode("utf-8") if isinstance(xml, str) else xml
    try:
        root = etree.fromstring(raw)
    except etree.XMLSyntaxError as exc:
        raise SepaControlSumMismatchError("document", "well-formed XML", str(exc)) from exc
    if len(root) == 0:
        raise SepaControlSumMismatchError("Document", "initiation element", "missing")
    initiation = root[0]
    header = _node(initiation, "GrpHdr")
    payment = _node(initiation, "PmtInf")
    amounts = tuple(
        Decimal(node.text.strip())
        for node in root.xpath(".//*[local-name()='InstdAmt']")
    )
    return SepaControlTotals(
        message_id=_text(header, "MsgId"),
        number_of_transactions=int(_text(header, "NbOfTxs")),
        control_sum=Decimal(_text(header, "CtrlSum")),
        payment_number_of_transactions=int(_text(payment, "NbOfTxs")),
        payment_control_sum=Decimal(_text(payment, "CtrlSum")),
        transaction_amounts=amounts,
    )


def _verify_totals(xml: str, expected_count: int, expected_sum: Decimal) -> None:
    totals = parse_group_header(xml)
    checks = (
        ("GrpHdr/NbOfTxs", str(expected_count), str(totals.number_of_transactions)),
        ("GrpHdr/CtrlSum", format_amount(expected_sum), format_amount(totals.control_sum)),
        ("PmtInf/NbOfTxs", str(expected_count), str(totals.payment_number_of_transactions)),
        ("PmtInf/CtrlSum", format_amount(expected_sum), format_amount(totals.payment_control_sum)),
        ("transaction count", str(expected_count), str(len(totals.transaction_amounts))),
        ("sum of InstdAmt", format_amount(expected_sum), format_amount(sum(totals.transaction_amounts, ZERO))),
    )
    for element, expected, actual in checks:
        if expected != actual:
            logger.error(
                "sepa_control_totals_mismatch",
                extra={"element": element, "expected": expected, "actual": actual},
            )
            raise SepaControlSumMismatchError(element, expected, actual)


def _end_to_end_id(explicit: str | None, prefix: str, index: int, limit: int) -> str:
    if explicit:
        return truncate(explicit, limit)
    suffix = f"-{index}"
    return truncate(prefix, limit - len(suffix)) + suffix


# ---------------------------------------------------------------------------
# pain.008 direct debit
# ---------------------------------------------------------------------------


@traced_engine(
    "sepa_direct_debit",
    "1.0",
    fingerprint_fields=(
        "creditor",
        "debtors",
        "collection_date",
        "message_id",
        "created_at",
        "batch_booking",
        "sequence_type",
        "local_instrument",
        "namespace",
        "limits",
    ),
)
def generate_direct_debit_xml(
    creditor: SepaCreditor,
    debtors: Sequence[SepaDebtor],
    collection_date: date,
    *,
    message_id: str,
    created_at: datetime,
    batch_booking: bool = True,
    sequence_type: str = "RCUR",
    local_instrument: str = "CORE",
    namespace: str = DIRECT_DEBIT_NAMESPACE,
    limits: FieldLimits = FieldLimits(),
) -> str:
    """
    Render a pain.008 direct debit initiation for one collection date.

    Raises:
        SepaValidationError: on invalid creditor/debtor data, an empty
            batch or an unknown sequence type.
        SepaControlSumMismatchError: if the rendered totals disagree.
    """
    errors = validate_batch(creditor, debtors)
    errors.extend(_invalid_characters({"MsgId": message_id}))
    if sequence_type not in SEQUENCE_TYPES:
        errors.append(f"Sequenztyp ist ungültig: {sequence_type}")
    if errors:
        logger.warning(
            "sepa_direct_debit_rejected",
            extra={"error_count": len(errors), "debtor_count": len(debtors)},
        )
        raise SepaValidationError(errors)

    msg_id = truncate(message_id, limits.identifier)
    payment_info_id = truncate(f"{msg_id}-1", limits.identifier)
    amounts = [round_money(d.amount) for d in debtors]
    control_sum = sum_money(amounts)
    count = len(debtors)

    transactions = []
    for index, (debtor, amount) in enumerate(zip(debtors, amounts), start=1):
        e2e = _end_to_end_id(debtor.end_to_end_id, payment_info_id, index, limits.identifier)
        bic = normalize_bic(debtor.bic) or BIC_NOT_PROVIDED
        transactions.append(f"""
      <DrctDbtTxInf>
        <PmtId>
          <EndToEndId>{escape_xml(e2e)}</EndToEndId>
        </PmtId>
        <InstdAmt Ccy="EUR">{format_amount(amount)}</InstdAmt>
        <DrctDbtTx>
          <MndtRltdInf>
            <MndtId>{escape_xml(truncate(debtor.mandate_id, limits.identifier))}</MndtId>
            <DtOfSgntr>{debtor.mandate_date.isoformat()}</DtOfSgntr>
          </MndtRltdInf>
        </DrctDbtTx>
        <DbtrAgt>
          <FinInstnId>
            <BIC>{escape_xml(bic)}</BIC>
          </FinInstnId>
        </DbtrAgt>
        <Dbtr>
          <Nm>{escape_xml(truncate(debtor.name, limits.name))}</Nm>
        </Dbtr>
        <DbtrAcct>
          <Id>
            <IBAN>{normalize_iban(debtor.iban)}</IBAN>
          </Id>
        </DbtrAcct>
        <RmtInf>
          <Ustrd>{escape_xml(truncate(debtor.remittance_info, limits.remittance))}</Ustrd>
        </RmtInf>
      </DrctDbtTxInf>""")

    creditor_name = escape_xml(truncate(creditor.name, limits.name))
    created = created_at.strftime("%Y-%m-%dT%H:%M:%S")
    batch_flag = "true" if batch_booking else "false"
    body = "".join(transactions)

    xml = f"""<?xml version="1.0" encoding="UTF-8"?>
<Document xmlns="{escape_xml(namespace)}">
  <CstmrDrctDbtInitn>
    <GrpHdr>
      <MsgId>{escape_xml(msg_id)}</MsgId>
      <CreDtTm>{created}</CreDtTm>
      <NbOfTxs>{count}</NbOfTxs>
      <CtrlSum>{format_amount(control_sum)}</CtrlSum>
      <InitgPty>
        <Nm>{creditor_name}</Nm>
      </InitgPty>
    </GrpHdr>
    <PmtInf>
      <PmtInfId>{escape_xml(payment_info_id)}</PmtInfId>
      <PmtMtd>DD</PmtMtd>
      <BtchBookg>{batch_flag}</BtchBookg>
      <NbOfTxs>{count}</NbOfTxs>
      <CtrlSum>{format_amount(control_sum)}</CtrlSum>
      <PmtTpInf>
        <SvcLvl>
          <Cd>SEPA</Cd>
        </SvcLvl>
        <LclInstrm>
          <Cd>{escape_xml(local_instrument)}</Cd>
        </LclInstrm>
        <SeqTp>{sequence_type}</SeqTp>
      </PmtTpInf>
      <ReqdColltnDt>{collection_date.isoformat()}</ReqdColltnDt>
      <Cdtr>
        <Nm>{creditor_name}</Nm>
      </Cdtr>
      <CdtrAcct>
        <Id>
          <IBAN>{normalize_iban(creditor.iban)}</IBAN>
        </Id>
      </CdtrAcct>
      <CdtrAgt>
        <FinInstnId>
          <BIC>{escape_xml(normalize_bic(creditor.bic))}</BIC>
        </FinInstnId>
      </CdtrAgt>
      <ChrgBr>SLEV</ChrgBr>
      <CdtrSchmeId>
        <Id>
          <PrvtId>
            <Othr>
              <Id>{escape_xml(truncate(creditor.creditor_id.strip(), limits.identifier))}</Id>
              <SchmeNm>
                <Prtry>SEPA</Prtry>
              </SchmeNm>
            </Othr>
          </PrvtId>
        </Id>
      </CdtrSchmeId>{body}
    </PmtInf>
  </CstmrDrctDbtInitn>
</Document>
"""

    _verify_totals(xml, count, control_sum)
    logger.info(
        "sepa_direct_debit_generated",
        extra={
            "message_id": msg_id,
            "transaction_count": count,
            "control_sum": format_amount(control_sum),
            "collection_date": collection_date.isoformat(),
        },
    )
    return xml


# ---------------------------------------------------------------------------
# pain.001 credit transfer
# ---------------------------------------------------------------------------


@traced_engine(
    "sepa_credit_transfer",
    "1.0",
    fingerprint_fields=(
        "debtor_account",
        "transfers",
        "execution_date",
        "message_id",
        "created_at",
        "batch_booking",
        "namespace",
        "limits",
    ),
)
def generate_credit_transfer_xml(
    debtor_account: SepaAccount,
    transfers: Sequence[SepaTransfer],
    execution_date: date,
    *,
    message_id: str,
    created_at: datetime,
    batch_booking: bool = True,
    namespace: str = CREDIT_TRANSFER_NAMESPACE,
    limits: FieldLimits = FieldLimits(),
) -> str:
    """
    Render a pain.001 credit transfer initiation (deposit refunds,
    settlement credits, supplier payments).

    Raises:
        SepaValidationError: on invalid account/transfer data or an empty
            batch.
        SepaControlSumMismatchError: if the rendered totals disagree.
    """
    errors = validate_account(debtor_account)
    errors.extend(_invalid_characters({"MsgId": message_id}))
    if not transfers:
        errors.append("Keine Überweisungen zum Exportieren")
    for index, transfer in enumerate(transfers, start=1):
        for message in validate_transfer(transfer):
            errors.append(f"Überweisung {index} ({transfer.recipient_name}): {message}")
    if errors:
        logger.warning(
            "sepa_credit_transfer_rejected",
            extra={"error_count": len(errors), "transfer_count": len(transfers)},
        )
        raise SepaValidationError(errors)

    msg_id = truncate(message_id, limits.identifier)
    payment_info_id = truncate(f"{msg_id}-1", limits.identifier)
    amounts = [round_money(t.amount) for t in transfers]
    control_sum = sum_money(amounts)
    count = len(transfers)
    account_name = escape_xml(truncate(debtor_account.name, limits.name))

    transactions = []
    for transfer, amount in zip(transfers, amounts):
        transactions.append(f"""
      <CdtTrfTxInf>
        <PmtId>
          <EndToEndId>{escape_xml(truncate(transfer.end_to_end_id, limits.identifier))}</EndToEndId>
        </PmtId>
        <Amt>
          <InstdAmt Ccy="EUR">{format_amount(amount)}</InstdAmt>
        </Amt>
        <CdtrAgt>
          <FinInstnId>
            <BIC>{escape_xml(normalize_bic(transfer.bic) or BIC_NOT_PROVIDED)}</BIC>
          </FinInstnId>
        </CdtrAgt>
        <Cdtr>
          <Nm>{escape_xml(truncate(transfer.recipient_name, limits.name))}</Nm>
        </Cdtr>
        <CdtrAcct>
          <Id>
            <IBAN>{normalize_iban(transfer.iban)}</IBAN>
          </Id>
        </CdtrAcct>
        <RmtInf>
          <Ustrd>{escape_xml(truncate(transfer.reference, limits.remittance))}</Ustrd>
        </RmtInf>
      </CdtTrfTxInf>""")

    created = created_at.strftime("%Y-%m-%dT%H:%M:%S")
    batch_flag = "true" if batch_booking else "false"
    body = "".join(transactions)

    xml = f"""<?xml version="1.0" encoding="UTF-8"?>
<Document xmlns="{escape_xml(namespace)}">
  <CstmrCdtTrfInitn>
    <GrpHdr>
      <MsgId>{escape_xml(msg_id)}</MsgId>
      <CreDtTm>{created}</CreDtTm>
      <NbOfTxs>{count}</NbOfTxs>
      <CtrlSum>{format_amount(control_sum)}</CtrlSum>
      <InitgPty>
        <Nm>{account_name}</Nm>
      </InitgPty>
    </GrpHdr>
    <PmtInf>
      <PmtInfId>{escape_xml(payment_info_id)}</PmtInfId>
      <PmtMtd>TRF</PmtMtd>
      <BtchBookg>{batch_flag}</BtchBookg>
      <NbOfTxs>{count}</NbOfTxs>
      <CtrlSum>{format_amount(control_sum)}</CtrlSum>
      <PmtTpInf>
        <SvcLvl>
          <Cd>SEPA</Cd>
        </SvcLvl>
      </PmtTpInf>
      <ReqdExctnDt>{execution_date.isoformat()}</ReqdExctnDt>
      <Dbtr>
        <Nm>{account_name}</Nm>
      </Dbtr>
      <DbtrAcct>
        <Id>
          <IBAN>{normalize_iban(debtor_account.iban)}</IBAN>
        </Id>
      </DbtrAcct>
      <DbtrAgt>
        <FinInstnId>
          <BIC>{escape_xml(normalize_bic(debtor_account.bic))}</BIC>
        </FinInstnId>
      </DbtrAgt>
      <ChrgBr>SLEV</ChrgBr>{body}
    </PmtInf>
  </CstmrCdtTrfInitn>
</Document>
"""

    _verify_totals(xml, count, control_sum)
    logger.info(
        "sepa_credit_transfer_generated",
        extra={
            "message_id": msg_id,
            "transaction_count": count,
            "control_sum": format_amount(control_sum),
            "execution_date": execution_date.isoformat(),
        },
    )
    return xml
