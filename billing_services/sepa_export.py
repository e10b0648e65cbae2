"""
SepaExportService -- SEPA files for rent collection and payouts.

Responsibility:
    Supplies the impure inputs of the SEPA engine: message id and creation
    timestamp from the clock, namespaces and field limits from the engine
    settings.  Builds direct debit legs from open invoices and tenant
    mandates.

Architecture position:
    Services -- imperative shell over ``billing_engines.sepa``.

Invariants enforced:
    - Message ids are unique per export and at most 35 characters.
    - Only invoices with an open amount and a tenant mandate become
      direct debits.

Failure modes:
    - SepaValidationError: invalid parties, or no collectable invoice.
    - SepaControlSumMismatchError: generated totals do not verify.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import uuid4

from billing_config import get_active_config
from billing_config.schema import EngineSettings
from billing_engines.sepa import (
    BIC_NOT_PROVIDED,
    FieldLimits,
    SepaAccount,
    SepaCreditor,
    SepaDebtor,
    SepaTransfer,
    generate_credit_transfer_xml,
    generate_direct_debit_xml,
    normalize_iban,
)
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.dtos import Invoice
from billing_kernel.domain.money import ZERO, sum_money
from billing_kernel.exceptions import SepaValidationError
from billing_kernel.logging_config import get_logger

logger = get_logger("services.sepa_export")

NO_COLLECTABLE_INVOICES = "Keine gültigen Lastschriften gefunden (IBAN fehlt bei allen Mietern)"


@dataclass(frozen=True)
class SepaMandate:
    """A tenant's direct debit mandate (SEPA-Lastschriftmandat)."""

    tenant_id: str
    name: str
    iban: str
    mandate_id: str
    mandate_date: date
    bic: str | None = None


@dataclass(frozen=True)
class SepaExport:
    message_id: str
    created_at: datetime
    number_of_transactions: int
    control_sum: Decimal
    xml: str


class SepaExportService:
    def __init__(self, settings: EngineSettings | None = None, clock: Clock | None = None):
        self._settings = settings or get_active_config()
        self._clock = clock or SystemClock()

    @property
    def limits(self) -> FieldLimits:
        configured = self._settings.sepa.limits
        return FieldLimits(
            name=configured.name,
            identifier=configured.identifier,
            remittance=configured.remittance,
        )

    def new_message_id(self) -> str:
        stamp = self._clock.now().strftime("%Y%m%d%H%M%S")
        return f"MSG-{stamp}-{uuid4().hex[:9]}".upper()[: self.limits.identifier]

    def debtors_for_invoices(
        self,
        invoices: Sequence[Invoice],
        mandates: Mapping[str, SepaMandate],
    ) -> list[SepaDebtor]:
        """One direct debit per open invoice whose tenant has a mandate with an IBAN."""
        debtors: list[SepaDebtor] = []
        for invoice in invoices:
            mandate = mandates.get(invoice.tenant_id)
            if mandate is None or not normalize_iban(mandate.iban):
                logger.info(
                    "sepa_invoice_skipped",
                    extra={"invoice_id": invoice.invoice_id, "tenant_id": invoice.tenant_id},
                )
                continue
            if invoice.gesamtbetrag <= ZERO:
                continue
            debtors.append(
                SepaDebtor(
                    debtor_id=invoice.tenant_id,
                    name=mandate.name,
                    iban=mandate.iban,
                    bic=mandate.bic or BIC_NOT_PROVIDED,
                    mandate_id=mandate.mandate_id,
                    mandate_date=mandate.mandate_date,
                    amount=invoice.gesamtbetrag,
                    remittance_info=f"Miete {invoice.month}/{invoice.year}",
                    end_to_end_id=(
                        f"E2E-{invoice.year}{invoice.month:02d}-{invoice.tenant_id[:8]}".upper()
                    ),
                )
            )
        return debtors

    def export_direct_debits(
        self,
        creditor: SepaCreditor,
        debtors: Sequence[SepaDebtor],
        collection_date: date | None = None,
        *,
        sequence_type: str | None = None,
        message_id: str | None = None,
    ) -> SepaExport:
        """
        Render a pain.008 file.  The collection date defaults to today.

        Raises:
            SepaValidationError: invalid creditor or debtors.
        """
        msg_id = message_id or self.new_message_id()
        created_at = self._clock.now()
        settings = self._settings.sepa
        xml = generate_direct_debit_xml(
            creditor,
            debtors,
            collection_date or self._clock.today(),
            message_id=msg_id,
            created_at=created_at,
            sequence_type=sequence_type or settings.sequence_type,
            local_instrument=settings.local_instrument,
            namespace=settings.direct_debit_namespace,
            limits=self.limits,
        )
        export = SepaExport(
            message_id=msg_id,
            created_at=created_at,
            number_of_transactions=len(debtors),
            control_sum=sum_money(d.amount for d in debtors),
            xml=xml,
        )
        logger.info(
            "sepa_direct_debit_exported",
            extra={
                "message_id": msg_id,
                "transactions": export.number_of_transactions,
                "control_sum": str(export.control_sum),
            },
        )
        return export

    def export_invoices(
        self,
        creditor: SepaCreditor,
        invoices: Sequence[Invoice],
        mandates: Mapping[str, SepaMandate],
        collection_date: date | None = None,
    ) -> SepaExport:
        """
        Collect the given invoices by direct debit.

        Raises:
            SepaValidationError: none of the invoices is collectable.
        """
        debtors = self.debtors_for_invoices(invoices, mandates)
        if not debtors:
            raise SepaValidationError([NO_COLLECTABLE_INVOICES])
        return self.export_direct_debits(creditor, debtors, collection_date)

    def export_credit_transfers(
        self,
        debtor_account: SepaAccount,
        transfers: Sequence[SepaTransfer],
        execution_date: date | None = None,
        *,
        message_id: str | None = None,
    ) -> SepaExport:
        msg_id = message_id or self.new_message_id()
        created_at = self._clock.now()
        xml = generate_credit_transfer_xml(
            debtor_account,
            transfers,
            execution_date or self._clock.today(),
            message_id=msg_id,
            created_at=created_at,
            namespace=self._settings.sepa.credit_transfer_namespace,
            limits=self.limits,
        )
        export = SepaExport(
            message_id=msg_id,
            created_at=created_at,
            number_of_transactions=len(transfers),
            control_sum=sum_money(t.amount for t in transfers),
            xml=xml,
        )
        logger.info(
            "sepa_credit_transfer_exported",
            extra={
                "message_id": msg_id,
                "transactions": export.number_of_transactions,
                "control_sum": str(export.control_sum),
            },
        )
        return export
