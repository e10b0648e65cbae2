"""
InvoiceLineService -- idempotent invoice line upsert.

Responsibility:
    Writes the lines of a monthly invoice generation run.  Re-running the
    same batch updates existing lines in place instead of inserting
    duplicates.

Architecture position:
    Services -- imperative shell.
    Composes PeriodLockGuard with an InvoiceLineStore.

Invariants enforced:
    - The booking period is checked before the first line is touched.
    - A line is identified by ``(invoice_id, unit_id, line_type,
      normalized_description)``.  Descriptions differing only in case,
      whitespace, Unicode composition or zero-width characters address
      the same line.
    - On conflict the amount and tax rate are replaced; meta is merged
      with the new keys winning.

Failure modes:
    - PeriodLockError: the target period is locked.  Nothing is written.

Audit relevance:
    Every run logs ``invoice_lines_upserted`` with run id, actor and the
    inserted/updated counts.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace

from billing_kernel.domain.dtos import InvoiceLine
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.stores.base import InvoiceLineStore
from billing_services.period_lock import PeriodLockGuard

logger = get_logger("services.invoice_lines")


@dataclass(frozen=True)
class UpsertResult:
    """Outcome of one upsert run."""

    inserted: int
    updated: int

    @property
    def total(self) -> int:
        return self.inserted + self.updated


class InvoiceLineService:
    def __init__(self, store: InvoiceLineStore, guard: PeriodLockGuard):
        self._store = store
        self._guard = guard

    def upsert_lines(
        self,
        organization_id: str,
        year: int,
        month: int,
        lines: Iterable[InvoiceLine],
        actor_id: str,
        run_id: str | None = None,
    ) -> UpsertResult:
        """
        Insert or update the given lines for the period ``month/year``.

        Raises:
            PeriodLockError: the period is locked.
        """
        self._guard.assert_period_open(organization_id, year, month)

        inserted = 0
        updated = 0
        with LogContext.bind(organization_id=organization_id, actor_id=actor_id, run_id=run_id):
            for line in lines:
                existing = self._store.get_by_key(line.idempotency_key)
                if existing is None:
                    self._store.save(line)
                    inserted += 1
                    continue

                merged = replace(
                    existing,
                    amount=line.amount,
                    tax_rate=line.tax_rate,
                    meta={**existing.meta, **line.meta},
                )
                self._store.save(merged)
                updated += 1

            logger.info(
                "invoice_lines_upserted",
                extra={"year": year, "month": month, "inserted": inserted, "updated": updated},
            )
        return UpsertResult(inserted=inserted, updated=updated)
