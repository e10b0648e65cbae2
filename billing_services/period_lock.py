"""
PeriodLockGuard -- booking-period lock enforcement.

Responsibility:
    Answers "may this organization still write financial data dated in
    month M of year Y?" and manages the lock lifecycle of booking periods.

Architecture position:
    Services -- imperative shell.
    Called first by every mutation service (payments, invoice lines,
    settlements) before any write.

Invariants enforced:
    - Fail-open for unknown periods: no record means open.
    - Fail-closed once locked: a locked period rejects every write with
      PeriodLockError (HTTP-like status 409).
    - Locking is idempotent and never creates a second record.
    - Unlocking is a privileged administrative operation.  It requires
      explicit privilege and a reason, and always leaves an audit record.

Failure modes:
    - PeriodLockError: write into a locked period.
    - PeriodNotLockedError: unlock of a period that is not locked.
    - UnlockNotAuthorizedError: unlock without privilege or reason.

Audit relevance:
    Lock and unlock are logged with organization, year, month and actor.
    Rejected writes are logged at WARNING; unlocks are logged at WARNING
    and persisted as PeriodUnlockAudit records.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date

from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.dtos import BookingPeriod, PeriodUnlockAudit
from billing_kernel.exceptions import (
    PeriodLockError,
    PeriodNotLockedError,
    UnlockNotAuthorizedError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.stores.base import PeriodLockStore

logger = get_logger("services.period_lock")


class PeriodLockGuard:
    """
    Guard and lifecycle manager for booking periods.

    Contract:
        ``assert_period_open`` must be called before any financial write.
        It raises before anything is written; callers never need to undo
        partial work.

    Non-goals:
        - Does NOT commit.  SQL-backed stores flush inside the caller's
          session.
        - Does NOT decide who is privileged; the caller passes the result
          of its own authorization check.
    """

    def __init__(self, store: PeriodLockStore, clock: Clock | None = None):
        self._store = store
        self._clock = clock or SystemClock()

    def is_locked(self, organization_id: str, year: int, month: int) -> bool:
        period = self._store.get_period(organization_id, year, month)
        return period is not None and period.is_locked

    def assert_period_open(self, organization_id: str, year: int, month: int) -> None:
        """
        Raise PeriodLockError if the period exists and is locked.

        Raises:
            PeriodLockError: the period is locked.
        """
        if self.is_locked(organization_id, year, month):
            logger.warning(
                "period_write_rejected",
                extra={"organization_id": organization_id, "year": year, "month": month},
            )
            raise PeriodLockError(year, month, organization_id)

    def assert_date_open(self, organization_id: str, booking_date: date) -> None:
        self.assert_period_open(organization_id, booking_date.year, booking_date.month)

    def lock_period(
        self, organization_id: str, year: int, month: int, actor_id: str
    ) -> BookingPeriod:
        """Lock the period; locking an already-locked period returns it unchanged."""
        existing = self._store.get_period(organization_id, year, month)
        if existing is not None and existing.is_locked:
            return existing

        base = existing or BookingPeriod(organization_id=organization_id, year=year, month=month)
        locked = base.locked(actor_id, self._clock.now())
        self._store.save_period(locked)

        logger.info(
            "period_locked",
            extra={
                "organization_id": organization_id,
                "year": year,
                "month": month,
                "locked_by": actor_id,
            },
        )
        return locked

    def unlock_period(
        self,
        organization_id: str,
        year: int,
        month: int,
        actor_id: str,
        reason: str,
        *,
        privileged: bool = True,
    ) -> BookingPeriod:
        """
        Reopen a locked period.  Administrative operation.

        Raises:
            UnlockNotAuthorizedError: ``privileged`` is False or the reason
                is empty.
            PeriodNotLockedError: the period is not locked.
        """
        if not privileged:
            raise UnlockNotAuthorizedError(year, month, "administrative privilege required")
        if not (reason or "").strip():
            raise UnlockNotAuthorizedError(year, month, "a reason is required")

        existing = self._store.get_period(organization_id, year, month)
        if existing is None or not existing.is_locked:
            raise PeriodNotLockedError(year, month)

        now = self._clock.now()
        self._store.record_unlock(
            PeriodUnlockAudit(
                organization_id=organization_id,
                year=year,
                month=month,
                actor_id=actor_id,
                reason=reason.strip(),
                unlocked_at=now,
                previously_locked_by=existing.locked_by,
                previously_locked_at=existing.locked_at,
            )
        )
        reopened = existing.unlocked()
        self._store.save_period(reopened)

        logger.warning(
            "period_unlocked",
            extra={
                "organization_id": organization_id,
                "year": year,
                "month": month,
                "actor_id": actor_id,
                "reason": reason.strip(),
                "previously_locked_by": existing.locked_by,
            },
        )
        return reopened


@contextmanager
def guarded(
    guard: PeriodLockGuard, organization_id: str, year: int, month: int
) -> Iterator[None]:
    """
    Run a block only if the period is open.

    Usage:
        with guarded(guard, org_id, 2025, 3):
            store.save(...)
    """
    guard.assert_period_open(organization_id, year, month)
    yield
