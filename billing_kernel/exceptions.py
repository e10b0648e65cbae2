"""
Typed Exception Hierarchy for the Billing Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The API layer surfaces billing errors verbatim to property managers. Parsing
message strings to decide on an HTTP status or a UI hint is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (year, month, error lists)

Example:
    try:
        guard.assert_period_open(org_id, 2025, 3)
    except PeriodLockError as e:
        return api_error(status=e.http_status, code=e.code, message=str(e))

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    BillingKernelError (base)
    |
    +-- PeriodError
    |   +-- PeriodLockError            (409, period is locked)
    |   +-- PeriodNotLockedError       (unlock requested for open period)
    |   +-- UnlockNotAuthorizedError   (unlock without privilege / reason)
    |
    +-- InvoiceError
    |   +-- InvoiceNotFoundError
    |
    +-- SepaError
    |   +-- SepaValidationError        (collected validation messages)
    |   +-- SepaControlSumMismatchError
    |
    +-- ConfigError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category   | Code                        | When Raised
-----------|-----------------------------|--------------------------------------
Period     | PERIOD_LOCKED               | Write against a locked booking period
           | PERIOD_NOT_LOCKED           | Unlock of a period that is not locked
           | UNLOCK_NOT_AUTHORIZED       | Unlock without privilege or reason
-----------|-----------------------------|--------------------------------------
Invoice    | INVOICE_NOT_FOUND           | Invoice id unknown to the store
-----------|-----------------------------|--------------------------------------
SEPA       | SEPA_VALIDATION_FAILED      | Creditor/debtor data invalid
           | SEPA_CONTROL_SUM_MISMATCH   | Rendered NbOfTxs/CtrlSum inconsistent
-----------|-----------------------------|--------------------------------------
Config     | CONFIG_ERROR                | Engine settings file invalid

Division by zero and missing meter data are NOT errors: they degrade to an
empty distribution, a zero ratio, or a provisional share.
"""


class BillingKernelError(Exception):
    """
    Base exception for all billing kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "BILLING_KERNEL_ERROR"
    http_status: int = 400


# Period-related exceptions


class PeriodError(BillingKernelError):
    """Base exception for booking-period errors."""

    code: str = "PERIOD_ERROR"


class PeriodLockError(PeriodError):
    """Attempted a financial write against a locked booking period."""

    code: str = "PERIOD_LOCKED"
    http_status: int = 409

    def __init__(self, year: int, month: int, organization_id: str | None = None):
        self.year = year
        self.month = month
        self.organization_id = organization_id
        super().__init__(f"Buchungsperiode {month}/{year} ist gesperrt.")


class PeriodNotLockedError(PeriodError):
    """Unlock requested for a period that is not locked."""

    code: str = "PERIOD_NOT_LOCKED"
    http_status: int = 409

    def __init__(self, year: int, month: int):
        self.year = year
        self.month = month
        super().__init__(f"Buchungsperiode {month}/{year} ist nicht gesperrt.")


class UnlockNotAuthorizedError(PeriodError):
    """Unlock attempted without administrative privilege or a reason."""

    code: str = "UNLOCK_NOT_AUTHORIZED"
    http_status: int = 403

    def __init__(self, year: int, month: int, detail: str):
        self.year = year
        self.month = month
        self.detail = detail
        super().__init__(
            f"Entsperren der Buchungsperiode {month}/{year} nicht erlaubt: {detail}"
        )


# Invoice-related exceptions


class InvoiceError(BillingKernelError):
    """Base exception for invoice errors."""

    code: str = "INVOICE_ERROR"


class InvoiceNotFoundError(InvoiceError):
    """Invoice was not found in the store."""

    code: str = "INVOICE_NOT_FOUND"
    http_status: int = 404

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice not found: {invoice_id}")


# SEPA-related exceptions


class SepaError(BillingKernelError):
    """Base exception for SEPA export errors."""

    code: str = "SEPA_ERROR"
    http_status: int = 422


class SepaValidationError(SepaError):
    """
    Creditor or debtor data failed validation.

    Carries every collected message so the caller can show all problems
    at once before export.
    """

    code: str = "SEPA_VALIDATION_FAILED"

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(
            f"SEPA export rejected ({len(self.errors)} error(s)): "
            + "; ".join(self.errors)
        )


class SepaControlSumMismatchError(SepaError):
    """Rendered document totals disagree with the batch."""

    code: str = "SEPA_CONTROL_SUM_MISMATCH"

    def __init__(self, element: str, expected: str, actual: str):
        self.element = element
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"SEPA {element} mismatch: expected {expected}, rendered {actual}"
        )


# Configuration exceptions


class ConfigError(BillingKernelError):
    """Engine settings could not be loaded or validated."""

    code: str = "CONFIG_ERROR"
    http_status: int = 500

    def __init__(self, message: str, source: str | None = None):
        self.source = source
        super().__init__(message if source is None else f"{message} ({source})")
