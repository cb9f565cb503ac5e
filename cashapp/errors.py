"""Error types for the cash application engine.

Business outcomes (unmatched payments, ghost payments, blocked posting) are
returned as values. These exceptions cover lookups and invariant breaches.
"""

from typing import Any


class CashAppError(Exception):
    """Base exception for the cash application engine."""


class PaymentNotFoundError(CashAppError):
    def __init__(self, payment_id: str):
        super().__init__(f"Payment not found: {payment_id}")
        self.payment_id = payment_id


class PaymentFrozenError(CashAppError):
    """Raised when a posted payment's frozen fields are modified."""

    def __init__(self, payment_id: str, field_name: str):
        super().__init__(
            f"Payment {payment_id} is posted; field '{field_name}' is frozen"
        )
        self.payment_id = payment_id
        self.field_name = field_name


class SettlementEventNotFoundError(CashAppError):
    def __init__(self, bank_reference: str):
        super().__init__(f"No settlement event for bank reference: {bank_reference}")
        self.bank_reference = bank_reference


class ErpError(CashAppError):
    """Error returned by the ERP posting API."""

    def __init__(self, message: str, status_code: int = 0, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details

    @property
    def is_transient(self) -> bool:
        """Timeouts, connection errors and 5xx responses may succeed on retry."""
        return self.status_code == 0 or self.status_code >= 500
