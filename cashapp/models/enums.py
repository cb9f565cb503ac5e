"""Enumerations for the cash application system."""

from enum import Enum


class PaymentStatus(str, Enum):
    """
    Lifecycle status of an incoming payment.

    NEW: Received, awaiting matching
    AUTO_MATCHED: Linked to receivables without human intervention
    EXCEPTION: Parked for manual resolution
    PENDING_TO_POST: Matched, waiting for ERP posting
    SETTLEMENT_PENDING: Seen on a preliminary bank feed only
    POSTED: Posted to the ERP, classification frozen
    """
    NEW = "New"
    AUTO_MATCHED = "AutoMatched"
    EXCEPTION = "Exception"
    PENDING_TO_POST = "PendingToPost"
    SETTLEMENT_PENDING = "SettlementPending"
    POSTED = "Posted"


class ExceptionType(str, Enum):
    """Legacy (flat) exception type set by the matching engine."""
    MISSING_REMITTANCE = "MissingRemittance"
    SHORT_PAY = "ShortPay"
    OVER_PAY = "OverPay"
    DUPLICATE_SUSPECTED = "DuplicateSuspected"
    MULTI_ENTITY = "MultiEntity"
    SETTLEMENT_FAILED = "SettlementFailed"
    AMBIGUOUS_MATCH = "AmbiguousMatch"
    INVALID_REF = "InvalidRef"
    NEEDS_JE = "NeedsJE"


class ExceptionCoreType(str, Enum):
    """Broad exception category (first level of the taxonomy)."""
    MISSING_REMIT = "MISSING_REMIT"
    AMOUNT_ISSUE = "AMOUNT_ISSUE"
    DUPLICATE = "DUPLICATE"
    INVOICE_ISSUE = "INVOICE_ISSUE"
    CREDIT_ISSUE = "CREDIT_ISSUE"
    INTERCOMPANY = "INTERCOMPANY"
    SETTLEMENT = "SETTLEMENT"
    JE_NEEDED = "JE_NEEDED"


class ExceptionReasonCode(str, Enum):
    """Specific exception cause (second level of the taxonomy)."""
    MISSING_REMIT = "MISSING_REMIT"
    SHORT_PAY = "SHORT_PAY"
    OVER_PAY = "OVER_PAY"
    AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
    DUPLICATE_SUSPECTED = "DUPLICATE_SUSPECTED"
    DUPLICATE_CONFIRMED = "DUPLICATE_CONFIRMED"
    DUPLICATE_DISMISSED = "DUPLICATE_DISMISSED"
    INVOICE_NOT_FOUND = "INVOICE_NOT_FOUND"
    INVOICE_CLOSED = "INVOICE_CLOSED"
    INVOICE_PAID = "INVOICE_PAID"
    INVALID_INVOICE = "INVALID_INVOICE"
    INVALID_REFERENCE = "INVALID_REFERENCE"
    AMBIGUOUS_MATCH = "AMBIGUOUS_MATCH"
    INVALID_CM = "INVALID_CM"
    CM_NOT_FOUND = "CM_NOT_FOUND"
    CM_ALREADY_APPLIED = "CM_ALREADY_APPLIED"
    MULTI_ENTITY = "MULTI_ENTITY"
    IC_SPLIT_REQUIRED = "IC_SPLIT_REQUIRED"
    SETTLEMENT_PENDING = "SETTLEMENT_PENDING"
    SETTLEMENT_FAILED = "SETTLEMENT_FAILED"
    BANK_RETURN = "BANK_RETURN"
    ACH_FAILED = "ACH_FAILED"
    BAD_DEBT_RECOVERY = "BAD_DEBT_RECOVERY"
    TEST_DEPOSIT = "TEST_DEPOSIT"
    UNAPPLIED_CASH = "UNAPPLIED_CASH"
    MANUAL_JE_REQUIRED = "MANUAL_JE_REQUIRED"
    REMIT_PARSE_ERROR = "REMIT_PARSE_ERROR"


class ResolutionState(str, Enum):
    """Manual resolution progress of an exception."""
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"
    REJECTED = "REJECTED"


class InvoiceStatusFlag(str, Enum):
    """Invoice problem reported by the remittance or ERP lookup."""
    NOT_FOUND = "NOT_FOUND"
    CLOSED = "CLOSED"
    PAID = "PAID"
    INVALID = "INVALID"


class CreditMemoStatusFlag(str, Enum):
    """Credit memo problem reported by the remittance or ERP lookup."""
    INVALID_CM = "INVALID_CM"
    CM_APPLIED = "CM_APPLIED"
    CM_NOT_FOUND = "CM_NOT_FOUND"


class ReceivableKind(str, Enum):
    """Kind of open receivable."""
    INVOICE = "Invoice"
    CREDIT_MEMO = "CreditMemo"


class ReceivableStatus(str, Enum):
    OPEN = "Open"
    CLOSED = "Closed"


class RemittanceLinkStatus(str, Enum):
    """How a remittance is linked to its payment."""
    LINKED = "Linked"
    UNLINKED = "Unlinked"
    PARTIAL = "Partial"
    MULTI_MATCH = "MultiMatch"


class SignalType(str, Enum):
    """Evidence types used in match explanations."""
    INVOICE_REF = "InvoiceRef"
    AMOUNT_EXACT = "AmountExact"
    REMITTANCE_LINK = "RemittanceLink"
    CM_COMPOSITE = "CMComposite"
    CUSTOMER_NAME = "CustomerName"


class BankFeedType(str, Enum):
    PRELIMINARY = "Preliminary"
    FINAL = "Final"


class BankTransactionDirection(str, Enum):
    CREDIT = "Credit"
    DEBIT = "Debit"


class SettlementStatus(str, Enum):
    """Status of a settlement event."""
    PENDING = "Pending"
    FINAL = "Final"
    FAILED = "Failed"


class SettlementReason(str, Enum):
    AWAITING_FINAL_FEED = "AwaitingFinalFeed"
    FINAL_NOT_FOUND = "FinalNotFound"
    REVERSED = "Reversed"
    AMOUNT_MISMATCH = "AmountMismatch"


class SettlementState(str, Enum):
    """Settlement state as seen by the exception taxonomy."""
    NONE = "NONE"
    PENDING = "PENDING"
    FAILED = "FAILED"
    CONFIRMED = "CONFIRMED"


class SyncEntityType(str, Enum):
    """ERP entity types synchronised into the snapshot."""
    INVOICES = "Invoices"
    CREDIT_MEMOS = "CreditMemos"
    PAYMENTS = "Payments"
    CUSTOMERS = "Customers"


class SyncStatus(str, Enum):
    SUCCESS = "Success"
    PARTIAL = "Partial"
    FAILED = "Failed"


class GuardState(str, Enum):
    """Overall state of the data integrity guard."""
    HEALTHY = "Healthy"
    DEGRADED = "Degraded"
    BLOCK_POSTING = "BlockPosting"


class GuardReasonCode(str, Enum):
    INVOICES_STALE = "InvoicesStale"
    CREDIT_MEMOS_STALE = "CreditMemosStale"
    PAYMENTS_STALE = "PaymentsStale"
    CUSTOMER_MASTER_STALE = "CustomerMasterStale"
    PARTIAL_SYNC_DETECTED = "PartialSyncDetected"
    FAILED_SYNC_DETECTED = "FailedSyncDetected"


class PostingLineStatus(str, Enum):
    """Outcome of one payment inside a posting batch."""
    POSTED = "Posted"
    FAILED = "Failed"
    BLOCKED = "Blocked"
    SKIPPED = "Skipped"


class BatchStatus(str, Enum):
    POSTED = "Posted"
    PARTIAL = "Partial"
    FAILED = "Failed"
    BLOCKED = "Blocked"


class ActivityAction(str, Enum):
    """Type of activity log entry."""
    MATCHING_EVALUATED = "Matching Engine Evaluated"
    COMPOSITE_APPLIED = "Composite match applied (CM + Payment)"
    POSTING_LINES_CREATED = "Auto-match created posting lines"
    MOVED_TO_PENDING_POST = "Moved to PendingToPost"
    EXCEPTION_CREATED = "Exception created"
    CUSTOMER_RESOLVED = "Customer resolved"
    SETTLEMENT_PENDING = "Settlement Pending"
    SETTLEMENT_FINAL = "Settlement Final"
    SETTLEMENT_FAILED = "Settlement Failed"
    BANK_RETURN = "Bank Return"
    POSTED = "Posted to ERP"
    POSTING_FAILED = "Posting failed"
    POSTING_BLOCKED = "Posting blocked"
