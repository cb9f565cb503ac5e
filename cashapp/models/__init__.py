"""Data models for the cash application system."""

from .enums import (
    ActivityAction,
    BankFeedType,
    BankTransactionDirection,
    BatchStatus,
    CreditMemoStatusFlag,
    ExceptionCoreType,
    ExceptionReasonCode,
    ExceptionType,
    GuardReasonCode,
    GuardState,
    InvoiceStatusFlag,
    PaymentStatus,
    PostingLineStatus,
    ReceivableKind,
    ReceivableStatus,
    RemittanceLinkStatus,
    ResolutionState,
    SettlementReason,
    SettlementState,
    SettlementStatus,
    SignalType,
    SyncEntityType,
    SyncStatus,
)
from .payment import (
    ActivityLogEntry,
    CandidateMatch,
    ExceptionClassification,
    MatchExplanation,
    MatchSignal,
    Payment,
    PostingLine,
)
from .receivable import (
    ReceivableItem,
    Remittance,
    RemittanceReference,
)
from .settlement import (
    BankTransaction,
    SettlementEvent,
)
from .sync import (
    DataFreshness,
    IntegrityGuard,
    IntegrityGuardReason,
    PostingDecision,
    SyncRun,
)
from .reconciliation import (
    ExceptionBucket,
    ExceptionSummary,
    MatchDecision,
    PostingBatchResult,
    PostingResult,
)

__all__ = [
    # Enums
    "ActivityAction",
    "BankFeedType",
    "BankTransactionDirection",
    "BatchStatus",
    "CreditMemoStatusFlag",
    "ExceptionCoreType",
    "ExceptionReasonCode",
    "ExceptionType",
    "GuardReasonCode",
    "GuardState",
    "InvoiceStatusFlag",
    "PaymentStatus",
    "PostingLineStatus",
    "ReceivableKind",
    "ReceivableStatus",
    "RemittanceLinkStatus",
    "ResolutionState",
    "SettlementReason",
    "SettlementState",
    "SettlementStatus",
    "SignalType",
    "SyncEntityType",
    "SyncStatus",
    # Payments
    "ActivityLogEntry",
    "CandidateMatch",
    "ExceptionClassification",
    "MatchExplanation",
    "MatchSignal",
    "Payment",
    "PostingLine",
    # Receivables
    "ReceivableItem",
    "Remittance",
    "RemittanceReference",
    # Settlement
    "BankTransaction",
    "SettlementEvent",
    # Sync
    "DataFreshness",
    "IntegrityGuard",
    "IntegrityGuardReason",
    "PostingDecision",
    "SyncRun",
    # Results
    "ExceptionBucket",
    "ExceptionSummary",
    "MatchDecision",
    "PostingBatchResult",
    "PostingResult",
]
