"""Payment models for the cash application system."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any
from uuid import uuid4

from ..errors import PaymentFrozenError
from .enums import (
    ActivityAction,
    CreditMemoStatusFlag,
    ExceptionCoreType,
    ExceptionReasonCode,
    ExceptionType,
    InvoiceStatusFlag,
    PaymentStatus,
    ResolutionState,
    SettlementReason,
    SettlementState,
    SettlementStatus,
    SignalType,
)

# Fields that may no longer change once a payment is posted.
# The activity log is not listed: it stays append-only.
FROZEN_WHEN_POSTED = frozenset({
    "status",
    "amount_cents",
    "customer_id",
    "exception_type",
    "exception_core_type",
    "exception_reason_code",
    "exception_reason_label",
    "exception_resolution_state",
    "confidence",
    "match_explanation",
    "candidate_matches",
    "posting_lines",
    "auto_match_eligible",
    "auto_matched_at",
    "erp_payment_id",
    "posted_at",
})


@dataclass
class MatchSignal:
    """One weighted piece of evidence behind a match decision."""
    type: SignalType
    value: str
    weight: float

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "value": self.value, "weight": self.weight}


@dataclass
class MatchExplanation:
    """Audit explanation attached to every match decision."""
    summary: str
    signals: List[MatchSignal] = field(default_factory=list)
    sanitized_tokens: List[str] = field(default_factory=list)
    confidence: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "signals": [s.to_dict() for s in self.signals],
            "sanitized_tokens": list(self.sanitized_tokens),
            "confidence": self.confidence,
        }


@dataclass
class CandidateMatch:
    """A receivable retained on the payment for manual resolution."""
    receivable_id: str
    identifier: str
    amount_cents: int
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "receivable_id": self.receivable_id,
            "identifier": self.identifier,
            "amount_cents": self.amount_cents,
            "score": self.score,
        }


@dataclass
class PostingLine:
    """A single application line sent to the ERP (one per receivable)."""
    reference: str
    amount_cents: int
    reference_field: str = "Invoice"
    reason_code: str = "FULL"
    reason_description: str = "Full Payment"
    customer_id: Optional[str] = None
    discount_cents: int = 0
    id: str = field(default_factory=lambda: str(uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "reference": self.reference,
            "reference_field": self.reference_field,
            "amount_cents": self.amount_cents,
            "discount_cents": self.discount_cents,
            "reason_code": self.reason_code,
            "reason_description": self.reason_description,
            "customer_id": self.customer_id,
        }


@dataclass
class ActivityLogEntry:
    """An entry in a payment's append-only activity log."""
    timestamp: datetime
    action: ActivityAction
    details: str = ""
    user: str = "System"
    qualifier: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid4()))

    @property
    def label(self) -> str:
        """Display label, e.g. "Exception created: InvalidRef"."""
        if self.qualifier:
            return f"{self.action.value}: {self.qualifier}"
        return self.action.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "action": self.label,
            "details": self.details,
            "user": self.user,
        }


@dataclass
class ExceptionClassification:
    """The (core type, reason code, label) triple owned by the taxonomy resolver."""
    core_type: ExceptionCoreType
    reason_code: ExceptionReasonCode
    label: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "core_type": self.core_type.value,
            "reason_code": self.reason_code.value,
            "label": self.label,
        }


@dataclass
class Payment:
    """
    An incoming customer payment.
    All monetary amounts are stored in CENTS (integer) to avoid floating point errors.

    Once the payment is POSTED its classification and match fields are frozen;
    only the activity log may keep growing.
    """
    # Identity
    id: str = field(default_factory=lambda: str(uuid4()))
    payment_number: str = ""

    # Financial data
    amount_cents: int = 0
    currency: str = "USD"
    received_at: Optional[datetime] = None

    # Raw text from the bank / lockbox
    payer_name_raw: str = ""
    memo_raw: str = ""

    # Customer
    customer_id: Optional[str] = None

    # Lifecycle
    status: PaymentStatus = PaymentStatus.NEW
    exception_type: Optional[ExceptionType] = None

    # Taxonomy (resolver-owned)
    exception_core_type: Optional[ExceptionCoreType] = None
    exception_reason_code: Optional[ExceptionReasonCode] = None
    exception_reason_label: Optional[str] = None
    exception_resolution_state: Optional[ResolutionState] = None

    # Taxonomy input signals
    parse_error_flag: bool = False
    invoice_status_flag: Optional[InvoiceStatusFlag] = None
    credit_memo_status_flag: Optional[CreditMemoStatusFlag] = None
    ach_return_flag: bool = False
    on_account_flag: bool = False
    je_required_flag: bool = False

    # Settlement
    bank_reference: Optional[str] = None
    settlement_status: Optional[SettlementStatus] = None
    settlement_state: Optional[SettlementState] = None
    settlement_event_id: Optional[str] = None
    settlement_first_seen_at: Optional[datetime] = None
    settlement_last_checked_at: Optional[datetime] = None
    settlement_reason: Optional[SettlementReason] = None

    # Matching
    confidence: Optional[int] = None
    match_explanation: Optional[MatchExplanation] = None
    candidate_matches: List[CandidateMatch] = field(default_factory=list)
    posting_lines: List[PostingLine] = field(default_factory=list)
    auto_match_eligible: bool = True
    auto_matched_at: Optional[datetime] = None

    # Posting
    erp_payment_id: Optional[str] = None
    posted_at: Optional[datetime] = None
    posting_error: Optional[str] = None

    # Audit
    activity_log: List[ActivityLogEntry] = field(default_factory=list)

    def __post_init__(self):
        object.__setattr__(self, "_initialised", True)

    def __setattr__(self, name: str, value: Any) -> None:
        if (
            name in FROZEN_WHEN_POSTED
            and self.__dict__.get("_initialised")
            and self.__dict__.get("status") == PaymentStatus.POSTED
            and self.__dict__.get(name) != value
        ):
            raise PaymentFrozenError(self.id, name)
        object.__setattr__(self, name, value)

    @property
    def amount(self) -> float:
        """Return amount in standard units."""
        return self.amount_cents / 100.0

    @property
    def is_posted(self) -> bool:
        return self.status == PaymentStatus.POSTED

    @property
    def is_exception(self) -> bool:
        return self.status == PaymentStatus.EXCEPTION

    @property
    def settlement_unresolved(self) -> bool:
        """True while the bank has not confirmed final settlement."""
        return (
            self.settlement_status is not None
            and self.settlement_status != SettlementStatus.FINAL
        )

    @property
    def classification(self) -> Optional[ExceptionClassification]:
        if not (
            self.exception_core_type
            and self.exception_reason_code
            and self.exception_reason_label
        ):
            return None
        return ExceptionClassification(
            core_type=self.exception_core_type,
            reason_code=self.exception_reason_code,
            label=self.exception_reason_label,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "payment_number": self.payment_number,
            "amount_cents": self.amount_cents,
            "amount": self.amount,
            "currency": self.currency,
            "received_at": self.received_at.isoformat() if self.received_at else None,
            "payer_name_raw": self.payer_name_raw,
            "memo_raw": self.memo_raw,
            "customer_id": self.customer_id,
            "status": self.status.value,
            "exception_type": self.exception_type.value if self.exception_type else None,
            "exception_core_type": (
                self.exception_core_type.value if self.exception_core_type else None
            ),
            "exception_reason_code": (
                self.exception_reason_code.value if self.exception_reason_code else None
            ),
            "exception_reason_label": self.exception_reason_label,
            "exception_resolution_state": (
                self.exception_resolution_state.value
                if self.exception_resolution_state else None
            ),
            "settlement_status": (
                self.settlement_status.value if self.settlement_status else None
            ),
            "settlement_state": (
                self.settlement_state.value if self.settlement_state else None
            ),
            "settlement_reason": (
                self.settlement_reason.value if self.settlement_reason else None
            ),
            "confidence": self.confidence,
            "match_explanation": (
                self.match_explanation.to_dict() if self.match_explanation else None
            ),
            "candidate_matches": [c.to_dict() for c in self.candidate_matches],
            "posting_lines": [line.to_dict() for line in self.posting_lines],
            "erp_payment_id": self.erp_payment_id,
            "posted_at": self.posted_at.isoformat() if self.posted_at else None,
            "posting_error": self.posting_error,
            "activity_log": [e.to_dict() for e in self.activity_log],
        }
