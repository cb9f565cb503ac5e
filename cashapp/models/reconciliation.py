"""Result models returned by the matching, posting and reporting services."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any
from uuid import uuid4

from .enums import (
    BatchStatus,
    ExceptionType,
    PaymentStatus,
    PostingLineStatus,
)
from .payment import CandidateMatch, MatchExplanation, PostingLine


@dataclass
class MatchDecision:
    """Outcome of evaluating one payment."""
    payment_id: str
    status: PaymentStatus
    exception_type: Optional[ExceptionType] = None
    confidence: Optional[int] = None
    explanation: Optional[MatchExplanation] = None
    posting_lines: List[PostingLine] = field(default_factory=list)
    candidates: List[CandidateMatch] = field(default_factory=list)
    composite: bool = False

    # False when the payment was not eligible and nothing changed
    evaluated: bool = True

    @property
    def is_auto_match(self) -> bool:
        return self.status == PaymentStatus.PENDING_TO_POST and self.evaluated

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payment_id": self.payment_id,
            "status": self.status.value,
            "exception_type": self.exception_type.value if self.exception_type else None,
            "confidence": self.confidence,
            "explanation": self.explanation.to_dict() if self.explanation else None,
            "posting_lines": [line.to_dict() for line in self.posting_lines],
            "candidates": [c.to_dict() for c in self.candidates],
            "composite": self.composite,
            "evaluated": self.evaluated,
        }


@dataclass
class PostingResult:
    """Outcome of posting a single payment inside a batch."""
    payment_id: str
    status: PostingLineStatus
    erp_payment_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payment_id": self.payment_id,
            "status": self.status.value,
            "erp_payment_id": self.erp_payment_id,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


@dataclass
class PostingBatchResult:
    """Aggregate of a posting batch; lines are independent of each other."""
    status: BatchStatus
    posted_at: datetime
    results: List[PostingResult] = field(default_factory=list)
    blocked_reason: Optional[str] = None
    guard_warning: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid4()))

    @property
    def posted_count(self) -> int:
        return sum(1 for r in self.results if r.status == PostingLineStatus.POSTED)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if r.status == PostingLineStatus.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "posted_at": self.posted_at.isoformat(),
            "blocked_reason": self.blocked_reason,
            "guard_warning": self.guard_warning,
            "posted_count": self.posted_count,
            "failed_count": self.failed_count,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class ExceptionBucket:
    """Count, total amount and oldest age of a group of exceptions."""
    count: int = 0
    amount_cents: int = 0
    oldest_age_days: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "amount_cents": self.amount_cents,
            "oldest_age_days": self.oldest_age_days,
        }


@dataclass
class ExceptionSummary:
    """Exception workload grouped by taxonomy level."""
    by_core_type: Dict[str, ExceptionBucket] = field(default_factory=dict)
    by_reason_code: Dict[str, ExceptionBucket] = field(default_factory=dict)
    settlement_pending: ExceptionBucket = field(default_factory=ExceptionBucket)
    total_exceptions: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_exceptions": self.total_exceptions,
            "by_core_type": {k: v.to_dict() for k, v in self.by_core_type.items()},
            "by_reason_code": {k: v.to_dict() for k, v in self.by_reason_code.items()},
            "settlement_pending": self.settlement_pending.to_dict(),
        }
