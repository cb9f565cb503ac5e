"""Bank feed and settlement models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any
from uuid import uuid4

from .enums import (
    BankFeedType,
    BankTransactionDirection,
    SettlementReason,
    SettlementStatus,
)


@dataclass
class BankTransaction:
    """A preliminary or final transaction reported by the bank feed."""
    bank_reference: str
    amount_cents: int
    observed_at: datetime
    feed_type: BankFeedType = BankFeedType.PRELIMINARY
    direction: BankTransactionDirection = BankTransactionDirection.CREDIT
    method: str = "ACH"
    payer_raw: str = ""
    memo_raw: str = ""
    lockbox_batch_id: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid4()))

    @property
    def is_final(self) -> bool:
        return self.feed_type == BankFeedType.FINAL


@dataclass
class SettlementEvent:
    """
    Tracks finality of one preliminary observation.

    Several events may share a bank reference (lockbox batches); each is
    reconciled independently against the same final transaction.
    """
    payment_id: str
    bank_reference: str
    first_seen_at: datetime
    last_checked_at: datetime
    amount_cents: int = 0
    prelim_transaction_id: Optional[str] = None
    final_transaction_id: Optional[str] = None
    status: SettlementStatus = SettlementStatus.PENDING
    reason: Optional[SettlementReason] = SettlementReason.AWAITING_FINAL_FEED
    age_hours: float = 0.0
    id: str = field(default_factory=lambda: str(uuid4()))

    @property
    def is_closed(self) -> bool:
        return self.status != SettlementStatus.PENDING

    def compute_age_hours(self, now: datetime) -> float:
        """Age from first sighting to now, or to the last check once closed."""
        end = self.last_checked_at if self.is_closed else now
        return max((end - self.first_seen_at).total_seconds() / 3600.0, 0.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "payment_id": self.payment_id,
            "bank_reference": self.bank_reference,
            "prelim_transaction_id": self.prelim_transaction_id,
            "final_transaction_id": self.final_transaction_id,
            "amount_cents": self.amount_cents,
            "status": self.status.value,
            "reason": self.reason.value if self.reason else None,
            "first_seen_at": self.first_seen_at.isoformat(),
            "last_checked_at": self.last_checked_at.isoformat(),
            "age_hours": round(self.age_hours, 2),
        }
