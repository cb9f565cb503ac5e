"""Receivable and remittance models."""

from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any
from uuid import uuid4

from .enums import ReceivableKind, ReceivableStatus, RemittanceLinkStatus

CREDIT_MEMO_PREFIX = "CM"


@dataclass
class ReceivableItem:
    """
    An open invoice or credit memo synchronised from the ERP.
    Credit memos carry negative amounts. Only the status may change.
    """
    identifier: str
    amount_cents: int
    kind: ReceivableKind = ReceivableKind.INVOICE
    customer_id: Optional[str] = None
    status: ReceivableStatus = ReceivableStatus.OPEN
    id: str = field(default_factory=lambda: str(uuid4()))

    @property
    def amount(self) -> float:
        return self.amount_cents / 100.0

    @property
    def is_open(self) -> bool:
        return self.status == ReceivableStatus.OPEN

    @property
    def is_credit_memo(self) -> bool:
        return self.kind == ReceivableKind.CREDIT_MEMO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "identifier": self.identifier,
            "kind": self.kind.value,
            "amount_cents": self.amount_cents,
            "customer_id": self.customer_id,
            "status": self.status.value,
        }


@dataclass
class RemittanceReference:
    """One (receivable identifier, amount) line extracted from a remittance."""
    identifier: str
    amount_cents: int

    @property
    def is_credit(self) -> bool:
        """Credit memo references are CM-prefixed or carry a negative amount."""
        return (
            self.identifier.strip().upper().startswith(CREDIT_MEMO_PREFIX)
            or self.amount_cents < 0
        )

    @property
    def signed_amount_cents(self) -> int:
        """Amount with credit memos always counted as a deduction."""
        if self.is_credit:
            return -abs(self.amount_cents)
        return self.amount_cents


@dataclass
class Remittance:
    """
    Remittance advice as delivered by the extraction service.
    Line items arrive already extracted; at most one payment per remittance.
    """
    references: List[RemittanceReference] = field(default_factory=list)
    link_status: RemittanceLinkStatus = RemittanceLinkStatus.UNLINKED
    confidence: float = 0.0
    payment_id: Optional[str] = None
    subject: str = ""
    remittance_number: str = ""
    id: str = field(default_factory=lambda: str(uuid4()))

    @property
    def is_linked(self) -> bool:
        return self.payment_id is not None and self.link_status in (
            RemittanceLinkStatus.LINKED,
            RemittanceLinkStatus.PARTIAL,
        )

    @property
    def invoice_references(self) -> List[RemittanceReference]:
        return [ref for ref in self.references if not ref.is_credit]

    @property
    def credit_references(self) -> List[RemittanceReference]:
        return [ref for ref in self.references if ref.is_credit]
