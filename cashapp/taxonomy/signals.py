"""
Exception signals collected from a payment.

Each signal is an explicit tagged value; the resolver decides between them
with an ordered rule list.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from ..models import Payment, PaymentStatus, SettlementReason, SettlementState, SettlementStatus


class SignalKind(str, Enum):
    """Kinds of evidence that can classify an exception, highest precedence first."""
    PARSE_ERROR = "parse_error"
    INVOICE_STATUS = "invoice_status"
    CREDIT_MEMO_STATUS = "credit_memo_status"
    SETTLEMENT_PENDING = "settlement_pending"
    ACH_RETURN = "ach_return"
    BANK_RETURN = "bank_return"
    SETTLEMENT_FAILED = "settlement_failed"
    ON_ACCOUNT = "on_account"
    JE_REQUIRED = "je_required"
    LEGACY_TYPE = "legacy_type"


@dataclass(frozen=True)
class ExceptionSignal:
    kind: SignalKind
    value: Optional[str] = None


def derive_settlement_state(payment: Payment) -> SettlementState:
    """Settlement state from explicit state, lifecycle status or settlement status."""
    if payment.settlement_state:
        return payment.settlement_state
    if payment.status == PaymentStatus.SETTLEMENT_PENDING:
        return SettlementState.PENDING
    if payment.settlement_status == SettlementStatus.FAILED:
        return SettlementState.FAILED
    if payment.settlement_status == SettlementStatus.FINAL:
        return SettlementState.CONFIRMED
    return SettlementState.NONE


def collect_signals(payment: Payment) -> List[ExceptionSignal]:
    """Every signal present on the payment, in no particular order of importance."""
    signals = []
    settlement_state = derive_settlement_state(payment)

    if payment.parse_error_flag:
        signals.append(ExceptionSignal(SignalKind.PARSE_ERROR))
    if payment.invoice_status_flag:
        signals.append(ExceptionSignal(SignalKind.INVOICE_STATUS, payment.invoice_status_flag.value))
    if payment.credit_memo_status_flag:
        signals.append(
            ExceptionSignal(SignalKind.CREDIT_MEMO_STATUS, payment.credit_memo_status_flag.value)
        )
    if settlement_state == SettlementState.PENDING:
        signals.append(ExceptionSignal(SignalKind.SETTLEMENT_PENDING))
    if payment.ach_return_flag:
        signals.append(ExceptionSignal(SignalKind.ACH_RETURN))
    if payment.settlement_reason == SettlementReason.REVERSED:
        signals.append(ExceptionSignal(SignalKind.BANK_RETURN))
    if settlement_state == SettlementState.FAILED:
        signals.append(ExceptionSignal(SignalKind.SETTLEMENT_FAILED))
    if payment.on_account_flag:
        signals.append(ExceptionSignal(SignalKind.ON_ACCOUNT))
    if payment.je_required_flag:
        signals.append(ExceptionSignal(SignalKind.JE_REQUIRED))
    if payment.exception_type:
        signals.append(ExceptionSignal(SignalKind.LEGACY_TYPE, payment.exception_type.value))

    return signals
