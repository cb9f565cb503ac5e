"""
Exception Taxonomy Resolver.

Maps the signals on a payment to a stable (core type, reason code, label)
classification. Resolution is idempotent:
- an existing reason code is never overwritten
- a missing core type or label is inferred from the reason code
- otherwise the first matching rule in precedence order wins

Derived defaults are also filled in on first classification: exceptions
start OPEN, and the settlement state follows the payment's settlement data
or, failing that, the settlement reason codes.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog

from ..models import (
    CreditMemoStatusFlag,
    ExceptionClassification,
    ExceptionCoreType,
    ExceptionReasonCode,
    ExceptionType,
    InvoiceStatusFlag,
    Payment,
    PaymentStatus,
    ResolutionState,
    SettlementState,
)
from .signals import ExceptionSignal, SignalKind, collect_signals, derive_settlement_state

logger = structlog.get_logger()


EXCEPTION_REASON_LABELS: Dict[ExceptionReasonCode, str] = {
    ExceptionReasonCode.MISSING_REMIT: "Missing Remit",
    ExceptionReasonCode.SHORT_PAY: "Short Pay",
    ExceptionReasonCode.OVER_PAY: "Over Pay",
    ExceptionReasonCode.AMOUNT_MISMATCH: "Mismatch",
    ExceptionReasonCode.DUPLICATE_SUSPECTED: "Suspected",
    ExceptionReasonCode.DUPLICATE_CONFIRMED: "Confirmed",
    ExceptionReasonCode.DUPLICATE_DISMISSED: "Dismissed",
    ExceptionReasonCode.INVOICE_NOT_FOUND: "Invoice Not Found",
    ExceptionReasonCode.INVOICE_CLOSED: "Invoice Closed",
    ExceptionReasonCode.INVOICE_PAID: "Invoice Paid",
    ExceptionReasonCode.INVALID_INVOICE: "Invalid Invoice",
    ExceptionReasonCode.INVALID_REFERENCE: "Invalid Ref",
    ExceptionReasonCode.AMBIGUOUS_MATCH: "Ambiguous",
    ExceptionReasonCode.INVALID_CM: "Invalid Credit Memo",
    ExceptionReasonCode.CM_NOT_FOUND: "CM Not Found",
    ExceptionReasonCode.CM_ALREADY_APPLIED: "CM Already Applied",
    ExceptionReasonCode.MULTI_ENTITY: "Multi-Entity",
    ExceptionReasonCode.IC_SPLIT_REQUIRED: "IC Split Needed",
    ExceptionReasonCode.SETTLEMENT_PENDING: "Pending",
    ExceptionReasonCode.SETTLEMENT_FAILED: "Failed",
    ExceptionReasonCode.BANK_RETURN: "Bank Return",
    ExceptionReasonCode.ACH_FAILED: "ACH Failed",
    ExceptionReasonCode.BAD_DEBT_RECOVERY: "Bad Debt",
    ExceptionReasonCode.TEST_DEPOSIT: "Test Deposit",
    ExceptionReasonCode.UNAPPLIED_CASH: "On Account",
    ExceptionReasonCode.MANUAL_JE_REQUIRED: "Manual JE",
    ExceptionReasonCode.REMIT_PARSE_ERROR: "Parse Error",
}

EXCEPTION_REASON_TO_CORE: Dict[ExceptionReasonCode, ExceptionCoreType] = {
    ExceptionReasonCode.MISSING_REMIT: ExceptionCoreType.MISSING_REMIT,
    ExceptionReasonCode.SHORT_PAY: ExceptionCoreType.AMOUNT_ISSUE,
    ExceptionReasonCode.OVER_PAY: ExceptionCoreType.AMOUNT_ISSUE,
    ExceptionReasonCode.AMOUNT_MISMATCH: ExceptionCoreType.AMOUNT_ISSUE,
    ExceptionReasonCode.DUPLICATE_SUSPECTED: ExceptionCoreType.DUPLICATE,
    ExceptionReasonCode.DUPLICATE_CONFIRMED: ExceptionCoreType.DUPLICATE,
    ExceptionReasonCode.DUPLICATE_DISMISSED: ExceptionCoreType.DUPLICATE,
    ExceptionReasonCode.INVOICE_NOT_FOUND: ExceptionCoreType.INVOICE_ISSUE,
    ExceptionReasonCode.INVOICE_CLOSED: ExceptionCoreType.INVOICE_ISSUE,
    ExceptionReasonCode.INVOICE_PAID: ExceptionCoreType.INVOICE_ISSUE,
    ExceptionReasonCode.INVALID_INVOICE: ExceptionCoreType.INVOICE_ISSUE,
    ExceptionReasonCode.INVALID_REFERENCE: ExceptionCoreType.INVOICE_ISSUE,
    ExceptionReasonCode.AMBIGUOUS_MATCH: ExceptionCoreType.INVOICE_ISSUE,
    ExceptionReasonCode.INVALID_CM: ExceptionCoreType.CREDIT_ISSUE,
    ExceptionReasonCode.CM_NOT_FOUND: ExceptionCoreType.CREDIT_ISSUE,
    ExceptionReasonCode.CM_ALREADY_APPLIED: ExceptionCoreType.CREDIT_ISSUE,
    ExceptionReasonCode.MULTI_ENTITY: ExceptionCoreType.INTERCOMPANY,
    ExceptionReasonCode.IC_SPLIT_REQUIRED: ExceptionCoreType.INTERCOMPANY,
    ExceptionReasonCode.SETTLEMENT_PENDING: ExceptionCoreType.SETTLEMENT,
    ExceptionReasonCode.SETTLEMENT_FAILED: ExceptionCoreType.SETTLEMENT,
    ExceptionReasonCode.BANK_RETURN: ExceptionCoreType.SETTLEMENT,
    ExceptionReasonCode.ACH_FAILED: ExceptionCoreType.SETTLEMENT,
    ExceptionReasonCode.BAD_DEBT_RECOVERY: ExceptionCoreType.JE_NEEDED,
    ExceptionReasonCode.TEST_DEPOSIT: ExceptionCoreType.JE_NEEDED,
    ExceptionReasonCode.UNAPPLIED_CASH: ExceptionCoreType.JE_NEEDED,
    ExceptionReasonCode.MANUAL_JE_REQUIRED: ExceptionCoreType.JE_NEEDED,
    ExceptionReasonCode.REMIT_PARSE_ERROR: ExceptionCoreType.MISSING_REMIT,
}

LEGACY_TYPE_TO_REASON: Dict[ExceptionType, ExceptionReasonCode] = {
    ExceptionType.MISSING_REMITTANCE: ExceptionReasonCode.MISSING_REMIT,
    ExceptionType.SHORT_PAY: ExceptionReasonCode.SHORT_PAY,
    ExceptionType.OVER_PAY: ExceptionReasonCode.OVER_PAY,
    ExceptionType.DUPLICATE_SUSPECTED: ExceptionReasonCode.DUPLICATE_SUSPECTED,
    ExceptionType.MULTI_ENTITY: ExceptionReasonCode.MULTI_ENTITY,
    ExceptionType.SETTLEMENT_FAILED: ExceptionReasonCode.SETTLEMENT_FAILED,
    ExceptionType.AMBIGUOUS_MATCH: ExceptionReasonCode.AMBIGUOUS_MATCH,
    ExceptionType.INVALID_REF: ExceptionReasonCode.INVALID_REFERENCE,
    ExceptionType.NEEDS_JE: ExceptionReasonCode.MANUAL_JE_REQUIRED,
}

INVOICE_STATUS_TO_REASON: Dict[InvoiceStatusFlag, ExceptionReasonCode] = {
    InvoiceStatusFlag.NOT_FOUND: ExceptionReasonCode.INVOICE_NOT_FOUND,
    InvoiceStatusFlag.CLOSED: ExceptionReasonCode.INVOICE_CLOSED,
    InvoiceStatusFlag.PAID: ExceptionReasonCode.INVOICE_PAID,
    InvoiceStatusFlag.INVALID: ExceptionReasonCode.INVALID_INVOICE,
}

CREDIT_MEMO_STATUS_TO_REASON: Dict[CreditMemoStatusFlag, ExceptionReasonCode] = {
    CreditMemoStatusFlag.INVALID_CM: ExceptionReasonCode.INVALID_CM,
    CreditMemoStatusFlag.CM_APPLIED: ExceptionReasonCode.CM_ALREADY_APPLIED,
    CreditMemoStatusFlag.CM_NOT_FOUND: ExceptionReasonCode.CM_NOT_FOUND,
}

SETTLEMENT_STATE_BY_REASON: Dict[ExceptionReasonCode, SettlementState] = {
    ExceptionReasonCode.SETTLEMENT_PENDING: SettlementState.PENDING,
    ExceptionReasonCode.SETTLEMENT_FAILED: SettlementState.FAILED,
    ExceptionReasonCode.ACH_FAILED: SettlementState.FAILED,
    ExceptionReasonCode.BANK_RETURN: SettlementState.FAILED,
}


def _fixed(reason: ExceptionReasonCode) -> Callable[[ExceptionSignal], ExceptionReasonCode]:
    return lambda signal: reason


# Precedence order: the first rule whose signal is present decides.
RULES: List[Tuple[SignalKind, Callable[[ExceptionSignal], Optional[ExceptionReasonCode]]]] = [
    (SignalKind.PARSE_ERROR, _fixed(ExceptionReasonCode.REMIT_PARSE_ERROR)),
    (
        SignalKind.INVOICE_STATUS,
        lambda signal: INVOICE_STATUS_TO_REASON[InvoiceStatusFlag(signal.value)],
    ),
    (
        SignalKind.CREDIT_MEMO_STATUS,
        lambda signal: CREDIT_MEMO_STATUS_TO_REASON[CreditMemoStatusFlag(signal.value)],
    ),
    (SignalKind.SETTLEMENT_PENDING, _fixed(ExceptionReasonCode.SETTLEMENT_PENDING)),
    (SignalKind.ACH_RETURN, _fixed(ExceptionReasonCode.ACH_FAILED)),
    (SignalKind.BANK_RETURN, _fixed(ExceptionReasonCode.BANK_RETURN)),
    (SignalKind.SETTLEMENT_FAILED, _fixed(ExceptionReasonCode.SETTLEMENT_FAILED)),
    (SignalKind.ON_ACCOUNT, _fixed(ExceptionReasonCode.UNAPPLIED_CASH)),
    (SignalKind.JE_REQUIRED, _fixed(ExceptionReasonCode.MANUAL_JE_REQUIRED)),
    (
        SignalKind.LEGACY_TYPE,
        lambda signal: LEGACY_TYPE_TO_REASON.get(ExceptionType(signal.value)),
    ),
]


def reason_label(reason: ExceptionReasonCode) -> str:
    return EXCEPTION_REASON_LABELS.get(reason, reason.value)


def classify_signals(signals: List[ExceptionSignal]) -> Optional[ExceptionReasonCode]:
    """Apply the precedence rules to a set of signals."""
    by_kind = {signal.kind: signal for signal in signals}
    for kind, rule in RULES:
        signal = by_kind.get(kind)
        if signal is None:
            continue
        reason = rule(signal)
        if reason is not None:
            return reason
    return None


@dataclass
class TaxonomyResolution:
    """Result of resolving a payment: the classification and the field updates."""
    classification: Optional[ExceptionClassification]
    updates: Dict[str, Any] = field(default_factory=dict)
    signals: List[ExceptionSignal] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.updates)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "classification": self.classification.to_dict() if self.classification else None,
            "updates": {
                name: value.value if hasattr(value, "value") else value
                for name, value in self.updates.items()
            },
            "signals": [signal.kind.value for signal in self.signals],
        }


class ExceptionTaxonomyResolver:
    """Owns the exception classification fields of a payment."""

    def resolve(self, payment: Payment) -> TaxonomyResolution:
        """
        Compute the classification without touching the payment.

        Args:
            payment: Payment to classify

        Returns:
            TaxonomyResolution with the classification and the updates
            that apply() would write
        """
        updates: Dict[str, Any] = {}
        signals = collect_signals(payment)

        settlement_state = derive_settlement_state(payment)
        if not payment.settlement_state and settlement_state != SettlementState.NONE:
            updates["settlement_state"] = settlement_state

        if payment.status == PaymentStatus.EXCEPTION and not payment.exception_resolution_state:
            updates["exception_resolution_state"] = ResolutionState.OPEN

        reason = payment.exception_reason_code
        core = payment.exception_core_type
        label = payment.exception_reason_label

        if reason is None:
            reason = classify_signals(signals)
            if reason is not None:
                core = EXCEPTION_REASON_TO_CORE[reason]
                label = reason_label(reason)
        else:
            core = core or EXCEPTION_REASON_TO_CORE.get(reason)
            label = label or reason_label(reason)

        if reason and payment.exception_reason_code != reason:
            updates["exception_reason_code"] = reason
        if label and payment.exception_reason_label != label:
            updates["exception_reason_label"] = label
        if core and payment.exception_core_type != core:
            updates["exception_core_type"] = core

        if not payment.settlement_state and reason in SETTLEMENT_STATE_BY_REASON:
            updates["settlement_state"] = SETTLEMENT_STATE_BY_REASON[reason]

        classification = None
        if reason and core and label:
            classification = ExceptionClassification(core_type=core, reason_code=reason, label=label)

        return TaxonomyResolution(classification=classification, updates=updates, signals=signals)

    def reset(self, payment: Payment) -> None:
        """
        Clear the classification so the payment can be classified afresh.
        Used by lifecycle transitions that start a new decision (settlement
        turning final or failing); never applies to posted payments.
        """
        if payment.is_posted:
            return
        payment.exception_type = None
        payment.exception_core_type = None
        payment.exception_reason_code = None
        payment.exception_reason_label = None
        payment.exception_resolution_state = None

    def apply(self, payment: Payment) -> TaxonomyResolution:
        """Resolve and write the updates onto the payment (posted payments are left as-is)."""
        resolution = self.resolve(payment)

        if payment.is_posted:
            return resolution

        for name, value in resolution.updates.items():
            setattr(payment, name, value)

        if resolution.changed:
            logger.debug(
                "Exception taxonomy resolved",
                payment_id=payment.id,
                updates=sorted(resolution.updates),
                reason_code=(
                    resolution.classification.reason_code.value
                    if resolution.classification else None
                ),
            )
        return resolution


def resolve_exception_taxonomy(payment: Payment) -> TaxonomyResolution:
    """Resolve and apply the taxonomy for a single payment."""
    return ExceptionTaxonomyResolver().apply(payment)
