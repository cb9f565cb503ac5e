"""
Tests for the Exception Taxonomy Resolver.
"""

import pytest

from cashapp.models import (
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
)
from cashapp.taxonomy import ExceptionTaxonomyResolver, resolve_exception_taxonomy
from cashapp.taxonomy.signals import ExceptionSignal, SignalKind, collect_signals
from cashapp.taxonomy.resolver import classify_signals


@pytest.fixture
def resolver():
    return ExceptionTaxonomyResolver()


@pytest.fixture
def exception_payment(make_payment):
    def _make(**overrides):
        return make_payment(status=PaymentStatus.EXCEPTION, **overrides)

    return _make


class TestLegacyMapping:
    """Flat exception types map onto the two-level taxonomy."""

    @pytest.mark.parametrize(
        "exception_type, reason, core, label",
        [
            (ExceptionType.SHORT_PAY, ExceptionReasonCode.SHORT_PAY,
             ExceptionCoreType.AMOUNT_ISSUE, "Short Pay"),
            (ExceptionType.OVER_PAY, ExceptionReasonCode.OVER_PAY,
             ExceptionCoreType.AMOUNT_ISSUE, "Over Pay"),
            (ExceptionType.INVALID_REF, ExceptionReasonCode.INVALID_REFERENCE,
             ExceptionCoreType.INVOICE_ISSUE, "Invalid Ref"),
            (ExceptionType.AMBIGUOUS_MATCH, ExceptionReasonCode.AMBIGUOUS_MATCH,
             ExceptionCoreType.INVOICE_ISSUE, "Ambiguous"),
            (ExceptionType.MISSING_REMITTANCE, ExceptionReasonCode.MISSING_REMIT,
             ExceptionCoreType.MISSING_REMIT, "Missing Remit"),
            (ExceptionType.DUPLICATE_SUSPECTED, ExceptionReasonCode.DUPLICATE_SUSPECTED,
             ExceptionCoreType.DUPLICATE, "Suspected"),
            (ExceptionType.MULTI_ENTITY, ExceptionReasonCode.MULTI_ENTITY,
             ExceptionCoreType.INTERCOMPANY, "Multi-Entity"),
            (ExceptionType.NEEDS_JE, ExceptionReasonCode.MANUAL_JE_REQUIRED,
             ExceptionCoreType.JE_NEEDED, "Manual JE"),
        ],
    )
    def test_legacy_type(self, resolver, exception_payment, exception_type, reason, core, label):
        payment = exception_payment(exception_type=exception_type)

        resolver.apply(payment)

        assert payment.exception_reason_code == reason
        assert payment.exception_core_type == core
        assert payment.exception_reason_label == label
        assert payment.exception_resolution_state == ResolutionState.OPEN


class TestPrecedence:
    """Higher precedence signals win over lower ones."""

    def test_parse_error_beats_invoice_status(self, resolver, exception_payment):
        payment = exception_payment(
            parse_error_flag=True,
            invoice_status_flag=InvoiceStatusFlag.CLOSED,
        )

        resolver.apply(payment)

        assert payment.exception_reason_code == ExceptionReasonCode.REMIT_PARSE_ERROR
        assert payment.exception_core_type == ExceptionCoreType.MISSING_REMIT

    def test_invoice_status_beats_legacy_type(self, resolver, exception_payment):
        payment = exception_payment(
            invoice_status_flag=InvoiceStatusFlag.PAID,
            exception_type=ExceptionType.SHORT_PAY,
        )

        resolver.apply(payment)

        assert payment.exception_reason_code == ExceptionReasonCode.INVOICE_PAID

    def test_credit_memo_status(self, resolver, exception_payment):
        payment = exception_payment(credit_memo_status_flag=CreditMemoStatusFlag.CM_APPLIED)

        resolver.apply(payment)

        assert payment.exception_reason_code == ExceptionReasonCode.CM_ALREADY_APPLIED
        assert payment.exception_core_type == ExceptionCoreType.CREDIT_ISSUE

    def test_ach_return_beats_settlement_failed(self, resolver, exception_payment):
        payment = exception_payment(
            ach_return_flag=True,
            settlement_status=SettlementStatus.FAILED,
            exception_type=ExceptionType.SETTLEMENT_FAILED,
        )

        resolver.apply(payment)

        assert payment.exception_reason_code == ExceptionReasonCode.ACH_FAILED
        assert payment.settlement_state == SettlementState.FAILED

    def test_reversal_is_bank_return(self, resolver, exception_payment):
        payment = exception_payment(
            settlement_status=SettlementStatus.FAILED,
            settlement_reason=SettlementReason.REVERSED,
        )

        resolver.apply(payment)

        assert payment.exception_reason_code == ExceptionReasonCode.BANK_RETURN

    def test_on_account_beats_je_required(self, resolver, exception_payment):
        payment = exception_payment(on_account_flag=True, je_required_flag=True)

        resolver.apply(payment)

        assert payment.exception_reason_code == ExceptionReasonCode.UNAPPLIED_CASH

    def test_classify_signals_order_independent(self):
        signals = [
            ExceptionSignal(SignalKind.LEGACY_TYPE, ExceptionType.SHORT_PAY.value),
            ExceptionSignal(SignalKind.JE_REQUIRED),
        ]

        assert classify_signals(signals) == ExceptionReasonCode.MANUAL_JE_REQUIRED
        assert classify_signals(list(reversed(signals))) == ExceptionReasonCode.MANUAL_JE_REQUIRED

    def test_no_signals(self):
        assert classify_signals([]) is None


class TestResolverBehaviour:
    """Idempotence, purity and frozen payments."""

    def test_existing_reason_code_is_kept(self, resolver, exception_payment):
        payment = exception_payment(
            exception_type=ExceptionType.SHORT_PAY,
            exception_reason_code=ExceptionReasonCode.DUPLICATE_CONFIRMED,
        )

        resolver.apply(payment)

        assert payment.exception_reason_code == ExceptionReasonCode.DUPLICATE_CONFIRMED
        assert payment.exception_core_type == ExceptionCoreType.DUPLICATE
        assert payment.exception_reason_label == "Confirmed"

    def test_idempotent(self, resolver, exception_payment):
        payment = exception_payment(exception_type=ExceptionType.OVER_PAY)

        first = resolver.apply(payment)
        second = resolver.apply(payment)

        assert first.changed
        assert not second.changed
        assert second.classification == first.classification

    def test_resolve_does_not_mutate(self, resolver, exception_payment):
        payment = exception_payment(exception_type=ExceptionType.SHORT_PAY)

        resolution = resolver.resolve(payment)

        assert resolution.classification.reason_code == ExceptionReasonCode.SHORT_PAY
        assert payment.exception_reason_code is None
        assert payment.exception_resolution_state is None

    def test_posted_payment_not_written(self, resolver, make_payment):
        payment = make_payment(status=PaymentStatus.POSTED, je_required_flag=True)

        resolution = resolver.apply(payment)

        assert resolution.classification.reason_code == ExceptionReasonCode.MANUAL_JE_REQUIRED
        assert payment.exception_reason_code is None

    def test_no_signals_leaves_payment_unclassified(self, resolver, make_payment):
        payment = make_payment()

        resolution = resolver.apply(payment)

        assert resolution.classification is None
        assert not resolution.changed
        assert payment.classification is None

    def test_reset_clears_classification(self, resolver, exception_payment):
        payment = exception_payment(exception_type=ExceptionType.SHORT_PAY)
        resolver.apply(payment)

        resolver.reset(payment)

        assert payment.exception_type is None
        assert payment.exception_reason_code is None
        assert payment.exception_resolution_state is None

    def test_module_level_helper(self, exception_payment):
        payment = exception_payment(exception_type=ExceptionType.INVALID_REF)

        resolution = resolve_exception_taxonomy(payment)

        assert resolution.to_dict()["classification"]["label"] == "Invalid Ref"
        assert payment.exception_reason_label == "Invalid Ref"


class TestSettlementDefaults:
    """Settlement state is derived when missing."""

    def test_settlement_pending_status(self, resolver, make_payment):
        payment = make_payment(
            status=PaymentStatus.SETTLEMENT_PENDING,
            settlement_status=SettlementStatus.PENDING,
        )

        resolver.apply(payment)

        assert payment.settlement_state == SettlementState.PENDING
        assert payment.exception_reason_code == ExceptionReasonCode.SETTLEMENT_PENDING
        assert payment.exception_reason_label == "Pending"
        assert payment.exception_core_type == ExceptionCoreType.SETTLEMENT
        # Not an exception, so no resolution state
        assert payment.exception_resolution_state is None

    def test_final_settlement_is_confirmed(self, resolver, make_payment):
        payment = make_payment(settlement_status=SettlementStatus.FINAL)

        resolver.apply(payment)

        assert payment.settlement_state == SettlementState.CONFIRMED
        assert payment.exception_reason_code is None

    def test_state_from_reason_code(self, resolver, exception_payment):
        payment = exception_payment(exception_reason_code=ExceptionReasonCode.BANK_RETURN)

        resolver.apply(payment)

        assert payment.settlement_state == SettlementState.FAILED

    def test_collect_signals(self, make_payment):
        payment = make_payment(parse_error_flag=True, on_account_flag=True)

        kinds = [signal.kind for signal in collect_signals(payment)]

        assert kinds == [SignalKind.PARSE_ERROR, SignalKind.ON_ACCOUNT]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
