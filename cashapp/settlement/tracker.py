"""
Settlement Lifecycle Tracker - detects ghost payments.

A payment seen on a preliminary bank feed is only provisionally real. Each
preliminary observation opens a settlement event:

    Pending --(final transaction with the same bank reference)--> Final
    Pending --(no final within the ghost threshold)--> Failed / FinalNotFound
    Pending --(final amount differs beyond tolerance)--> Failed / AmountMismatch
    any     --(bank return)--> Failed / Reversed

Lockbox batches report several preliminaries under one bank reference; each
gets its own event and a single final transaction closes them all.
"""

from datetime import datetime
from typing import List, Optional

import structlog

from ..config import Settings, get_settings
from ..errors import SettlementEventNotFoundError
from ..models import (
    ActivityAction,
    BankTransaction,
    ExceptionType,
    Payment,
    PaymentStatus,
    SettlementEvent,
    SettlementReason,
    SettlementState,
    SettlementStatus,
)
from ..repository import Repository
from ..taxonomy import ExceptionTaxonomyResolver
from ..utils import ActivityLogger

logger = structlog.get_logger()

ACH_METHOD = "ACH"


class SettlementTracker:
    """Tracks settlement events against the repository snapshot."""

    def __init__(
        self,
        repository: Repository,
        settings: Optional[Settings] = None,
        activity: Optional[ActivityLogger] = None,
        resolver: Optional[ExceptionTaxonomyResolver] = None,
    ):
        self.repository = repository
        self.settings = settings or get_settings()
        self.activity = activity or ActivityLogger(self.settings)
        self.resolver = resolver or ExceptionTaxonomyResolver()
        self.threshold_hours = self.settings.ghost_payment_threshold_hours

    def record_observation(
        self,
        txn: BankTransaction,
        payment_id: str,
        now: datetime,
    ) -> SettlementEvent:
        """
        Record a preliminary bank transaction for a payment.

        Observing the same (preliminary transaction, payment) pair twice
        returns the existing event unchanged.
        """
        payment = self.repository.get_payment(payment_id)

        for event in self.repository.settlement_events_for_reference(txn.bank_reference):
            if event.prelim_transaction_id == txn.id and event.payment_id == payment.id:
                logger.debug(
                    "Settlement observation already recorded",
                    event_id=event.id,
                    bank_reference=txn.bank_reference,
                )
                return event

        self.repository.save_bank_transaction(txn)

        event = SettlementEvent(
            payment_id=payment.id,
            bank_reference=txn.bank_reference,
            first_seen_at=txn.observed_at,
            last_checked_at=now,
            amount_cents=txn.amount_cents,
            prelim_transaction_id=txn.id,
        )
        event.age_hours = event.compute_age_hours(now)
        self.repository.save_settlement_event(event)

        payment.bank_reference = txn.bank_reference
        payment.settlement_event_id = event.id
        payment.settlement_status = SettlementStatus.PENDING
        payment.settlement_state = SettlementState.PENDING
        payment.settlement_reason = SettlementReason.AWAITING_FINAL_FEED
        payment.settlement_first_seen_at = event.first_seen_at
        payment.settlement_last_checked_at = now
        if not payment.is_posted:
            payment.status = PaymentStatus.SETTLEMENT_PENDING

        self.activity.record(
            payment,
            ActivityAction.SETTLEMENT_PENDING,
            f"Preliminary bank transaction {txn.bank_reference} observed; awaiting final feed",
            now,
        )
        self.resolver.apply(payment)
        self.repository.save_payment(payment)

        logger.info(
            "Settlement event opened",
            event_id=event.id,
            payment_id=payment.id,
            bank_reference=txn.bank_reference,
            lockbox_batch_id=txn.lockbox_batch_id,
        )
        return event

    def finalize(self, txn: BankTransaction, now: datetime) -> List[SettlementEvent]:
        """
        Reconcile a final bank transaction against pending events that share
        its bank reference.

        Returns:
            The events closed by this transaction (Final or Failed)
        """
        pending = [
            event
            for event in self.repository.settlement_events_for_reference(txn.bank_reference)
            if event.status == SettlementStatus.PENDING
        ]
        if not pending:
            logger.info("No pending settlement for final transaction", bank_reference=txn.bank_reference)
            return []

        self.repository.save_bank_transaction(txn)

        expected_cents = sum(event.amount_cents for event in pending)
        if not self.settings.within_tolerance(txn.amount_cents - expected_cents):
            details = (
                f"Final amount {txn.amount_cents / 100:.2f} differs from "
                f"preliminary {expected_cents / 100:.2f}"
            )
            for event in pending:
                event.final_transaction_id = txn.id
                self._fail(event, SettlementReason.AMOUNT_MISMATCH, details, now)
            return pending

        for event in pending:
            event.final_transaction_id = txn.id
            event.status = SettlementStatus.FINAL
            event.reason = None
            event.last_checked_at = now
            event.age_hours = event.compute_age_hours(now)
            self.repository.save_settlement_event(event)

            payment = self.repository.get_payment(event.payment_id)
            payment.settlement_status = SettlementStatus.FINAL
            payment.settlement_state = SettlementState.CONFIRMED
            payment.settlement_reason = None
            payment.settlement_last_checked_at = now
            if payment.status == PaymentStatus.SETTLEMENT_PENDING:
                self.resolver.reset(payment)
                payment.status = PaymentStatus.NEW
                payment.auto_match_eligible = True

            self.activity.record(
                payment,
                ActivityAction.SETTLEMENT_FINAL,
                f"Final bank transaction {txn.bank_reference} confirmed settlement",
                now,
            )
            self.repository.save_payment(payment)

        logger.info(
            "Settlement finalized",
            bank_reference=txn.bank_reference,
            events=len(pending),
        )
        return pending

    def record_bank_return(
        self,
        txn: BankTransaction,
        now: datetime,
        payment_id: Optional[str] = None,
    ) -> List[SettlementEvent]:
        """
        Mark the settlement behind a returned transaction as reversed.
        Events already reversed are left untouched and not returned.

        Raises:
            SettlementEventNotFoundError: if no event carries the bank reference
        """
        matching = [
            event
            for event in self.repository.settlement_events_for_reference(txn.bank_reference)
            if payment_id is None or event.payment_id == payment_id
        ]
        if not matching:
            raise SettlementEventNotFoundError(txn.bank_reference)

        events = [e for e in matching if e.reason != SettlementReason.REVERSED]
        if not events:
            logger.debug("Bank return already recorded", bank_reference=txn.bank_reference)
            return []

        self.repository.save_bank_transaction(txn)
        is_ach = txn.method.upper() == ACH_METHOD

        for event in events:
            payment = self.repository.get_payment(event.payment_id)
            if is_ach:
                payment.ach_return_flag = True
            self._fail(
                event,
                SettlementReason.REVERSED,
                f"Bank returned {txn.method} transaction {txn.bank_reference}",
                now,
                action=ActivityAction.BANK_RETURN,
            )
        return events

    def refresh(self, now: datetime) -> List[SettlementEvent]:
        """
        Re-age every pending event and fail those past the ghost threshold.
        Safe to call repeatedly.

        Returns:
            Events that failed during this refresh
        """
        failed = []
        for event in self.repository.pending_settlement_events():
            event.age_hours = event.compute_age_hours(now)
            event.last_checked_at = now

            payment = self.repository.get_payment(event.payment_id)
            payment.settlement_last_checked_at = now

            if event.age_hours > self.threshold_hours:
                self._fail(
                    event,
                    SettlementReason.FINAL_NOT_FOUND,
                    f"Final feed not found within {self.threshold_hours:g} hours",
                    now,
                )
                failed.append(event)
            else:
                self.repository.save_settlement_event(event)

        if failed:
            logger.warning(
                "Ghost payments detected",
                count=len(failed),
                bank_references=sorted({e.bank_reference for e in failed}),
            )
        return failed

    def _fail(
        self,
        event: SettlementEvent,
        reason: SettlementReason,
        details: str,
        now: datetime,
        action: ActivityAction = ActivityAction.SETTLEMENT_FAILED,
    ) -> None:
        event.status = SettlementStatus.FAILED
        event.reason = reason
        event.last_checked_at = now
        event.age_hours = event.compute_age_hours(now)
        self.repository.save_settlement_event(event)

        payment = self.repository.get_payment(event.payment_id)
        payment.settlement_status = SettlementStatus.FAILED
        payment.settlement_state = SettlementState.FAILED
        payment.settlement_reason = reason
        payment.settlement_last_checked_at = now

        if payment.is_posted:
            logger.warning(
                "Settlement failed for posted payment",
                payment_id=payment.id,
                bank_reference=event.bank_reference,
                reason=reason.value,
            )
        else:
            self._park_as_exception(payment)

        self.activity.record(payment, action, details, now)
        self.resolver.apply(payment)
        self.repository.save_payment(payment)

        logger.info(
            "Settlement failed",
            event_id=event.id,
            payment_id=payment.id,
            bank_reference=event.bank_reference,
            reason=reason.value,
        )

    def _park_as_exception(self, payment: Payment) -> None:
        self.resolver.reset(payment)
        payment.status = PaymentStatus.EXCEPTION
        payment.exception_type = ExceptionType.SETTLEMENT_FAILED
        payment.posting_lines = []
        payment.auto_match_eligible = False
