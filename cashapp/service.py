"""
Cash Application Service - main entry point over the repository.

Coordinates the engines:
1. Customer resolution + match decision for incoming payments
2. Exception taxonomy resolution
3. Settlement lifecycle (observations, finals, returns, ghost refresh)
4. Sync history and the data integrity guard
5. ERP posting batches

Every public operation runs inside one repository transaction, so a failure
leaves the snapshot untouched. Time is always passed in by the caller.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

import structlog

from .config import Settings, get_settings
from .integrations import ErpClient
from .integrity import IntegrityGuardEngine
from .matching import CustomerResolver, MatchDecisionEngine
from .models import (
    ActivityAction,
    BankTransaction,
    ExceptionBucket,
    ExceptionSummary,
    IntegrityGuard,
    MatchDecision,
    Payment,
    PaymentStatus,
    PostingBatchResult,
    PostingDecision,
    ReceivableItem,
    Remittance,
    SettlementEvent,
    SyncRun,
)
from .posting import PostingService
from .repository import InMemoryRepository, Repository
from .settlement import SettlementTracker
from .taxonomy import ExceptionTaxonomyResolver, TaxonomyResolution
from .utils import ActivityLogger

logger = structlog.get_logger()


@dataclass
class SettlementFinalization:
    """Events closed by a final transaction and the resulting re-evaluations."""
    events: List[SettlementEvent] = field(default_factory=list)
    decisions: List[MatchDecision] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "events": [e.to_dict() for e in self.events],
            "decisions": [d.to_dict() for d in self.decisions],
        }


class CashApplicationService:
    """
    Public operations of the cash application engine.
    """

    def __init__(
        self,
        repository: Optional[Repository] = None,
        settings: Optional[Settings] = None,
        erp_client: Optional[ErpClient] = None,
    ):
        self.settings = settings or get_settings()
        self.repository = repository if repository is not None else InMemoryRepository()
        self.activity = ActivityLogger(self.settings)
        self.resolver = ExceptionTaxonomyResolver()
        self.customers = CustomerResolver(self.settings, self.activity)
        self.engine = MatchDecisionEngine(
            self.settings,
            activity=self.activity,
            resolver=self.resolver,
        )
        self.tracker = SettlementTracker(
            self.repository,
            self.settings,
            activity=self.activity,
            resolver=self.resolver,
        )
        self.guard_engine = IntegrityGuardEngine(self.settings)
        self.posting = PostingService(
            self.repository,
            erp_client or ErpClient(self.settings),
            guard_engine=self.guard_engine,
            settings=self.settings,
            activity=self.activity,
        )

    # Loading

    def add_payment(self, payment: Payment) -> Payment:
        with self.repository.transaction():
            self.resolver.apply(payment)
            self.repository.save_payment(payment)
        return payment

    def add_receivables(self, items: Iterable[ReceivableItem]) -> int:
        count = 0
        with self.repository.transaction():
            for item in items:
                self.repository.upsert_receivable(item)
                count += 1
        return count

    def add_remittance(self, remittance: Remittance) -> Remittance:
        with self.repository.transaction():
            self.repository.save_remittance(remittance)
        return remittance

    def add_customer(self, customer_id: str, name: str) -> None:
        with self.repository.transaction():
            self.repository.add_customer(customer_id, name)

    def get_payment(self, payment_id: str) -> Payment:
        return self.repository.get_payment(payment_id)

    # Matching

    def evaluate(self, payment_id: str, now: datetime) -> MatchDecision:
        """Run the match decision engine for one payment."""
        with self.repository.transaction():
            payment = self.repository.get_payment(payment_id)
            return self._evaluate(payment, now)

    def evaluate_all(self, now: datetime) -> List[MatchDecision]:
        """Evaluate every payment that is still eligible for matching."""
        with self.repository.transaction():
            return [
                self._evaluate(payment, now)
                for payment in self.repository.list_payments()
                if self.engine.is_eligible(payment)
            ]

    def _evaluate(self, payment: Payment, now: datetime) -> MatchDecision:
        extra_signals = []
        if self.engine.is_eligible(payment):
            signal = self.customers.resolve(payment, self.repository.customer_names(), now)
            if signal is not None:
                extra_signals.append(signal)

        decision = self.engine.evaluate(
            payment,
            self.repository.open_receivables(),
            now,
            remittance=self.repository.remittance_for_payment(payment.id),
            extra_signals=extra_signals,
        )
        self.repository.save_payment(payment)
        return decision

    # Taxonomy

    def resolve_exception_taxonomy(self, payment_id: str) -> TaxonomyResolution:
        with self.repository.transaction():
            payment = self.repository.get_payment(payment_id)
            resolution = self.resolver.apply(payment)
            self.repository.save_payment(payment)
            return resolution

    # Settlement

    def record_settlement_observation(
        self,
        txn: BankTransaction,
        payment_id: str,
        now: datetime,
    ) -> SettlementEvent:
        with self.repository.transaction():
            return self.tracker.record_observation(txn, payment_id, now)

    def finalize_settlement(self, txn: BankTransaction, now: datetime) -> SettlementFinalization:
        """Close pending events for a final transaction and re-evaluate released payments."""
        with self.repository.transaction():
            events = self.tracker.finalize(txn, now)
            result = SettlementFinalization(events=events)
            for event in events:
                payment = self.repository.get_payment(event.payment_id)
                if payment.status == PaymentStatus.NEW and self.engine.is_eligible(payment):
                    result.decisions.append(self._evaluate(payment, now))
            return result

    def record_bank_return(
        self,
        txn: BankTransaction,
        now: datetime,
        payment_id: Optional[str] = None,
    ) -> List[SettlementEvent]:
        with self.repository.transaction():
            return self.tracker.record_bank_return(txn, now, payment_id)

    def refresh_settlements(self, now: datetime) -> List[SettlementEvent]:
        with self.repository.transaction():
            return self.tracker.refresh(now)

    # Integrity

    def record_sync_run(
        self,
        run: SyncRun,
        receivables: Sequence[ReceivableItem] = (),
    ) -> IntegrityGuard:
        """Record a sync run together with the receivables it upserted."""
        with self.repository.transaction():
            for item in receivables:
                self.repository.upsert_receivable(item)
            self.repository.add_sync_run(run)
            logger.info(
                "Sync run recorded",
                entity_type=run.entity_type.value,
                status=run.status.value,
                fetched=run.records_fetched,
                upserted=run.records_upserted,
            )
            return self.guard_engine.compute(
                self.repository.sync_runs(),
                run.finished_at or run.started_at,
            )

    def integrity_guard(self, now: datetime) -> IntegrityGuard:
        return self.guard_engine.compute(self.repository.sync_runs(), now)

    def can_post_to_erp(self, now: datetime) -> PostingDecision:
        return self.guard_engine.can_post_to_erp(self.integrity_guard(now))

    # Posting

    def post_batch(self, payment_ids: Sequence[str], now: datetime) -> PostingBatchResult:
        with self.repository.transaction():
            return self.posting.post_batch(payment_ids, now)

    # Reporting

    def exception_summary(self, now: datetime) -> ExceptionSummary:
        """Open exception workload grouped by core type and reason code."""
        summary = ExceptionSummary()

        for payment in self.repository.list_payments():
            age_days = (now - payment.received_at).days if payment.received_at else 0

            if payment.status == PaymentStatus.SETTLEMENT_PENDING:
                self._add_to_bucket(summary.settlement_pending, payment, age_days)
                continue
            if payment.status != PaymentStatus.EXCEPTION:
                continue

            summary.total_exceptions += 1
            if payment.exception_core_type:
                bucket = summary.by_core_type.setdefault(
                    payment.exception_core_type.value, ExceptionBucket()
                )
                self._add_to_bucket(bucket, payment, age_days)
            if payment.exception_reason_code:
                bucket = summary.by_reason_code.setdefault(
                    payment.exception_reason_code.value, ExceptionBucket()
                )
                self._add_to_bucket(bucket, payment, age_days)

        return summary

    def activity_report(
        self,
        payment_id: str,
        action: Optional[ActivityAction] = None,
    ) -> Dict:
        """A payment's activity trail, optionally filtered by action, with counts."""
        payment = self.repository.get_payment(payment_id)
        return {
            "payment_id": payment.id,
            "payment_number": payment.payment_number,
            "summary": self.activity.summary(payment),
            "entries": [e.to_dict() for e in self.activity.entries(payment, action)],
        }

    @staticmethod
    def _add_to_bucket(bucket: ExceptionBucket, payment: Payment, age_days: int) -> None:
        bucket.count += 1
        bucket.amount_cents += payment.amount_cents
        bucket.oldest_age_days = max(bucket.oldest_age_days, age_days)
