"""
Posting Service - sends PendingToPost payments to the ERP.

The integrity guard is consulted once per batch. When it blocks, nothing is
sent and every payment is reported as Blocked with the guard's reason.
Otherwise each payment is posted on its own: one ERP failure never affects
the other payments in the batch.
"""

from datetime import datetime
from typing import List, Optional, Sequence

import structlog

from ..config import Settings, get_settings
from ..errors import ErpError, PaymentNotFoundError
from ..integrations import ErpClient
from ..integrity import IntegrityGuardEngine
from ..models import (
    ActivityAction,
    BatchStatus,
    Payment,
    PaymentStatus,
    PostingBatchResult,
    PostingResult,
    PostingLineStatus,
)
from ..repository import Repository
from ..utils import ActivityLogger

logger = structlog.get_logger()


class PostingService:
    """Posts batches of matched payments through the ERP client."""

    def __init__(
        self,
        repository: Repository,
        erp_client: ErpClient,
        guard_engine: Optional[IntegrityGuardEngine] = None,
        settings: Optional[Settings] = None,
        activity: Optional[ActivityLogger] = None,
    ):
        self.repository = repository
        self.erp_client = erp_client
        self.settings = settings or get_settings()
        self.guard_engine = guard_engine or IntegrityGuardEngine(self.settings)
        self.activity = activity or ActivityLogger(self.settings)

    def post_batch(self, payment_ids: Sequence[str], now: datetime) -> PostingBatchResult:
        """
        Post a batch of payments.

        Args:
            payment_ids: Payments to post (ids or payment numbers)
            now: Posting timestamp

        Returns:
            PostingBatchResult with one result per requested payment
        """
        guard = self.guard_engine.compute(self.repository.sync_runs(), now)
        decision = self.guard_engine.can_post_to_erp(guard)

        if not decision.allowed:
            results = [
                PostingResult(
                    payment_id=payment_id,
                    status=PostingLineStatus.BLOCKED,
                    error_code="BLOCK_POSTING",
                    error_message=decision.reason,
                )
                for payment_id in payment_ids
            ]
            for payment_id in payment_ids:
                self._record_blocked(payment_id, decision.reason, now)
            logger.warning("Posting batch blocked", reason=decision.reason, payments=len(payment_ids))
            return PostingBatchResult(
                status=BatchStatus.BLOCKED,
                posted_at=now,
                results=results,
                blocked_reason=decision.reason,
            )

        results = [self._post_one(payment_id, now) for payment_id in payment_ids]
        batch = PostingBatchResult(
            status=self._batch_status(results),
            posted_at=now,
            results=results,
            guard_warning=decision.reason,
        )

        logger.info(
            "Posting batch complete",
            batch_id=batch.id,
            status=batch.status.value,
            posted=batch.posted_count,
            failed=batch.failed_count,
            guard_state=decision.state.value,
        )
        return batch

    def _post_one(self, payment_id: str, now: datetime) -> PostingResult:
        try:
            payment = self.repository.get_payment(payment_id)
        except PaymentNotFoundError as e:
            return PostingResult(
                payment_id=payment_id,
                status=PostingLineStatus.SKIPPED,
                error_code="NOT_FOUND",
                error_message=str(e),
            )

        skip_reason = self._skip_reason(payment)
        if skip_reason:
            return PostingResult(
                payment_id=payment.id,
                status=PostingLineStatus.SKIPPED,
                error_code="NOT_READY",
                error_message=skip_reason,
            )

        try:
            erp_payment_id = self.erp_client.post_payment(payment, payment.posting_lines)
        except ErpError as e:
            payment.posting_error = str(e)
            self.activity.record(payment, ActivityAction.POSTING_FAILED, str(e), now)
            self.repository.save_payment(payment)
            logger.warning(
                "Payment posting failed",
                payment_id=payment.id,
                status_code=e.status_code,
                error=str(e),
            )
            return PostingResult(
                payment_id=payment.id,
                status=PostingLineStatus.FAILED,
                error_code=str(e.status_code) if e.status_code else "ERP_ERROR",
                error_message=str(e),
            )

        payment.erp_payment_id = erp_payment_id
        payment.posted_at = now
        payment.posting_error = None
        payment.status = PaymentStatus.POSTED
        self.activity.record(
            payment,
            ActivityAction.POSTED,
            f"Posted {len(payment.posting_lines)} line(s) as {erp_payment_id}",
            now,
        )
        self.repository.save_payment(payment)

        return PostingResult(
            payment_id=payment.id,
            status=PostingLineStatus.POSTED,
            erp_payment_id=erp_payment_id,
        )

    def _skip_reason(self, payment: Payment) -> Optional[str]:
        if payment.is_posted:
            return "Payment already posted"
        if payment.status != PaymentStatus.PENDING_TO_POST:
            return f"Payment status is {payment.status.value}"
        if payment.settlement_unresolved:
            return "Settlement is not final"
        if not payment.posting_lines:
            return "Payment has no posting lines"
        return None

    def _record_blocked(self, payment_id: str, reason: Optional[str], now: datetime) -> None:
        try:
            payment = self.repository.get_payment(payment_id)
        except PaymentNotFoundError:
            return
        self.activity.record(payment, ActivityAction.POSTING_BLOCKED, reason or "", now)
        self.repository.save_payment(payment)

    @staticmethod
    def _batch_status(results: List[PostingResult]) -> BatchStatus:
        posted = sum(1 for r in results if r.status == PostingLineStatus.POSTED)
        if results and posted == len(results):
            return BatchStatus.POSTED
        if posted:
            return BatchStatus.PARTIAL
        return BatchStatus.FAILED
