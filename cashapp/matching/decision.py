"""
Match Decision Engine - decides the outcome for one payment.

Order of evaluation:
1. Linked remittance: invoice and credit memo lines reconciled to the payment
2. Memo references: tokenizer + candidate scorer
3. Tie-break: a runner-up within the margin makes the match ambiguous
4. Amount check against the top candidate
5. Confidence threshold: auto-match or ambiguous exception

Every outcome is written to the payment together with an explanation and
activity log entries. Business outcomes are values, never exceptions.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

import structlog

from ..config import Settings, get_settings
from ..models import (
    ActivityAction,
    ExceptionType,
    MatchDecision,
    MatchExplanation,
    MatchSignal,
    Payment,
    PaymentStatus,
    PostingLine,
    ReceivableItem,
    Remittance,
    SignalType,
)
from ..taxonomy import ExceptionTaxonomyResolver
from ..utils import ActivityLogger
from .scorer import CandidateScorer, ScoredCandidate
from .tokenizer import ReferenceTokenizer, build_context

logger = structlog.get_logger()


@dataclass
class TieBreak:
    """Winner selection over ranked candidates."""
    top: Optional[ScoredCandidate]
    runner_up: Optional[ScoredCandidate]
    ambiguous: bool

    @property
    def contenders(self) -> List[ScoredCandidate]:
        return [c for c in (self.top, self.runner_up) if c is not None]


def break_tie(candidates: Sequence[ScoredCandidate], margin: float) -> TieBreak:
    """
    Pick the winner; the match is ambiguous when the runner-up scores within
    `margin` of the top candidate.
    """
    if not candidates:
        return TieBreak(top=None, runner_up=None, ambiguous=False)

    top = candidates[0]
    runner_up = candidates[1] if len(candidates) > 1 else None
    ambiguous = runner_up is not None and runner_up.score >= round(top.score - margin, 4)
    return TieBreak(top=top, runner_up=runner_up, ambiguous=ambiguous)


class MatchDecisionEngine:
    """
    Turns a payment plus its candidate receivables into a decision.
    Only payments that are eligible and not waiting on settlement are touched.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        tokenizer: Optional[ReferenceTokenizer] = None,
        scorer: Optional[CandidateScorer] = None,
        activity: Optional[ActivityLogger] = None,
        resolver: Optional[ExceptionTaxonomyResolver] = None,
    ):
        self.settings = settings or get_settings()
        self.tokenizer = tokenizer or ReferenceTokenizer(self.settings)
        self.scorer = scorer or CandidateScorer(settings=self.settings)
        self.activity = activity or ActivityLogger(self.settings)
        self.resolver = resolver or ExceptionTaxonomyResolver()

    def is_eligible(self, payment: Payment) -> bool:
        if payment.is_posted or not payment.auto_match_eligible:
            return False
        return not payment.settlement_unresolved

    def evaluate(
        self,
        payment: Payment,
        receivables: Sequence[ReceivableItem],
        now: datetime,
        remittance: Optional[Remittance] = None,
        extra_signals: Sequence[MatchSignal] = (),
    ) -> MatchDecision:
        """
        Evaluate a payment and record the decision on it.

        Args:
            payment: Payment to evaluate
            receivables: Open receivable catalog
            now: Decision timestamp
            remittance: Remittance linked to the payment, if any
            extra_signals: Additional evidence to attach to the explanation

        Returns:
            MatchDecision (evaluated=False when the payment was not eligible)
        """
        if not self.is_eligible(payment):
            logger.debug(
                "Payment not eligible for matching",
                payment_id=payment.id,
                status=payment.status.value,
            )
            return MatchDecision(
                payment_id=payment.id,
                status=payment.status,
                exception_type=payment.exception_type,
                confidence=payment.confidence,
                explanation=payment.match_explanation,
                posting_lines=list(payment.posting_lines),
                candidates=list(payment.candidate_matches),
                evaluated=False,
            )

        context = build_context(
            payment.memo_raw,
            payment.payer_name_raw,
            remittance.subject if remittance else None,
        )
        tokens = self.tokenizer.tokenize(context)

        if remittance is not None and remittance.is_linked and remittance.references:
            decision = self._match_from_remittance(payment, remittance, tokens.sanitized_tokens, now)
        elif not tokens:
            decision = self._exception(
                payment,
                ExceptionType.INVALID_REF,
                "No invoice references detected in memo",
                tokens.sanitized_tokens,
                [],
                now,
            )
        else:
            decision = self._match_from_references(payment, receivables, tokens.sanitized_tokens, now)

        if extra_signals and decision.explanation is not None:
            decision.explanation.signals.extend(extra_signals)

        self.resolver.apply(payment)

        logger.info(
            "Payment evaluated",
            payment_id=payment.id,
            payment_number=payment.payment_number,
            status=decision.status.value,
            exception_type=decision.exception_type.value if decision.exception_type else None,
            confidence=decision.confidence,
        )
        return decision

    def _match_from_references(
        self,
        payment: Payment,
        receivables: Sequence[ReceivableItem],
        sanitized_tokens: List[str],
        now: datetime,
    ) -> MatchDecision:
        candidates = self.scorer.rank(sanitized_tokens, payment.amount_cents, receivables)
        if not candidates:
            return self._exception(
                payment,
                ExceptionType.INVALID_REF,
                "Invoice references could not be resolved",
                sanitized_tokens,
                [],
                now,
            )

        tie = break_tie(candidates, self.settings.tie_break_margin)
        if tie.ambiguous:
            return self._exception(
                payment,
                ExceptionType.AMBIGUOUS_MATCH,
                "Multiple invoices match the memo reference",
                sanitized_tokens,
                tie.contenders,
                now,
            )

        top = tie.top
        difference = payment.amount_cents - abs(top.amount_cents)
        if not self.settings.within_tolerance(difference):
            exception_type = ExceptionType.SHORT_PAY if difference < 0 else ExceptionType.OVER_PAY
            return self._exception(
                payment,
                exception_type,
                f"Payment amount differs from invoice by {abs(difference) / 100:.2f}",
                sanitized_tokens,
                [top],
                now,
            )

        confidence = round(top.score * 100)
        if confidence < self.settings.auto_match_confidence_threshold:
            return self._exception(
                payment,
                ExceptionType.AMBIGUOUS_MATCH,
                "Match confidence below auto-match threshold",
                sanitized_tokens,
                [top],
                now,
            )

        line = PostingLine(
            reference=top.identifier,
            amount_cents=payment.amount_cents,
            customer_id=payment.customer_id,
        )
        explanation = MatchExplanation(
            summary="Exact invoice reference and amount match",
            signals=[
                MatchSignal(SignalType.INVOICE_REF, top.identifier, 0.6),
                MatchSignal(SignalType.AMOUNT_EXACT, f"{payment.amount:.2f}", 0.4),
            ],
            sanitized_tokens=list(sanitized_tokens),
            confidence=confidence,
        )
        self._auto_match(payment, [line], explanation, now)

        self.activity.record(
            payment, ActivityAction.MATCHING_EVALUATED, "Invoice reference matched to AR items", now
        )
        self.activity.record(
            payment, ActivityAction.POSTING_LINES_CREATED, f"Applied {top.identifier} in full", now
        )
        self.activity.record(
            payment, ActivityAction.MOVED_TO_PENDING_POST, "Payment ready for posting", now
        )

        return MatchDecision(
            payment_id=payment.id,
            status=payment.status,
            confidence=confidence,
            explanation=explanation,
            posting_lines=[line],
        )

    def _match_from_remittance(
        self,
        payment: Payment,
        remittance: Remittance,
        sanitized_tokens: List[str],
        now: datetime,
    ) -> MatchDecision:
        credit_refs = remittance.credit_references
        expected_cents = sum(ref.signed_amount_cents for ref in remittance.references)
        difference = payment.amount_cents - expected_cents

        if not self.settings.within_tolerance(difference):
            exception_type = ExceptionType.SHORT_PAY if difference < 0 else ExceptionType.OVER_PAY
            return self._exception(
                payment,
                exception_type,
                "Remittance totals do not reconcile to payment amount",
                sanitized_tokens,
                [],
                now,
            )

        lines = []
        for ref in remittance.references:
            if ref.is_credit:
                lines.append(PostingLine(
                    reference=ref.identifier,
                    amount_cents=ref.signed_amount_cents,
                    reference_field="Credit Memo",
                    reason_code="CM",
                    reason_description="Credit Memo Applied",
                    customer_id=payment.customer_id,
                ))
            else:
                lines.append(PostingLine(
                    reference=ref.identifier,
                    amount_cents=ref.signed_amount_cents,
                    customer_id=payment.customer_id,
                ))

        confidence = self.settings.remittance_match_confidence
        signals = [
            MatchSignal(SignalType.REMITTANCE_LINK, remittance.remittance_number or "remittance", 0.5),
            MatchSignal(SignalType.AMOUNT_EXACT, f"{payment.amount:.2f}", 0.3),
        ]
        if credit_refs:
            signals.append(MatchSignal(SignalType.CM_COMPOSITE, credit_refs[0].identifier, 0.2))

        explanation = MatchExplanation(
            summary=(
                "Composite match applied (invoice + credit memo)"
                if credit_refs else "Remittance references matched to invoices"
            ),
            signals=signals,
            sanitized_tokens=list(sanitized_tokens),
            confidence=confidence,
        )
        self._auto_match(payment, lines, explanation, now)

        self.activity.record(
            payment, ActivityAction.MATCHING_EVALUATED, "Remittance references used for matching", now
        )
        if credit_refs:
            self.activity.record(
                payment,
                ActivityAction.COMPOSITE_APPLIED,
                "Applied credit memo " + ", ".join(ref.identifier for ref in credit_refs),
                now,
            )
        self.activity.record(
            payment,
            ActivityAction.POSTING_LINES_CREATED,
            f"Applied {len(lines)} remittance line(s)",
            now,
        )
        self.activity.record(
            payment, ActivityAction.MOVED_TO_PENDING_POST, "Payment ready for posting", now
        )

        return MatchDecision(
            payment_id=payment.id,
            status=payment.status,
            confidence=confidence,
            explanation=explanation,
            posting_lines=lines,
            composite=bool(credit_refs),
        )

    def _auto_match(
        self,
        payment: Payment,
        lines: List[PostingLine],
        explanation: MatchExplanation,
        now: datetime,
    ) -> None:
        payment.status = PaymentStatus.PENDING_TO_POST
        payment.exception_type = None
        payment.confidence = explanation.confidence
        payment.match_explanation = explanation
        payment.posting_lines = lines
        payment.candidate_matches = []
        payment.auto_matched_at = now
        payment.auto_match_eligible = False

    def _exception(
        self,
        payment: Payment,
        exception_type: ExceptionType,
        summary: str,
        sanitized_tokens: List[str],
        candidates: List[ScoredCandidate],
        now: datetime,
    ) -> MatchDecision:
        if candidates:
            confidence = round(candidates[0].score * 100)
            signals = [
                MatchSignal(SignalType.INVOICE_REF, candidates[0].identifier, 0.4),
                MatchSignal(SignalType.AMOUNT_EXACT, f"{payment.amount:.2f}", 0.2),
            ]
        else:
            confidence = self.settings.default_exception_confidence
            signals = [MatchSignal(SignalType.INVOICE_REF, "none", 0.1)]

        explanation = MatchExplanation(
            summary=summary,
            signals=signals,
            sanitized_tokens=list(sanitized_tokens),
            confidence=confidence,
        )
        matches = [c.to_candidate_match() for c in candidates]

        payment.status = PaymentStatus.EXCEPTION
        payment.exception_type = exception_type
        payment.confidence = confidence
        payment.match_explanation = explanation
        payment.candidate_matches = matches
        payment.posting_lines = []
        payment.auto_match_eligible = False

        self.activity.record(payment, ActivityAction.MATCHING_EVALUATED, summary, now)
        self.activity.record(
            payment,
            ActivityAction.EXCEPTION_CREATED,
            "Manual review required",
            now,
            qualifier=exception_type.value,
        )

        return MatchDecision(
            payment_id=payment.id,
            status=payment.status,
            exception_type=exception_type,
            confidence=confidence,
            explanation=explanation,
            candidates=matches,
        )
