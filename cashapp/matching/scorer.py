"""
Candidate Scorer - ranks open receivables against extracted references.

Reference evidence takes the strongest signal across tokens:
- substring match of the sanitized reference, either direction
- weaker match on the prefix-stripped numeric core
- credit memo token against a credit memo item

An amount bonus is added when the absolute amounts agree within tolerance.
Weights are configuration, not literals.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence

import structlog

from ..config import Settings, get_settings
from ..models import CandidateMatch, ReceivableItem
from .tokenizer import CREDIT_MEMO_PREFIX, sanitize_reference, strip_prefix

logger = structlog.get_logger()


@dataclass(frozen=True)
class ScoringWeights:
    """Weights and limits used by the candidate scorer."""
    reference_substring: float = 0.6
    numeric_core: float = 0.5
    credit_memo: float = 0.65
    amount_match: float = 0.3
    min_score: float = 0.4
    amount_tolerance_cents: int = 50

    @classmethod
    def from_settings(cls, settings: Settings) -> "ScoringWeights":
        return cls(
            reference_substring=settings.weight_reference_substring,
            numeric_core=settings.weight_numeric_core,
            credit_memo=settings.weight_credit_memo,
            amount_match=settings.weight_amount_match,
            min_score=settings.candidate_min_score,
            amount_tolerance_cents=settings.amount_tolerance_cents,
        )


@dataclass
class ScoredCandidate:
    """A receivable with its match score."""
    item: ReceivableItem
    score: float
    reference_score: float = 0.0
    amount_match: bool = False
    matched_token: Optional[str] = None

    @property
    def identifier(self) -> str:
        return self.item.identifier

    @property
    def amount_cents(self) -> int:
        return self.item.amount_cents

    def to_candidate_match(self) -> CandidateMatch:
        return CandidateMatch(
            receivable_id=self.item.id,
            identifier=self.item.identifier,
            amount_cents=self.item.amount_cents,
            score=self.score,
        )


class CandidateScorer:
    """Scores open receivables against sanitized tokens and payment amount."""

    def __init__(
        self,
        weights: Optional[ScoringWeights] = None,
        settings: Optional[Settings] = None,
    ):
        if weights is None:
            weights = ScoringWeights.from_settings(settings or get_settings())
        self.weights = weights

    def rank(
        self,
        sanitized_tokens: Sequence[str],
        amount_cents: int,
        receivables: Sequence[ReceivableItem],
    ) -> List[ScoredCandidate]:
        """
        Score every open receivable and return the survivors, best first.

        Args:
            sanitized_tokens: Canonical tokens from the tokenizer
            amount_cents: Payment amount
            receivables: Receivable catalog (closed items are ignored)

        Returns:
            Candidates scoring above the floor, sorted by descending score
        """
        candidates = []
        for item in receivables:
            if not item.is_open:
                continue
            scored = self.score_item(item, sanitized_tokens, amount_cents)
            if scored.score > self.weights.min_score:
                candidates.append(scored)

        candidates.sort(key=lambda c: (-c.score, c.identifier))

        logger.debug(
            "Candidates scored",
            tokens=list(sanitized_tokens),
            scanned=len(receivables),
            candidates=len(candidates),
        )
        return candidates

    def score_item(
        self,
        item: ReceivableItem,
        sanitized_tokens: Sequence[str],
        amount_cents: int,
    ) -> ScoredCandidate:
        """Score a single receivable."""
        reference = sanitize_reference(item.identifier)
        core = strip_prefix(reference)
        item_is_credit = item.is_credit_memo or reference.startswith(CREDIT_MEMO_PREFIX)

        reference_score = 0.0
        matched_token = None

        for token in sanitized_tokens:
            token_score = self._reference_score(token, reference, core, item_is_credit)
            if token_score > reference_score:
                reference_score = token_score
                matched_token = token

        amount_match = (
            abs(abs(item.amount_cents) - abs(amount_cents))
            < self.weights.amount_tolerance_cents
        )
        score = reference_score + (self.weights.amount_match if amount_match else 0.0)

        return ScoredCandidate(
            item=item,
            score=round(min(score, 1.0), 4),
            reference_score=reference_score,
            amount_match=amount_match,
            matched_token=matched_token,
        )

    def _reference_score(
        self,
        token: str,
        reference: str,
        core: str,
        item_is_credit: bool,
    ) -> float:
        substring = bool(reference) and (reference in token or token in reference)
        core_match = bool(core) and (core in token or token in core)

        score = 0.0
        if substring:
            score = max(score, self.weights.reference_substring)
        if core_match:
            score = max(score, self.weights.numeric_core)
        if (substring or core_match) and item_is_credit and token.startswith(CREDIT_MEMO_PREFIX):
            score = max(score, self.weights.credit_memo)
        return score
