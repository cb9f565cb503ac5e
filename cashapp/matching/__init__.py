"""Payment matching: tokenizer, candidate scorer and decision engine."""

from .tokenizer import ReferenceTokenizer, TokenizationResult, build_context, sanitize_reference
from .scorer import CandidateScorer, ScoredCandidate, ScoringWeights
from .decision import MatchDecisionEngine, TieBreak, break_tie
from .customers import CustomerMatch, CustomerResolver

__all__ = [
    "CandidateScorer",
    "CustomerMatch",
    "CustomerResolver",
    "MatchDecisionEngine",
    "ReferenceTokenizer",
    "ScoredCandidate",
    "ScoringWeights",
    "TieBreak",
    "TokenizationResult",
    "break_tie",
    "build_context",
    "sanitize_reference",
]
