"""
Customer Resolver - links a payment's payer name to a known customer.

Uses token-sort fuzzy similarity so that word order and casing in bank
payer strings ("ACME CORP INC" vs "Acme Inc Corp") do not matter. The
resolution only fills in the customer; it never changes the match outcome.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

import structlog
from rapidfuzz import fuzz

from ..config import Settings, get_settings
from ..models import ActivityAction, MatchSignal, Payment, SignalType
from ..utils import ActivityLogger

logger = structlog.get_logger()


@dataclass
class CustomerMatch:
    customer_id: str
    name: str
    similarity: float


class CustomerResolver:
    """Resolves payer names against the customer master."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        activity: Optional[ActivityLogger] = None,
    ):
        self.settings = settings or get_settings()
        self.activity = activity or ActivityLogger(self.settings)
        self.threshold = self.settings.customer_name_similarity_threshold

    def rank(self, payer_name: str, customers: Dict[str, str]) -> List[CustomerMatch]:
        """Similarity of the payer name to every customer, best first."""
        if not payer_name or not payer_name.strip():
            return []

        matches = []
        for customer_id, name in customers.items():
            similarity = fuzz.token_sort_ratio(payer_name.lower(), name.lower()) / 100.0
            matches.append(CustomerMatch(customer_id=customer_id, name=name, similarity=similarity))

        matches.sort(key=lambda m: (-m.similarity, m.customer_id))
        return matches

    def best_match(self, payer_name: str, customers: Dict[str, str]) -> Optional[CustomerMatch]:
        """The unique best match at or above the threshold, if any."""
        matches = [m for m in self.rank(payer_name, customers) if m.similarity >= self.threshold]
        if not matches:
            return None
        if len(matches) > 1 and matches[1].similarity == matches[0].similarity:
            logger.debug(
                "Customer name ambiguous",
                payer_name=payer_name,
                customers=[m.customer_id for m in matches[:2]],
            )
            return None
        return matches[0]

    def resolve(
        self,
        payment: Payment,
        customers: Dict[str, str],
        now: datetime,
    ) -> Optional[MatchSignal]:
        """
        Set the payment's customer from its payer name.

        Returns:
            A CustomerName signal when a customer was resolved, else None
        """
        if payment.customer_id or payment.is_posted:
            return None

        match = self.best_match(payment.payer_name_raw, customers)
        if match is None:
            return None

        payment.customer_id = match.customer_id
        self.activity.record(
            payment,
            ActivityAction.CUSTOMER_RESOLVED,
            f"Payer '{payment.payer_name_raw}' resolved to {match.name}",
            now,
        )
        return MatchSignal(SignalType.CUSTOMER_NAME, match.name, round(match.similarity, 2))
