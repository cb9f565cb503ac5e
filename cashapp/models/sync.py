"""ERP sync health and integrity guard models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any
from uuid import uuid4

from .enums import GuardReasonCode, GuardState, SyncEntityType, SyncStatus


@dataclass
class SyncRun:
    """One ERP sync attempt for a single entity type."""
    entity_type: SyncEntityType
    status: SyncStatus
    started_at: datetime
    finished_at: Optional[datetime] = None
    records_fetched: int = 0
    records_upserted: int = 0
    errors_count: int = 0
    error_summary: List[str] = field(default_factory=list)
    watermark_from: Optional[datetime] = None
    watermark_to: Optional[datetime] = None
    source: str = "ERP"
    id: str = field(default_factory=lambda: str(uuid4()))

    @property
    def failed_records(self) -> int:
        """Records the run could not upsert."""
        return max(self.errors_count, self.records_fetched - self.records_upserted)


@dataclass
class DataFreshness:
    """Age of the latest successful sync for an entity type."""
    entity_type: SyncEntityType
    last_successful_sync_at: Optional[datetime] = None
    age_minutes: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_type": self.entity_type.value,
            "last_successful_sync_at": (
                self.last_successful_sync_at.isoformat()
                if self.last_successful_sync_at else None
            ),
            "age_minutes": self.age_minutes,
        }


@dataclass
class IntegrityGuardReason:
    code: GuardReasonCode
    message: str
    entity_type: Optional[SyncEntityType] = None
    last_successful_sync_at: Optional[datetime] = None
    age_minutes: Optional[int] = None
    failed_records: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "entity_type": self.entity_type.value if self.entity_type else None,
            "last_successful_sync_at": (
                self.last_successful_sync_at.isoformat()
                if self.last_successful_sync_at else None
            ),
            "age_minutes": self.age_minutes,
            "failed_records": self.failed_records,
        }


@dataclass
class IntegrityGuard:
    """Repository-wide posting gate derived from sync history."""
    overall_state: GuardState
    computed_at: datetime
    reasons: List[IntegrityGuardReason] = field(default_factory=list)
    freshness: List[DataFreshness] = field(default_factory=list)

    @property
    def blocks_posting(self) -> bool:
        return self.overall_state == GuardState.BLOCK_POSTING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_state": self.overall_state.value,
            "computed_at": self.computed_at.isoformat(),
            "reasons": [r.to_dict() for r in self.reasons],
            "freshness": [f.to_dict() for f in self.freshness],
        }


@dataclass
class PostingDecision:
    """Answer of can_post_to_erp()."""
    allowed: bool
    reason: Optional[str] = None
    state: GuardState = GuardState.HEALTHY

    def to_dict(self) -> Dict[str, Any]:
        return {"allowed": self.allowed, "reason": self.reason, "state": self.state.value}
