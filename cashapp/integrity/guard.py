"""
Data Integrity Guard - gates ERP posting on upstream sync health.

Only the latest sync run per entity type counts:
- latest run Partial or Failed -> BlockPosting
- last successful sync older than the staleness window -> Degraded
- otherwise Healthy

Degraded still allows posting; the reason is passed along as a flag.
"""

from datetime import datetime
from typing import Dict, List, Optional, Sequence

import structlog

from ..config import Settings, get_settings
from ..models import (
    DataFreshness,
    GuardReasonCode,
    GuardState,
    IntegrityGuard,
    IntegrityGuardReason,
    PostingDecision,
    SyncEntityType,
    SyncRun,
    SyncStatus,
)

logger = structlog.get_logger()

STALE_REASON_BY_ENTITY: Dict[SyncEntityType, GuardReasonCode] = {
    SyncEntityType.INVOICES: GuardReasonCode.INVOICES_STALE,
    SyncEntityType.CREDIT_MEMOS: GuardReasonCode.CREDIT_MEMOS_STALE,
    SyncEntityType.PAYMENTS: GuardReasonCode.PAYMENTS_STALE,
    SyncEntityType.CUSTOMERS: GuardReasonCode.CUSTOMER_MASTER_STALE,
}

DEFAULT_BLOCK_REASON = "Data sync issues detected. Posting blocked."


def latest_runs_by_entity(sync_runs: Sequence[SyncRun]) -> Dict[SyncEntityType, SyncRun]:
    """Most recently started run for each entity type."""
    latest: Dict[SyncEntityType, SyncRun] = {}
    for run in sync_runs:
        existing = latest.get(run.entity_type)
        if existing is None or run.started_at > existing.started_at:
            latest[run.entity_type] = run
    return latest


def compute_freshness(sync_runs: Sequence[SyncRun], now: datetime) -> List[DataFreshness]:
    """Age of the last successful sync for every entity type that has one."""
    last_success: Dict[SyncEntityType, datetime] = {}
    for run in sync_runs:
        if run.status != SyncStatus.SUCCESS or run.finished_at is None:
            continue
        existing = last_success.get(run.entity_type)
        if existing is None or run.finished_at > existing:
            last_success[run.entity_type] = run.finished_at

    freshness = []
    for entity_type in SyncEntityType:
        finished_at = last_success.get(entity_type)
        if finished_at is None:
            continue
        age_minutes = int((now - finished_at).total_seconds() // 60)
        freshness.append(DataFreshness(
            entity_type=entity_type,
            last_successful_sync_at=finished_at,
            age_minutes=age_minutes,
        ))
    return freshness


class IntegrityGuardEngine:
    """Derives the repository-wide posting gate from sync history."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.stale_after_minutes = self.settings.sync_stale_after_minutes

    def compute(self, sync_runs: Sequence[SyncRun], now: datetime) -> IntegrityGuard:
        """
        Compute the guard for a set of sync runs.

        Args:
            sync_runs: Sync history (any order)
            now: Evaluation time

        Returns:
            IntegrityGuard with overall state and reasons
        """
        reasons: List[IntegrityGuardReason] = []
        state = GuardState.HEALTHY

        latest = latest_runs_by_entity(sync_runs)
        for entity_type in SyncEntityType:
            run = latest.get(entity_type)
            if run is None:
                continue
            if run.status == SyncStatus.PARTIAL:
                failed = run.failed_records
                reasons.append(IntegrityGuardReason(
                    code=GuardReasonCode.PARTIAL_SYNC_DETECTED,
                    message=(
                        f"{entity_type.value} sync was partial - {failed} records failed. "
                        "Posting blocked until resolved."
                    ),
                    entity_type=entity_type,
                    last_successful_sync_at=run.finished_at,
                    failed_records=failed,
                ))
                state = GuardState.BLOCK_POSTING
            elif run.status == SyncStatus.FAILED:
                reasons.append(IntegrityGuardReason(
                    code=GuardReasonCode.FAILED_SYNC_DETECTED,
                    message=f"{entity_type.value} sync failed completely. Posting blocked.",
                    entity_type=entity_type,
                    last_successful_sync_at=run.finished_at,
                    failed_records=run.failed_records,
                ))
                state = GuardState.BLOCK_POSTING

        freshness = compute_freshness(sync_runs, now)
        for fresh in freshness:
            if fresh.age_minutes is None or fresh.age_minutes <= self.stale_after_minutes:
                continue
            reasons.append(IntegrityGuardReason(
                code=STALE_REASON_BY_ENTITY[fresh.entity_type],
                message=(
                    f"{fresh.entity_type.value} data is {fresh.age_minutes} minutes old "
                    f"(threshold: {self.stale_after_minutes} min)."
                ),
                entity_type=fresh.entity_type,
                last_successful_sync_at=fresh.last_successful_sync_at,
                age_minutes=fresh.age_minutes,
            ))
            if state == GuardState.HEALTHY:
                state = GuardState.DEGRADED

        guard = IntegrityGuard(
            overall_state=state,
            computed_at=now,
            reasons=reasons,
            freshness=freshness,
        )

        if state != GuardState.HEALTHY:
            logger.warning(
                "Integrity guard not healthy",
                state=state.value,
                reasons=[r.code.value for r in reasons],
            )
        return guard

    def can_post_to_erp(self, guard: IntegrityGuard) -> PostingDecision:
        """Posting permission from the aggregate guard only."""
        if guard.blocks_posting:
            reason = guard.reasons[0].message if guard.reasons else DEFAULT_BLOCK_REASON
            return PostingDecision(allowed=False, reason=reason, state=guard.overall_state)
        if guard.overall_state == GuardState.DEGRADED:
            reason = guard.reasons[0].message if guard.reasons else None
            return PostingDecision(allowed=True, reason=reason, state=guard.overall_state)
        return PostingDecision(allowed=True, state=guard.overall_state)
