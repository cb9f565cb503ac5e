"""
Tests for the Data Integrity Guard.
"""

from datetime import timedelta

import pytest

from cashapp.integrity import IntegrityGuardEngine
from cashapp.integrity.guard import compute_freshness, latest_runs_by_entity
from cashapp.models import (
    GuardReasonCode,
    GuardState,
    SyncEntityType,
    SyncRun,
    SyncStatus,
)


@pytest.fixture
def engine(settings):
    return IntegrityGuardEngine(settings)


@pytest.fixture
def sync_run(now):
    """Factory for sync runs that finished `minutes_ago` before now."""
    def _make(entity_type=SyncEntityType.INVOICES, status=SyncStatus.SUCCESS, minutes_ago=5, **kw):
        finished_at = now - timedelta(minutes=minutes_ago)
        return SyncRun(
            entity_type=entity_type,
            status=status,
            started_at=finished_at - timedelta(minutes=2),
            finished_at=finished_at,
            **kw,
        )

    return _make


class TestIntegrityGuard:
    """Test suite for guard computation."""

    def test_no_history_is_healthy(self, engine, now):
        guard = engine.compute([], now)

        assert guard.overall_state == GuardState.HEALTHY
        assert guard.reasons == []
        assert engine.can_post_to_erp(guard).allowed is True

    def test_recent_successful_syncs_are_healthy(self, engine, sync_run, now):
        runs = [sync_run(entity) for entity in SyncEntityType]

        guard = engine.compute(runs, now)

        assert guard.overall_state == GuardState.HEALTHY
        assert len(guard.freshness) == 4

    def test_partial_sync_blocks_posting(self, engine, sync_run, now):
        run = sync_run(
            status=SyncStatus.PARTIAL,
            records_fetched=1247,
            records_upserted=1103,
            errors_count=144,
        )

        guard = engine.compute([run], now)
        decision = engine.can_post_to_erp(guard)

        assert guard.overall_state == GuardState.BLOCK_POSTING
        reason = guard.reasons[0]
        assert reason.code == GuardReasonCode.PARTIAL_SYNC_DETECTED
        assert reason.failed_records == 144
        assert reason.message == (
            "Invoices sync was partial - 144 records failed. Posting blocked until resolved."
        )
        assert decision.allowed is False
        assert decision.reason == reason.message

    def test_failed_sync_blocks_posting(self, engine, sync_run, now):
        guard = engine.compute([sync_run(SyncEntityType.PAYMENTS, SyncStatus.FAILED)], now)

        assert guard.overall_state == GuardState.BLOCK_POSTING
        assert guard.reasons[0].code == GuardReasonCode.FAILED_SYNC_DETECTED

    def test_only_latest_run_counts(self, engine, sync_run, now):
        old_partial = sync_run(status=SyncStatus.PARTIAL, minutes_ago=20, errors_count=3)
        new_success = sync_run(minutes_ago=2)

        guard = engine.compute([new_success, old_partial], now)

        assert guard.overall_state == GuardState.HEALTHY

    def test_success_then_partial_blocks(self, engine, sync_run, now):
        old_success = sync_run(minutes_ago=20)
        new_partial = sync_run(status=SyncStatus.PARTIAL, minutes_ago=2, errors_count=1)

        guard = engine.compute([old_success, new_partial], now)

        assert guard.overall_state == GuardState.BLOCK_POSTING

    def test_stale_data_degrades(self, engine, sync_run, now):
        guard = engine.compute([sync_run(minutes_ago=45)], now)
        decision = engine.can_post_to_erp(guard)

        assert guard.overall_state == GuardState.DEGRADED
        assert guard.reasons[0].code == GuardReasonCode.INVOICES_STALE
        assert guard.reasons[0].age_minutes == 45
        assert decision.allowed is True
        assert decision.reason == guard.reasons[0].message

    def test_stale_customer_master(self, engine, sync_run, now):
        guard = engine.compute([sync_run(SyncEntityType.CUSTOMERS, minutes_ago=90)], now)

        assert guard.reasons[0].code == GuardReasonCode.CUSTOMER_MASTER_STALE

    def test_staleness_boundary(self, engine, sync_run, now):
        guard = engine.compute([sync_run(minutes_ago=30)], now)

        assert guard.overall_state == GuardState.HEALTHY

    def test_block_wins_over_degraded(self, engine, sync_run, now):
        runs = [
            sync_run(SyncEntityType.CUSTOMERS, minutes_ago=90),
            sync_run(SyncEntityType.INVOICES, SyncStatus.PARTIAL, errors_count=2),
        ]

        guard = engine.compute(runs, now)

        assert guard.overall_state == GuardState.BLOCK_POSTING
        codes = {reason.code for reason in guard.reasons}
        assert codes == {
            GuardReasonCode.PARTIAL_SYNC_DETECTED,
            GuardReasonCode.CUSTOMER_MASTER_STALE,
        }

    def test_to_dict(self, engine, sync_run, now):
        data = engine.compute([sync_run(minutes_ago=45)], now).to_dict()

        assert data["overall_state"] == "Degraded"
        assert data["reasons"][0]["code"] == "InvoicesStale"
        assert data["freshness"][0]["age_minutes"] == 45


class TestHelpers:
    """Freshness and latest-run helpers."""

    def test_latest_runs_by_entity(self, sync_run):
        older = sync_run(minutes_ago=60)
        newer = sync_run(minutes_ago=5)

        latest = latest_runs_by_entity([newer, older])

        assert latest == {SyncEntityType.INVOICES: newer}

    def test_freshness_ignores_unsuccessful_runs(self, sync_run, now):
        runs = [
            sync_run(minutes_ago=40),
            sync_run(status=SyncStatus.FAILED, minutes_ago=1),
        ]

        freshness = compute_freshness(runs, now)

        assert len(freshness) == 1
        assert freshness[0].age_minutes == 40

    def test_failed_records_uses_larger_count(self, now):
        run = SyncRun(
            entity_type=SyncEntityType.INVOICES,
            status=SyncStatus.PARTIAL,
            started_at=now,
            records_fetched=10,
            records_upserted=9,
            errors_count=0,
        )

        assert run.failed_records == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
