"""
End-to-end tests for CashApplicationService.
"""

import json
from datetime import timedelta

import httpx
import pytest
from tenacity import wait_none

from cashapp.errors import PaymentNotFoundError
from cashapp.integrations import ErpClient
from cashapp.models import (
    ActivityAction,
    BankFeedType,
    BatchStatus,
    ExceptionType,
    GuardState,
    PaymentStatus,
    Remittance,
    RemittanceLinkStatus,
    RemittanceReference,
    SignalType,
    SyncEntityType,
    SyncRun,
    SyncStatus,
)
from cashapp.service import CashApplicationService


@pytest.fixture
def erp_calls():
    return []


@pytest.fixture
def service(repository, settings, erp_calls):
    def handler(request):
        erp_calls.append(json.loads(request.content))
        return httpx.Response(201, json={"id": f"ERP-{len(erp_calls)}"})

    client = ErpClient(settings, transport=httpx.MockTransport(handler), wait=wait_none())
    return CashApplicationService(repository, settings, erp_client=client)


class TestMatchAndPost:
    """Payments flow from matching through posting."""

    def test_auto_match_then_post(self, service, make_payment, invoice, now, erp_calls):
        service.add_receivables([invoice("INV-51201", 42000)])
        payment = service.add_payment(make_payment(memo_raw="Payment advice INV-51201"))

        decision = service.evaluate(payment.id, now)
        batch = service.post_batch([payment.id], now + timedelta(minutes=5))

        assert decision.is_auto_match
        assert batch.status == BatchStatus.POSTED
        assert service.get_payment(payment.id).status == PaymentStatus.POSTED
        assert erp_calls[0]["lines"][0]["reference"] == "INV-51201"

    def test_lookup_by_payment_number(self, service, make_payment):
        payment = service.add_payment(make_payment(payment_number="PAY-7777"))

        assert service.get_payment("PAY-7777") is payment

    def test_unknown_payment(self, service, now):
        with pytest.raises(PaymentNotFoundError):
            service.evaluate("does-not-exist", now)

    def test_remittance_composite(self, service, make_payment, now):
        payment = service.add_payment(make_payment(amount_cents=90000))
        service.add_remittance(Remittance(
            references=[
                RemittanceReference("INV-51201", 100000),
                RemittanceReference("CM-90003", -10000),
            ],
            link_status=RemittanceLinkStatus.LINKED,
            payment_id=payment.id,
        ))

        decision = service.evaluate(payment.id, now)

        assert decision.composite
        assert len(payment.posting_lines) == 2

    def test_second_remittance_for_payment_rejected(self, service, make_payment):
        payment = service.add_payment(make_payment())
        service.add_remittance(Remittance(payment_id=payment.id))

        with pytest.raises(ValueError):
            service.add_remittance(Remittance(payment_id=payment.id))

    def test_evaluate_all_skips_decided_payments(self, service, make_payment, invoice, now):
        service.add_receivables([invoice("INV-51201", 42000)])
        first = service.add_payment(make_payment(memo_raw="INV-51201"))
        service.add_payment(make_payment(memo_raw="nothing useful", payer_name_raw=""))
        service.evaluate(first.id, now)

        decisions = service.evaluate_all(now)

        assert len(decisions) == 1
        assert decisions[0].exception_type == ExceptionType.INVALID_REF


class TestCustomerResolution:
    """Payer names are linked to the customer master."""

    def test_payer_name_resolves_customer(self, service, make_payment, invoice, now):
        service.add_customer("C-100", "Acme Corporation")
        service.add_customer("C-200", "Globex Corporation")
        service.add_receivables([invoice("INV-51201", 42000)])
        payment = service.add_payment(
            make_payment(memo_raw="INV-51201", payer_name_raw="ACME CORPORATION")
        )

        service.evaluate(payment.id, now)

        assert payment.customer_id == "C-100"
        assert payment.posting_lines[0].customer_id == "C-100"
        assert payment.activity_log[0].label == "Customer resolved"
        assert payment.match_explanation.signals[-1].type == SignalType.CUSTOMER_NAME

    def test_unknown_payer_left_unresolved(self, service, make_payment, now):
        service.add_customer("C-100", "Acme Corporation")
        payment = service.add_payment(make_payment(payer_name_raw="Initech"))

        service.evaluate(payment.id, now)

        assert payment.customer_id is None


class TestSettlementFlow:
    """Settlement lifecycle through the service."""

    def test_final_settlement_triggers_matching(
        self, service, make_payment, invoice, bank_txn, now
    ):
        service.add_receivables([invoice("INV-51201", 42000)])
        payment = service.add_payment(make_payment(memo_raw="INV-51201"))
        service.record_settlement_observation(bank_txn("BR-1001", 42000), payment.id, now)

        blocked = service.evaluate(payment.id, now)
        result = service.finalize_settlement(
            bank_txn("BR-1001", 42000, feed_type=BankFeedType.FINAL),
            now + timedelta(hours=12),
        )

        assert blocked.evaluated is False
        assert len(result.events) == 1
        assert len(result.decisions) == 1
        assert payment.status == PaymentStatus.PENDING_TO_POST
        assert result.to_dict()["decisions"][0]["status"] == "PendingToPost"

    def test_ghost_payment_surfaces_in_summary(self, service, make_payment, bank_txn, now):
        payment = service.add_payment(make_payment())
        service.record_settlement_observation(bank_txn("BR-1001", 42000), payment.id, now)

        failed = service.refresh_settlements(now + timedelta(hours=49))
        summary = service.exception_summary(now + timedelta(hours=49))

        assert len(failed) == 1
        assert summary.by_reason_code["SETTLEMENT_FAILED"].count == 1
        assert summary.by_core_type["SETTLEMENT"].amount_cents == 42000


class TestIntegrity:
    """Sync runs gate posting."""

    def test_partial_sync_blocks_posting(self, service, invoice, now):
        guard = service.record_sync_run(
            SyncRun(
                entity_type=SyncEntityType.INVOICES,
                status=SyncStatus.PARTIAL,
                started_at=now - timedelta(minutes=3),
                finished_at=now,
                records_fetched=1247,
                records_upserted=1103,
            ),
            receivables=[invoice("INV-51201", 42000)],
        )

        assert guard.overall_state == GuardState.BLOCK_POSTING
        assert service.can_post_to_erp(now).allowed is False
        assert [i.identifier for i in service.repository.open_receivables()] == ["INV-51201"]

    def test_blocked_batch_does_not_post(self, service, make_payment, invoice, now, erp_calls):
        service.add_receivables([invoice("INV-51201", 42000)])
        payment = service.add_payment(make_payment(memo_raw="INV-51201"))
        service.evaluate(payment.id, now)
        service.record_sync_run(SyncRun(
            entity_type=SyncEntityType.PAYMENTS,
            status=SyncStatus.FAILED,
            started_at=now,
        ))

        batch = service.post_batch([payment.id], now)

        assert batch.status == BatchStatus.BLOCKED
        assert erp_calls == []
        assert payment.status == PaymentStatus.PENDING_TO_POST


class TestReporting:
    """Exception summary and activity export."""

    def test_exception_summary(self, service, make_payment, invoice, bank_txn, now):
        service.add_receivables([invoice("INV-51201", 42000)])
        short = service.add_payment(make_payment(memo_raw="INV-51201", amount_cents=40000))
        invalid = service.add_payment(
            make_payment(memo_raw="", payer_name_raw="", received_at=now - timedelta(days=5))
        )
        pending = service.add_payment(make_payment())
        service.evaluate(short.id, now)
        service.evaluate(invalid.id, now)
        service.record_settlement_observation(bank_txn("BR-9", 42000), pending.id, now)

        summary = service.exception_summary(now)

        assert summary.total_exceptions == 2
        assert summary.by_core_type["AMOUNT_ISSUE"].count == 1
        assert summary.by_core_type["INVOICE_ISSUE"].oldest_age_days == 5
        assert summary.by_reason_code["SHORT_PAY"].amount_cents == 40000
        assert summary.settlement_pending.count == 1
        assert summary.to_dict()["total_exceptions"] == 2

    def test_activity_export(self, service, make_payment, now, settings):
        payment = service.add_payment(make_payment(memo_raw=""))
        service.evaluate(payment.id, now)

        path = service.activity.export_to_file(payment, now)

        data = json.loads(path.read_text(encoding="utf-8"))
        assert path.parent == settings.reports_dir
        assert data["total_entries"] == 2
        assert data["entries"][1]["action"] == "Exception created: InvalidRef"


    def test_activity_report(self, service, make_payment, invoice, now):
        service.add_receivables([invoice("INV-51201", 42000)])
        payment = service.add_payment(make_payment(memo_raw="INV-51201"))
        service.evaluate(payment.id, now)

        report = service.activity_report(payment.id)
        filtered = service.activity_report(payment.id, ActivityAction.POSTING_LINES_CREATED)

        assert report["summary"]["total_entries"] == 3
        assert report["summary"]["last_action"] == "Moved to PendingToPost"
        assert report["summary"]["action_counts"]["Matching Engine Evaluated"] == 1
        assert len(report["entries"]) == 3
        assert [e["action"] for e in filtered["entries"]] == ["Auto-match created posting lines"]
        assert filtered["summary"]["total_entries"] == 3

    def test_activity_report_without_entries(self, service, make_payment):
        payment = service.add_payment(make_payment())

        report = service.activity_report(payment.id)

        assert report["entries"] == []
        assert report["summary"]["last_action"] is None


class TestRepositoryTransactions:
    """Snapshot rollback on failure."""

    def test_failed_unit_of_work_rolls_back(self, repository, make_payment):
        payment = make_payment()

        with pytest.raises(RuntimeError):
            with repository.transaction():
                repository.save_payment(payment)
                raise RuntimeError("boom")

        assert repository.list_payments() == []

    def test_nested_transactions_commit_together(self, repository, make_payment):
        with repository.transaction():
            with repository.transaction():
                repository.save_payment(make_payment())

        assert len(repository.list_payments()) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
