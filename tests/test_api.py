"""
Tests for the HTTP API.
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from cashapp.main import app, get_service
from cashapp.service import CashApplicationService


@pytest.fixture
def client(settings, repository):
    service = CashApplicationService(repository, settings)
    app.dependency_overrides[get_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def create_payment(client, **overrides):
    body = {"payment_number": "PAY-2001", "amount_cents": 42000, "memo_raw": "INV-51201"}
    body.update(overrides)
    response = client.post("/api/payments", json=body)
    assert response.status_code == 201
    return response.json()


class TestApi:
    """Test suite for the API surface."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_create_and_evaluate_payment(self, client):
        client.post("/api/receivables", json=[{"identifier": "INV-51201", "amount_cents": 42000}])
        payment = create_payment(client)

        response = client.post(f"/api/payments/{payment['id']}/evaluate")

        assert response.status_code == 200
        decision = response.json()
        assert decision["status"] == "PendingToPost"
        assert decision["confidence"] == 90
        assert decision["posting_lines"][0]["reference"] == "INV-51201"

        stored = client.get(f"/api/payments/{payment['id']}").json()
        assert [e["action"] for e in stored["activity_log"]] == [
            "Matching Engine Evaluated",
            "Auto-match created posting lines",
            "Moved to PendingToPost",
        ]

    def test_invalid_reference_exception(self, client):
        payment = create_payment(client, memo_raw="thanks", payer_name_raw="")

        client.post(f"/api/payments/{payment['id']}/evaluate")
        stored = client.get(f"/api/payments/{payment['id']}").json()

        assert stored["status"] == "Exception"
        assert stored["exception_reason_code"] == "INVALID_REFERENCE"
        assert stored["exception_reason_label"] == "Invalid Ref"
        assert stored["exception_resolution_state"] == "OPEN"

        summary = client.get("/api/exceptions/summary").json()
        assert summary["by_core_type"]["INVOICE_ISSUE"]["count"] == 1

    def test_unknown_payment_is_404(self, client):
        assert client.get("/api/payments/nope").status_code == 404
        assert client.post("/api/payments/nope/evaluate").status_code == 404

    def test_taxonomy_endpoint(self, client):
        payment = create_payment(client, je_required_flag=True)

        response = client.post(f"/api/payments/{payment['id']}/taxonomy")

        assert response.status_code == 200
        assert response.json()["classification"]["reason_code"] == "MANUAL_JE_REQUIRED"

    def test_duplicate_remittance_is_409(self, client):
        payment = create_payment(client)
        body = {
            "payment_id": payment["id"],
            "references": [{"identifier": "INV-51201", "amount_cents": 42000}],
        }

        assert client.post("/api/remittances", json=body).status_code == 201
        assert client.post("/api/remittances", json=body).status_code == 409

    def test_settlement_observation_and_return(self, client):
        payment = create_payment(client)

        observed = client.post(
            "/api/settlement/observations",
            json={
                "payment_id": payment["id"],
                "transaction": {"bank_reference": "BR-1001", "amount_cents": 42000},
            },
        )
        returned = client.post(
            "/api/settlement/returns",
            json={"transaction": {"bank_reference": "BR-1001", "amount_cents": -42000}},
        )
        stored = client.get(f"/api/payments/{payment['id']}").json()

        assert observed.status_code == 201
        assert observed.json()["status"] == "Pending"
        assert returned.json()["events"][0]["reason"] == "Reversed"
        assert stored["exception_reason_code"] == "ACH_FAILED"

    def test_return_for_unknown_reference_is_404(self, client):
        response = client.post(
            "/api/settlement/returns",
            json={"transaction": {"bank_reference": "BR-404", "amount_cents": -1}},
        )

        assert response.status_code == 404

    def test_partial_sync_blocks_posting(self, client):
        client.post("/api/receivables", json=[{"identifier": "INV-51201", "amount_cents": 42000}])
        payment = create_payment(client)
        client.post(f"/api/payments/{payment['id']}/evaluate")
        finished = datetime.now(timezone.utc)

        sync = client.post(
            "/api/sync-runs",
            json={
                "entity_type": "Invoices",
                "status": "Partial",
                "started_at": (finished - timedelta(minutes=2)).isoformat(),
                "finished_at": finished.isoformat(),
                "records_fetched": 1247,
                "records_upserted": 1103,
            },
        )
        can_post = client.get("/api/integrity/can-post").json()
        batch = client.post("/api/posting/batches", json={"payment_ids": [payment["id"]]}).json()

        assert sync.status_code == 201
        assert sync.json()["guard"]["overall_state"] == "BlockPosting"
        assert can_post["allowed"] is False
        assert "144 records failed" in can_post["reason"]
        assert batch["status"] == "Blocked"

    def test_sync_run_without_timezone_is_read_as_utc(self, client):
        started = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(minutes=5)

        sync = client.post(
            "/api/sync-runs",
            json={
                "entity_type": "Invoices",
                "status": "Success",
                "started_at": started.isoformat(),
                "finished_at": (started + timedelta(minutes=1)).isoformat(),
            },
        )
        guard = client.get("/api/integrity")
        can_post = client.get("/api/integrity/can-post")

        assert sync.status_code == 201
        assert guard.status_code == 200
        assert guard.json()["overall_state"] == "Healthy"
        assert can_post.status_code == 200
        assert can_post.json()["allowed"] is True

    def test_payment_and_observation_without_timezone(self, client):
        payment = create_payment(client, received_at="2024-12-18T09:00:00")

        observed = client.post(
            "/api/settlement/observations",
            json={
                "payment_id": payment["id"],
                "transaction": {
                    "bank_reference": "BR-1001",
                    "amount_cents": 42000,
                    "observed_at": "2024-12-18T09:30:00",
                },
            },
        )
        refreshed = client.post("/api/settlement/refresh")
        summary = client.get("/api/exceptions/summary")

        assert observed.status_code == 201
        assert observed.json()["first_seen_at"].endswith("+00:00")
        assert refreshed.status_code == 200
        assert summary.status_code == 200

    def test_payment_activity(self, client):
        client.post("/api/receivables", json=[{"identifier": "INV-51201", "amount_cents": 42000}])
        payment = create_payment(client)
        client.post(f"/api/payments/{payment['id']}/evaluate")

        report = client.get(f"/api/payments/{payment['id']}/activity").json()
        filtered = client.get(
            f"/api/payments/{payment['id']}/activity",
            params={"action": "Moved to PendingToPost"},
        ).json()

        assert report["summary"]["total_entries"] == 3
        assert report["summary"]["last_action"] == "Moved to PendingToPost"
        assert [e["action"] for e in filtered["entries"]] == ["Moved to PendingToPost"]
        assert client.get("/api/payments/nope/activity").status_code == 404

    def test_empty_batch_rejected(self, client):
        response = client.post("/api/posting/batches", json={"payment_ids": []})

        assert response.status_code == 400

    def test_integrity_without_history(self, client):
        assert client.get("/api/integrity").json()["overall_state"] == "Healthy"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
