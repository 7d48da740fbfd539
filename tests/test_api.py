"""Admin HTTP surface: auth, error mapping and the main operations."""

import pytest
from fastapi.testclient import TestClient

from conftest import add_entries, add_vendor
from vendorpay.common.config import settings
from vendorpay.common.errors import ErrorKind, GatewayError
from vendorpay.services.payouts.main import app, get_service
from vendorpay.services.payouts.service import PayoutService


@pytest.fixture
def service(session_factory, gateway, config, clock):
    return PayoutService(session_factory, gateway, config, clock=clock)


@pytest.fixture
def client(service):
    app.dependency_overrides[get_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def headers():
    return {"x-api-key": settings.api_key}


def test_admin_endpoints_require_api_key(client, session_factory):
    vendor_id = add_vendor(session_factory)
    assert client.get(f"/vendors/{vendor_id}/statistics").status_code == 401
    assert client.get(f"/vendors/{vendor_id}/statistics", headers={"x-api-key": "wrong"}).status_code == 401


def test_health_and_metrics_are_open(client):
    assert client.get("/health").json() == {"ok": True}
    assert client.get("/metrics").status_code == 200


def test_manual_payout_pays_pending_balance(client, session_factory, headers):
    vendor_id = add_vendor(session_factory)
    add_entries(session_factory, vendor_id, [10_000])

    resp = client.post(f"/vendors/{vendor_id}/payouts", json={}, headers=headers)

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert (body["amount"], body["fee_amount"]) == (9_500, 500)


def test_below_minimum_needs_force(client, session_factory, headers):
    vendor_id = add_vendor(session_factory, minimum_payout_amount=5_000)
    add_entries(session_factory, vendor_id, [3_000])

    rejected = client.post(f"/vendors/{vendor_id}/payouts", json={}, headers=headers)
    forced = client.post(f"/vendors/{vendor_id}/payouts", json={"force": True}, headers=headers)

    assert rejected.status_code == 409
    assert rejected.json()["kind"] == "eligibility"
    assert forced.status_code == 200


def test_validation_and_not_found_mapping(client, session_factory, headers):
    vendor_id = add_vendor(session_factory)
    add_entries(session_factory, vendor_id, [5_000])

    too_small = client.post(f"/vendors/{vendor_id}/payouts", json={"amount": 500, "force": True}, headers=headers)
    missing = client.post("/vendors/nope/payouts", json={}, headers=headers)

    assert too_small.status_code == 422
    assert too_small.json()["kind"] == "validation"
    assert missing.status_code == 404


def test_gateway_rejection_maps_to_502(client, session_factory, gateway, headers):
    gateway.transfer_error = GatewayError("account closed", ErrorKind.GATEWAY_REJECTED)
    vendor_id = add_vendor(session_factory)
    add_entries(session_factory, vendor_id, [5_000])

    resp = client.post(f"/vendors/{vendor_id}/payouts", json={}, headers=headers)

    assert resp.status_code == 502
    assert resp.json()["kind"] == "gateway_rejected"
    assert resp.json()["retryable"] is False


def test_partial_transfer_returns_202_and_can_be_resumed(client, session_factory, gateway, headers):
    gateway.payout_error = GatewayError("bank down", ErrorKind.TEMPORARILY_UNAVAILABLE)
    vendor_id = add_vendor(session_factory)
    add_entries(session_factory, vendor_id, [5_000])

    parked = client.post(f"/vendors/{vendor_id}/payouts", json={}, headers=headers)
    assert parked.status_code == 202
    payout_id = parked.json()["payout_id"]
    assert parked.json()["status"] == "reconciliation_required"

    report = client.get("/reconciliation", headers=headers).json()
    assert [p["id"] for p in report["reconciliation_required"]] == [payout_id]

    gateway.payout_error = None
    resumed = client.post(f"/payouts/{payout_id}/reconcile", json={"action": "resume"}, headers=headers)
    assert resumed.status_code == 200
    assert resumed.json()["status"] == "in_transit"


def test_abandon_requires_note(client, session_factory, gateway, headers):
    gateway.payout_error = GatewayError("bank down", ErrorKind.GATEWAY_REJECTED)
    vendor_id = add_vendor(session_factory)
    add_entries(session_factory, vendor_id, [5_000])
    payout_id = client.post(f"/vendors/{vendor_id}/payouts", json={}, headers=headers).json()["payout_id"]

    no_note = client.post(f"/payouts/{payout_id}/reconcile", json={"action": "abandon"}, headers=headers)
    with_note = client.post(
        f"/payouts/{payout_id}/reconcile", json={"action": "abandon", "note": "reversed"}, headers=headers
    )

    assert no_note.status_code == 422
    assert with_note.json()["status"] == "failed"


def test_holds_block_and_release(client, session_factory, headers):
    vendor_id = add_vendor(session_factory)
    add_entries(session_factory, vendor_id, [5_000])

    placed = client.post(f"/vendors/{vendor_id}/holds", json={"reason": "fraud review"}, headers=headers)
    blocked = client.post(f"/vendors/{vendor_id}/payouts", json={}, headers=headers)
    lifted = client.request("DELETE", f"/vendors/{vendor_id}/holds", json={"reason": "cleared"}, headers=headers)
    paid = client.post(f"/vendors/{vendor_id}/payouts", json={}, headers=headers)

    assert placed.status_code == 201
    assert blocked.status_code == 409
    assert lifted.json()["lifted"] == 1
    assert paid.status_code == 200


def test_history_and_statistics(client, session_factory, headers):
    vendor_id = add_vendor(session_factory)
    add_entries(session_factory, vendor_id, [5_000])
    client.post(f"/vendors/{vendor_id}/payouts", json={}, headers=headers)

    history = client.get(f"/vendors/{vendor_id}/payouts", params={"status": "in_transit"}, headers=headers)
    stats = client.get(f"/vendors/{vendor_id}/statistics", headers=headers)

    assert [p["amount"] for p in history.json()] == [4_750]
    body = stats.json()
    assert body["total_payouts"] == 1
    assert body["total_fees"] == 250
    assert body["pending_amount"] == 0
    assert body["status_breakdown"] == {"in_transit": 1}


def test_schedule_roundtrip_and_scheduler_stats(client, session_factory, headers):
    vendor_id = add_vendor(session_factory)

    updated = client.put(
        f"/vendors/{vendor_id}/schedule", json={"interval": "daily", "minimum_amount": 3_000}, headers=headers
    )
    fetched = client.get(f"/vendors/{vendor_id}/schedule", headers=headers)
    bad = client.put(f"/vendors/{vendor_id}/schedule", json={"interval": "hourly"}, headers=headers)
    stats = client.get("/scheduler", headers=headers).json()

    assert updated.status_code == 200
    assert fetched.json()["interval"] == "daily"
    assert fetched.json()["minimum_amount"] == 3_000
    assert bad.status_code == 422
    assert stats["total_jobs"] == 1
    assert stats["jobs_by_status"] == {"scheduled": 1}


def test_batch_endpoint(client, session_factory, headers):
    vendor_id = add_vendor(session_factory)
    add_entries(session_factory, vendor_id, [5_000])

    resp = client.post(
        "/payouts/batch",
        json={
            "payouts": [
                {"vendor_account_id": vendor_id, "amount": 5_000},
                {"vendor_account_id": "x", "amount": 5_000},
            ]
        },
        headers=headers,
    )

    assert resp.status_code == 200
    assert resp.json()["successful"] == 1
    assert resp.json()["failed"] == 1


def test_second_active_hold_conflicts(client, session_factory, headers):
    vendor_id = add_vendor(session_factory)

    first = client.post(
        f"/vendors/{vendor_id}/holds",
        json={"reason": "dispute", "hold_type": "dispute", "duration_days": 5},
        headers=headers,
    )
    second = client.post(f"/vendors/{vendor_id}/holds", json={"reason": "again"}, headers=headers)
    bad_type = client.post(f"/vendors/{vendor_id}/holds", json={"reason": "x", "hold_type": "vibes"}, headers=headers)
    extended = client.patch(f"/vendors/{vendor_id}/holds", json={"additional_days": 2}, headers=headers)
    history = client.get(f"/vendors/{vendor_id}/holds", headers=headers)
    nothing_to_lift = client.request("DELETE", "/vendors/nope/holds", json={}, headers=headers)

    assert first.status_code == 201
    assert first.json()["release_date"].startswith("2026-03-07")
    assert second.status_code == 409
    assert bad_type.status_code == 422
    assert extended.json()["release_date"].startswith("2026-03-09")
    assert [h["hold_type"] for h in history.json()] == ["dispute"]
    assert nothing_to_lift.status_code == 404
