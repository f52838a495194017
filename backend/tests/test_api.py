import json
import os
import time
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("SKIP_MIGRATIONS", "1")

from ledger.core.config import settings  # noqa: E402
from ledger.core.db import get_db  # noqa: E402
from ledger.core.time import utcnow  # noqa: E402
from ledger.disbursement.http import get_disbursement_adapter  # noqa: E402
from ledger.disbursement.webhooks import sign_webhook_payload  # noqa: E402
from ledger.main import app  # noqa: E402

from tests.factories import FakeAdapter, setup_db  # noqa: E402


SECRET = "whsec_api"


@pytest.fixture(autouse=True)
def client(monkeypatch):
    SessionLocal = setup_db("api")
    adapter = FakeAdapter()

    def fake_db():
        with SessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = fake_db
    app.dependency_overrides[get_disbursement_adapter] = lambda: adapter
    monkeypatch.setattr(settings, "PAYOUT_WEBHOOK_SECRET", SECRET)
    yield TestClient(app)
    app.dependency_overrides.clear()


def _register(client, email="maya@example.com", **extra):
    resp = client.post("/creators", json={"name": "Maya", "email": email, **extra})
    assert resp.status_code == 201
    return resp.json()


def _ingest(client, creator_id, source_id, gross="10.00", days_ago=60):
    occurred_at = (utcnow() - timedelta(days=days_ago)).isoformat()
    return client.post(
        "/tracking/transactions",
        json={
            "source_transaction_id": source_id,
            "creator_id": creator_id,
            "gross_amount": gross,
            "occurred_at": occurred_at,
        },
    )


def _signed(body: bytes) -> dict:
    timestamp = str(int(time.time()))
    return {
        "X-Payout-Signature": f"t={timestamp},v1={sign_webhook_payload(SECRET, timestamp, body)}",
        "Content-Type": "application/json",
    }


def test_ping_and_metrics(client):
    ping = client.get("/ping", headers={"X-Request-ID": "req-123"})
    assert ping.json() == {"message": "pong"}
    assert ping.headers["X-Request-ID"] == "req-123"
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "requests_total" in resp.text


def test_register_creator_and_payee(client):
    creator = _register(client, payment_method="paypal", minimum_payout="50")
    assert creator["payment_method"] == "PAYPAL"
    assert creator["payee_status"] == "not_registered"
    assert creator["minimum_payout"] == 50.0

    duplicate = client.post("/creators", json={"name": "Maya", "email": "MAYA@example.com"})
    assert duplicate.status_code == 409

    bad_method = client.post("/creators", json={"name": "Zed", "email": "zed@example.com", "payment_method": "gold"})
    assert bad_method.status_code == 422
    assert bad_method.headers["X-Error-Code"] == "validation_error"

    resp = client.post(f"/creators/{creator['id']}/payee", json={"country": "US"})
    assert resp.status_code == 200
    assert resp.json()["payee_id"] == f"tp_payee_{creator['id']}"
    assert resp.json()["payee_status"] == "pending"


def test_unknown_creator_renders_error_code(client):
    resp = client.get("/creators/9999")
    assert resp.status_code == 404
    assert resp.headers["X-Error-Code"] == "unknown_creator"
    assert resp.json()["code"] == "unknown_creator"


def test_ingest_is_idempotent_and_validates(client):
    creator = _register(client)

    first = _ingest(client, creator["id"], "order-1", gross="100.00")
    assert first.status_code == 201
    assert first.json()["created"] is True
    assert first.json()["earning"]["net_amount"] == 70.0

    again = _ingest(client, creator["id"], "order-1", gross="100.00")
    assert again.status_code == 200
    assert again.json()["created"] is False
    assert again.json()["earning"]["id"] == first.json()["earning"]["id"]

    negative = _ingest(client, creator["id"], "order-2", gross="-5")
    assert negative.status_code == 422
    assert negative.headers["X-Error-Code"] == "validation_error"

    missing = _ingest(client, 9999, "order-3")
    assert missing.status_code == 404


def test_reversal_cancels_unpaid_earning(client):
    creator = _register(client)
    _ingest(client, creator["id"], "order-9", days_ago=1)

    resp = client.post("/tracking/reversals", json={"source_transaction_id": "order-9", "reason": "refund"})
    assert resp.status_code == 200
    assert resp.json()["action"] == "cancelled"
    assert resp.json()["earning"]["status"] == "CANCELLED"

    unknown = client.post("/tracking/reversals", json={"source_transaction_id": "nope"})
    assert unknown.status_code == 422


def test_commission_overrides(client):
    first = _register(client)
    second = _register(client, email="sam@example.com")

    resp = client.post(
        f"/admin/creators/{first['id']}/commission-overrides",
        json={"rate": "80", "reason": "top seller", "effective_from": "2020-01-01T00:00:00"},
    )
    assert resp.status_code == 201
    assert resp.json()["rate"] == 80.0

    earning = _ingest(client, first["id"], "order-10", gross="100.00").json()["earning"]
    assert earning["commission_rate"] == 80.0
    assert earning["net_amount"] == 80.0

    listed = client.get(f"/admin/creators/{first['id']}/commission-overrides")
    assert [row["rate"] for row in listed.json()] == [80.0]

    out_of_range = client.post(f"/admin/creators/{first['id']}/commission-overrides", json={"rate": "120"})
    assert out_of_range.status_code == 422

    bulk = client.post(
        "/admin/commission-overrides/bulk",
        json={"creator_ids": [first["id"], second["id"]], "rate": "75"},
    )
    assert bulk.status_code == 201
    assert len(bulk.json()) == 2

    missing = client.post(
        "/admin/commission-overrides/bulk",
        json={"creator_ids": [second["id"], 9999], "rate": "75"},
    )
    assert missing.status_code == 404
    assert missing.headers["X-Error-Code"] == "unknown_creator"
    assert len(client.get(f"/admin/creators/{second['id']}/commission-overrides").json()) == 1


def test_payout_run_status_and_webhook(client):
    creator = _register(client)
    _ingest(client, creator["id"], "order-20", gross="10.00")

    status = client.get(f"/creators/{creator['id']}/payout-status").json()
    assert status["eligible_amount"] == 7.0
    assert status["will_include_in_next_run"] is True

    run = client.post("/admin/payouts/run", json={"creator_ids": [creator["id"]]})
    assert run.status_code == 200
    assert len(run.json()["batches"]) == 1
    assert run.json()["total_amount"] == 7.0

    pending = client.get("/admin/payouts/pending").json()
    assert len(pending) == 1
    batch = pending[0]
    assert batch["status"] == "SUBMITTED"
    assert batch["reason"] == "FORCED_45_DAY"

    body = json.dumps(
        {"eventType": "payment.completed", "data": {"paymentId": batch["external_payout_id"]}}
    ).encode("utf-8")
    resp = client.post("/payouts/webhook", content=body, headers=_signed(body))
    assert resp.status_code == 200
    assert resp.json()["outcome"] == "applied"
    assert resp.json()["status"] == "CONFIRMED"

    replay = client.post("/payouts/webhook", content=body, headers=_signed(body))
    assert replay.json()["outcome"] == "duplicate"
    assert client.get("/admin/payouts/pending").json() == []


def test_manual_payout_endpoint(client):
    creator = _register(client)
    _ingest(client, creator["id"], "order-30", gross="10.00", days_ago=20)

    resp = client.post(f"/admin/payouts/creators/{creator['id']}", json={})
    assert resp.status_code == 200
    assert len(resp.json()["batches"]) == 1

    again = client.post(f"/admin/payouts/creators/{creator['id']}", json={"scheduled_date": "2030-01-01"})
    assert again.status_code == 422


def test_webhook_rejects_bad_signature_and_unknown_events(client, monkeypatch):
    body = json.dumps({"eventType": "invoice.approved", "data": {}}).encode("utf-8")

    unsigned = client.post("/payouts/webhook", content=body, headers={"X-Payout-Signature": "t=1,v1=abc"})
    assert unsigned.status_code == 422

    unknown = client.post("/payouts/webhook", content=body, headers=_signed(body))
    assert unknown.status_code == 422
    assert unknown.headers["X-Error-Code"] == "validation_error"

    monkeypatch.setattr(settings, "PAYOUT_WEBHOOK_SECRET", None)
    disabled = client.post("/payouts/webhook", content=body, headers=_signed(body))
    assert disabled.status_code == 503


def test_bonus_endpoints(client):
    creator = _register(client)
    progress = client.get(f"/creators/{creator['id']}/bonus-progress")
    assert progress.status_code == 200
    assert progress.json()["current_tier"] is None
    assert progress.json()["next_tier_threshold"] == 5000.0

    stats = client.get("/admin/bonuses/statistics").json()
    assert stats["award_count"] == 0
    assert stats["tier_distribution"] == []
    assert stats["recent_awards"] == []
