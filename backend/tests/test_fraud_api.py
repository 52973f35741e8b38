from datetime import timedelta
from decimal import Decimal

import pytest

pytest.importorskip("httpx")

from backend.app.models import ExpenseItem  # noqa: E402
from backend.tests.fraud_factories import NOW  # noqa: E402

REVIEWER = {"X-User-Email": "Reviewer@Example.com"}


def _payload(record_id: str, minutes: int = 0, **overrides):
    body = {
        "id": record_id,
        "amount": "42.50",
        "expense_date": (NOW + timedelta(minutes=minutes)).isoformat().replace("+00:00", "Z"),
        "description": "Team lunch",
        "receipt_number": "R-1001",
        "merchant_name": "Cafe Aurora",
        "location": {"lat": 52.52, "lng": 13.405, "address": "Unter den Linden 1"},
        "user_id": "user-1",
    }
    body.update(overrides)
    return body


def _create_duplicate(api_client):
    assert api_client.post("/api/fraud/check", json=_payload("r1")).json() == []
    res = api_client.post("/api/fraud/check", json=_payload("r2", minutes=10))
    assert res.status_code == 200, res.text
    (alert,) = res.json()
    return alert


def test_check_endpoint_returns_duplicate_alert(api_client):
    alert = _create_duplicate(api_client)

    assert alert["kind"] == "duplicate_receipt"
    assert alert["subject_record_id"] == "r2"
    assert alert["related_record_id"] == "r1"
    assert alert["status"] == "pending"
    assert alert["confidence_score"] >= 95
    assert alert["details"]["risk_level"] == "critical"
    assert "content identical" in alert["details"]["similarity_factors"]


def test_check_rejects_record_without_amount_or_date(api_client):
    res = api_client.post("/api/fraud/check", json={"id": "empty", "description": "nothing useful"})
    assert res.status_code == 400
    assert "missing both amount and timestamp" in res.json()["detail"]


def test_check_validates_payload_shape(api_client):
    res = api_client.post("/api/fraud/check", json=_payload("r1", location={"lat": 200, "lng": 0}))
    assert res.status_code == 422


def test_bulk_check_reports_failures_per_record(api_client):
    res = api_client.post(
        "/api/fraud/bulk-check",
        json={"records": [_payload("r1"), {"id": "bad"}, _payload("r3", minutes=5)]},
    )

    assert res.status_code == 200, res.text
    body = res.json()
    assert body["checked"] == 2
    assert body["failures"] == [
        {"record_id": "bad", "error": "InvalidRecord", "message": "record 'bad': missing both amount and timestamp"}
    ]
    assert len(body["alerts"]) >= 1


def test_list_alerts_with_filters(api_client):
    _create_duplicate(api_client)

    assert len(api_client.get("/api/fraud/alerts").json()) == 1
    assert len(api_client.get("/api/fraud/alerts", params={"status": "pending"}).json()) == 1
    assert api_client.get("/api/fraud/alerts", params={"kind": "amount_manipulation"}).json() == []
    assert api_client.get("/api/fraud/alerts", params={"status": "bogus"}).status_code == 422


def test_review_flow(api_client):
    alert = _create_duplicate(api_client)

    res = api_client.patch(
        f"/api/fraud/alerts/{alert['id']}",
        json={"status": "reviewed", "notes": "asked the submitter"},
        headers=REVIEWER,
    )
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["status"] == "reviewed"
    assert body["reviewed_by"] == "reviewer@example.com"
    assert body["notes"] == "asked the submitter"
    assert body["reviewed_at"] is not None

    res = api_client.patch(
        f"/api/fraud/alerts/{alert['id']}",
        json={"status": "confirmed", "reviewed_by": "lead"},
    )
    assert res.status_code == 200
    assert res.json()["reviewed_by"] == "lead"

    res = api_client.patch(f"/api/fraud/alerts/{alert['id']}", json={"status": "dismissed"}, headers=REVIEWER)
    assert res.status_code == 409

    assert api_client.get(f"/api/fraud/alerts/{alert['id']}").json()["status"] == "confirmed"


def test_review_requires_reviewer(api_client):
    alert = _create_duplicate(api_client)
    res = api_client.patch(f"/api/fraud/alerts/{alert['id']}", json={"status": "dismissed"})
    assert res.status_code == 401


def test_review_rejects_pending_and_unknown_alert(api_client):
    alert = _create_duplicate(api_client)
    res = api_client.patch(f"/api/fraud/alerts/{alert['id']}", json={"status": "pending"}, headers=REVIEWER)
    assert res.status_code == 422

    res = api_client.patch("/api/fraud/alerts/missing", json={"status": "dismissed"}, headers=REVIEWER)
    assert res.status_code == 404


def test_stats_endpoint(api_client):
    alert = _create_duplicate(api_client)
    api_client.patch(f"/api/fraud/alerts/{alert['id']}", json={"status": "dismissed"}, headers=REVIEWER)

    body = api_client.get("/api/fraud/stats").json()

    assert body["total"] == 1
    assert body["pending"] == 0
    assert body["dismissed"] == 1
    assert body["by_kind"] == {"duplicate_receipt": 1}
    assert body["by_risk_level"] == {"critical": 1}


def test_settings_endpoints(api_client):
    body = api_client.get("/api/fraud/settings").json()
    assert body["duplicate_threshold"] == 85.0
    assert body["enabled"] is True

    res = api_client.patch("/api/fraud/settings", json={"duplicate_threshold": 92, "require_approval": False})
    assert res.status_code == 200
    assert res.json()["duplicate_threshold"] == 92.0
    assert res.json()["require_approval"] is False
    assert res.json()["time_window_hours"] == 24.0

    assert api_client.patch("/api/fraud/settings", json={"duplicate_threshold": 150}).status_code == 422
    assert api_client.patch("/api/fraud/settings", json={"time_window_hours": 0}).status_code == 422


def test_disabled_detection_via_settings(api_client):
    api_client.patch("/api/fraud/settings", json={"enabled": False})
    api_client.post("/api/fraud/check", json=_payload("r1"))
    assert api_client.post("/api/fraud/check", json=_payload("r2", minutes=10)).json() == []


def test_approval_endpoint(api_client):
    alert = _create_duplicate(api_client)

    body = api_client.get("/api/fraud/records/r2/approval").json()
    assert body == {"record_id": "r2", "blocked": True, "alert_ids": [alert["id"]]}
    assert api_client.get("/api/fraud/records/r1/approval").json()["blocked"] is False


def test_analyze_user_endpoint(api_client, sqlite_session):
    items = [
        ExpenseItem(id=f"e{idx}", user_id="user-1", amount=Decimal("100"), expense_date=NOW - timedelta(days=idx + 1))
        for idx in range(10)
    ]
    items.append(ExpenseItem(id="big", user_id="user-1", amount=Decimal("10000"), expense_date=NOW - timedelta(days=2)))
    sqlite_session.add_all(items)
    sqlite_session.commit()

    res = api_client.post("/api/fraud/users/user-1/analyze")

    assert res.status_code == 200, res.text
    (alert,) = res.json()
    assert alert["kind"] == "amount_manipulation"
    assert alert["subject_record_id"] == "big"
    assert alert["details"]["risk_level"] == "critical"

    assert api_client.post("/api/fraud/users/user-2/analyze").json() == []
    assert api_client.post("/api/fraud/users/user-1/analyze", params={"lookback_months": 0}).status_code == 422
