from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, get_db
from main import app


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        # No context manager: startup hooks (seeding, scheduler) stay off.
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _headers(client: TestClient) -> dict[str, str]:
    payload = client.get("/api/csrf-token").json()
    return {payload["header"]: payload["token"]}


def _create_category(client, headers, name, category_type):
    resp = client.post(
        "/api/categories",
        json={"name": name, "type": category_type},
        headers=headers,
    )
    assert resp.status_code == 201
    return resp.json()


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}


def test_mutations_require_csrf_token(client):
    resp = client.post("/api/categories", json={"name": "Rent", "type": "Needs"})
    assert resp.status_code == 400

    resp = client.post(
        "/api/categories",
        json={"name": "Rent", "type": "Needs"},
        headers={"X-CSRF-Token": "forged"},
    )
    assert resp.status_code == 400


def test_schedule_processing_and_dashboard(client):
    headers = _headers(client)
    rent = _create_category(client, headers, "Rent", "Needs")
    salary = _create_category(client, headers, "Salary", "Income")

    resp = client.post(
        "/api/recurring/expense",
        json={
            "description": "Rent",
            "amount_cents": 150_000,
            "category_id": rent["id"],
            "recurrence_day": 31,
            "start_date": "2025-01-01",
            "end_date": "2025-03-31",
        },
        headers=headers,
    )
    assert resp.status_code == 201
    rule_id = resp.json()["id"]

    resp = client.post(
        "/api/transactions",
        json={
            "description": "Pay",
            "kind": "income",
            "amount_cents": 350_000,
            "category_id": salary["id"],
            "transaction_date": "2025-02-01",
        },
        headers=headers,
    )
    assert resp.status_code == 201
    assert resp.json()["type"] == "Income"

    resp = client.post("/api/recurring/expense/process", headers=headers)
    assert resp.json() == {
        "processed_rule_count": 1,
        "created_transaction_count": 3,
        "failed_rule_count": 0,
    }
    resp = client.post("/api/reload", headers=headers)
    assert resp.json()["expense"]["created_transaction_count"] == 0

    rows = client.get("/api/transactions").json()
    generated = [row for row in rows if row["recurring_expense_id"] == rule_id]
    assert sorted(row["transaction_date"] for row in generated) == [
        "2025-01-31",
        "2025-02-28",
        "2025-03-31",
    ]
    assert all(row["amount_cents"] == -150_000 for row in generated)
    assert all(row["kind"] == "expense" for row in generated)

    data = client.get("/api/dashboard?period=month&year=2025&month=2").json()
    assert data["period"]["label"] == "February, 2025"
    assert data["summary"]["income_cents"] == 350_000
    assert data["summary"]["spent_cents"] == 150_000
    assert data["balance_cents"] == 50_000
    assert data["allocation"]["rule"]["is_fallback"] is True
    assert data["allocation"]["needs"]["target_cents"] == 175_000


def test_stopping_contract_locked_schedule_conflicts(client):
    headers = _headers(client)
    phone = _create_category(client, headers, "Phone", "Needs")
    resp = client.post(
        "/api/recurring/expense",
        json={
            "description": "Phone plan",
            "amount_cents": 2_500,
            "category_id": phone["id"],
            "recurrence_day": 5,
            "start_date": "2025-01-01",
            "end_date": "2099-12-31",
            "contract_end_date": "2099-01-01",
        },
        headers=headers,
    )
    rule_id = resp.json()["id"]

    resp = client.post(f"/api/recurring/expense/{rule_id}/stop", headers=headers)
    assert resp.status_code == 409

    resp = client.post(f"/api/recurring/income/{rule_id}/stop", headers=headers)
    assert resp.status_code == 404


def test_budget_rules_endpoints(client):
    headers = _headers(client)

    active = client.get("/api/budget-rules/active?on=2025-01-01").json()
    assert active["name"] == "Fallback Rule"
    assert active["id"] is None

    resp = client.post(
        "/api/budget-rules",
        json={
            "name": "Aggressive saver",
            "start_date": "2025-01-01",
            "needs_ratio": 0.5,
            "wants_ratio": 0.1,
            "savings_ratio": 0.5,
        },
        headers=headers,
    )
    assert resp.status_code == 422

    resp = client.post(
        "/api/budget-rules",
        json={
            "name": "Aggressive saver",
            "start_date": "2025-01-01",
            "needs_ratio": 0.5,
            "wants_ratio": 0.1,
            "savings_ratio": 0.4,
        },
        headers=headers,
    )
    assert resp.status_code == 201
    rule_id = resp.json()["id"]

    active = client.get(f"/api/budget-rules/active?on={date(2025, 4, 1)}").json()
    assert active["id"] == rule_id

    resp = client.delete(f"/api/budget-rules/{rule_id}", headers=headers)
    assert resp.status_code == 204
    resp = client.delete(f"/api/budget-rules/{rule_id}", headers=headers)
    assert resp.status_code == 404


def test_unknown_resources_and_bad_periods(client):
    headers = _headers(client)
    assert client.get("/api/transactions/42").status_code == 404
    assert client.delete("/api/categories/42", headers=headers).status_code == 404
    assert client.get("/api/dashboard?period=week").status_code == 400
    assert client.get("/api/recurring/weekly").status_code == 422
