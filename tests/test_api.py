import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from auth import generate_owner_token
from database import Base
from main import app, get_db
from periods import local_now


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
    yield TestClient(app)
    app.dependency_overrides.clear()


def _auth(user_id: str = "user-a") -> dict[str, str]:
    return {"Authorization": f"Bearer {generate_owner_token(user_id)}"}


def _create_account(client, **fields) -> dict:
    payload = {"name": "Wallet", "type": "cash", "balance_cents": 10_000}
    payload.update(fields)
    resp = client.post("/api/accounts", json=payload, headers=_auth())
    assert resp.status_code == 201
    return resp.json()


def test_ping(client) -> None:
    assert client.get("/api/ping").json() == {"message": "ping"}


def test_requests_without_a_valid_token_are_rejected(client) -> None:
    assert client.get("/api/accounts").status_code == 401
    resp = client.get("/api/accounts", headers={"Authorization": "Bearer forged"})
    assert resp.status_code == 401


def test_validation_errors_are_field_maps(client) -> None:
    resp = client.post(
        "/api/accounts", json={"name": "A", "type": "cash"}, headers=_auth()
    )
    assert resp.status_code == 400
    assert "name" in resp.json()["errors"]

    resp = client.post(
        "/api/accounts", json={"name": "GPay", "type": "upi"}, headers=_auth()
    )
    assert resp.status_code == 400
    assert resp.json()["errors"] == {"upi_id": "upi_id required for UPI accounts"}

    resp = client.get("/api/transactions?limit=500", headers=_auth())
    assert resp.status_code == 400
    assert "query.limit" in resp.json()["errors"]


def test_transaction_flow_updates_balance(client) -> None:
    account = _create_account(client)
    resp = client.post(
        "/api/transactions",
        json={
            "account_id": account["id"],
            "amount_cents": 2_500,
            "type": "expense",
            "category": "Groceries",
            "description": "Veg market",
            "date": local_now().isoformat(),
        },
        headers=_auth(),
    )
    assert resp.status_code == 201
    (created,) = resp.json()

    accounts = client.get("/api/accounts", headers=_auth()).json()
    assert accounts[0]["balance_cents"] == 7_500

    page = client.get("/api/transactions?q=veg&limit=10", headers=_auth()).json()
    assert [t["id"] for t in page["items"]] == [created["id"]]
    assert page["has_more"] is False

    resp = client.delete(f"/api/transactions/{created['id']}", headers=_auth())
    assert resp.json() == {"success": True}
    accounts = client.get("/api/accounts", headers=_auth()).json()
    assert accounts[0]["balance_cents"] == 10_000


def test_transfer_returns_both_legs(client) -> None:
    wallet = _create_account(client)
    savings = _create_account(client, name="Savings", type="bank", balance_cents=0)
    resp = client.post(
        "/api/transactions",
        json={
            "account_id": wallet["id"],
            "transfer_account_id": savings["id"],
            "amount_cents": 4_000,
            "type": "transfer",
            "category": "Transfer",
            "date": local_now().isoformat(),
        },
        headers=_auth(),
    )
    assert resp.status_code == 201
    legs = resp.json()
    assert [leg["type"] for leg in legs] == ["expense", "income"]
    assert legs[0]["transfer_peer_id"] == legs[1]["id"]


def test_balance_override_endpoint(client) -> None:
    account = _create_account(client)
    resp = client.put(
        f"/api/accounts/{account['id']}/balance",
        json={"balance_cents": 55_000},
        headers=_auth(),
    )
    assert resp.status_code == 200
    assert resp.json()["balance_cents"] == 55_000
    assert resp.json()["initial_balance_cents"] == 55_000

    resp = client.post(f"/api/accounts/{account['id']}/reconcile", headers=_auth())
    assert resp.json()["balance_cents"] == 55_000


def test_other_owners_see_not_found(client) -> None:
    account = _create_account(client)
    resp = client.get(
        f"/api/accounts/{account['id']}/transactions", headers=_auth("user-b")
    )
    assert resp.status_code == 404
    resp = client.put(
        f"/api/accounts/{account['id']}/balance",
        json={"balance_cents": 1},
        headers=_auth("user-b"),
    )
    assert resp.status_code == 404


def test_budget_endpoints(client) -> None:
    account = _create_account(client, balance_cents=0)
    client.post(
        "/api/transactions",
        json={
            "account_id": account["id"],
            "amount_cents": 1_200,
            "type": "expense",
            "category": "Restaurants",
            "date": local_now().isoformat(),
        },
        headers=_auth(),
    )
    resp = client.post(
        "/api/budgets",
        json={
            "name": "Food",
            "budget_type": "category",
            "scope": {"categories": ["Food & Dining"]},
            "amount_cents": 4_800,
            "period": "monthly",
        },
        headers=_auth(),
    )
    assert resp.status_code == 201
    budget = resp.json()
    assert budget["current_period"]["spent_cents"] == 1_200
    assert budget["current_period"]["progress_percentage"] == 25
    assert budget["alert_level"] == "ok"
    assert budget["current_period"]["transaction_count"] == 1

    resp = client.put(
        f"/api/budgets/{budget['id']}",
        json={"amount_cents": 1_000, "alert_thresholds": {"critical": 150}},
        headers=_auth(),
    )
    assert resp.status_code == 200
    updated = resp.json()
    assert updated["current_period"]["progress_percentage"] == 120
    assert updated["alert_thresholds"] == {"warning": 80, "critical": 150}
    assert updated["alert_level"] == "warning"
    assert updated["status"] == "over_budget"
    client.put(
        f"/api/budgets/{budget['id']}",
        json={"amount_cents": 4_800},
        headers=_auth(),
    )

    progress = client.get(
        f"/api/budgets/{budget['id']}/progress", headers=_auth()
    ).json()
    assert progress["spent_cents"] == 1_200
    assert progress["transaction_count"] == 1

    listing = client.get("/api/budgets?status=on_track", headers=_auth()).json()
    assert [b["name"] for b in listing] == ["Food"]
    assert listing[0]["alert_level"] == "ok"

    resp = client.get("/api/budgets?status=bogus", headers=_auth())
    assert resp.status_code == 400

    resp = client.post(
        "/api/budgets",
        json={
            "name": "Empty",
            "budget_type": "category",
            "amount_cents": 100,
            "period": "weekly",
        },
        headers=_auth(),
    )
    assert resp.status_code == 400
    assert "scope.categories" in resp.json()["errors"]

    resp = client.delete(f"/api/budgets/{budget['id']}", headers=_auth())
    assert resp.status_code == 200
    resp = client.get(f"/api/budgets/{budget['id']}/progress", headers=_auth())
    assert resp.status_code == 404


def test_goal_endpoints(client) -> None:
    resp = client.post(
        "/api/goals",
        json={"name": "Emergency fund", "target_amount_cents": 10_000},
        headers=_auth(),
    )
    assert resp.status_code == 201
    goal = resp.json()

    resp = client.post(
        f"/api/goals/{goal['id']}/contribute",
        json={"amount_cents": 10_000},
        headers=_auth(),
    )
    assert resp.json()["is_completed"] is True
    assert len(resp.json()["contribution_history"]) == 1

    assert client.get("/api/goals/summary", headers=_auth()).json() == {
        "completed": 1,
        "active": 0,
    }
    resp = client.post(
        f"/api/goals/{goal['id']}/contribute",
        json={"amount_cents": 0},
        headers=_auth(),
    )
    assert resp.status_code == 400


def test_utc_dates_are_stored_in_local_time(client) -> None:
    account = _create_account(client, balance_cents=0)
    resp = client.post(
        "/api/transactions",
        json={
            "account_id": account["id"],
            "amount_cents": 1_000,
            "type": "expense",
            "category": "Groceries",
            "date": "2024-05-31T20:00:00Z",
        },
        headers=_auth(),
    )
    assert resp.status_code == 201
    assert resp.json()[0]["date"] == "2024-06-01T01:30:00"

    may = client.get(
        "/api/transactions?from=2024-05-01T00:00:00%2B05:30&to=2024-05-31T23:59:59%2B05:30",
        headers=_auth(),
    ).json()
    assert may["items"] == []
    june = client.get(
        "/api/transactions?from=2024-05-31T19:00:00Z", headers=_auth()
    ).json()
    assert len(june["items"]) == 1


def test_deleting_twice_is_not_found(client) -> None:
    account = _create_account(client)
    (created,) = client.post(
        "/api/transactions",
        json={
            "account_id": account["id"],
            "amount_cents": 100,
            "type": "expense",
            "category": "Groceries",
            "date": local_now().isoformat(),
        },
        headers=_auth(),
    ).json()
    url = f"/api/transactions/{created['id']}"
    assert client.delete(url, headers=_auth()).status_code == 200
    assert client.delete(url, headers=_auth()).status_code == 404
