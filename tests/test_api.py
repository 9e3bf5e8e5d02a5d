import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from database import create_db_engine, init_db
from main import app, get_db


@pytest.fixture()
def client():
    engine = create_db_engine("sqlite:///:memory:")
    init_db(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    # Not used as a context manager, so the startup hook (and the
    # reminder scheduler) never runs.
    yield TestClient(app)
    app.dependency_overrides.clear()
    engine.dispose()


def create_account(client, name, currency="DOP", **extra):
    payload = {"name": name, "bank": "Banreservas", "type": "checking", "currency": currency}
    payload.update(extra)
    resp = client.post("/api/accounts", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


def post_txn(client, **payload):
    payload.setdefault("currency", "DOP")
    payload.setdefault("date", "2024-03-10")
    resp = client.post("/api/transactions", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_account_balances_round_trip(client) -> None:
    a = create_account(client, "A")
    b = create_account(client, "B")
    assert a["balance_dop"] == "0.00"

    post_txn(client, type="income", amount="100", account_id=a["id"], category="Payroll")
    post_txn(client, type="expense", amount="30", account_id=a["id"], category="Groceries")
    transfer = client.post(
        "/api/transfers",
        json={
            "amount": "20",
            "currency": "DOP",
            "date": "2024-03-11",
            "account_id": a["id"],
            "transfer_to_account_id": b["id"],
        },
    )
    assert transfer.status_code == 201
    assert transfer.json()["category"] == "Transfer"

    accounts = {row["name"]: row for row in client.get("/api/accounts").json()}
    assert accounts["A"]["balance_dop"] == "50.00"
    assert accounts["B"]["balance_dop"] == "20.00"

    balances = client.get("/api/balances").json()
    assert balances["totals"] == {"balance_dop": "70.00", "balance_usd": "0.00"}


def test_validation_and_not_found_status_codes(client) -> None:
    a = create_account(client, "A")

    bad_transfer = client.post(
        "/api/transactions",
        json={
            "type": "transfer",
            "amount": "5",
            "currency": "DOP",
            "date": "2024-03-10",
            "account_id": a["id"],
        },
    )
    assert bad_transfer.status_code == 422

    bad_currency = client.post(
        "/api/transactions",
        json={
            "type": "income",
            "amount": "5",
            "currency": "EUR",
            "date": "2024-03-10",
            "account_id": a["id"],
            "category": "Gifts",
        },
    )
    assert bad_currency.status_code == 422

    missing_account = client.post(
        "/api/transactions",
        json={
            "type": "income",
            "amount": "5",
            "currency": "DOP",
            "date": "2024-03-10",
            "account_id": 999,
            "category": "Gifts",
        },
    )
    assert missing_account.status_code == 400
    assert missing_account.json()["detail"] == "Source account not found"

    assert client.patch("/api/accounts/999", json={"name": "X"}).status_code == 404
    assert client.delete("/api/transactions/999").status_code == 404
    frozen = client.patch(f"/api/accounts/{a['id']}", json={"is_frozen": True})
    assert frozen.status_code == 400


def test_delete_account_cascades(client) -> None:
    a = create_account(client, "A")
    b = create_account(client, "B", currency="USD")
    post_txn(client, type="income", amount="10", account_id=b["id"], category="Gifts")
    client.post(
        "/api/transfers",
        json={
            "amount": "4",
            "currency": "USD",
            "date": "2024-03-11",
            "account_id": a["id"],
            "transfer_to_account_id": b["id"],
        },
    )

    resp = client.delete(f"/api/accounts/{a['id']}")
    assert resp.json() == {"deleted": a["id"], "transactions_deleted": 1}

    accounts = client.get("/api/accounts").json()
    assert [(row["name"], row["balance_dop"], row["balance_usd"]) for row in accounts] == [
        ("B", "10.00", "0.00")
    ]


def test_transaction_listing_filters(client) -> None:
    a = create_account(client, "A")
    post_txn(client, type="expense", amount="12.5", account_id=a["id"], category="Transport",
             description="Taxi", date="2024-03-02")
    post_txn(client, type="expense", amount="3", account_id=a["id"], category="Groceries",
             date="2024-03-05")
    post_txn(client, type="income", amount="80", account_id=a["id"], category="Gifts",
             date="2024-02-20")

    march = client.get(
        "/api/transactions",
        params={"period": "custom", "start": "2024-03-01", "end": "2024-03-31"},
    ).json()
    assert [item["amount"] for item in march["items"]] == ["3.00", "12.50"]
    assert march["has_more"] is False

    taxi = client.get("/api/transactions", params={"q": "taxi"}).json()
    assert [item["description"] for item in taxi["items"]] == ["Taxi"]

    paged = client.get("/api/transactions", params={"limit": 2}).json()
    assert len(paged["items"]) == 2
    assert paged["has_more"] is True

    bad_period = client.get("/api/transactions", params={"period": "custom"})
    assert bad_period.status_code == 400

    txn_id = march["items"][0]["id"]
    patched = client.patch(f"/api/transactions/{txn_id}", json={"amount": "4.25"})
    assert patched.json()["amount"] == "4.25"
    assert client.delete(f"/api/transactions/{txn_id}").status_code == 204


def test_recurring_crud_and_next_due(client) -> None:
    a = create_account(client, "A")
    payload = {
        "description": "Netflix",
        "amount": "10.99",
        "type": "expense",
        "category": "Entertainment",
        "currency": "USD",
        "account_id": a["id"],
        "frequency": "monthly",
        "start_date": "2099-01-31",
    }
    created = client.post("/api/recurring", json=payload)
    assert created.status_code == 201
    item = created.json()
    assert item["next_due_date"] == "2099-01-31"

    payload.update(frequency="yearly", start_date="2098-06-30")
    replaced = client.put(f"/api/recurring/{item['id']}", json=payload).json()
    assert replaced["frequency"] == "yearly"
    assert replaced["next_due_date"] == "2098-06-30"

    assert [row["id"] for row in client.get("/api/recurring").json()] == [item["id"]]
    assert client.get("/api/recurring/upcoming", params={"days": 400}).status_code == 400

    transfer = dict(payload, type="transfer")
    assert client.post("/api/recurring", json=transfer).status_code == 422

    assert client.delete(f"/api/recurring/{item['id']}").status_code == 204
    assert client.get("/api/recurring").json() == []


def test_task_budget_and_calendar_flow(client) -> None:
    a = create_account(client, "A")
    task = client.post("/api/tasks", json={"title": "Pay power bill", "due_date": "2024-03-20"})
    assert task.status_code == 201
    task_id = task.json()["id"]

    done = client.post(
        f"/api/tasks/{task_id}/complete",
        json={
            "transaction": {
                "type": "expense",
                "amount": "2500",
                "currency": "DOP",
                "date": "2024-03-20",
                "account_id": a["id"],
                "category": "Utilities",
            }
        },
    ).json()
    assert done["is_completed"] is True
    assert done["transaction_id"] is not None
    assert client.post(f"/api/tasks/{task_id}/complete").status_code == 400

    budget = client.post("/api/budgets", json={"category": "Utilities", "amount": "2000"})
    assert budget.status_code == 201
    duplicate = client.post("/api/budgets", json={"category": "Utilities", "amount": "10"})
    assert duplicate.status_code == 400

    progress = client.get("/api/budgets", params={"year": 2024, "month": 3}).json()
    assert progress[0]["spent"] == "2500.00"
    assert progress[0]["remaining"] == "-500.00"
    assert progress[0]["percent"] == 125.0

    calendar = client.get("/api/calendar", params={"year": 2024, "month": 3}).json()
    assert calendar["days"] == {"2024-03-20": {"DOP": {"income": "0.00", "expense": "2500.00"}}}

    breakdown = client.get(
        "/api/category-breakdown",
        params={"period": "custom", "start": "2024-03-01", "end": "2024-03-31"},
    ).json()
    assert breakdown["breakdown"][0]["categories"][0]["name"] == "Utilities"
    assert client.get("/api/category-breakdown", params={"type": "transfer"}).status_code == 400


def test_notifications_and_dashboard_endpoints(client) -> None:
    create_account(client, "A")
    assert client.get("/api/notifications").json() == {"items": [], "unread": 0}
    assert client.post("/api/notifications/1/read").status_code == 404
    assert client.post("/api/notifications/read-all").json() == {"updated": 0}

    dashboard = client.get("/api/dashboard").json()
    assert dashboard["balances"]["totals"] == {"balance_dop": "0.00", "balance_usd": "0.00"}
    assert dashboard["unread_notifications"] == 0
    assert set(client.get("/api/categories").json()) == {"income", "expense"}
