from __future__ import annotations

from decimal import Decimal


def _create_account(client, **overrides):
    payload = {"name": "Checking", "initial_balance": "100"}
    payload.update(overrides)
    r = client.post("/api/accounts", json=payload)
    assert r.status_code == 201, r.text
    return r.json()


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_account_and_transaction_flow(client):
    acc = _create_account(client)
    assert Decimal(acc["current_balance"]) == Decimal("100")

    parent = client.post("/api/categories", json={"name": "Living"}).json()
    child = client.post("/api/categories", json={"name": "Groceries", "parent_category_id": parent["id"]})
    assert child.status_code == 201
    child = child.json()

    r = client.post(
        f"/api/accounts/{acc['id']}/transactions",
        json={"date": "2025-01-09", "label": "Market", "amount": "-40", "category_id": child["id"]},
    )
    assert r.status_code == 201, r.text
    txn = r.json()
    assert txn["category_name"] == "Groceries"

    acc_after = client.get(f"/api/accounts/{acc['id']}").json()
    assert Decimal(acc_after["current_balance"]) == Decimal("60")

    listing = client.get(f"/api/accounts/{acc['id']}/transactions", params={"search": "market"}).json()
    assert listing["meta"]["total"] == 1
    assert listing["items"][0]["id"] == txn["id"]

    month = client.get("/api/budget/months/2025-01").json()
    items = [i for g in month["groups"] for i in g["items"] if i["category_id"] == child["id"]]
    assert Decimal(items[0]["activity"]) == Decimal("-40")

    r = client.patch(f"/api/budget/months/2025-01/categories/{child['id']}", json={"assigned": "50"})
    assert r.status_code == 200
    assert Decimal(r.json()["available"]) == Decimal("10")

    r = client.delete(f"/api/accounts/{acc['id']}/transactions/{txn['id']}")
    assert r.status_code == 200
    acc_final = client.get(f"/api/accounts/{acc['id']}").json()
    assert Decimal(acc_final["current_balance"]) == Decimal("100")


def test_invalid_month_key_maps_to_400(client):
    r = client.get("/api/budget/months/2025-13")
    assert r.status_code == 400
    body = r.json()
    assert body["kind"] == "validation_failed"
    assert "2025-13" in body["detail"]


def test_missing_account_maps_to_404(client):
    r = client.get("/api/accounts/424242")
    assert r.status_code == 404
    assert r.json()["kind"] == "not_found"


def test_second_initial_transaction_maps_to_409(client):
    acc = _create_account(client)
    initial = client.get(
        f"/api/accounts/{acc['id']}/transactions", params={"type": "INITIAL"}
    ).json()["items"][0]
    r = client.post(
        f"/api/accounts/{acc['id']}/transactions/initial",
        json={"amount": "5", "category_id": initial["category_id"]},
    )
    assert r.status_code == 409
    assert r.json()["kind"] == "conflict"


def test_initial_transaction_rules_over_http(client):
    acc = _create_account(client)
    initial = client.get(
        f"/api/accounts/{acc['id']}/transactions", params={"type": "INITIAL"}
    ).json()["items"][0]

    r = client.patch(f"/api/accounts/{acc['id']}/transactions/{initial['id']}", json={"label": "Changed"})
    assert r.status_code == 400
    r = client.delete(f"/api/accounts/{acc['id']}/transactions/{initial['id']}")
    assert r.status_code == 400
    r = client.patch(f"/api/accounts/{acc['id']}/transactions/{initial['id']}", json={"amount": "300"})
    assert r.status_code == 200
    assert Decimal(client.get(f"/api/accounts/{acc['id']}").json()["initial_balance"]) == Decimal("300")


def test_category_delete_and_archive_endpoints(client):
    acc = _create_account(client)
    cat = client.post("/api/categories", json={"name": "Hobbies"}).json()
    assert client.delete(f"/api/categories/{cat['id']}").status_code == 204
    assert client.get(f"/api/categories/{cat['id']}").status_code == 404

    r = client.post(f"/api/accounts/{acc['id']}/archive")
    assert r.status_code == 200
    assert r.json()["archived"] is True
    assert client.get("/api/accounts").json() == []
    assert len(client.get("/api/accounts", params={"include_archived": True}).json()) == 1


def test_events_are_published_for_http_mutations(client, events):
    _create_account(client)
    assert "account.created" in events.names()
