import uuid
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError

from storewallet.models import AccountRole, ItemStatus


def as_user(account):
    return {"X-Account-Id": str(account.id)}


@pytest.mark.asyncio
async def test_register_account(client: AsyncClient):
    response = await client.post("/api/accounts", json={"login": "+7 900 000 00 01", "display_name": "Test User"})
    assert response.status_code == 201
    data = response.json()
    assert data["display_name"] == "Test User"
    assert data["role"] == "USER"
    assert float(data["balance"]) == 0.0

    # Registering the same login again returns the same account
    again = await client.post("/api/accounts", json={"login": "+7 900 000 00 01", "display_name": "Other"})
    assert again.json()["id"] == data["id"]

@pytest.mark.asyncio
async def test_missing_identity_header(client: AsyncClient):
    resp = await client.post("/api/wallet/deposits", json={"amount": 10})
    assert resp.status_code == 401

@pytest.mark.asyncio
async def test_unknown_identity(client: AsyncClient):
    resp = await client.get("/api/wallet/transactions", headers={"X-Account-Id": str(uuid.uuid4())})
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Account not found"

@pytest.mark.asyncio
async def test_deposit_flow(client: AsyncClient, make_account):
    customer = await make_account()
    admin = await make_account(role=AccountRole.ADMIN)

    resp = await client.post(
        "/api/wallet/deposits",
        json={"amount": 500, "receipt_ref": "data:image/png;base64,AAAA"},
        headers=as_user(customer),
    )
    assert resp.status_code == 201
    tx = resp.json()
    assert tx["status"] == "PENDING"

    resp = await client.get("/api/transactions/pending", headers=as_user(admin))
    assert [t["id"] for t in resp.json()] == [tx["id"]]

    resp = await client.post(f"/api/transactions/{tx['id']}/approve", headers=as_user(admin))
    assert resp.status_code == 200
    assert resp.json()["status"] == "APPROVED"

    resp = await client.get(f"/api/accounts/{customer.id}", headers=as_user(customer))
    assert float(resp.json()["balance"]) == 500.0

    resp = await client.get("/api/transactions/pending", headers=as_user(admin))
    assert resp.json() == []

@pytest.mark.asyncio
async def test_deposit_invalid_amount(client: AsyncClient, make_account):
    customer = await make_account()
    resp = await client.post("/api/wallet/deposits", json={"amount": 0}, headers=as_user(customer))
    assert resp.status_code == 400
    assert "positive" in resp.json()["detail"]

@pytest.mark.asyncio
async def test_withdrawal_below_one_cent_rejected(client: AsyncClient, make_account):
    customer = await make_account(balance=1)
    resp = await client.post(
        "/api/wallet/withdrawals", json={"amount": "0.005", "details": "card 4111"}, headers=as_user(customer)
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Transaction amount must be in whole cents"

    resp = await client.get("/api/wallet/transactions", headers=as_user(customer))
    assert resp.json() == []

@pytest.mark.asyncio
async def test_customer_cannot_approve(client: AsyncClient, make_account):
    customer = await make_account()
    resp = await client.post("/api/wallet/deposits", json={"amount": 50}, headers=as_user(customer))
    tx_id = resp.json()["id"]

    resp = await client.post(f"/api/transactions/{tx_id}/approve", headers=as_user(customer))
    assert resp.status_code == 403

@pytest.mark.asyncio
async def test_withdrawal_insufficient_funds(client: AsyncClient, make_account):
    customer = await make_account(balance=10)
    resp = await client.post(
        "/api/wallet/withdrawals", json={"amount": 100, "details": "card 4111"}, headers=as_user(customer)
    )
    assert resp.status_code == 400
    assert "Insufficient funds" in resp.json()["detail"]

@pytest.mark.asyncio
async def test_withdrawal_reject_via_api(client: AsyncClient, make_account, balance_of):
    customer = await make_account(balance=100)
    admin = await make_account(role=AccountRole.ADMIN)

    resp = await client.post(
        "/api/wallet/withdrawals", json={"amount": 40, "details": "card 4111"}, headers=as_user(customer)
    )
    assert resp.status_code == 201
    assert await balance_of(customer.id) == Decimal("60")

    tx_id = resp.json()["id"]
    resp = await client.post(f"/api/transactions/{tx_id}/reject", headers=as_user(admin))
    assert resp.json()["status"] == "REJECTED"
    assert await balance_of(customer.id) == Decimal("100")

@pytest.mark.asyncio
async def test_refund_request_with_manual_amount(client: AsyncClient, make_account, balance_of):
    customer = await make_account(balance=0)
    manager = await make_account(role=AccountRole.MANAGER)

    resp = await client.post(
        "/api/wallet/refund-requests", json={"amount": 20, "reason": "gift"}, headers=as_user(customer)
    )
    tx = resp.json()
    assert tx["type"] == "WITHDRAWAL"
    assert tx["request_kind"] == "REFUND_REQUEST"

    resp = await client.post(
        f"/api/transactions/{tx['id']}/approve", json={"manual_amount": 15}, headers=as_user(manager)
    )
    assert float(resp.json()["amount"]) == 15.0
    assert await balance_of(customer.id) == Decimal("15")

@pytest.mark.asyncio
async def test_direct_refund(client: AsyncClient, make_account, balance_of):
    customer = await make_account()
    admin = await make_account(role=AccountRole.ADMIN)

    resp = await client.post(
        "/api/refunds", json={"account_id": str(customer.id), "amount": 12, "reason": "late delivery"}, headers=as_user(admin)
    )
    assert resp.status_code == 201
    assert resp.json()["status"] == "APPROVED"
    assert await balance_of(customer.id) == Decimal("12")

    resp = await client.post(
        "/api/refunds", json={"account_id": str(uuid.uuid4()), "amount": 12}, headers=as_user(admin)
    )
    assert resp.status_code == 404

@pytest.mark.asyncio
async def test_reserve_and_income_notifications(client: AsyncClient, make_account):
    customer = await make_account(balance=100, display_name="Buyer")
    admin = await make_account(role=AccountRole.ADMIN)

    resp = await client.post("/api/items", json={"title": "Locker", "price": 30, "quantity": 1}, headers=as_user(admin))
    assert resp.status_code == 201
    item_id = resp.json()["id"]

    resp = await client.post(f"/api/items/{item_id}/reserve", json={}, headers=as_user(customer))
    assert resp.status_code == 201
    body = resp.json()
    assert body["item"]["status"] == "RESERVED"
    assert body["item"]["owner_id"] == str(customer.id)
    assert body["transaction"]["type"] == "PURCHASE"

    resp = await client.post(f"/api/items/{item_id}/rent", json={}, headers=as_user(customer))
    assert resp.status_code == 201

    # Purchases never show up as pending requests
    resp = await client.get("/api/transactions/pending", headers=as_user(admin))
    assert resp.json() == []

    resp = await client.get("/api/transactions/unviewed-count", headers=as_user(admin))
    assert resp.json()["count"] == 2

    resp = await client.get("/api/reports/income", headers=as_user(admin))
    groups = resp.json()
    assert len(groups) == 1
    assert groups[0]["display_name"] == "Buyer"
    assert float(groups[0]["total"]) == 60.0
    assert groups[0]["count"] == 2
    assert groups[0]["has_unread"] is True

    resp = await client.get(
        "/api/transactions", params={"account_id": str(customer.id), "type": "PURCHASE"}, headers=as_user(admin)
    )
    purchase_id = resp.json()[0]["id"]
    resp = await client.post(f"/api/transactions/{purchase_id}/viewed", headers=as_user(admin))
    assert resp.json()["viewed"] is True

    resp = await client.get("/api/transactions/unviewed-count", headers=as_user(admin))
    assert resp.json()["count"] == 1

@pytest.mark.asyncio
async def test_reserve_unavailable_item(client: AsyncClient, make_account, make_item):
    first = await make_account(balance=100)
    second = await make_account(balance=100)
    item = await make_item(price=10)

    resp = await client.post(f"/api/items/{item.id}/reserve", json={}, headers=as_user(first))
    assert resp.status_code == 201
    resp = await client.post(f"/api/items/{item.id}/reserve", json={}, headers=as_user(second))
    assert resp.status_code == 409

    resp = await client.post(f"/api/items/{item.id}/rent", json={}, headers=as_user(second))
    assert resp.status_code == 403

@pytest.mark.asyncio
async def test_cancel_reservation_permissions(client: AsyncClient, make_account, make_item):
    owner = await make_account(balance=100)
    stranger = await make_account(balance=100)
    item = await make_item(price=10)
    await client.post(f"/api/items/{item.id}/reserve", json={}, headers=as_user(owner))

    resp = await client.post(f"/api/items/{item.id}/cancel", headers=as_user(stranger))
    assert resp.status_code == 403

    resp = await client.post(f"/api/items/{item.id}/cancel", headers=as_user(owner))
    assert resp.status_code == 200
    assert resp.json()["status"] == "AVAILABLE"
    assert resp.json()["owner_id"] is None

@pytest.mark.asyncio
async def test_list_items_available_only(client: AsyncClient, make_account, make_item):
    admin = await make_account(role=AccountRole.ADMIN)
    shown = await make_item(title="Shown")
    hidden = await make_item(title="Hidden")

    resp = await client.put(f"/api/items/{hidden.id}/availability", json={"available": False}, headers=as_user(admin))
    assert resp.json()["status"] == "UNAVAILABLE"

    resp = await client.get("/api/items", params={"available_only": True})
    assert [i["id"] for i in resp.json()] == [str(shown.id)]

    resp = await client.get("/api/items")
    assert len(resp.json()) == 2

@pytest.mark.asyncio
async def test_update_and_delete_item(client: AsyncClient, make_account, make_item):
    admin = await make_account(role=AccountRole.ADMIN)
    item = await make_item(price=10, quantity=1)

    resp = await client.patch(f"/api/items/{item.id}", json={"price": 25, "quantity": 5}, headers=as_user(admin))
    assert float(resp.json()["price"]) == 25.0
    assert resp.json()["quantity"] == 5

    resp = await client.delete(f"/api/items/{item.id}", headers=as_user(admin))
    assert resp.status_code == 204
    resp = await client.delete(f"/api/items/{item.id}", headers=as_user(admin))
    assert resp.status_code == 404

@pytest.mark.asyncio
async def test_payment_methods(client: AsyncClient, make_account):
    admin = await make_account(role=AccountRole.ADMIN)
    customer = await make_account()

    resp = await client.post(
        "/api/payment-methods",
        json={"name": "Card", "instruction_text": "Transfer to 2200 0000", "min_amount": 100},
        headers=as_user(admin),
    )
    assert resp.status_code == 201
    method_id = resp.json()["id"]

    resp = await client.get("/api/payment-methods")
    assert [m["name"] for m in resp.json()] == ["Card"]

    resp = await client.post(
        "/api/wallet/deposits", json={"amount": 50, "payment_method_id": method_id}, headers=as_user(customer)
    )
    assert resp.status_code == 400

    resp = await client.delete(f"/api/payment-methods/{method_id}", headers=as_user(admin))
    assert resp.status_code == 204

@pytest.mark.asyncio
async def test_delete_account_rules(client: AsyncClient, make_account):
    admin = await make_account(role=AccountRole.ADMIN)
    manager = await make_account(role=AccountRole.MANAGER)
    rich = await make_account(balance=5)
    empty = await make_account(balance=0)

    resp = await client.delete(f"/api/accounts/{empty.id}", headers=as_user(admin))
    assert resp.status_code == 403

    resp = await client.delete(f"/api/accounts/{rich.id}", headers=as_user(manager))
    assert resp.status_code == 409

    resp = await client.delete(f"/api/accounts/{empty.id}", headers=as_user(manager))
    assert resp.status_code == 204
    resp = await client.get(f"/api/accounts/{empty.id}", headers=as_user(manager))
    assert resp.status_code == 404

@pytest.mark.asyncio
async def test_list_accounts_hides_seeded_manager(client: AsyncClient, db_session, make_account):
    from storewallet.services.accounts import AccountService
    await AccountService(db_session).seed_staff()
    admin = await make_account(role=AccountRole.ADMIN)
    await make_account(login="+7 900 111 22 33")

    resp = await client.get("/api/accounts", headers=as_user(admin))
    logins = [a["login"] for a in resp.json()]
    assert "manager" not in logins
    assert "000" in logins
    assert "+7 900 111 22 33" in logins

@pytest.mark.asyncio
async def test_customer_sees_only_own_transactions(client: AsyncClient, make_account):
    alice = await make_account()
    bob = await make_account()
    await client.post("/api/wallet/deposits", json={"amount": 10}, headers=as_user(alice))
    await client.post("/api/wallet/deposits", json={"amount": 20}, headers=as_user(bob))

    resp = await client.get("/api/wallet/transactions", headers=as_user(alice))
    assert [float(t["amount"]) for t in resp.json()] == [10.0]

    resp = await client.get(f"/api/accounts/{bob.id}", headers=as_user(alice))
    assert resp.status_code == 403

@pytest.mark.asyncio
async def test_storage_failure_is_reported(client: AsyncClient, db_session, make_account, monkeypatch):
    customer = await make_account()

    async def broken_execute(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    monkeypatch.setattr(db_session, "execute", broken_execute)

    resp = await client.post("/api/wallet/deposits", json={"amount": 10}, headers=as_user(customer))
    assert resp.status_code == 503
    assert resp.json()["detail"] == "Storage backend unavailable"

@pytest.mark.asyncio
async def test_item_list_is_empty_on_storage_failure(client: AsyncClient, db_session, make_item, monkeypatch):
    await make_item()

    async def broken_execute(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    monkeypatch.setattr(db_session, "execute", broken_execute)

    resp = await client.get("/api/items")
    assert resp.status_code == 200
    assert resp.json() == []

@pytest.mark.asyncio
async def test_restock_item_is_staff_only(client: AsyncClient, make_account, make_item, balance_of):
    admin = await make_account(role=AccountRole.ADMIN)
    buyer = await make_account(balance=100)
    item = await make_item(price=30)
    sold = await make_item(price=10, status=ItemStatus.SOLD)
    await client.post(f"/api/items/{item.id}/reserve", json={}, headers=as_user(buyer))

    resp = await client.post(f"/api/items/{item.id}/restock", headers=as_user(buyer))
    assert resp.status_code == 403

    resp = await client.post(f"/api/items/{item.id}/restock", headers=as_user(admin))
    assert resp.status_code == 200
    assert resp.json()["status"] == "AVAILABLE"
    assert resp.json()["owner_id"] is None
    assert resp.json()["last_paid_amount"] is None
    assert await balance_of(buyer.id) == Decimal("70")

    resp = await client.post(f"/api/items/{sold.id}/restock", headers=as_user(admin))
    assert resp.json()["status"] == "AVAILABLE"

    resp = await client.post(f"/api/items/{uuid.uuid4()}/restock", headers=as_user(admin))
    assert resp.status_code == 404
