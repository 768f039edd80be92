import json

import pytest
from httpx import ASGITransport, AsyncClient

from order_lifecycle.main import app
from order_lifecycle.presentation.dependencies import get_gateways, get_shipping_provider, get_unit_of_work
from tests.factories import ADDRESS

USER = {"X-User-Id": "user-1"}
ADMIN = {"X-Admin-Id": "admin-1"}


@pytest.fixture
async def client(uow, gateways, shipping, product):
    app.dependency_overrides[get_unit_of_work] = lambda: uow
    app.dependency_overrides[get_gateways] = lambda: gateways
    app.dependency_overrides[get_shipping_provider] = lambda: shipping
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


async def place_order(client, quantity=2, headers=USER):
    return await client.post(
        "/api/orders",
        json={"items": [{"product_id": "prod-1", "quantity": quantity}], "shipping_address": ADDRESS},
        headers=headers,
    )


async def pay_order(client, order_id, amount=100000):
    return await client.post(
        "/api/payments/payu/success",
        data={"order_id": order_id, "txn_id": f"TXN_{order_id}", "payment_id": "PAY-1", "amount": str(amount), "status": "success"},
    )


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


async def test_create_and_fetch_order(client):
    response = await place_order(client)
    assert response.status_code == 201
    body = response.json()
    assert body["amount"] == 100000
    assert body["status"] == "pending"
    assert body["payment"]["status"] == "pending"

    response = await client.get(f"/api/orders/{body['id']}", headers=USER)
    assert response.status_code == 200
    assert response.json()["order_number"] == body["order_number"]

    response = await client.get("/api/orders", params={"status": "pending"}, headers=USER)
    assert [order["id"] for order in response.json()] == [body["id"]]


async def test_identity_header_is_required(client):
    assert (await place_order(client, headers={})).status_code == 422


async def test_invalid_address(client):
    response = await client.post(
        "/api/orders",
        json={"items": [{"product_id": "prod-1", "quantity": 1}], "shipping_address": dict(ADDRESS, pincode="12")},
        headers=USER,
    )
    assert response.status_code == 422


async def test_insufficient_stock(client):
    response = await place_order(client, quantity=50)
    assert response.status_code == 400
    assert response.json()["detail"]["product_id"] == "prod-1"
    assert response.json()["detail"]["available"] == 10


async def test_other_users_order_is_forbidden(client):
    order_id = (await place_order(client)).json()["id"]
    response = await client.get(f"/api/orders/{order_id}", headers={"X-User-Id": "user-2"})
    assert response.status_code == 403


async def test_unknown_order(client):
    assert (await client.get("/api/orders/missing", headers=USER)).status_code == 404


async def test_invalid_status_filter(client):
    response = await client.get("/api/orders", params={"status": "lost"}, headers=USER)
    assert response.status_code == 400


async def test_second_cancel_conflicts(client):
    order_id = (await place_order(client)).json()["id"]

    first = await client.post(f"/api/orders/{order_id}/cancel", json={"reason": "Changed my mind"}, headers=USER)
    assert first.status_code == 200
    assert first.json()["refund_requested"] is False
    assert first.json()["order"]["cancelled_by"] == "user"

    second = await client.post(f"/api/orders/{order_id}/cancel", json={}, headers=USER)
    assert second.status_code == 409
    assert second.json()["detail"]["current_status"] == "cancelled"


async def test_payu_success_redirects_to_frontend(client):
    order_id = (await place_order(client)).json()["id"]

    response = await pay_order(client, order_id)
    assert response.status_code == 303
    assert "/payment/success?" in response.headers["location"]
    assert f"orderId={order_id}" in response.headers["location"]

    payment = (await client.get(f"/api/orders/{order_id}/payment", headers=USER)).json()
    assert payment["payment_status"] == "paid"
    assert payment["order_status"] == "confirmed"


async def test_payu_amount_mismatch_redirects_to_failure(client):
    order_id = (await place_order(client)).json()["id"]

    response = await pay_order(client, order_id, amount=1)
    assert response.status_code == 303
    assert "/payment/failure?" in response.headers["location"]


async def test_initiate_payment(client):
    order_id = (await place_order(client)).json()["id"]

    response = await client.post(f"/api/orders/{order_id}/payment", headers=USER)
    assert response.status_code == 200
    assert response.json()["provider"] == "payu"
    assert response.json()["fields"]["txnid"].startswith(f"TXN_{order_id}_")


async def test_razorpay_webhook_ignores_other_events(client):
    response = await client.post(
        "/api/payments/razorpay/webhook", content=json.dumps({"event": "order.paid"}).encode()
    )
    assert response.status_code == 200
    assert response.json()["status"] == "ignored"


async def test_razorpay_webhook_rejects_bad_json(client):
    response = await client.post("/api/payments/razorpay/webhook", content=b"{not json")
    assert response.status_code == 400

    response = await client.post("/api/payments/razorpay/webhook", content=b'["payment.captured"]')
    assert response.status_code == 400


async def test_shipment_webhook_is_idempotent(client):
    event = {"awb": "AWB-1", "current_status": "Delivered", "courier_name": "Delhivery"}

    first = await client.post("/api/shipments/webhook", json=event)
    assert first.status_code == 202
    assert first.json() == {"status": "accepted"}

    second = await client.post("/api/shipments/webhook", json=event)
    assert second.json() == {"status": "duplicate"}


async def test_validate_discount(client):
    response = await client.post("/api/discounts/validate", json={"code": "nope", "subtotal": 1000})
    assert response.status_code == 200
    assert response.json()["valid"] is False
    assert response.json()["reason"] == "not_found"


async def test_admin_routes_need_admin_identity(client):
    response = await client.post("/api/admin/discounts", json={"code": "SAVE10", "value": 10})
    assert response.status_code == 422


async def test_admin_creates_discount(client):
    response = await client.post("/api/admin/discounts", json={"code": "save10", "value": 10}, headers=ADMIN)
    assert response.status_code == 201
    assert response.json()["code"] == "SAVE10"

    response = await client.post("/api/admin/discounts", json={"code": "bad", "value": 150}, headers=ADMIN)
    assert response.status_code == 400


async def test_admin_cannot_confirm_directly(client):
    order_id = (await place_order(client)).json()["id"]
    response = await client.patch(
        f"/api/admin/orders/{order_id}/status", json={"status": "confirmed"}, headers=ADMIN
    )
    assert response.status_code == 409


async def test_admin_fulfilment_flow(client):
    order_id = (await place_order(client)).json()["id"]
    await pay_order(client, order_id)

    response = await client.patch(
        f"/api/admin/orders/{order_id}/status", json={"status": "processing"}, headers=ADMIN
    )
    assert response.json()["status"] == "processing"

    response = await client.post(f"/api/admin/orders/{order_id}/ship", headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["logistics"]["tracking_id"] == "AWB-1"

    tracking = (await client.get(f"/api/orders/{order_id}/tracking", headers=USER)).json()
    assert tracking["tracking_id"] == "AWB-1"
    assert tracking["courier_name"] == "Delhivery"

    response = await client.post(f"/api/orders/{order_id}/cancel", json={}, headers=USER)
    assert response.status_code == 409


async def test_admin_sets_tax_config(client):
    response = await client.put("/api/admin/tax-config", json={"rate": "18"}, headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["is_active"] is True

    response = await place_order(client)
    assert response.json()["tax"] == 18000
    assert response.json()["amount"] == 118000
