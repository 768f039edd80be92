import json

import httpx
import pytest

from order_lifecycle.domain.exceptions import ShippingServiceError
from order_lifecycle.domain.models import OrderStatus, PaymentStatus
from order_lifecycle.infrastructure.http_clients import ShiprocketClient
from tests.factories import build_order


class FakeShiprocket:
    """Issues numbered tokens; the first one is revoked when ``revoke_first`` is set"""

    def __init__(self, revoke_first=False):
        self.logins = 0
        self.revoke_first = revoke_first
        self.requests = []

    def __call__(self, request):
        path = request.url.path.removeprefix("/v1/external")
        self.requests.append((request.method, path))

        if path == "/auth/login":
            self.logins += 1
            return httpx.Response(200, json={"token": f"t{self.logins}"})

        if self.revoke_first and request.headers["Authorization"] == "Bearer t1":
            return httpx.Response(401, json={"message": "Token expired"})

        if path == "/orders/create/adhoc":
            body = json.loads(request.content)
            assert body["order_id"] == "VT-2026-DER001"
            assert body["sub_total"] == "1000.00"
            return httpx.Response(200, json={"shipment_id": 555, "awb_code": "AWB-555", "courier_name": "Delhivery"})
        if path.startswith("/courier/track/awb/"):
            return httpx.Response(200, json={"tracking_data": {"shipment_track": [{"current_status": "Delivered"}]}})
        if path == "/orders/cancel":
            return httpx.Response(200, json={"status": 200})
        return httpx.Response(404)


@pytest.fixture
def client():
    return ShiprocketClient(base_url="https://sr.test/v1/external", email="ops@shop.test", password="pw")


def mock_http(monkeypatch, handler):
    real_client = httpx.AsyncClient
    transport = httpx.MockTransport(handler)
    monkeypatch.setattr(httpx, "AsyncClient", lambda **kwargs: real_client(transport=transport, **kwargs))


async def test_create_shipment(client, monkeypatch):
    server = FakeShiprocket()
    mock_http(monkeypatch, server)

    shipment = await client.create_shipment(build_order(status=OrderStatus.PROCESSING, payment_status=PaymentStatus.PAID))

    assert shipment.shipment_id == "555"
    assert shipment.tracking_id == "AWB-555"
    assert server.logins == 1


async def test_token_is_reused(client, monkeypatch):
    server = FakeShiprocket()
    mock_http(monkeypatch, server)

    await client.track_shipment("AWB-555")
    await client.cancel_shipment("555")

    assert server.logins == 1


async def test_revoked_token_is_refreshed_once(client, monkeypatch):
    server = FakeShiprocket(revoke_first=True)
    mock_http(monkeypatch, server)

    assert await client.track_shipment("AWB-555") == "Delivered"
    assert server.logins == 2


async def test_provider_outage(client, monkeypatch):
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    mock_http(monkeypatch, handler)
    with pytest.raises(ShippingServiceError):
        await client.track_shipment("AWB-555")


async def test_failed_login(client, monkeypatch):
    mock_http(monkeypatch, lambda request: httpx.Response(403, json={"message": "bad credentials"}))
    with pytest.raises(ShippingServiceError, match="login"):
        await client.create_shipment(build_order())
