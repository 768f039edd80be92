import logging
from typing import Optional

import httpx

from order_lifecycle.application.interfaces import ShipmentInfo, ShippingProvider
from order_lifecycle.domain.exceptions import ShippingServiceError
from order_lifecycle.domain.models import Order
from order_lifecycle.domain.money import to_major
from order_lifecycle.infrastructure.token_cache import TokenCache

logger = logging.getLogger(__name__)


class ShiprocketClient(ShippingProvider):
    name = "shiprocket"

    def __init__(
        self,
        base_url: str,
        email: str,
        password: str,
        pickup_location: str = "Primary",
        warehouse: Optional[dict] = None,
        token_ttl_seconds: float = 23 * 60 * 60,
        timeout: float = 10.0,
        token_cache: Optional[TokenCache] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._email = email
        self._password = password
        self._pickup_location = pickup_location
        self._warehouse = warehouse or {}
        self._timeout = timeout
        self._tokens = token_cache or TokenCache(self._login, token_ttl_seconds)

    async def _login(self) -> str:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    f"{self._base_url}/auth/login",
                    json={"email": self._email, "password": self._password},
                )
        except httpx.HTTPError as e:
            logger.error(f"Shiprocket login failed: {e}")
            raise ShippingServiceError(f"Shiprocket is unavailable: {e}")

        if response.status_code != 200:
            raise ShippingServiceError(f"Shiprocket login error: {response.status_code}")
        return response.json()["token"]

    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> dict:
        # One retry with a fresh token when the cached one has been revoked
        for attempt in range(2):
            token = await self._tokens.get()
            try:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(
                        method,
                        f"{self._base_url}{path}",
                        json=json,
                        headers={"Authorization": f"Bearer {token}"},
                    )
            except httpx.HTTPError as e:
                logger.error(f"Shiprocket {method} {path} failed: {e}")
                raise ShippingServiceError(f"Shiprocket is unavailable: {e}")

            if response.status_code == 401 and attempt == 0:
                self._tokens.invalidate()
                continue
            if response.status_code not in (200, 201):
                raise ShippingServiceError(f"Shiprocket error on {path}: {response.status_code}")
            return response.json()

        raise ShippingServiceError("Shiprocket rejected the refreshed token")

    def _line_items(self, order: Order) -> list[dict]:
        return [
            {
                "name": item.title,
                "sku": item.product_id,
                "units": item.quantity,
                "selling_price": to_major(item.unit_price),
            }
            for item in order.items
        ]

    @staticmethod
    def _parcel() -> dict:
        return {"length": 10, "breadth": 10, "height": 10, "weight": 0.5}

    async def create_shipment(self, order: Order) -> ShipmentInfo:
        address = order.shipping_address
        payload = {
            "order_id": order.order_number,
            "order_date": order.created_at.date().isoformat(),
            "pickup_location": self._pickup_location,
            "billing_customer_name": address.name,
            "billing_phone": address.phone,
            "billing_address": address.street,
            "billing_city": address.city,
            "billing_state": address.state,
            "billing_pincode": address.pincode,
            "billing_country": address.country,
            "billing_email": order.customer_email or "",
            "shipping_is_billing": True,
            "order_items": self._line_items(order),
            "payment_method": "Prepaid",
            "sub_total": to_major(order.subtotal),
            **self._parcel(),
        }
        data = await self._request("POST", "/orders/create/adhoc", payload)
        if not data.get("shipment_id"):
            raise ShippingServiceError(f"Shiprocket did not return a shipment for order {order.order_number}")

        return ShipmentInfo(
            shipment_id=str(data["shipment_id"]),
            tracking_id=data.get("awb_code") or None,
            courier_name=data.get("courier_name") or None,
        )

    async def track_shipment(self, tracking_id: str) -> Optional[str]:
        data = await self._request("GET", f"/courier/track/awb/{tracking_id}")
        tracks = (data.get("tracking_data") or {}).get("shipment_track") or []
        if not tracks:
            return None
        return tracks[0].get("current_status")

    async def cancel_shipment(self, shipment_id: str) -> None:
        await self._request("POST", "/orders/cancel", {"ids": [shipment_id]})
        logger.info(f"Shiprocket shipment {shipment_id} cancelled")

    async def create_return_pickup(self, order: Order) -> ShipmentInfo:
        address = order.shipping_address
        payload = {
            "order_id": f"RET-{order.order_number}",
            "order_date": order.updated_at.date().isoformat(),
            "pickup_customer_name": address.name,
            "pickup_phone": address.phone,
            "pickup_address": address.street,
            "pickup_city": address.city,
            "pickup_state": address.state,
            "pickup_pincode": address.pincode,
            "pickup_country": address.country,
            "shipping_customer_name": self._warehouse.get("name", ""),
            "shipping_phone": self._warehouse.get("phone", ""),
            "shipping_address": self._warehouse.get("address", ""),
            "shipping_city": self._warehouse.get("city", ""),
            "shipping_state": self._warehouse.get("state", ""),
            "shipping_pincode": self._warehouse.get("pincode", ""),
            "shipping_country": "India",
            "order_items": self._line_items(order),
            "payment_method": "Prepaid",
            "sub_total": to_major(order.subtotal),
            **self._parcel(),
        }
        data = await self._request("POST", "/orders/create/return", payload)
        if not data.get("shipment_id"):
            raise ShippingServiceError(f"Shiprocket did not return a pickup for order {order.order_number}")

        return ShipmentInfo(
            shipment_id=str(data["shipment_id"]),
            tracking_id=data.get("awb_code") or None,
            courier_name=data.get("courier_name") or None,
        )


def build_shipping_provider(settings) -> ShiprocketClient:
    return ShiprocketClient(
        base_url=settings.SHIPROCKET_BASE_URL,
        email=settings.SHIPROCKET_EMAIL,
        password=settings.SHIPROCKET_PASSWORD,
        pickup_location=settings.SHIPROCKET_PICKUP_LOCATION,
        warehouse={
            "name": settings.WAREHOUSE_NAME,
            "phone": settings.WAREHOUSE_PHONE,
            "address": settings.WAREHOUSE_ADDRESS,
            "city": settings.WAREHOUSE_CITY,
            "state": settings.WAREHOUSE_STATE,
            "pincode": settings.WAREHOUSE_PINCODE,
        },
        token_ttl_seconds=settings.SHIPROCKET_TOKEN_TTL_SECONDS,
        timeout=settings.PROVIDER_TIMEOUT_SECONDS,
    )
