import hashlib
import hmac
import logging
import uuid
from typing import Optional

import httpx

from order_lifecycle.application.interfaces import (
    CallbackStatus,
    CallbackVerification,
    NormalizedCallback,
    PaymentGateway,
    PaymentRedirect,
    RefundResult,
)
from order_lifecycle.domain.exceptions import PaymentServiceError, ValidationError
from order_lifecycle.domain.models import Order, PaymentMethod
from order_lifecycle.domain.money import to_major, to_minor

logger = logging.getLogger(__name__)

RAZORPAY_PAYMENT_EVENTS = ("payment.captured", "payment.failed")


def _sha512(value: str) -> str:
    return hashlib.sha512(value.encode("utf-8", "surrogatepass")).hexdigest()


def _digest_matches(expected: str, received) -> bool:
    # Compared as bytes: a non-ASCII signature is a mismatch, not an error
    return hmac.compare_digest(expected.encode("ascii"), str(received).encode("utf-8", "surrogatepass"))


def _mapping(value) -> dict:
    return value if isinstance(value, dict) else {}


def _text(value) -> Optional[str]:
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        return None
    return str(value)


def _json_body(response: httpx.Response, provider: str) -> dict:
    try:
        body = response.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        logger.error(f"{provider} returned an unreadable body (HTTP {response.status_code}): {response.text[:200]}")
        raise PaymentServiceError(f"{provider} returned an invalid response: HTTP {response.status_code}")
    return body


class PayUGateway(PaymentGateway):
    kind = PaymentMethod.PAYU

    def __init__(
        self,
        merchant_key: str,
        merchant_salt: str,
        payment_url: str,
        api_url: str,
        service_url: str,
        timeout: float = 10.0,
    ):
        self._key = merchant_key
        self._salt = merchant_salt
        self._payment_url = payment_url
        self._api_url = api_url
        self._service_url = service_url.rstrip("/")
        self._timeout = timeout

    @staticmethod
    def request_hash(fields: dict, salt: str) -> str:
        """sha512(key|txnid|amount|productinfo|firstname|email|udf1..udf5||||||salt)"""
        parts = [fields.get(name, "") for name in ("key", "txnid", "amount", "productinfo", "firstname", "email")]
        parts += [fields.get(f"udf{i}", "") for i in range(1, 6)]
        return _sha512("|".join(parts) + "||||||" + salt)

    @staticmethod
    def response_hash(payload: dict, salt: str) -> str:
        """Reverse hash: [additionalCharges|]salt|status|udf10..udf1|email|firstname|productinfo|amount|txnid|key"""
        parts = [salt, payload.get("status", "")]
        parts += [payload.get(f"udf{i}", "") for i in range(10, 0, -1)]
        parts += [payload.get(name, "") for name in ("email", "firstname", "productinfo", "amount", "txnid", "key")]
        if payload.get("additionalCharges"):
            parts.insert(0, payload["additionalCharges"])
        return _sha512("|".join(str(part) for part in parts))

    async def initiate(self, order: Order, txn_id: str) -> PaymentRedirect:
        if not self._key or not self._salt:
            raise PaymentServiceError("PayU credentials are not configured")

        fields = {
            "key": self._key,
            "txnid": txn_id,
            "amount": to_major(order.amount),
            "productinfo": f"Order {order.order_number}",
            "firstname": order.shipping_address.name.split(" ")[0],
            "email": order.customer_email or "",
            "phone": order.shipping_address.phone,
            "surl": f"{self._service_url}/api/payments/payu/success",
            "furl": f"{self._service_url}/api/payments/payu/failure",
            "udf1": order.id,
            "udf2": order.order_number,
            "udf3": order.user_id,
            "udf4": "",
            "udf5": "",
        }
        fields["hash"] = self.request_hash(fields, self._salt)
        return PaymentRedirect(provider=self.kind, url=self._payment_url, fields=fields)

    def verify_callback(
        self, payload: dict, signature: Optional[str] = None, raw_body: Optional[bytes] = None
    ) -> CallbackVerification:
        try:
            amount = to_minor(payload["amount"]) if payload.get("amount") else None
        except ValidationError:
            amount = None

        callback = NormalizedCallback(
            order_id=_text(payload.get("udf1")) or None,
            txn_id=_text(payload.get("txnid")),
            payment_id=_text(payload.get("mihpayid")),
            amount=amount,
            status=CallbackStatus.SUCCESS if payload.get("status") == "success" else CallbackStatus.FAILED,
            message=_text(payload.get("error_Message")) or _text(payload.get("field9")),
            raw=dict(payload),
        )

        received = signature or payload.get("hash") or ""
        if not self._salt:
            return CallbackVerification(verified=False, callback=callback, reason="PayU salt is not configured")
        if payload.get("key") != self._key:
            return CallbackVerification(verified=False, callback=callback, reason="Merchant key mismatch")
        expected = self.response_hash(payload, self._salt)
        if not _digest_matches(expected, str(received).lower()):
            return CallbackVerification(verified=False, callback=callback, reason="Hash mismatch")
        return CallbackVerification(verified=True, callback=callback)

    async def refund(self, payment_id: str, amount: int) -> RefundResult:
        command = "cancel_refund_transaction"
        token = uuid.uuid4().hex[:20]
        data = {
            "key": self._key,
            "command": command,
            "var1": payment_id,
            "var2": token,
            "var3": to_major(amount),
            "hash": _sha512(f"{self._key}|{command}|{payment_id}|{self._salt}"),
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._api_url, data=data)
        except httpx.HTTPError as e:
            logger.error(f"PayU refund request failed: {e}")
            raise PaymentServiceError(f"PayU is unavailable: {e}")

        if response.status_code >= 500:
            raise PaymentServiceError(f"PayU error: {response.status_code}")

        body = _json_body(response, "PayU")
        accepted = str(body.get("status")) == "1"
        logger.info(f"PayU refund for {payment_id}: status={body.get('status')}, msg={body.get('msg')}")
        return RefundResult(
            accepted=accepted,
            provider_ref=str(body.get("request_id") or token),
            message=body.get("msg"),
        )


class RazorpayGateway(PaymentGateway):
    kind = PaymentMethod.RAZORPAY
    CHECKOUT_URL = "https://checkout.razorpay.com/v1/checkout.js"

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        webhook_secret: str,
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 10.0,
    ):
        self._key_id = key_id
        self._key_secret = key_secret
        self._webhook_secret = webhook_secret
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    @staticmethod
    def signature(body: bytes, secret: str) -> str:
        return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()

    async def _post(self, path: str, payload: dict) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    f"{self._base_url}{path}",
                    json=payload,
                    auth=(self._key_id, self._key_secret),
                )
        except httpx.HTTPError as e:
            logger.error(f"Razorpay request {path} failed: {e}")
            raise PaymentServiceError(f"Razorpay is unavailable: {e}")
        if response.status_code >= 500:
            raise PaymentServiceError(f"Razorpay error: {response.status_code}")
        return response

    async def initiate(self, order: Order, txn_id: str) -> PaymentRedirect:
        response = await self._post(
            "/orders",
            {
                "amount": order.amount,
                "currency": "INR",
                "receipt": order.order_number,
                "notes": {"order_id": order.id, "order_number": order.order_number, "txn_id": txn_id},
            },
        )
        if response.status_code not in (200, 201):
            raise PaymentServiceError(f"Razorpay order creation failed: {response.status_code}")

        provider_order_id = _text(_json_body(response, "Razorpay").get("id"))
        if not provider_order_id:
            raise PaymentServiceError("Razorpay order creation returned no order id")
        return PaymentRedirect(
            provider=self.kind,
            url=self.CHECKOUT_URL,
            provider_order_id=provider_order_id,
            fields={
                "key": self._key_id,
                "amount": order.amount,
                "currency": "INR",
                "order_id": provider_order_id,
                "description": f"Order {order.order_number}",
                "prefill": {
                    "name": order.shipping_address.name,
                    "email": order.customer_email or "",
                    "contact": order.shipping_address.phone,
                },
            },
        )

    def verify_callback(
        self, payload: dict, signature: Optional[str] = None, raw_body: Optional[bytes] = None
    ) -> CallbackVerification:
        entity = _mapping(_mapping(_mapping(payload.get("payload")).get("payment")).get("entity"))
        notes = _mapping(entity.get("notes"))
        amount = entity.get("amount")

        callback = NormalizedCallback(
            order_id=_text(notes.get("order_id")),
            txn_id=_text(notes.get("txn_id")) or _text(entity.get("order_id")),
            payment_id=_text(entity.get("id")),
            amount=amount if isinstance(amount, int) and not isinstance(amount, bool) else None,
            status=CallbackStatus.SUCCESS if payload.get("event") == "payment.captured" else CallbackStatus.FAILED,
            message=_text(entity.get("error_description")),
            raw=dict(payload),
        )

        if not self._webhook_secret:
            return CallbackVerification(verified=False, callback=callback, reason="Webhook secret is not configured")
        if not signature or raw_body is None:
            return CallbackVerification(verified=False, callback=callback, reason="Missing webhook signature")
        expected = self.signature(raw_body, self._webhook_secret)
        if not _digest_matches(expected, signature):
            return CallbackVerification(verified=False, callback=callback, reason="Invalid webhook signature")
        return CallbackVerification(verified=True, callback=callback)

    async def refund(self, payment_id: str, amount: int) -> RefundResult:
        response = await self._post(f"/payments/{payment_id}/refund", {"amount": amount})
        body = _json_body(response, "Razorpay")
        if response.status_code in (200, 201):
            logger.info(f"Razorpay refund {body.get('id')} created for {payment_id}")
            return RefundResult(accepted=True, provider_ref=body.get("id"), message=body.get("status"))

        message = _text(_mapping(body.get("error")).get("description")) or f"HTTP {response.status_code}"
        return RefundResult(accepted=False, message=message)


def build_gateways(settings) -> dict[PaymentMethod, PaymentGateway]:
    return {
        PaymentMethod.PAYU: PayUGateway(
            merchant_key=settings.PAYU_MERCHANT_KEY,
            merchant_salt=settings.PAYU_MERCHANT_SALT,
            payment_url=settings.PAYU_BASE_URL,
            api_url=settings.PAYU_API_URL,
            service_url=settings.SERVICE_URL,
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
        ),
        PaymentMethod.RAZORPAY: RazorpayGateway(
            key_id=settings.RAZORPAY_KEY_ID,
            key_secret=settings.RAZORPAY_KEY_SECRET,
            webhook_secret=settings.RAZORPAY_WEBHOOK_SECRET,
            base_url=settings.RAZORPAY_BASE_URL,
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
        ),
    }
