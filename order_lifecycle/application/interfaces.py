from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from order_lifecycle.domain.models import Discount, Order, OrderStatus, PaymentMethod, Product, TaxConfig


class OrderRepository(ABC):
    @abstractmethod
    async def get_by_id(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_tracking_id(self, tracking_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def create(self, order: Order) -> None:
        pass

    @abstractmethod
    async def save(self, order: Order) -> None:
        """Conditional update on the loaded version; raises ConcurrentUpdateError"""
        pass

    @abstractmethod
    async def list_by_user(self, user_id: str, status: Optional[OrderStatus] = None) -> List[Order]:
        pass

    @abstractmethod
    async def has_prior_orders(self, user_id: str) -> bool:
        pass

    @abstractmethod
    async def find_expirable(self, created_before: datetime, limit: int = 100) -> List[str]:
        pass

    @abstractmethod
    async def find_trackable(self, limit: int = 100) -> List[str]:
        pass


class ProductRepository(ABC):
    @abstractmethod
    async def get_by_id(self, product_id: str) -> Optional[Product]:
        pass

    @abstractmethod
    async def create(self, product: Product) -> None:
        pass

    @abstractmethod
    async def reserve(self, product_id: str, quantity: int) -> bool:
        """Atomic decrement-if-enough; False when stock is short"""
        pass

    @abstractmethod
    async def increment(self, product_id: str, quantity: int) -> None:
        pass


class DiscountRepository(ABC):
    @abstractmethod
    async def get_by_code(self, code: str) -> Optional[Discount]:
        pass

    @abstractmethod
    async def create(self, discount: Discount) -> None:
        pass

    @abstractmethod
    async def increment_usage(self, discount_id: str, user_id: str, order_id: str) -> None:
        pass


class TaxConfigRepository(ABC):
    @abstractmethod
    async def get_active(self) -> Optional[TaxConfig]:
        pass

    @abstractmethod
    async def activate(self, config: TaxConfig) -> None:
        """Insert as the only active config"""
        pass


class OutboxRepository(ABC):
    @abstractmethod
    async def create(self, event_type: str, event_data: dict, order_id: str) -> str:
        pass

    @abstractmethod
    async def get_pending(self, limit: int = 10) -> List[dict]:
        pass

    @abstractmethod
    async def mark_as_published(self, event_id: str) -> None:
        pass


class InboxRepository(ABC):
    @abstractmethod
    async def create(self, event_type: str, event_data: dict, order_id: Optional[str], idempotency_key: str) -> str:
        pass

    @abstractmethod
    async def get_pending(self, limit: int = 10) -> List[dict]:
        pass

    @abstractmethod
    async def mark_as_processed(self, event_id: str) -> None:
        pass

    @abstractmethod
    async def mark_as_failed(self, event_id: str) -> None:
        pass

    @abstractmethod
    async def exists(self, idempotency_key: str) -> bool:
        pass


class UnitOfWork(ABC):
    @property
    @abstractmethod
    def orders(self) -> OrderRepository:
        pass

    @property
    @abstractmethod
    def products(self) -> ProductRepository:
        pass

    @property
    @abstractmethod
    def discounts(self) -> DiscountRepository:
        pass

    @property
    @abstractmethod
    def tax_configs(self) -> TaxConfigRepository:
        pass

    @property
    @abstractmethod
    def outbox(self) -> OutboxRepository:
        pass

    @property
    @abstractmethod
    def inbox(self) -> InboxRepository:
        pass

    @abstractmethod
    async def __call__(self):
        pass

    @abstractmethod
    async def commit(self):
        pass

    @abstractmethod
    async def rollback(self):
        pass


class CallbackStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class NormalizedCallback(BaseModel):
    """Provider-agnostic view of an inbound payment notification"""
    order_id: Optional[str] = None
    txn_id: Optional[str] = None
    payment_id: Optional[str] = None
    amount: Optional[int] = None
    status: CallbackStatus
    message: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class CallbackVerification(BaseModel):
    verified: bool
    callback: NormalizedCallback
    reason: Optional[str] = None


class RefundResult(BaseModel):
    accepted: bool
    provider_ref: Optional[str] = None
    message: Optional[str] = None


class PaymentRedirect(BaseModel):
    provider: PaymentMethod
    url: str
    provider_order_id: Optional[str] = None
    fields: dict[str, Any] = Field(default_factory=dict)


class PaymentGateway(ABC):
    """One strategy per provider; add a provider by implementing this interface"""
    kind: PaymentMethod

    @abstractmethod
    async def initiate(self, order: Order, txn_id: str) -> PaymentRedirect:
        pass

    @abstractmethod
    def verify_callback(
        self, payload: dict, signature: Optional[str] = None, raw_body: Optional[bytes] = None
    ) -> CallbackVerification:
        pass

    @abstractmethod
    async def refund(self, payment_id: str, amount: int) -> RefundResult:
        pass


class ShipmentInfo(BaseModel):
    shipment_id: str
    tracking_id: Optional[str] = None
    courier_name: Optional[str] = None


class ShippingProvider(ABC):
    name: str

    @abstractmethod
    async def create_shipment(self, order: Order) -> ShipmentInfo:
        pass

    @abstractmethod
    async def track_shipment(self, tracking_id: str) -> Optional[str]:
        """Raw courier status, None when the courier has nothing yet"""
        pass

    @abstractmethod
    async def cancel_shipment(self, shipment_id: str) -> None:
        pass

    @abstractmethod
    async def create_return_pickup(self, order: Order) -> ShipmentInfo:
        pass


class NotificationSink(ABC):
    @abstractmethod
    async def notify(self, event_type: str, payload: dict) -> None:
        """Raises NotificationError when the event could not be delivered"""
        pass
