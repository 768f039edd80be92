import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from order_lifecycle.domain.models import OrderStatus, PaymentMethod
from order_lifecycle.infrastructure.db_schema import metadata
from order_lifecycle.infrastructure.unit_of_work import UnitOfWork
from tests.factories import (
    FakeGateway,
    FakeShipping,
    FakeSink,
    FrozenClock,
    add_product,
    create_order,
    load_order,
    pay,
    set_status,
    ship,
)


@pytest.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def uow(engine):
    return UnitOfWork(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def gateways(gateway):
    return {PaymentMethod.PAYU: gateway}


@pytest.fixture
def shipping():
    return FakeShipping()


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
async def product(uow):
    return await add_product(uow)


@pytest.fixture
async def pending_order(uow, clock, product):
    return await create_order(uow, clock)


@pytest.fixture
async def paid_order(uow, clock, gateways, pending_order):
    await pay(uow, gateways, clock, pending_order)
    return await load_order(uow, pending_order.id)


@pytest.fixture
async def shipped_order(uow, clock, shipping, paid_order):
    return await ship(uow, clock, shipping, paid_order.id)


@pytest.fixture
async def delivered_order(uow, clock, shipped_order):
    return await set_status(uow, clock, shipped_order.id, OrderStatus.DELIVERED)
