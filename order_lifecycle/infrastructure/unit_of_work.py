from contextlib import asynccontextmanager
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_lifecycle.infrastructure.repositories import (
    SQLAlchemyDiscountRepository,
    SQLAlchemyInboxRepository,
    SQLAlchemyOrderRepository,
    SQLAlchemyOutboxRepository,
    SQLAlchemyProductRepository,
    SQLAlchemyTaxConfigRepository,
)


class UnitOfWork:
    """One transaction per `async with uow() as tx`; uncommitted work is rolled back"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def __call__(self):
        async with self._session_factory() as session:
            try:
                uow_impl = _UnitOfWorkImpl(session)
                yield uow_impl
                # commit() not called -> rollback
                await session.rollback()
            except Exception:
                await session.rollback()
                raise


class _UnitOfWorkImpl:
    def __init__(self, session: AsyncSession):
        self._session = session
        self.orders = SQLAlchemyOrderRepository(session)
        self.products = SQLAlchemyProductRepository(session)
        self.discounts = SQLAlchemyDiscountRepository(session)
        self.tax_configs = SQLAlchemyTaxConfigRepository(session)
        self.outbox = SQLAlchemyOutboxRepository(session)
        self.inbox = SQLAlchemyInboxRepository(session)

    async def commit(self):
        await self._session.commit()

    async def rollback(self):
        await self._session.rollback()
