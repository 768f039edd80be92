from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from order_lifecycle.config import settings
from order_lifecycle.infrastructure.unit_of_work import UnitOfWork

engine = create_async_engine(settings.DATABASE_URL, pool_pre_ping=True)
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def get_unit_of_work() -> UnitOfWork:
    return UnitOfWork(AsyncSessionLocal)
