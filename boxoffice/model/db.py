from sqlalchemy.ext.asyncio import AsyncSession

from .. import config
from ..infra.sql import make_async_engine
from .orm import Base


engine, SessionAsync = make_async_engine(config.DATABASE_URL)


async def get_db() -> AsyncSession:
    async with SessionAsync() as session:
        yield session


async def create_all() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
