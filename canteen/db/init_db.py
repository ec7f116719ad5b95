"""
Canteen Service - Table creation

Importing the model modules registers every table on Base.metadata.
"""
from sqlalchemy.ext.asyncio import AsyncEngine

from canteen.db.database import Base
from canteen.models import menu, order, user, wallet  # noqa: F401


async def create_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
