"""
Canteen Service - Async SQLAlchemy engine and session
"""
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from canteen.core.config import get_settings

settings = get_settings()


def _engine_kwargs(url: str) -> dict:
    if url.startswith("postgresql"):
        return {
            "pool_pre_ping": True,
            "connect_args": {"command_timeout": settings.DB_COMMAND_TIMEOUT_SECONDS},
        }
    return {}


engine = create_async_engine(settings.database_url, **_engine_kwargs(settings.database_url))
async_session = async_sessionmaker(engine, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        yield session
