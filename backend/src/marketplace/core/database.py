from typing import Any, AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from marketplace.core.config import settings


def engine_options(database_url: str) -> dict[str, Any]:
    """Pool settings for the configured driver.

    SQLite (tests, local tinkering) gets the driver defaults; the pool and
    asyncpg options only apply to PostgreSQL.
    """
    if database_url.startswith("sqlite"):
        return {"echo": False}
    return {
        "echo": settings.DEBUG,
        "pool_size": 15,
        "max_overflow": 10,
        "pool_timeout": 30,
        "pool_recycle": 180,
        "pool_pre_ping": True,
        # PgBouncer transaction mode requires disabling prepared statement cache
        "connect_args": {
            "prepared_statement_cache_size": 0,
            "command_timeout": 30,
        },
    }


engine = create_async_engine(settings.DATABASE_URL, **engine_options(settings.DATABASE_URL))

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()
