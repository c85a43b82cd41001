# skillify/db/session.py
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from skillify.core.settings import settings

DATABASE_URL = settings.DATABASE_ASYNC_URL

# asyncpg takes a per-statement timeout; other drivers are left alone
_connect_args = (
    {"command_timeout": settings.DB_COMMAND_TIMEOUT}
    if DATABASE_URL.startswith("postgresql+asyncpg")
    else {}
)

engine = create_async_engine(
    DATABASE_URL,
    echo=False,
    pool_pre_ping=True,
    connect_args=_connect_args,
    **({"pool_timeout": settings.DB_POOL_TIMEOUT} if _connect_args else {}),
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,  # objects stay usable after commit
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()
