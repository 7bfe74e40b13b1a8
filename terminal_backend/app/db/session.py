"""
Database session configuration for the tariff store.

PostgreSQL (asyncpg) in deployment. A SQLite URL (aiosqlite) is accepted for
local runs; it does not take pool sizing arguments.
"""

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from terminal_backend.app.core.config import settings


def engine_options(database_url: str) -> dict:
    options = {"echo": settings.db_echo, "pool_pre_ping": True}
    if make_url(database_url).get_backend_name() != "sqlite":
        options["pool_size"] = settings.db_pool_size
        options["max_overflow"] = settings.db_max_overflow
    return options


engine = create_async_engine(settings.database_url, **engine_options(settings.database_url))

# Lifecycle operations commit explicitly; refresh after commit instead of expiring
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


async def get_db():
    """
    FastAPI dependency yielding one session per request.

    Work left uncommitted when the request ends (a rejected activation, a
    read-only lookup) is rolled back when the session closes.
    """
    async with AsyncSessionLocal() as session:
        yield session
