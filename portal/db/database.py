"""
Engines and sessions.

The portal server and the offline client both talk to SQLAlchemy through
``build_engine``: an in-memory SQLite database shares its single connection,
file-backed SQLite and everything else get a regular connection pool.
"""

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from portal.config import settings
from portal.db.models import Base


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        # aiosqlite runs its connection in a worker thread
        connect_args = {"check_same_thread": False}
        if parsed.database in (None, "", ":memory:"):
            # An in-memory database only exists on its one connection
            return create_async_engine(url, connect_args=connect_args, poolclass=StaticPool, echo=echo)
        return create_async_engine(url, connect_args=connect_args, echo=echo)
    return create_async_engine(url, echo=echo, pool_size=10, max_overflow=20, pool_pre_ping=True)


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine(settings.database_url, echo=settings.debug)
async_session_maker = build_session_maker(engine)


async def get_db():
    """FastAPI dependency: one session per request."""
    async with async_session_maker() as session:
        yield session


async def init_db():
    """Create the portal tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db():
    """Drop every portal table (tests only)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
