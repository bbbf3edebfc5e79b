from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from octorank.core.config import settings


def get_async_database_url(url: str) -> str:
    """Convert database URL to async format for SQLAlchemy + asyncpg.

    Hosting providers hand out postgres:// URLs but SQLAlchemy async requires
    postgresql+asyncpg:// format.
    """
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    elif url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def create_engine(url: str | None = None, echo: bool | None = None) -> AsyncEngine:
    """Create the async engine for the configured (or given) database."""
    return create_async_engine(
        get_async_database_url(url or settings.database_url),
        echo=settings.debug if echo is None else echo,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables. Schema migrations are managed outside this service."""
    from octorank.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
