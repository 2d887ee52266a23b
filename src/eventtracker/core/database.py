"""Database session factory setup."""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel


def setup_db_session(db_url: str, pool_size: int = 20) -> async_sessionmaker[AsyncSession]:
    """Create async database session factory.

    Args:
        db_url: Database URL (postgresql+psycopg://... or sqlite+aiosqlite://...)
        pool_size: Maximum number of connections in the pool (default: 20)

    Returns:
        Async session factory for creating database sessions
    """
    if db_url.startswith("sqlite"):
        # SQLite has a single writer and no server-side pool to size
        engine = create_async_engine(db_url, echo=False)
    else:
        engine = create_async_engine(
            db_url,
            pool_size=pool_size,
            max_overflow=0,  # No overflow beyond pool_size
            pool_pre_ping=True,  # Verify connections before using
            echo=False,  # Don't log SQL queries (use structlog instead)
        )

    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Prevent lazy loading issues after commit
    )

    return session_factory


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables registered on SQLModel metadata (development and tests).

    Production deployments apply the Alembic migrations instead.
    """
    # Importing the models package registers every table on the metadata
    import eventtracker.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
