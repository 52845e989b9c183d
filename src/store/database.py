"""Async database connection management."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from loguru import logger
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from src.core.config import get_settings

# Global engine instance
_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for ``url``.

    SQLite URLs share a single connection so in-memory databases survive
    across sessions; other backends get a pooled engine.
    """
    if url.startswith("sqlite"):
        return create_async_engine(
            url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )

    return create_async_engine(
        url,
        echo=echo,
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
    )


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session maker bound to ``engine``."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_engine() -> AsyncEngine:
    """Get or create the async database engine.

    Returns:
        AsyncEngine instance.

    Raises:
        RuntimeError: If no database URL is configured.
    """
    global _engine

    if _engine is None:
        settings = get_settings()
        url = settings.database_url_async
        if not url:
            raise RuntimeError("EMBELLISHMENT_DATABASE_URL is not configured")

        _engine = build_engine(url, echo=settings.embellishment_debug)
        logger.info("Database engine created")

    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Get or create the async session maker.

    Returns:
        async_sessionmaker instance.
    """
    global _session_maker

    if _session_maker is None:
        _session_maker = build_session_maker(get_engine())
        logger.debug("Session maker created")

    return _session_maker


@asynccontextmanager
async def get_db_session(
    session_maker: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Get an async database session.

    Provides a context manager that handles commit/rollback
    automatically.

    Yields:
        AsyncSession instance.

    Example:
        >>> async with get_db_session() as session:
        ...     result = await session.execute(query)
    """
    session_maker = session_maker or get_session_maker()

    async with session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(engine: AsyncEngine | None = None) -> None:
    """
    Initialize the database schema.

    Creates all tables defined in the models if they don't exist.
    """
    from src.store.models import Base

    engine = engine or get_engine()

    logger.info("Initializing database schema")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database schema initialized")


async def close_db() -> None:
    """Close database connections."""
    global _engine, _session_maker

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_maker = None
        logger.info("Database connections closed")
