"""Database configuration and connection management"""

from typing import AsyncGenerator, Optional
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    AsyncEngine
)
from sqlalchemy.orm import sessionmaker
from agent_scheduler.core.config import settings

# Importing the models package registers both tables on Base.metadata
from agent_scheduler.models.base import Base
import agent_scheduler.models  # noqa: F401

db_engine: Optional[AsyncEngine] = None
async_session_factory: Optional[sessionmaker] = None


def create_engine_for_url(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine with pooling suited to the backend.

    SQLite gets the driver's default pool; server databases get a bounded
    queue pool with pre-ping and recycling.
    """
    if database_url.startswith("sqlite"):
        engine = create_async_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
        )

        @event.listens_for(engine.sync_engine, "connect")
        def _sqlite_pragmas(dbapi_connection, connection_record):
            # WAL lets the engine write while request sessions read
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_async_engine(
        database_url,
        echo=echo,
        pool_size=10,  # Maximum number of connections in the pool
        max_overflow=20,  # Maximum overflow connections beyond pool_size
        pool_timeout=30,  # Timeout for getting connection from pool
        pool_recycle=3600,  # Recycle connections after 1 hour
        pool_pre_ping=True,  # Verify connections before using
    )


def create_session_factory(engine: AsyncEngine) -> sessionmaker:
    """Create the async session factory bound to an engine"""
    return sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_database(database_url: Optional[str] = None) -> None:
    """Initialize the async engine and session factory"""
    global db_engine, async_session_factory

    db_engine = create_engine_for_url(
        database_url or settings.DATABASE_URL,
        echo=settings.DATABASE_ECHO,
    )
    async_session_factory = create_session_factory(db_engine)

    if settings.DATABASE_CREATE_TABLES:
        await create_all(db_engine)


async def create_all(engine: AsyncEngine) -> None:
    """Create all tables (development and tests; production uses alembic)"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_database() -> None:
    """Close the engine and cleanup connections"""
    global db_engine, async_session_factory
    if db_engine:
        await db_engine.dispose()
        db_engine = None
        async_session_factory = None


def get_session_factory() -> sessionmaker:
    """
    Get the session factory for long-running background work.

    The scheduling engine opens one short-lived session per store/ledger
    operation instead of holding a request-scoped session.
    """
    if async_session_factory is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return async_session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency injection for database sessions.

    Usage in FastAPI:
        @router.get("/schedules")
        async def list_schedules(db: AsyncSession = Depends(get_db)):
            ...
    """
    if async_session_factory is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def check_database_connection() -> bool:
    """
    Check if the database connection is healthy.
    Used for health checks.
    """
    if db_engine is None:
        return False

    try:
        async with db_engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
