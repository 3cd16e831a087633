"""
Database configuration and session management.

PostgreSQL (asyncpg) in deployed environments, SQLite (aiosqlite) for local
runs and tests.
"""

from typing import Any, AsyncGenerator, Dict
from urllib.parse import parse_qs, urlparse, urlunparse

from sqlalchemy import JSON, event, pool
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Engine
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from pricetracker.core.config import settings


class Base(DeclarativeBase):
    """Base class for ORM models."""


# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


def to_async_url(database_url: str) -> tuple[str, Dict[str, Any]]:
    """
    Convert a plain database URL into an async driver URL.

    Args:
        database_url: Connection string from settings

    Returns:
        Tuple of (async URL, connect_args)
    """
    if database_url.startswith("sqlite"):
        if database_url.startswith("sqlite://") and "+aiosqlite" not in database_url:
            database_url = database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return database_url, {}

    # Parse the URL to extract SSL parameters for asyncpg
    parsed = urlparse(database_url)
    query_params = parse_qs(parsed.query)

    connect_args: Dict[str, Any] = {}
    if "sslmode" in query_params:
        sslmode = query_params["sslmode"][0]
        if sslmode in ("require", "prefer", "allow"):
            connect_args["ssl"] = True
        elif sslmode == "disable":
            connect_args["ssl"] = False

    # Remove all query parameters from URL and convert to asyncpg
    clean_url = urlunparse(parsed._replace(query="")).replace(
        "postgresql://", "postgresql+asyncpg://"
    )
    return clean_url, connect_args


def build_async_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine with pool settings suited to the backend.

    Args:
        database_url: Connection string
        echo: Echo SQL statements

    Returns:
        Configured AsyncEngine
    """
    url, connect_args = to_async_url(database_url)

    if url.startswith("sqlite"):
        options: Dict[str, Any] = {"connect_args": {"timeout": 30}}
        if ":memory:" in url or url.rstrip("/").endswith("aiosqlite:"):
            options["poolclass"] = pool.StaticPool
        return create_async_engine(url, echo=echo, **options)

    return create_async_engine(
        url,
        poolclass=pool.AsyncAdaptedQueuePool,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=echo,
        connect_args=connect_args,
    )


@event.listens_for(Engine, "connect")
def set_sqlite_pragmas(dbapi_conn, connection_record):
    """Enable foreign key enforcement so cascades work on SQLite."""
    module = type(dbapi_conn).__module__
    if "sqlite" not in module:
        return
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# Asynchronous engine for API operations
async_engine = build_async_engine(settings.DATABASE_URL, echo=settings.DEBUG)

AsyncSessionLocal = async_sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# Database session dependency for FastAPI
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides a database session.

    Yields:
        AsyncSession: SQLAlchemy async session
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db(engine: AsyncEngine | None = None) -> None:
    """
    Initialize database tables.

    Note: In production, use Alembic migrations instead.
    """
    # Import models so they register with Base.metadata
    import pricetracker.models  # noqa: F401

    async with (engine or async_engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    await async_engine.dispose()
