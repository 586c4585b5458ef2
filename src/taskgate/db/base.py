"""Database connection and session management."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from taskgate.config import settings


class Base(DeclarativeBase):
    """SQLAlchemy declarative base."""

    pass


def enable_sqlite_savepoints(target_engine: AsyncEngine) -> None:
    """
    Let SQLAlchemy own BEGIN on SQLite connections.

    aiosqlite defers BEGIN until the first DML statement, which breaks
    SAVEPOINT handling (the audit recorder writes inside nested
    transactions). Hand transaction control back to SQLAlchemy.
    """
    sync_engine = target_engine.sync_engine
    if getattr(sync_engine, "_taskgate_sqlite_attached", False):
        return

    @event.listens_for(sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    sync_engine._taskgate_sqlite_attached = True


def build_engine(database_url: str, echo: bool = False, **kwargs) -> AsyncEngine:
    """Create an async engine with pool settings suited to the backend."""
    if database_url.startswith("sqlite"):
        created = create_async_engine(database_url, echo=echo, **kwargs)
        enable_sqlite_savepoints(created)
        return created
    return create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=20,
        max_overflow=10,
        **kwargs,
    )


# Create async engine
engine = build_engine(settings.database_url, echo=settings.debug)

# Create async session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_db() -> None:
    """Initialize database tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get a database session."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
