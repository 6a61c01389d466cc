"""Database engine and session management."""

import logging
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    create_async_engine as sa_create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine,
)
from sqlalchemy import event
from sqlalchemy.pool import StaticPool

from ..settings import get_settings
from . import models

logger = logging.getLogger(__name__)

# Engine and session factory are connection plumbing only; no request state
# is kept here.
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_database_url() -> str:
    """Return the configured async database URL."""
    return get_settings().database_url


def _begin_immediate(engine: AsyncEngine) -> None:
    """Take the SQLite write lock when a transaction starts.

    The driver otherwise defers locking to the first write, and a reader
    upgrading to a writer can fail with "database is locked" instead of
    waiting its turn.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_async_engine(
    database_url: Optional[str] = None,
    echo: bool = False,
    pool_size: int = 5,
    max_overflow: int = 10,
) -> AsyncEngine:
    """
    Create an async SQLAlchemy engine.

    In-memory SQLite shares one connection so every session sees the same
    database; file-backed SQLite gets a regular pool so sessions run on
    separate connections.
    """
    url = database_url or get_database_url()

    if url.startswith("sqlite") and ":memory:" in url:
        return sa_create_async_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    if url.startswith("sqlite"):
        engine = sa_create_async_engine(
            url,
            echo=echo,
            connect_args={"timeout": 15},
        )
        _begin_immediate(engine)
        return engine

    return sa_create_async_engine(
        url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
    )


def get_async_session_factory(
    engine: Optional[AsyncEngine] = None,
) -> async_sessionmaker[AsyncSession]:
    """
    Return a session factory bound to ``engine``, or the initialised one.

    Raises:
        RuntimeError: If no engine is given and init_db() has not run.
    """
    if engine is not None:
        return async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory


async def init_db(
    database_url: Optional[str] = None,
    echo: bool = False,
    create_tables: bool = True,
) -> None:
    """
    Open the process-wide engine and session factory.

    ``create_tables`` builds the schema from the models for local runs and
    tests; production deployments apply the alembic revision instead.
    """
    global _engine, _session_factory

    url = database_url or get_database_url()
    logger.info(f"Opening settlement database ({url.split(':', 1)[0]})")

    _engine = create_async_engine(url, echo=echo)
    _session_factory = get_async_session_factory(_engine)

    if create_tables:
        async with _engine.begin() as conn:
            await conn.run_sync(models.Base.metadata.create_all)
        logger.info("Settlement tables ensured")


async def close_db() -> None:
    """Dispose of the engine opened by init_db(); safe to call twice."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Settlement database closed")


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    FastAPI dependency returning the session factory.

    Settlement opens its own short-lived sessions per step so the ledger
    transition always runs in a fresh transaction.
    """
    return get_async_session_factory()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding one session per request.

    Committed when the handler returns, rolled back if it raises. Used by the
    read-only admin endpoint; settlement writes go through the ledger.
    """
    session_factory = get_async_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise

