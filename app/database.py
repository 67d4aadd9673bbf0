"""
Frinder Ledger — Async Database Engine & Session Factory

The ledger treats the database as its document store: every write the
services issue is either keyed (primary-key upsert) or additive (``col = col
+ 1``), so no operation depends on multi-row transactions for correctness.

Production runs on PostgreSQL through ``asyncpg``; local development and the
test-suite run on SQLite through ``aiosqlite``.  Both share the same
``get_db`` async generator for FastAPI dependency injection.
"""

from __future__ import annotations

import logging
from typing import AsyncGenerator

from sqlalchemy import JSON, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import get_settings

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------ #
# Declarative base for all ORM models
# ------------------------------------------------------------------ #

class Base(DeclarativeBase):
    """Declarative base for every ledger table."""


# JSONB on PostgreSQL, plain JSON everywhere else.
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ------------------------------------------------------------------ #
# Pool configuration (server databases only)
# ------------------------------------------------------------------ #

_POOL_KWARGS = {
    "pool_size": 10,
    "max_overflow": 5,
    "pool_timeout": 30,
    "pool_recycle": 1800,
    "pool_pre_ping": True,
}


def normalise_database_url(url: str) -> str:
    """Upgrade plain ``postgres://`` / ``postgresql://`` schemes to the
    asyncpg dialect so that hosted-provider URLs work unchanged."""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def configure_sqlite(engine: AsyncEngine, immediate: bool = False) -> None:
    """Make SQLite honour SAVEPOINTs and foreign keys.

    The sqlite3 driver defers BEGIN until the first DML statement, which
    breaks nested transactions; take over transaction control and emit BEGIN
    ourselves.  With ``immediate`` each transaction takes the write lock when
    it opens, so concurrent writers on a file database queue on the busy
    timeout instead of failing with "database is locked".
    """
    begin_sql = "BEGIN IMMEDIATE" if immediate else "BEGIN"

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql(begin_sql)


def _create_engine():
    """Create the async engine from ``DATABASE_URL``.

    SQLite engines use SQLAlchemy's default pool; the queue-pool tuning only
    applies to server databases.
    """
    settings = get_settings()
    url = normalise_database_url(settings.DATABASE_URL)

    kwargs = {} if url.startswith("sqlite") else dict(_POOL_KWARGS)

    engine = create_async_engine(
        url,
        echo=(settings.LOG_LEVEL == "DEBUG"),
        **kwargs,
    )
    if url.startswith("sqlite"):
        configure_sqlite(engine, immediate=":memory:" not in url)

    logger.info("Database engine created (%s)", url.split("://", 1)[0])
    return engine


# ------------------------------------------------------------------ #
# Module-level engine & session factory
# ------------------------------------------------------------------ #

engine = _create_engine()

async_session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ------------------------------------------------------------------ #
# FastAPI dependency
# ------------------------------------------------------------------ #

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session: commit on success, roll back on error.

    Routes that publish realtime events commit explicitly first; the commit
    here is then a no-op.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
