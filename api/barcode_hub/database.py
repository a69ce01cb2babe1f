# barcode_hub/database.py
"""
Database engine and sessions for Barcode Hub.

PostgreSQL via asyncpg in production; any SQLAlchemy async URL can be set in
DATABASE_URL (the CLI and tests use sqlite+aiosqlite).
"""
from __future__ import annotations
from typing import AsyncGenerator, Optional
from contextlib import asynccontextmanager

from sqlalchemy import event, text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from barcode_hub.settings import settings


class Base(DeclarativeBase):
    """Declarative base for barcode_settings / barcode_registry."""


# ============================================================================
# Engine
# ============================================================================

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_database_url() -> str:
    if settings.DATABASE_URL:
        return settings.DATABASE_URL
    return (
        f"postgresql+asyncpg://{settings.DB_USER}:{settings.DB_PASSWORD}"
        f"@{settings.DB_HOST}:{settings.DB_PORT}/{settings.DB_NAME}"
    )


def _is_sqlite(url: str) -> bool:
    return make_url(url).get_backend_name() == "sqlite"


def _engine_options(url: str) -> dict:
    options = {"echo": settings.DB_ECHO}
    if not _is_sqlite(url):
        options.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_pre_ping=True,
        )
    return options


def _enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    # The sqlite driver starts transactions lazily and breaks SAVEPOINT;
    # take over BEGIN so begin_nested() works. IMMEDIATE takes the write
    # lock up front: concurrent sessions wait on the busy timeout instead of
    # failing a read-to-write lock upgrade.
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


async def init_db(url: Optional[str] = None, **engine_kwargs) -> None:
    """
    Create the engine and session factory. No-op when already initialized.

    ``engine_kwargs`` override the pool options (tests pass a StaticPool).
    """
    global _engine, _session_factory
    if _engine is not None:
        return

    url = url or get_database_url()
    _engine = create_async_engine(url, **{**_engine_options(url), **engine_kwargs})
    if _is_sqlite(url):
        _enable_sqlite_savepoints(_engine)

    _session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError("Database not initialized, call init_db() first")
    return _engine


async def create_schema() -> None:
    """Create missing tables. Used by the app lifespan, the CLI and tests."""
    from barcode_hub import db_models  # noqa: F401  (registers tables on Base)

    await init_db()
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# ============================================================================
# Sessions
# ============================================================================

@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession, None]:
    """
    One unit of work: commit on success, rollback on any exception.

        async with get_session_context() as db:
            await SqlCounterStore(db).ensure_config()
    """
    await init_db()
    async with _session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: ``db: AsyncSession = Depends(get_session)``."""
    async with get_session_context() as session:
        yield session


# ============================================================================
# Health Check
# ============================================================================

async def check_db_health() -> dict:
    """Round-trip a trivial query; never raises."""
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected", "backend": get_engine().dialect.name}
    except Exception as e:
        return {"status": "unhealthy", "database": "disconnected", "error": str(e)}
