# db/session.py
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    async_sessionmaker,
    AsyncSession,
    AsyncEngine
)
from sqlalchemy.pool import NullPool, StaticPool
from .config import get_db_settings, normalize_async_url

logger = logging.getLogger(__name__)

# Global engine and session factory
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None
_init_lock = asyncio.Lock()


def _engine_options(url: str, use_direct: bool, settings) -> dict:
    """Driver specific engine arguments"""
    if url.startswith("sqlite"):
        # One shared connection so in-memory databases survive across sessions
        return {
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        }

    # Supabase-specific connection arguments for asyncpg
    # Required to work with Supavisor (Supabase's pooler)
    options = {
        "pool_pre_ping": settings.POOL_PRE_PING,
        "connect_args": {
            # Disable prepared statements (required for Supavisor)
            "statement_cache_size": 0,
            "prepared_statement_cache_size": 0,
            "prepared_statement_name_func": lambda: f"__asyncpg_{uuid.uuid4()}__",
        },
    }
    if use_direct:
        options.update(pool_size=settings.POOL_SIZE, max_overflow=settings.MAX_OVERFLOW)
    else:
        # Supavisor already pools, so no client-side pool
        options["poolclass"] = NullPool
    return options


async def init_db(use_direct: bool = False, url: Optional[str] = None) -> AsyncEngine:
    """
    Create the process-wide engine once. Tables come from Alembic
    (scripts/run_migrations.py), never from here.

    Args:
        use_direct: Skip the Supavisor pooler
        url: Connection URL to use instead of DatabaseSettings
    """
    global _engine, _session_factory

    async with _init_lock:
        if _engine is not None:
            return _engine

        logger.info("Initializing database connection...")
        settings = get_db_settings()
        connection_url = normalize_async_url(url) if url else settings.get_connection_url(use_direct=use_direct)

        _engine = create_async_engine(
            connection_url,
            echo=settings.ECHO_SQL,
            **_engine_options(connection_url, use_direct, settings)
        )
        _session_factory = async_sessionmaker(
            _engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False
        )
        logger.info(f"Database engine ready (use_direct={use_direct})")

        return _engine


def get_session_factory() -> async_sessionmaker:
    """Get session factory (engine must be initialized first)"""
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for database sessions. Commits on success, rolls back
    and re-raises on error.

    Example:
        async with get_db_session() as session:
            repo = FragmentRepository(session)
            await repo.bind_commit_sha(...)
    """
    if _session_factory is None:
        await init_db()

    async with _session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def close_db():
    """Close database connections"""
    global _engine, _session_factory

    if _engine:
        await _engine.dispose()
        _engine = None
        _session_factory = None
