"""
Async engine and session handling.

One engine per process, created lazily from settings. Request handlers
get a session through ``get_db``, which commits when the handler returns
and rolls back when it raises. The real-time endpoint takes the session
factory itself and opens a short session per message.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from deliveryhub.core.config import get_settings
from deliveryhub.core.logging import get_logger

logger = get_logger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def convert_database_url_to_async(url: str) -> str:
    """``postgresql://`` URLs are rewritten to use the asyncpg driver."""
    if url.startswith("postgresql://"):
        return "postgresql+asyncpg://" + url[len("postgresql://"):]
    return url


def _pool_options(url: str) -> dict[str, Any]:
    settings = get_settings()
    # SQLite connections must not outlive the event loop that opened them
    if url.startswith("sqlite") or settings.environment == "test":
        return {"poolclass": NullPool}
    return {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
        "connect_args": {
            "server_settings": {"application_name": settings.app_name},
            "timeout": 10,
        },
    }


def create_engine(database_url: Optional[str] = None) -> AsyncEngine:
    settings = get_settings()
    url = convert_database_url_to_async(database_url or settings.database_url)
    options = _pool_options(url)

    engine = create_async_engine(url, echo=settings.debug, **options)
    logger.info(
        "Database engine created",
        dialect=engine.dialect.name,
        pooled="poolclass" not in options,
    )
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Orders are serialized after commit, so attributes must stay loaded
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


def get_engine() -> AsyncEngine:
    """
    Return the process-wide engine, creating it on first use.

    Raises:
        RuntimeError: If the engine cannot be built from settings
    """
    global _engine
    if _engine is not None:
        return _engine

    try:
        _engine = create_engine()
    except Exception as e:
        logger.error("Database engine creation failed", error=str(e))
        raise RuntimeError(f"Database engine initialization failed: {e}") from e
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
    return _session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Unit of work: commit on normal exit, roll back on any exception."""
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.warning("Transaction rolled back", error_type=type(e).__name__)
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with get_session() as session:
        yield session


async def check_database_health(max_retries: int = 3, retry_delay: float = 1.0) -> bool:
    """
    Run ``SELECT 1`` against the engine.

    Connection errors are retried with exponential backoff
    (``retry_delay``, then twice that, ...). Any other failure, including
    an engine that cannot be built, is reported at once.

    Returns:
        Whether the database answered within ``max_retries`` attempts
    """
    for attempt in range(1, max_retries + 1):
        try:
            async with get_engine().connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except (OperationalError, DBAPIError) as e:
            logger.warning(
                "Database unreachable",
                attempt=attempt,
                max_retries=max_retries,
                error=str(e),
            )
            if attempt < max_retries:
                await asyncio.sleep(retry_delay * 2 ** (attempt - 1))
        except (SQLAlchemyError, RuntimeError) as e:
            logger.error("Database health check aborted", error=str(e))
            return False

    return False


async def close_database_connections() -> None:
    """Dispose of the engine at shutdown; a later call to get_engine rebuilds it."""
    global _engine, _session_factory
    if _engine is None:
        return

    try:
        await _engine.dispose()
        logger.info("Database engine disposed")
    except SQLAlchemyError as e:
        logger.error("Database engine disposal failed", error=str(e))
    finally:
        _engine = None
        _session_factory = None
