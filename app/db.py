"""Database connection pooling, session management, and transactional units of work."""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.exc import OperationalError, DBAPIError
from sqlalchemy import text
import asyncio
from .config import settings
from .logger import logger

# ==================== Connection Pool Setup ====================


def _engine_options() -> dict:
    """Pool and driver options for the configured backend.

    aiosqlite takes neither pool sizing nor asyncpg's timeouts.
    """
    if settings.is_sqlite():
        return {"connect_args": {"timeout": settings.DB_CONNECT_TIMEOUT}}
    return {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_timeout": settings.DB_POOL_TIMEOUT,
        "pool_recycle": settings.DB_POOL_RECYCLE,
        "pool_pre_ping": True,  # Verify connections before use
        "connect_args": {
            "timeout": settings.DB_CONNECT_TIMEOUT,
            "command_timeout": settings.DB_QUERY_TIMEOUT,
        },
    }


engine = create_async_engine(settings.DB_URL, echo=False, future=True, **_engine_options())

logger.info(
    f"Database engine configured: pool_size={settings.DB_POOL_SIZE}, "
    f"max_overflow={settings.DB_MAX_OVERFLOW}, timeout={settings.DB_POOL_TIMEOUT}s"
)

# Session factory for creating database sessions
async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

# Base class for ORM models
Base = declarative_base()

# ==================== Database Resilience ====================

RETRYABLE_MARKERS = (
    "connection",
    "timeout",
    "database is locked",
    "server closed the connection",
    "connection reset",
    "deadlock detected",
    "could not serialize access",
)


def is_retryable(error: Exception) -> bool:
    """Transient conflicts and connection problems; never constraint violations."""
    error_msg = str(error).lower()
    return any(marker in error_msg for marker in RETRYABLE_MARKERS)


async def retry_on_db_error(func, max_retries: int = 3, base_delay: float = 0.5):
    """Retry database operations with exponential backoff.

    Args:
        func: Async function to retry
        max_retries: Maximum number of attempts
        base_delay: Base delay in seconds (doubles each retry)

    Returns:
        Result of the function call

    Raises:
        Last exception if all retries fail
    """
    last_exception = None

    for attempt in range(max_retries):
        try:
            return await func()
        except (OperationalError, DBAPIError) as e:
            last_exception = e

            if not is_retryable(e) or attempt == max_retries - 1:
                logger.error(
                    f"Database operation failed (attempt {attempt + 1}/{max_retries}): {str(e)}",
                    exc_info=True
                )
                raise

            delay = base_delay * (2 ** attempt)
            logger.warning(
                f"Database error on attempt {attempt + 1}/{max_retries}, "
                f"retrying in {delay}s: {str(e)}"
            )
            await asyncio.sleep(delay)

    raise last_exception


# ==================== Transactional Units ====================


@dataclass
class Outcome:
    """Result of a transactional unit of work.

    ``error`` holds a non-exceptional failure (e.g. "nothing changed") that
    the caller reports without rolling anything back. ``cleanup`` lists
    storage paths that become garbage once the transaction has committed.
    """
    payload: Any = None
    error: Exception | None = None
    cleanup: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None


async def run_in_transaction(
    work: Callable[[AsyncSession], Awaitable[Any]],
    max_retries: int | None = None,
    base_delay: float | None = None,
) -> Any:
    """Run ``work(session)`` inside a single transaction, retrying transient failures.

    The transaction commits when ``work`` returns and rolls back when it
    raises. Only retryable database errors trigger another attempt; any other
    exception propagates after the rollback.
    """
    async def _attempt():
        async with async_session() as session:
            async with session.begin():
                return await work(session)

    return await retry_on_db_error(
        _attempt,
        max_retries=max_retries or settings.DB_RETRY_MAX_ATTEMPTS,
        base_delay=settings.DB_RETRY_BASE_DELAY if base_delay is None else base_delay,
    )


async def check_db_connection() -> bool:
    """Check if database connection is healthy.

    Returns:
        True if connection is healthy, False otherwise
    """
    try:
        async def _check():
            async with async_session() as session:
                await session.execute(text("SELECT 1"))

        await retry_on_db_error(_check, max_retries=2, base_delay=0.1)
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {str(e)}")
        return False

# ==================== Cleanup ====================

async def dispose_engine():
    """Gracefully close all database connections.

    Called during application shutdown to properly cleanup connection pool.
    """
    logger.info("Disposing database engine and closing connections")
    try:
        await engine.dispose()
        logger.info("Database connections closed successfully")
    except Exception as e:
        logger.error(f"Error disposing database engine: {str(e)}", exc_info=True)
