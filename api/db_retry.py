"""
Database retry utilities for handling transient database errors.

Retries with exponential backoff on lock contention and similar transient
failures, for both SQLite and PostgreSQL backends:

SQLite errors:
- "database is locked" - concurrent write contention
- "SQLITE_BUSY" / "SQLITE_LOCKED" - database busy states

PostgreSQL errors:
- Deadlocks (40P01)
- Serialization failures (40001)
- Connection errors
"""

import asyncio
import functools
import logging
import random
from typing import Callable, Optional, TypeVar

from api.metrics import DB_QUERY_RETRIES_TOTAL

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default retry configuration
DEFAULT_MAX_RETRIES = 5
DEFAULT_BASE_DELAY = 0.1  # 100ms
DEFAULT_MAX_DELAY = 2.0  # 2 seconds
DEFAULT_EXPONENTIAL_BASE = 2

_SQLITE_PATTERNS = (
    "database is locked",
    "database table is locked",
    "sqlite_busy",
    "sqlite_locked",
)

_POSTGRES_PATTERNS = (
    "deadlock detected",  # 40P01
    "could not serialize access",  # 40001 serialization failure
    "could not obtain lock",
    "connection refused",
    "connection reset",
    "server closed the connection unexpectedly",
    "canceling statement due to lock timeout",
    "lock timeout",
)


class DatabaseRetryableError(Exception):
    """Raised when a database operation fails after all retries exhausted."""

    pass


def is_retryable_database_error(exc: Exception) -> bool:
    """
    Check if an exception is a retryable database error.

    Supports both SQLite and PostgreSQL error patterns, including driver
    exceptions wrapped by the databases library (checked via __cause__).
    """
    error_str = str(exc).lower()

    if any(pattern in error_str for pattern in _SQLITE_PATTERNS):
        return True
    if any(pattern in error_str for pattern in _POSTGRES_PATTERNS):
        return True

    # asyncpg and psycopg2 may expose the SQLSTATE code
    if getattr(exc, "sqlstate", "") in ("40P01", "40001"):
        return True

    if exc.__cause__ is not None:
        return is_retryable_database_error(exc.__cause__)

    return False


async def execute_with_retry(
    func: Callable,
    *args,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    **kwargs,
) -> T:
    """
    Execute an async function with retry logic for transient database errors.

    Uses exponential backoff with jitter to reduce contention.

    Raises:
        DatabaseRetryableError: If all retries are exhausted
        Other exceptions: Non-retryable errors are re-raised immediately
    """
    last_exception: Optional[Exception] = None

    for attempt in range(max_retries + 1):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if not is_retryable_database_error(e):
                raise

            last_exception = e

            if attempt < max_retries:
                delay = min(base_delay * (DEFAULT_EXPONENTIAL_BASE**attempt), max_delay)
                # Add jitter (±25%) to prevent thundering herd
                jitter = delay * 0.25 * (2 * random.random() - 1)
                delay = max(0.01, delay + jitter)

                DB_QUERY_RETRIES_TOTAL.inc()
                logger.warning(
                    f"Database error (attempt {attempt + 1}/{max_retries + 1}), retrying in {delay:.2f}s: {e}"
                )
                await asyncio.sleep(delay)
            else:
                logger.error(f"Database error after {max_retries + 1} attempts, giving up: {e}")

    raise DatabaseRetryableError(f"Database operation failed after {max_retries + 1} attempts: {last_exception}")


def with_db_retry(
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
):
    """
    Decorator to add database retry logic to async functions.

    Usage:
        @with_db_retry()
        async def get_video(self, video_id):
            ...
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            return await execute_with_retry(
                func,
                *args,
                max_retries=max_retries,
                base_delay=base_delay,
                max_delay=max_delay,
                **kwargs,
            )

        return wrapper

    return decorator

