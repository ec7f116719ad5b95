"""
Canteen Service - Retry decorators

with_optimistic_retry: re-runs a compare-and-set write when another
transaction bumped the version column first (StaleDataError).

with_transient_retry: re-runs a read-only query when the database connection
drops. Never apply it to writes; a retried debit could charge twice.
"""
import asyncio
import random
import functools
import logging

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, PendingRollbackError
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.core.config import get_settings
from canteen.core.exceptions import TransientBackendError

settings = get_settings()
logger = logging.getLogger(__name__)


class StaleDataError(Exception):
    """A compare-and-set matched no row: someone else moved the version first."""


def _backoff_delay(attempt: int) -> float:
    base_delay = settings.OPT_LOCK_BASE_DELAY_MS / 1000.0
    max_delay = settings.OPT_LOCK_MAX_DELAY_MS / 1000.0
    jitter = random.uniform(0, settings.OPT_LOCK_JITTER_MS / 1000.0)
    return min(base_delay * (2 ** attempt), max_delay) + jitter


def with_optimistic_retry(max_retries: int | None = None):
    """
    Decorator for async functions that perform optimistic-lock DB writes.
    On StaleDataError, retries with exponential backoff + jitter.
    The wrapped function must roll back its session before raising.

    Usage:
        @with_optimistic_retry()
        async def publish(db, ...):
            ...
    """
    _max = max_retries or settings.OPT_LOCK_MAX_RETRIES

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(1, _max + 1):
                try:
                    return await func(*args, **kwargs)
                except StaleDataError:
                    if attempt == _max:
                        logger.error(
                            "Optimistic lock conflict unresolved after %d retries for %s",
                            _max, func.__name__,
                        )
                        raise
                    delay = _backoff_delay(attempt)
                    logger.warning(
                        "StaleDataError on attempt %d/%d in %s, retrying in %.3fs",
                        attempt, _max, func.__name__, delay,
                    )
                    await asyncio.sleep(delay)
        return wrapper
    return decorator


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, PendingRollbackError):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return isinstance(exc, (OperationalError, InterfaceError))


def _session_of(args, kwargs) -> AsyncSession | None:
    db = kwargs.get("db", args[0] if args else None)
    return db if isinstance(db, AsyncSession) else None


def with_transient_retry(attempts: int | None = None):
    """
    Retry a read-only query on connection failures, then raise TransientBackendError.

    The session is rolled back before each new attempt; a session whose
    connection dropped refuses further work until it is.
    """
    _attempts = attempts or settings.READ_RETRY_ATTEMPTS

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            session = _session_of(args, kwargs)
            for attempt in range(1, _attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except (DBAPIError, PendingRollbackError) as exc:
                    if not is_transient(exc):
                        raise
                    if session is not None:
                        await session.rollback()
                    if attempt == _attempts:
                        logger.error("Read %s failed after %d attempts: %s", func.__name__, _attempts, exc)
                        raise TransientBackendError("Database unavailable, please retry.") from exc
                    logger.warning("Transient failure in %s (attempt %d/%d)", func.__name__, attempt, _attempts)
                    await asyncio.sleep(settings.READ_RETRY_DELAY_MS / 1000.0)
        return wrapper
    return decorator
