"""Timestamps and commit retries shared by the store."""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Substrings of driver errors worth retrying (SQLite locks, dropped PG connections)
TRANSIENT_ERRORS = (
    "database is locked",
    "connection refused",
    "connection reset",
    "connection closed",
    "server closed",
    "timeout",
    "too many clients",
)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what DateTime columns hand back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def is_transient(exc: DBAPIError) -> bool:
    text = str(exc).lower()
    return any(fragment in text for fragment in TRANSIENT_ERRORS)


async def retry_on_lock(
    coro_func: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 0.1,
) -> T:
    """Await ``coro_func()``, retrying lock and connection errors.

    Each retry waits twice as long as the one before, starting at
    ``base_delay``. Non-transient errors propagate immediately; a transient
    error on the last attempt propagates too.
    """
    attempt = 0
    while True:
        try:
            return await coro_func()
        except (OperationalError, InterfaceError) as e:
            attempt += 1
            if attempt >= max_retries or not is_transient(e):
                raise
            delay = base_delay * 2 ** (attempt - 1)
            logger.warning(f"Transient database error ({e.orig!r}); retry {attempt}/{max_retries - 1} in {delay}s")
            await asyncio.sleep(delay)
