"""
Retry logic with exponential backoff for SQLite lock contention.

Only infrastructure contention is retried here. A lost optimistic-locking
race (StreamVersionConflict) is a decision the caller has to remake with
fresh state, so it is never retried automatically.
"""

import sqlite3
from collections.abc import Callable
from typing import TypeVar

from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from group_governance.kernel.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def is_sqlite_lock_error(exc: BaseException) -> bool:
    """True for 'database is locked' / 'database is busy' operational errors."""
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    message = str(exc).lower()
    return "locked" in message or "busy" in message


def retry_on_sqlite_lock(
    max_attempts: int = 3,
    min_wait_ms: int = 100,
    max_wait_ms: int = 1000,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Retry decorator for SQLite lock contention (OperationalError).

    SQLite uses file-based locking and can report "database is locked"
    when a writer holds the lock longer than the busy timeout. The wrapped
    call must be safe to repeat, which holds for a rolled-back transaction.

    Args:
        max_attempts: Maximum number of attempts (default: 3)
        min_wait_ms: Minimum wait time in milliseconds (default: 100)
        max_wait_ms: Maximum wait time in milliseconds (default: 1000)

    Returns:
        Decorated function that retries on lock errors

    Example:
        @retry_on_sqlite_lock()
        def commit(self, uow):
            ...
    """
    return retry(
        retry=retry_if_exception(is_sqlite_lock_error),
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(
            multiplier=1,
            min=min_wait_ms / 1000.0,
            max=max_wait_ms / 1000.0,
        ),
        before_sleep=lambda retry_state: logger.warning(
            "SQLite lock detected, retrying",
            attempt=retry_state.attempt_number,
            exception=str(retry_state.outcome.exception()) if retry_state.outcome else None,
        ),
        reraise=True,
    )
