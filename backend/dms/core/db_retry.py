"""Retry loop for transactions that lose a lock race.

MySQL reports deadlocks and lock wait timeouts by error code; SQLite only says
"database is locked" once its busy timeout runs out. Both are worth another
attempt after the session has been rolled back.
"""

from __future__ import annotations

import random
from typing import Awaitable, Callable, Optional, TypeVar

import anyio
from loguru import logger
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from dms.core.config import settings

T = TypeVar("T")

MYSQL_DEADLOCK = 1213
MYSQL_LOCK_WAIT_TIMEOUT = 1205
MYSQL_NOWAIT_CONFLICT = 3572
SERIALIZATION_FAILURE_SQLSTATE = "40001"

_MESSAGE_REASONS = (
    ("deadlock", "deadlock"),
    ("lock wait timeout", "lock_wait_timeout"),
    ("database is locked", "sqlite_busy"),
)


def _driver_error_code(exc: DBAPIError) -> Optional[int]:
    args = getattr(exc.orig, "args", None)
    if not args:
        return None
    try:
        return int(args[0])
    except (TypeError, ValueError):
        return None


def retry_reason(exc: DBAPIError) -> Optional[str]:
    """Name the transient condition behind ``exc``, or None if it is permanent."""

    code = _driver_error_code(exc)
    if code == MYSQL_NOWAIT_CONFLICT:
        # With NOWAIT the caller asked to fail fast rather than queue.
        return None if settings.DB_NOWAIT_LOCKS else "nowait_conflict"
    if code == MYSQL_DEADLOCK:
        return "deadlock"
    if code == MYSQL_LOCK_WAIT_TIMEOUT:
        return "lock_wait_timeout"
    if getattr(exc.orig, "sqlstate", None) == SERIALIZATION_FAILURE_SQLSTATE:
        return "serialization_failure"
    message = str(exc.orig if exc.orig is not None else exc).lower()
    for marker, reason in _MESSAGE_REASONS:
        if marker in message:
            return reason
    return None


def _backoff(attempt: int, base_delay: float, jitter: float) -> float:
    return base_delay * (2 ** (attempt - 1)) + random.uniform(0, jitter)


async def with_db_retry(
    session: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    jitter: Optional[float] = None,
) -> T:
    """Await ``operation``, rolling back and retrying on transient lock errors.

    ``operation`` must open its own transaction so that every attempt starts
    from a clean session. The last error is re-raised once attempts run out.
    """

    attempts = attempts or settings.DB_RETRY_ATTEMPTS
    base_delay = base_delay if base_delay is not None else settings.DB_RETRY_BASE_DELAY
    jitter = jitter if jitter is not None else settings.DB_RETRY_JITTER

    attempt = 1
    while True:
        try:
            return await operation()
        except DBAPIError as exc:
            reason = retry_reason(exc)
            if reason is None or attempt >= attempts:
                raise
            await session.rollback()
            delay = _backoff(attempt, base_delay, jitter)
            logger.bind(
                attempt=attempt,
                max_attempts=attempts,
                reason=reason,
                sleep=round(delay, 3),
            ).warning("db_retry")
            await anyio.sleep(delay)
            attempt += 1
