"""Retry executor for transient SQLite lock contention.

SQLite allows a single writer at a time. Concurrent writers get
"database is locked" / SQLITE_BUSY errors that usually succeed a few
milliseconds later, so every unit of database work runs through
``retry_operation``, which retries lock errors with exponential backoff
and jitter until a wall-clock budget runs out. Any other error is raised
immediately.

The operation passed in is retried as a whole. Pass the entire
"connect, begin, work, commit" sequence as one callable rather than
retrying individual statements of an open transaction.

Example:
    config = RetryConfig(max_retry_duration=5.0)
    rows = retry_operation(lambda: fetch_rows(path), config)
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Protocol, TypeVar

from loguru import logger

if TYPE_CHECKING:
    import sqlite3

    from .database import Database

T = TypeVar("T")

DEFAULT_MAX_RETRY_DURATION = 30.0
DEFAULT_BASE_DELAY = 0.010
DEFAULT_MAX_DELAY = 1.0
DEFAULT_JITTER_PERCENT = 0.25

# Lowercased fragments identifying a contended-writer condition
LOCK_SIGNATURES = (
    "database is locked",
    "database table is locked",
    "database is busy",
    "sqlite_busy",
    "sqlite_locked",
)


class _Uniform(Protocol):
    def uniform(self, a: float, b: float) -> float: ...


@dataclass
class RetryConfig:
    """Retry budget and backoff shape, all durations in seconds.

    Attributes:
        max_retry_duration: Total wall-clock budget for all attempts.
        base_delay: Delay before the first retry.
        max_delay: Upper bound of the pre-jitter delay.
        jitter_percent: Fraction of the delay added or removed at random.
    """

    max_retry_duration: float = DEFAULT_MAX_RETRY_DURATION
    base_delay: float = DEFAULT_BASE_DELAY
    max_delay: float = DEFAULT_MAX_DELAY
    jitter_percent: float = DEFAULT_JITTER_PERCENT

    @classmethod
    def default(cls) -> "RetryConfig":
        """Return the default retry configuration (30s / 10ms / 1s / 25%)."""
        return cls()


def is_lock_error(exc: BaseException) -> bool:
    """Check whether an exception signals SQLite lock contention.

    Inspects the exception text along its ``__cause__`` and ``__context__``
    chains and the ``orig`` attribute SQLAlchemy uses for wrapped DBAPI
    errors.

    Args:
        exc: Exception raised by a database operation.

    Returns:
        True if the error is a transient lock/busy condition.
    """
    seen: set[int] = set()
    pending: list[Any] = [exc]
    while pending:
        current = pending.pop()
        if not isinstance(current, BaseException) or id(current) in seen:
            continue
        seen.add(id(current))

        text = str(current).lower()
        if any(signature in text for signature in LOCK_SIGNATURES):
            return True
        errorname = getattr(current, "sqlite_errorname", None)
        if errorname in ("SQLITE_BUSY", "SQLITE_LOCKED"):
            return True

        pending.append(current.__cause__)
        pending.append(current.__context__)
        pending.append(getattr(current, "orig", None))
    return False


def backoff_delay(attempt: int, config: RetryConfig) -> float:
    """Pre-jitter delay for a 0-indexed retry attempt.

    Returns:
        ``min(base_delay * 2**attempt, max_delay)``.
    """
    # Exponent capped so huge attempt counts cannot overflow a float
    return min(config.base_delay * (2 ** min(attempt, 62)), config.max_delay)


def compute_delay(
    attempt: int,
    config: RetryConfig,
    elapsed: float,
    rng: _Uniform = random,
) -> float:
    """Delay to sleep before the next attempt.

    The backoff delay is perturbed by uniform jitter of up to
    ``jitter_percent`` of itself in either direction, then clamped to be
    non-negative and to fit in the remaining budget.

    Args:
        attempt: 0-indexed retry attempt.
        config: Retry configuration.
        elapsed: Seconds spent since the first attempt started.
        rng: Source of uniform random numbers.

    Returns:
        Seconds to sleep. A value <= 0 means the budget is exhausted.
    """
    base = backoff_delay(attempt, config)
    jitter_range = base * config.jitter_percent
    delay = max(base + rng.uniform(-jitter_range, jitter_range), 0.0)
    remaining = config.max_retry_duration - elapsed
    return min(delay, remaining)


def retry_operation(
    operation: Callable[[], T],
    config: RetryConfig | None = None,
    *,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
    rng: _Uniform = random,
) -> T:
    """Run an operation, retrying it while it fails with lock errors.

    Args:
        operation: Complete unit of work. Called once per attempt.
        config: Retry configuration (defaults to RetryConfig.default()).
        sleep: Sleep function, injectable for tests.
        clock: Monotonic clock, injectable for tests.
        rng: Random source for jitter, injectable for tests.

    Returns:
        Whatever the successful attempt returned.

    Raises:
        Exception: The first non-lock error, or the last lock error once
            the retry budget is spent.
    """
    config = config or RetryConfig.default()
    start = clock()
    attempt = 0

    while True:
        try:
            result = operation()
        except Exception as e:
            if not is_lock_error(e):
                logger.error(f"Non-retryable database error: {e}")
                raise

            elapsed = clock() - start
            if elapsed >= config.max_retry_duration:
                logger.error(
                    f"Database operation failed after {elapsed:.3f}s "
                    f"(max retry duration exceeded): {e}"
                )
                raise

            delay = compute_delay(attempt, config, elapsed, rng)
            if delay <= 0:
                logger.error(
                    f"Database operation failed after {elapsed:.3f}s "
                    f"(no time remaining for retry): {e}"
                )
                raise

            attempt += 1
            logger.warning(
                f"Database locked, retrying in {delay:.3f}s "
                f"(attempt {attempt}, elapsed {elapsed:.3f}s)"
            )
            sleep(delay)
            continue

        if attempt > 0:
            logger.info(
                f"Database operation succeeded after {attempt} retries "
                f"in {clock() - start:.3f}s"
            )
        return result


# =============================================================================
# Convenience wrappers
# =============================================================================


def exec_with_retry(
    db: "Database",
    sql: str,
    params: tuple = (),
    config: RetryConfig | None = None,
) -> "sqlite3.Cursor":
    """Execute one statement on a connected database with retry."""
    return retry_operation(lambda: db.execute(sql, params), config)


def query_with_retry(
    db: "Database",
    sql: str,
    params: tuple = (),
    config: RetryConfig | None = None,
) -> list["sqlite3.Row"]:
    """Run a query with retry, fetching all rows inside the retried unit."""
    return retry_operation(lambda: db.execute(sql, params).fetchall(), config)
