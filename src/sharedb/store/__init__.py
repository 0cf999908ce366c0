"""SQLite connection management and lock-contention retry."""

from .database import Database, open_database, with_transaction_retry
from .retry import (
    RetryConfig,
    backoff_delay,
    compute_delay,
    exec_with_retry,
    is_lock_error,
    query_with_retry,
    retry_operation,
)

__all__ = [
    "Database",
    "RetryConfig",
    "backoff_delay",
    "compute_delay",
    "exec_with_retry",
    "is_lock_error",
    "open_database",
    "query_with_retry",
    "retry_operation",
    "with_transaction_retry",
]
