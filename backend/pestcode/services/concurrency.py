# Overview: Row locking and retry helpers for read-modify-write database work.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError


class StaleWriteError(Exception):
    """A conditional update matched no row because another writer got there first."""


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The conditional update in the caller is what still protects SQLite.
    """
    return query.with_for_update()


def run_with_retry(func, *, session, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks), StaleDataError
    (optimistic locking conflicts), and StaleWriteError (lost compare-and-swap).
    The session is rolled back before each retry.
    """
    retryable = (OperationalError, StaleDataError, StaleWriteError)
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retryable as exc:
            session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
