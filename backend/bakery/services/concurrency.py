# Overview: Row locking and retry helpers for concurrent database work.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; the gateway serializes
    writers there with BEGIN IMMEDIATE instead.
    """
    return query.with_for_update()


def run_with_retry(session, func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, lock waits) and StaleDataError
    (optimistic locking conflicts). The last failure is re-raised.
    """
    attempts = max(int(attempts), 1)
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            session.rollback()
            if attempt >= attempts - 1:
                raise
            logger.warning(
                "Retrying transaction after %s (attempt %d of %d)",
                type(exc).__name__, attempt + 1, attempts,
            )
            if backoff_base:
                time.sleep(backoff_base * (2 ** attempt))
