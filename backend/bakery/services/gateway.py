# Overview: Transactional access to the relational store for all services.

"""
Persistence gateway.

One instance wraps one SQLAlchemy session and is handed to every service
that needs the store. It owns the transaction boundary:

- run_in_transaction(func): executes func inside a single transaction,
  commits on success and rolls back on any exception. On SQLite the
  transaction is opened with BEGIN IMMEDIATE so concurrent writers queue
  on the database lock instead of interleaving read-check-write steps.
- savepoint(): nested unit of work inside a running transaction.
- lock_for_update(query): SELECT ... FOR UPDATE on dialects that honor it.

Lock waits and optimistic-lock conflicts are retried with exponential
backoff; once retries are exhausted they surface as StorageError.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import ConflictError, StorageError
from .concurrency import RETRYABLE_ERRORS, lock_for_update, run_with_retry

logger = logging.getLogger(__name__)


class PersistenceGateway:
    def __init__(self, session, *, retry_attempts: int = 3, backoff_base: float = 0.1):
        self.session = session
        self.retry_attempts = retry_attempts
        self.backoff_base = backoff_base

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def query(self, *entities):
        return self.session.query(*entities)

    def get(self, model, ident):
        return self.session.get(model, ident)

    def lock_for_update(self, query):
        return lock_for_update(query)

    def ping(self) -> bool:
        try:
            self.session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Database ping failed")
            return False

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @property
    def is_sqlite(self) -> bool:
        return self.session.get_bind().dialect.name == "sqlite"

    def _begin(self) -> None:
        if not self.is_sqlite:
            return
        dbapi_connection = self.session.connection().connection.dbapi_connection
        if not getattr(dbapi_connection, "in_transaction", False):
            self.session.execute(text("BEGIN IMMEDIATE"))

    def run_in_transaction(self, func):
        """Run func atomically and return its result."""
        def _op():
            try:
                self._begin()
                result = func()
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise
            return result

        try:
            return run_with_retry(
                self.session,
                _op,
                attempts=self.retry_attempts,
                backoff_base=self.backoff_base,
            )
        except RETRYABLE_ERRORS as exc:
            logger.error("Transaction failed after %d attempts: %s", self.retry_attempts, exc)
            raise StorageError(
                "The data store is busy or unavailable, please retry",
                {"reason": type(exc).__name__},
            ) from exc
        except IntegrityError as exc:
            logger.warning("Integrity violation: %s", exc.orig)
            raise ConflictError("The change conflicts with existing data") from exc

    @contextmanager
    def savepoint(self):
        """Nested transaction; rolled back alone if the block raises."""
        with self.session.begin_nested():
            yield
