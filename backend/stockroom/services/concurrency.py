# Overview: Transaction boundaries, row locking and retry for concurrent writes.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

logger = logging.getLogger(__name__)

# Failures that mean "somebody else got there first", never "the request is wrong"
RETRYABLE_ERRORS = (OperationalError, StaleDataError)


class RetryableConflict(Exception):
    """
    Raised inside an atomic unit to request a clean retry.

    Used when a unique constraint that guards an allocated identifier fires,
    which only happens when a concurrent unit won the race.
    """


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    SQLite writers are serialized by BEGIN IMMEDIATE in atomic_unit instead.
    """
    return query.with_for_update().populate_existing()


def run_with_retry(session, func, *, attempts: int = 3, backoff_base: float = 0.1, retry_on=RETRYABLE_ERRORS):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks), StaleDataError
    (optimistic locking conflicts) and RetryableConflict.
    """
    retry_on = tuple(retry_on) + (RetryableConflict,)
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.warning(
                "Retrying after concurrency conflict (attempt %d/%d): %s",
                attempt + 1, attempts, exc.__class__.__name__,
            )
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def _begin_immediate(session) -> None:
    conn = session.connection()
    if conn.dialect.name != "sqlite":
        return
    dbapi_conn = conn.connection.dbapi_connection
    if not dbapi_conn.in_transaction:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def atomic_unit(session, func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run func as one all-or-nothing unit of work and return its result.

    - Starts the transaction (BEGIN IMMEDIATE on SQLite so the write lock is
      taken before the first read, not at the first write).
    - Commits when func returns; rolls back on any exception so no partial
      state is ever visible.
    - Retries the whole unit on lock/version conflicts. Business errors raised
      by func propagate immediately.

    func must not commit or roll back itself.
    """
    def _op():
        _begin_immediate(session)
        try:
            result = func()
            session.commit()
        except RETRYABLE_ERRORS + (RetryableConflict,):
            raise
        except Exception:
            session.rollback()
            raise
        return result

    return run_with_retry(session, _op, attempts=attempts, backoff_base=backoff_base)


def is_unique_violation(exc: IntegrityError, constraint_name: str, *columns: str) -> bool:
    """
    Best-effort check whether an IntegrityError came from a specific unique constraint.

    PostgreSQL reports the constraint name; SQLite reports "table.column".
    """
    message = str(exc.orig) if exc.orig is not None else str(exc)
    if constraint_name in message:
        return True
    return any(col in message for col in columns) and "UNIQUE" in message.upper()
