# Overview: Locking, retry and guarded-write helpers shared by the ledger services.

from __future__ import annotations

import logging
import time

from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)

# Failures worth replaying: lock timeouts / deadlocks and version-id mismatches
RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Lock the selected rows until the surrounding transaction ends.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the database-level
    write lock taken by the first UPDATE serializes writers instead.
    """
    return query.with_for_update()


def guarded_update(model, *conditions, **values) -> bool:
    """
    Issue UPDATE model SET values WHERE conditions and report whether
    exactly one row matched.

    The guard lives in the WHERE clause (e.g. stock + delta >= 0), so the
    check and the write are a single statement and a concurrent writer
    can never slip between them. Callers decide what a miss means.
    """
    stmt = (
        update(model)
        .where(*conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt).rowcount == 1


def _backoff(exc, attempt: int, attempts: int, backoff_base: float) -> None:
    """Re-raise exc on the last attempt, otherwise sleep with exponential backoff."""
    if attempt == attempts:
        logger.warning("Giving up after %d attempts: %s", attempts, exc)
        raise exc
    logger.info("Retrying after %s (attempt %d/%d)", type(exc).__name__, attempt, attempts)
    time.sleep(backoff_base * (2 ** (attempt - 1)))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run func inside a SAVEPOINT, replaying it when the database reports a
    lock or optimistic-version conflict.

    Only the savepoint is rolled back between attempts, so work the caller
    already flushed in the same transaction (an import's audit log and its
    earlier rows, for example) survives a retried row.

    Domain errors (insufficient stock, validation, access) are not
    retried; they roll back the savepoint and propagate on the first attempt.
    """
    for attempt in range(1, attempts + 1):
        try:
            with db.session.begin_nested():
                result = func()
            return result
        except RETRYABLE_ERRORS as exc:
            _backoff(exc, attempt, attempts, backoff_base)


def commit_with_retry(work, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run work() and commit it as one unit of work, returning work's result.

    On a lock or version conflict, whether raised by the work or by the
    COMMIT, the whole transaction is rolled back and work() runs again from
    scratch.
    """
    for attempt in range(1, attempts + 1):
        try:
            result = work()
            db.session.commit()
            return result
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            _backoff(exc, attempt, attempts, backoff_base)
