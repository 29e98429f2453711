# Overview: Transaction scope, row locking and retry helpers shared by the ledger services.

from __future__ import annotations

import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


class WriteRaceError(Exception):
    """A concurrent writer inserted the same unique row first; a retry sees it and replays."""


RETRYABLE_ERRORS = (OperationalError, StaleDataError, WriteRaceError)


@contextmanager
def transaction_scope():
    """
    One unit of work: yields the session, commits on clean exit, rolls back on
    any exception. The scoped session is not removed here; Flask-SQLAlchemy
    releases it, and its connection, at app-context teardown, so callers can
    keep using the returned instances after commit.

    Services take the yielded session explicitly instead of reaching for
    db.session, so every mutation of one logical event shares this scope.
    """
    session = db.session
    try:
        yield session
        session.commit()
    except BaseException:
        session.rollback()
        raise


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks), StaleDataError
    (optimistic locking conflicts) and unique-key write races. The operation
    must open its own transaction_scope so each attempt starts clean.
    """
    if attempts is None:
        attempts = current_app.config.get("RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("RETRY_BACKOFF_SECONDS", 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
