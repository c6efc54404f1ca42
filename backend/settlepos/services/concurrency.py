# Overview: Transaction, retry, locking and idempotent-upsert helpers shared by the money services.

from __future__ import annotations

import time

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks, serialization failures)
    and StaleDataError (optimistic locking conflicts). Business errors are
    never retried.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def begin_serializable() -> None:
    """
    Start the current unit of work with serializable semantics.

    SQLite: BEGIN IMMEDIATE takes the write lock up front so two writers
    cannot both read a balance and then both write. Other engines get
    SERIALIZABLE isolation for the current transaction.
    """
    if db.engine.dialect.name == "sqlite":
        dbapi_conn = db.session.connection().connection.dbapi_connection
        if not dbapi_conn.in_transaction:
            db.session.execute(text("BEGIN IMMEDIATE"))
        return
    db.session.execute(text("SET TRANSACTION ISOLATION LEVEL SERIALIZABLE"))


def run_in_transaction(func, *, serializable: bool = False, attempts: int = 3):
    """
    Run `func` as one all-or-nothing unit of work.

    Commit on success. On any exception every effect is rolled back and the
    exception propagates, so a failed settlement never leaves a payment
    without its stock deduction (or the reverse).
    """
    def _op():
        try:
            if serializable:
                begin_serializable()
            result = func()
            db.session.commit()
            return result
        except Exception:
            db.session.rollback()
            raise

    return run_with_retry(_op, attempts=attempts)


def get_or_create(model, lookup: dict, defaults: dict | None = None):
    """
    Idempotent insert keyed by a natural business key.

    SELECT first; if nothing is there INSERT inside a SAVEPOINT. A unique
    constraint violation means a concurrent writer won, so re-select.
    Returns (row, created).
    """
    row = db.session.query(model).filter_by(**lookup).first()
    if row is not None:
        return row, False

    params = dict(lookup)
    params.update(defaults or {})
    try:
        with db.session.begin_nested():
            row = model(**params)
            db.session.add(row)
        return row, True
    except IntegrityError:
        row = db.session.query(model).filter_by(**lookup).first()
        if row is None:
            raise
        return row, False
