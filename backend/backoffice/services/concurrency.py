# Overview: Transaction scope, row locking and retry helpers shared by every ledger service.

from __future__ import annotations

import logging
import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import LedgerError, LedgerSystemError
from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there begin_write() takes the
    database write lock up front and version_id columns catch the rest.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Take the SQLite write lock before the first read of a write transaction.

    Without this, two SQLite writers can both read the same stock count and
    one of them only fails at commit. Skipped when the connection already has
    a transaction open, and on databases that honor FOR UPDATE.

    The check is on the sqlite3 connection, not the Session: a Session that
    only autobegan for a SELECT has no database transaction yet.
    """
    if db.engine.dialect.name != "sqlite":
        return
    session = db.session()
    dbapi_connection = session.connection().connection.dbapi_connection
    if dbapi_connection.in_transaction:
        return
    session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Domain errors propagate immediately.
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
            logger.warning("Concurrency conflict (attempt %s/%s): %s", attempt + 1, attempts, exc)
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def run_in_transaction(func, *, attempts: int | None = None):
    """
    Run func() as one atomic unit of work and commit it.

    - Any exception rolls back every mutation made inside func().
    - Lock/version conflicts are retried with backoff.
    - LedgerError propagates unchanged.
    - Any other SQLAlchemy failure becomes LedgerSystemError.
    """
    if attempts is None:
        attempts = current_app.config.get("LEDGER_RETRY_ATTEMPTS", 3)

    def _op():
        try:
            begin_write()
            result = func()
            db.session.commit()
            return result
        except Exception:
            db.session.rollback()
            raise

    try:
        return run_with_retry(_op, attempts=attempts)
    except LedgerError as exc:
        logger.warning("Ledger operation rejected: %s %s", exc.code, exc.details or "")
        raise
    except SQLAlchemyError as exc:
        logger.error("Ledger operation failed in storage layer: %s", exc)
        raise LedgerSystemError("storage failure; transaction rolled back") from exc
