# Overview: Transaction boundary for ledger operations; row locks, commit/rollback and contention mapping.

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .errors import ConcurrencyError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# PostgreSQL: serialization_failure, deadlock_detected, lock_not_available
_CONTENTION_PGCODES = {"40001", "40P01", "55P03"}
_CONTENTION_MARKERS = ("database is locked", "database table is locked", "deadlock", "could not serialize")


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_immediate() covers it there.
    """
    return query.with_for_update()


def begin_immediate() -> None:
    """
    Take SQLite's write lock before the first read of a ledger transaction.

    With pysqlite's deferred BEGIN two writers can both read, then one fails
    upgrading its lock. BEGIN IMMEDIATE makes the second writer wait on the
    busy timeout instead, which gives the same lock-then-check-then-write
    ordering that FOR UPDATE gives on PostgreSQL.
    """
    if db.engine.dialect.name != "sqlite":
        return
    dbapi_connection = db.session.connection().connection.dbapi_connection
    if dbapi_connection.in_transaction:
        return
    db.session.execute(text("BEGIN IMMEDIATE"))


def is_contention_error(exc: BaseException) -> bool:
    """True for lock waits, deadlocks and optimistic version conflicts."""
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, DBAPIError):
        pgcode = getattr(exc.orig, "pgcode", None)
        if pgcode in _CONTENTION_PGCODES:
            return True
        if isinstance(exc, OperationalError):
            message = str(exc.orig).lower()
            return any(marker in message for marker in _CONTENTION_MARKERS)
    return False


def run_in_transaction(
    func: Callable[[], T],
    *,
    attempts: int | None = None,
    backoff_base: float | None = None,
) -> T:
    """
    Execute func as one all-or-nothing unit of work.

    Commits when func returns; rolls back on any exception so no order, line,
    return or stock change is left half-applied. Contention is re-raised as
    ConcurrencyError once the attempts are exhausted. The default (from
    LEDGER_RETRY_ATTEMPTS) is a single attempt: retrying is the caller's call.
    """
    if attempts is None:
        attempts = current_app.config.get("LEDGER_RETRY_ATTEMPTS", 1)
    if backoff_base is None:
        backoff_base = current_app.config.get("LEDGER_RETRY_BACKOFF_SECONDS", 0.1)
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            begin_immediate()
            result = func()
            db.session.commit()
            return result
        except Exception as exc:
            db.session.rollback()
            if not is_contention_error(exc):
                raise
            if attempt >= attempts - 1:
                raise ConcurrencyError(
                    "Concurrent modification detected; the operation was rolled back",
                    details={"attempts": attempt + 1, "cause": type(exc).__name__},
                ) from exc
            logger.warning(
                "Ledger transaction contention (%s), retrying attempt %d of %d",
                type(exc).__name__,
                attempt + 2,
                attempts,
            )
            time.sleep(backoff_base * (2 ** attempt))
