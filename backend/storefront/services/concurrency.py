# Overview: Transaction scope and retry helpers shared by the workflow services.

from __future__ import annotations

import logging
import time
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


@contextmanager
def transaction():
    """
    One commit for a compound mutation (row change + timeline entry + stock).

    Commits on normal exit; rolls back and re-raises on any exception so a
    partial failure can never leave an order out of step with its timeline.
    """
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). `func` must re-read the rows it changes,
    since the session is rolled back between attempts.
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
            logger.warning(
                "Retrying after concurrency failure",
                extra={"attempt": attempt + 1, "error": exc.__class__.__name__},
            )
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc

