# Overview: Service-layer operations for concurrency; transaction scoping, row locks and retries.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import get_session


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Stock decrements are additionally guarded by a conditional UPDATE.
    """
    return query.with_for_update()


def run_with_retry(func, *, session: Session | None = None, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a unit of work as one transaction, with retry on concurrency failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Any other exception rolls the session
    back and propagates, so a failed unit of work never leaves partial writes
    pending in the session.
    """
    session = get_session(session)
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            session.rollback()
            raise
    if last_exc:
        raise last_exc
