# Overview: Transaction helpers shared by the order, inventory and return services.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for state transitions.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; the version_id columns still
    catch concurrent writers there (StaleDataError -> retry).
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run `func` as one unit of work.

    Any exception rolls the session back first, so a failed transition never
    leaves half-applied status fields or ledger rows in the session.
    OperationalError (locks, deadlocks) and StaleDataError (optimistic
    locking conflicts) are retried with exponential backoff; everything else
    propagates immediately.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError):
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
