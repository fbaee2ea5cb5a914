# Overview: Row locking and version-conflict retry for guarded check-then-write units.

from __future__ import annotations

import time

from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The version_id_col on Trip/Expense covers SQLite: a concurrent committed
    change turns the second flush into a StaleDataError.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.05):
    """
    Execute a guarded unit of work, re-running it on optimistic version conflicts.

    Only StaleDataError is retried: the unit re-reads its rows and re-checks
    every guard, so the loser of a race observes the winner's commit. Any other
    store error (OperationalError included) propagates unchanged because its
    commit outcome is unknown.
    """
    for attempt in range(attempts):
        try:
            return func()
        except StaleDataError:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
