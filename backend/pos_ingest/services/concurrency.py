# Overview: Row locking and retry helpers shared by the write paths.

from __future__ import annotations

import time
from typing import Callable, TypeVar

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


T = TypeVar("T")

RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """SELECT ... FOR UPDATE where the backend supports it (SQLite ignores it)."""
    return query.with_for_update()


def run_with_retry(func: Callable[[], T], *, attempts: int = 3, backoff_base: float = 0.1) -> T:
    """
    Run one unit of work, retrying it from scratch on a concurrency conflict.

    Conflicts are lock/deadlock errors (OperationalError) and conditional
    updates that matched no row (StaleDataError). The session is rolled back
    before each retry, so func must redo all of its reads. The last conflict
    propagates once attempts are used up.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt == attempts:
                raise
            current_app.logger.warning(
                "Concurrency conflict (attempt %d/%d), retrying: %s", attempt, attempts, exc
            )
            time.sleep(backoff_base * (2 ** (attempt - 1)))
    raise RuntimeError("run_with_retry needs at least one attempt")
