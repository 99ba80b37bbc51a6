# Overview: Retry helpers for inventory writes that race with each other.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.05):
    """
    Execute a unit of work with retry on concurrency-related failures.

    Retries on OperationalError ("database is locked", deadlocks) and
    StaleDataError (version_id mismatch). The session is rolled back before
    each retry, so func must redo its reads. Domain errors propagate on the
    first attempt.
    """
    if attempts is None:
        attempts = current_app.config.get("CHECKOUT_RETRY_ATTEMPTS", 3)
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Concurrent write conflict (attempt %s/%s): %s",
                attempt + 1, attempts, exc.__class__.__name__,
            )
            time.sleep(backoff_base * (2 ** attempt))


def atomic(func):
    """
    Run func() as one unit of work: commit on success, roll back on any
    exception. Wrapped in run_with_retry so lock/version conflicts are
    replayed from scratch.
    """
    def _op():
        try:
            result = func()
            db.session.commit()
            return result
        except Exception:
            db.session.rollback()
            raise
    return run_with_retry(_op)
