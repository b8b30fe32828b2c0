# Overview: Unit-of-work helpers: row locking, retry on lock/version conflicts, rollback on failure.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import ConflictError, NotFoundError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The version_id column on every lifecycle model catches what the lock
    cannot (StaleDataError at flush).
    """
    return query.with_for_update()


def get_locked(model, entity_id: int):
    """Load one row under lock, or raise NotFoundError."""
    row = lock_for_update(db.session.query(model).filter_by(id=entity_id)).first()
    if row is None:
        raise NotFoundError(f"{model.__name__} {entity_id} not found")
    return row


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute a unit of work with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Every retry re-reads and re-validates,
    so a writer that lost a race sees the winner's status.

    Any other exception rolls the session back and propagates, so a failed
    operation never leaves a partial write pending in the session.
    """
    if attempts is None:
        attempts = current_app.config.get("RETRY_ATTEMPTS", 3)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                if isinstance(exc, StaleDataError):
                    raise ConflictError(
                        "Record was modified concurrently; reload and try again"
                    ) from exc
                raise
            current_app.logger.warning(
                "Concurrency conflict (attempt %s/%s): %s", attempt + 1, attempts, exc
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise

