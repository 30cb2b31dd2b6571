# Overview: Atomic status transitions and row locking shared by the shift and handover services.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import IntegrityError, OperationalError

from ..extensions import db
from ..validation import ConflictError

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOWAIT: a row another transaction already holds fails at once instead of
    queueing. SQLite ignores SELECT ... FOR UPDATE; the conditional UPDATE in
    compare_and_set is the guard there.
    """
    return query.with_for_update(nowait=True)


def fetch_locked(query, what: str):
    """
    First row of `query`, locked for update.

    Raises:
        ConflictError: another request holds the row lock
    """
    try:
        return lock_for_update(query).first()
    except OperationalError:
        db.session.rollback()
        logger.warning("Row lock on %s not available", what)
        raise ConflictError(
            f"{what.capitalize()} is being modified by another request; refetch and retry",
            entity=what,
        )


def compare_and_set(model, record_id: int, *, expected_status: str, values: dict, what: str) -> None:
    """
    Single conditional UPDATE: write `values` only if the row still has
    `expected_status`.

    The status check and the write are one statement, so of two racing
    callers exactly one sees a row count of 1. The loser's transaction is
    rolled back and ConflictError is raised.

    The caller commits on success.
    """
    updated = (
        db.session.query(model)
        .filter(model.id == record_id, model.status == expected_status)
        .update(values, synchronize_session=False)
    )
    if updated != 1:
        db.session.rollback()
        logger.warning("Lost status race on %s %s (expected %s)", what, record_id, expected_status)
        raise ConflictError(
            f"{what.capitalize()} {record_id} was modified by another request; refetch and retry",
            entity=what,
            entity_id=record_id,
        )


def commit_or_conflict(message: str) -> None:
    """
    Commit, translating unique-index violations into ConflictError.

    Used where a uniqueness invariant (one active shift per employee, one
    root per shift, one successor per handover) is enforced by the database.
    """
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.warning("Unique constraint rejected commit: %s", message)
        raise ConflictError(message)


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a read-mostly DB operation with retry on transient lock errors.

    Never wraps a state transition: a lost transition race is reported to
    the caller as ConflictError, not retried here.
    """
    for attempt in range(attempts):
        try:
            return func()
        except OperationalError:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
