# Overview: Transaction boundaries for drawer operations: row locks, one commit per call, bounded read retries.

from __future__ import annotations

import time
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import ConflictError


def lock_for_update(query):
    """SELECT ... FOR UPDATE. A no-op on SQLite, where version_id_col still guards the row."""
    return query.with_for_update()


@contextmanager
def atomic(conflict_message: str = "Concurrent update detected; refresh and retry"):
    """
    Commit the block's work once, or roll all of it back.

    A lost optimistic-lock race or a unique-slot clash becomes ConflictError;
    any other exception propagates unchanged after the rollback.
    """
    try:
        yield
        db.session.commit()
    except (StaleDataError, IntegrityError) as exc:
        db.session.rollback()
        raise ConflictError(conflict_message) from exc
    except Exception:
        db.session.rollback()
        raise


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Call `func` again on OperationalError (locked database, dropped
    connection), sleeping backoff_base * 2**n between tries.

    Reports only: a posting must never be replayed.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except OperationalError:
            db.session.rollback()
            if attempt == attempts:
                raise
            time.sleep(backoff_base * 2 ** (attempt - 1))
