# Overview: Row locking and retry helpers shared by the write paths of the engine.

from __future__ import annotations

import logging
import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import Conflict, EngineError
from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Start the unit of work holding the write lock.

    SQLite only (BEGIN IMMEDIATE): competing writers wait on the busy timeout
    instead of failing to upgrade a read lock. Call before the first write
    of the unit of work.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB unit of work, rolling back on any failure.

    - OperationalError (locks, deadlocks) is retried with exponential backoff.
    - StaleDataError (version_id mismatch) becomes Conflict: another terminal
      wrote the same sale first and the caller must reload.
    - EngineError is re-raised after rollback so nothing partial is committed.
    """
    for attempt in range(attempts):
        try:
            return func()
        except EngineError:
            db.session.rollback()
            raise
        except StaleDataError as exc:
            db.session.rollback()
            raise Conflict("The record was modified by another terminal; reload and retry") from exc
        except OperationalError:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            logger.warning("Retrying unit of work after OperationalError (attempt %s)", attempt + 1)
            time.sleep(backoff_base * (2 ** attempt))
