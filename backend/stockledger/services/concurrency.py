# Overview: Transaction boundary and row locking for inventory commands.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrentModificationError, InventoryError, PersistenceError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The version_id columns still catch lost updates there.
    """
    return query.with_for_update()


UNIQUE_VIOLATION_MARKERS = ("unique constraint", "duplicate key", "duplicate entry")


def _is_unique_violation(exc: IntegrityError) -> bool:
    if getattr(exc.orig, "pgcode", None) == "23505":
        return True
    message = str(exc.orig).lower()
    return any(marker in message for marker in UNIQUE_VIOLATION_MARKERS)


def run_in_transaction(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute func() as one unit of work and commit it.

    Any failure rolls the whole unit back before the error propagates:
    - InventoryError subclasses propagate unchanged.
    - StaleDataError (version_id mismatch) and a unique-key IntegrityError
      (insert race) become ConcurrentModificationError. Other integrity
      failures (NOT NULL, CHECK, foreign key) become PersistenceError.
    - OperationalError (deadlock, lock timeout) re-runs func from scratch up to
      `attempts` times, then becomes PersistenceError.
    - Any other SQLAlchemyError becomes PersistenceError.
    """
    if attempts is None:
        attempts = current_app.config.get("TX_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("TX_RETRY_BACKOFF", 0.1)

    for attempt in range(attempts):
        try:
            result = func()
            db.session.commit()
            return result
        except InventoryError:
            db.session.rollback()
            raise
        except StaleDataError as exc:
            db.session.rollback()
            raise ConcurrentModificationError(
                "Record was modified by another operation; reload and retry"
            ) from exc
        except IntegrityError as exc:
            db.session.rollback()
            if not _is_unique_violation(exc):
                current_app.logger.exception("Integrity failure; transaction rolled back")
                raise PersistenceError("Storage rejected the change; the operation was not applied") from exc
            raise ConcurrentModificationError(
                "Conflicting write detected; reload and retry"
            ) from exc
        except OperationalError as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                current_app.logger.error("Transaction failed after %s attempts: %s", attempts, exc)
                raise PersistenceError("Storage is busy; the operation was not applied") from exc
            current_app.logger.warning("Retrying unit of work after lock error (attempt %s)", attempt + 1)
            time.sleep(backoff_base * (2 ** attempt))
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.exception("Storage failure; transaction rolled back")
            raise PersistenceError("Storage failure; the operation was not applied") from exc
        except Exception:
            db.session.rollback()
            raise
    raise PersistenceError("Storage is busy; the operation was not applied")
