# Overview: Transaction helpers shared by every stock-changing operation.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import ConflictError, TransientStorageError

RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite the version_id columns catch the conflict at flush instead.
    """
    return query.with_for_update()


def lock_products(product_ids):
    """
    Lock the given product rows in ascending id order and return {id: Product}.

    Every operation that touches several products goes through here so all
    of them acquire locks in the same global order and cannot deadlock.
    Missing ids are simply absent from the result.
    """
    from ..models import Product

    ids = sorted({int(pid) for pid in product_ids})
    if not ids:
        return {}
    rows = lock_for_update(
        db.session.query(Product).filter(Product.id.in_(ids)).order_by(Product.id)
    ).all()
    return {p.id: p for p in rows}


def lock_location(location_id: int):
    """
    Lock one location row before reading its utilization.

    Location locks are always taken after the product locks of the same
    operation, so the global order stays products (ascending id) then
    locations.
    """
    from ..models import Location

    return lock_for_update(db.session.query(Location).filter(Location.id == location_id)).first()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute one unit of work with retry on concurrency-related failures.

    func must be re-runnable from scratch: it re-reads everything it needs
    and commits at its end. Retries on OperationalError (deadlocks, lock
    timeouts) and StaleDataError (optimistic version conflicts); once the
    attempts are used up the failure surfaces as TransientStorageError.
    Any other exception rolls the session back and propagates unchanged.
    """
    if attempts is None:
        attempts = current_app.config.get("DB_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("DB_RETRY_BACKOFF", 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise TransientStorageError(
                    "Storage is busy; retry the operation",
                    details={"attempts": attempts},
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise


def flush_unique(message: str, details: dict | None = None) -> None:
    """Flush pending rows, turning a unique-key violation into ConflictError."""
    try:
        db.session.flush()
    except IntegrityError:
        raise ConflictError(message, details=details)
