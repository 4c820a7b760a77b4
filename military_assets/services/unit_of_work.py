"""
Runs one mutation as one database transaction.
Version conflicts and lock timeouts roll back and retry the whole operation a bounded
number of times; domain errors roll back and propagate unchanged.
"""
import time
from typing import Callable, TypeVar

import structlog
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..config import settings
from .errors import Conflict, ServiceError, StorageUnavailable


logger = structlog.get_logger(__name__)

T = TypeVar("T")

_LOCK_ERROR_MARKERS = ("locked", "lock timeout", "could not obtain lock", "deadlock", "busy")


def run_atomic(db: Session, operation: Callable[[], T], name: str, max_retries: int = None) -> T:
    retries = settings.ledger_max_retries if max_retries is None else max_retries
    attempt = 0
    while True:
        attempt += 1
        try:
            _apply_lock_timeout(db)
            result = operation()
            db.commit()
            return result
        except (StaleDataError, IntegrityError, OperationalError, Conflict) as exc:
            db.rollback()
            if isinstance(exc, OperationalError) and not _is_lock_error(exc):
                logger.error("storage_unavailable", operation=name, error=str(exc))
                raise StorageUnavailable("Storage unavailable") from exc
            if attempt > retries:
                logger.warning("ledger_conflict", operation=name, attempts=attempt, error=str(exc))
                raise Conflict("Concurrent update detected, please retry the request") from exc
            logger.info("ledger_retry", operation=name, attempt=attempt, error=type(exc).__name__)
            time.sleep(settings.ledger_retry_backoff_ms * attempt / 1000)
        except ServiceError:
            db.rollback()
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("storage_unavailable", operation=name, error=str(exc))
            raise StorageUnavailable("Storage unavailable") from exc


def _apply_lock_timeout(db: Session) -> None:
    # SQLite bounds lock waits with the driver busy timeout configured in db.py
    if db.get_bind().dialect.name == "postgresql":
        db.execute(text(f"SET LOCAL lock_timeout = {int(settings.ledger_lock_timeout_ms)}"))


def _is_lock_error(exc: OperationalError) -> bool:
    message = str(exc.orig if getattr(exc, "orig", None) is not None else exc).lower()
    return any(marker in message for marker in _LOCK_ERROR_MARKERS)
