"""
Database error handling utilities.

This module centralizes the pattern every store round-trip follows:
1. Roll back the database session on error
2. Log the error with the operation name
3. Raise StorageUnavailable for transient failures (timeouts, lost
   connections, lock waits) so callers can retry with backoff

Engine errors raised inside the block (SessionNotActive, ...) pass through
untouched. Non-transient SQLAlchemy errors (programming errors, schema
mismatches) are rolled back, logged and re-raised as-is: they are bugs, not
conditions a caller should retry.

Usage:
    from cbt.core.db_error_handling import storage_errors

    with storage_errors(db, "complete test session"):
        db.execute(stmt)
        db.commit()
"""

import logging
from contextlib import contextmanager
from typing import Generator, Tuple, Type

from sqlalchemy.exc import (
    DisconnectionError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.orm import Session

from cbt.core.exceptions import SessionEngineError, StorageUnavailable

logger = logging.getLogger(__name__)

# Failures that indicate the store is slow or unreachable rather than a bug
TRANSIENT_DB_ERRORS: Tuple[Type[Exception], ...] = (
    OperationalError,
    InterfaceError,
    DisconnectionError,
    PoolTimeoutError,
)


def is_transient_db_error(error: BaseException) -> bool:
    """Return True if the error means the store is temporarily unavailable."""
    return isinstance(error, TRANSIENT_DB_ERRORS)


@contextmanager
def storage_errors(
    db: Session,
    operation_name: str,
    *,
    log_level: int = logging.ERROR,
) -> Generator[None, None, None]:
    """Context manager translating store failures into StorageUnavailable.

    Args:
        db: The SQLAlchemy session to roll back on error.
        operation_name: Human-readable name of the operation for error messages
            and logging (e.g., "submit answer", "expire test session").
        log_level: Logging level for error messages. Defaults to logging.ERROR.

    Raises:
        StorageUnavailable: On transient database errors, with the session
            rolled back.
    """
    try:
        yield
    except SessionEngineError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.log(
            log_level,
            f"Database error during {operation_name}: {e}",
            exc_info=True,
        )
        if is_transient_db_error(e):
            raise StorageUnavailable(operation_name, e) from e
        raise
