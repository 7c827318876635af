"""
Graceful failure utilities.

This module provides a context manager for non-critical operations that
should not block the main execution flow:
1. Attempting an operation
2. Logging any exceptions with context
3. Continuing execution without raising

This is distinct from `db_error_handling.py` which handles errors that must
reach the caller.

Usage:
    from cbt.core.graceful_failure import graceful_failure

    # Test-level stats are repaired by reconcile_test_stats if this fails
    with graceful_failure("record session outcome", logger):
        catalog.record_session_outcome(test_id, session_id)

    # One overdue session failing to expire must not abort the sweep
    with graceful_failure(
        "expire test session", logger, log_level=logging.ERROR,
        context={"session_id": session_id},
    ):
        engine.expire_session(session_id)
"""

import logging
from contextlib import contextmanager
from typing import Any, Generator, Optional


class FailureTracker:
    """Records whether the guarded block raised. Yielded by graceful_failure."""

    def __init__(self) -> None:
        self.failed = False
        self.error: Optional[BaseException] = None


@contextmanager
def graceful_failure(
    operation_name: str,
    logger: logging.Logger,
    *,
    log_level: int = logging.WARNING,
    exc_info: bool = False,
    context: Optional[dict[str, Any]] = None,
) -> Generator[FailureTracker, None, None]:
    """Context manager for non-critical operations that should not block execution.

    Args:
        operation_name: Human-readable name of the operation for logging
            (e.g., "record session outcome").
        logger: The logger instance to use for logging errors.
        log_level: Logging level for error messages. Defaults to WARNING.
        exc_info: Whether to include exception traceback in log. Defaults to False.
        context: Optional dictionary of additional context to include in log message
            (e.g., {"session_id": "abc"}).

    Yields:
        FailureTracker whose ``failed`` flag is set when the block raised.
    """
    tracker = FailureTracker()
    try:
        yield tracker
    except Exception as e:
        tracker.failed = True
        tracker.error = e
        if context:
            context_str = ", ".join(f"{k}={v}" for k, v in context.items())
            message = f"Failed to {operation_name} ({context_str}): {e}"
        else:
            message = f"Failed to {operation_name}: {e}"

        logger.log(log_level, message, exc_info=exc_info)
