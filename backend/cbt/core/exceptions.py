"""
Domain exceptions raised by the session engine.

Every exception carries a stable ``kind`` so the HTTP boundary (and any
other caller) can map it without inspecting the concrete class:

    not_found           session/test/question absent, or caller lacks ownership
    invalid_state       operation against a session not in the required status
    validation_error    malformed input (access code, foreign question, ...)
    storage_unavailable store timeout or outage; safe to retry with backoff
"""
from typing import Optional


class ErrorKind:
    """Stable error kinds exposed to callers."""

    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"
    VALIDATION_ERROR = "validation_error"
    STORAGE_UNAVAILABLE = "storage_unavailable"


class SessionEngineError(Exception):
    """Base class for all errors surfaced by the session engine."""

    kind: str = ErrorKind.VALIDATION_ERROR

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------


class NotFoundError(SessionEngineError):
    kind = ErrorKind.NOT_FOUND


class SessionNotFound(NotFoundError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__("Test session not found.")


class TestNotFound(NotFoundError):
    def __init__(self, test_id: str):
        self.test_id = test_id
        super().__init__("Test not found.")


class QuestionNotFound(NotFoundError):
    def __init__(self, question_id: str):
        self.question_id = question_id
        super().__init__(f"Question {question_id} not found.")


# ---------------------------------------------------------------------------
# Invalid state
# ---------------------------------------------------------------------------


class InvalidStateError(SessionEngineError):
    kind = ErrorKind.INVALID_STATE


class SessionNotActive(InvalidStateError):
    """Raised for any mutation attempted on a session that left in_progress."""

    def __init__(self, session_id: str, status: Optional[str] = None):
        self.session_id = session_id
        self.status = status
        if status:
            message = (
                f"Test session is already {status}. "
                "Only in-progress sessions can be modified."
            )
        else:
            message = "Only in-progress sessions can be modified."
        super().__init__(message)


class TestNotStartable(InvalidStateError):
    def __init__(self, test_id: str):
        self.test_id = test_id
        super().__init__("Test cannot be started at this time.")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(SessionEngineError):
    kind = ErrorKind.VALIDATION_ERROR


class AccessCodeRequired(ValidationError):
    def __init__(self) -> None:
        super().__init__("Access code is required for this test.")


class InvalidAccessCode(ValidationError):
    def __init__(self) -> None:
        super().__init__("Invalid access code.")


class QuestionNotInSession(ValidationError):
    def __init__(self, question_id: str):
        self.question_id = question_id
        super().__init__(
            f"Question {question_id} does not belong to this test session."
        )


class RequiresManualGrading(ValidationError):
    """The evaluator cannot auto-score this question type."""

    def __init__(self, question_id: str, question_type: str):
        self.question_id = question_id
        self.question_type = question_type
        super().__init__(
            f"Question {question_id} of type '{question_type}' requires manual grading."
        )


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class StorageUnavailable(SessionEngineError):
    """Transient store failure (timeout, lost connection, exhausted retries)."""

    kind = ErrorKind.STORAGE_UNAVAILABLE

    def __init__(self, operation: str, original_error: Optional[Exception] = None):
        self.operation = operation
        self.original_error = original_error
        super().__init__(f"Failed to {operation}. Please try again later.")


class ActiveSessionConflict(Exception):
    """Store-internal: the partial unique index rejected a second active session."""

    def __init__(self, test_id: str, student_id: str):
        self.test_id = test_id
        self.student_id = student_id
        super().__init__(
            f"An in-progress session already exists for test {test_id}, "
            f"student {student_id}"
        )


class ConcurrentModification(StorageUnavailable):
    """Optimistic concurrency retries were exhausted for one session."""

    def __init__(self, session_id: str, attempts: int):
        self.session_id = session_id
        self.attempts = attempts
        super().__init__("update test session")
