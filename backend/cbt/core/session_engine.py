"""
Test session lifecycle engine.

Owns the TestSession state machine::

    in_progress ──complete──▶ completed
        │ ├─────abandon──────▶ abandoned
        │ └─────expire───────▶ expired

Every terminal status is final. Any mutation attempted on a terminal session
raises ``SessionNotActive`` instead of silently doing nothing, so callers can
detect double submissions.

Time model:
- ``time_remaining_seconds`` is debited by the client-reported time spent on
  each answer and floored at 0. Auto-save may overwrite it (the client timer
  is trusted).
- Resuming a session recomputes it from wall-clock time as
  ``duration - (now - start_time)``. Time already debited by answers is
  deliberately ignored.
- The progress view reports the stored value minus wall-clock inactivity
  since ``last_active_at``.
- ``expires_at`` (start + duration) is the scheduled end used by the expiry
  sweep. ``end_time`` stays null until the session leaves in_progress.

The engine is stateless between calls: every operation reads from and
writes to the SessionStore.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional, Set, Tuple

from cbt.core.catalog import QuestionBank, TestCatalog, TestConfig
from cbt.core.config import settings
from cbt.core.datetime_utils import elapsed_seconds, ensure_timezone_aware, utc_now
from cbt.core.evaluator import Evaluation, evaluate
from cbt.core.exceptions import (
    AccessCodeRequired,
    ActiveSessionConflict,
    ConcurrentModification,
    InvalidAccessCode,
    QuestionNotFound,
    QuestionNotInSession,
    SessionNotActive,
    SessionNotFound,
    TestNotFound,
    TestNotStartable,
    ValidationError,
)
from cbt.core.graceful_failure import graceful_failure
from cbt.core.session_analytics import TestAnalytics, compute_test_analytics
from cbt.core.session_store import SessionStore
from cbt.models import SessionStatus, TestSession

logger = logging.getLogger(__name__)

BROWSER_INFO_FIELDS = ("user_agent", "ip_address", "screen_resolution")


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class SessionStart:
    session: TestSession
    resumed: bool


@dataclass(frozen=True)
class SubmissionResult:
    session_id: str
    question_id: str
    is_correct: bool
    points_awarded: int
    time_remaining_seconds: int
    current_question_index: int
    answered_count: int
    total_questions: int


@dataclass(frozen=True)
class SessionProgress:
    session: TestSession
    current_question_index: int
    time_remaining_seconds: int
    total_questions: int
    answered_count: int
    saved_answers: Dict[str, Any]
    can_resume: bool


@dataclass(frozen=True)
class ScoreBreakdown:
    score: int
    correct_count: int
    incorrect_count: int
    unanswered_count: int
    is_passed: bool


@dataclass(frozen=True)
class OwnerStats:
    total_sessions: int = 0
    by_status: Dict[str, int] = field(default_factory=dict)
    average_score: float = 0.0
    total_duration_seconds: int = 0


# =============================================================================
# Pure helpers
# =============================================================================


def merge_browser_info(
    stored: Optional[Dict[str, Any]], incoming: Optional[Dict[str, Any]]
) -> Dict[str, Any]:
    """Overlay the non-empty fields of ``incoming`` onto ``stored``."""
    merged = dict(stored or {})
    for key, value in (incoming or {}).items():
        if value not in (None, ""):
            merged[key] = value
    return merged


def _clean_browser_info(browser_info: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        key: value
        for key, value in (browser_info or {}).items()
        if key in BROWSER_INFO_FIELDS and value not in (None, "")
    }


def score_answers(
    assigned_question_ids: List[str],
    answers: Dict[str, Dict[str, Any]],
    passing_score: int,
) -> ScoreBreakdown:
    """Score a session from its answers.

    ``score = round(correct / total * 100)`` with halves rounded up, and 0
    when the session has no questions.
    """
    assigned = set(assigned_question_ids)
    answered = [qid for qid in answers if qid in assigned]
    correct = sum(1 for qid in answered if answers[qid].get("is_correct"))
    total = len(assigned_question_ids)

    score = math.floor(correct / total * 100 + 0.5) if total else 0
    return ScoreBreakdown(
        score=score,
        correct_count=correct,
        incorrect_count=len(answered) - correct,
        unanswered_count=total - len(answered),
        is_passed=score >= passing_score,
    )


# =============================================================================
# Engine
# =============================================================================


class SessionEngine:
    """Test session lifecycle operations.

    Args:
        store: Session persistence.
        catalog: Test configuration, question selection and test stats.
        question_bank: Question definitions for the evaluator.
    """

    def __init__(
        self,
        store: SessionStore,
        catalog: TestCatalog,
        question_bank: QuestionBank,
    ):
        self.store = store
        self.catalog = catalog
        self.question_bank = question_bank

    # -------------------------------------------------------------------------
    # Lookup helpers
    # -------------------------------------------------------------------------

    def _load(self, session_id: str, student_id: Optional[str] = None) -> TestSession:
        if student_id is not None:
            session = self.store.get_owned(session_id, student_id)
        else:
            session = self.store.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def _load_active(
        self, session_id: str, student_id: Optional[str] = None
    ) -> TestSession:
        session = self._load(session_id, student_id)
        if session.status.is_terminal:
            raise SessionNotActive(session_id, session.status.value)
        return session

    def _owned_test(self, test_id: str, owner_id: str) -> TestConfig:
        config = self.catalog.get_test_config(test_id)
        if config is None or config.owner_id != owner_id:
            raise TestNotFound(test_id)
        return config

    @staticmethod
    def _check_question_index(session: TestSession, index: Optional[int]) -> None:
        if index is not None and not 0 <= index < max(session.total_questions, 1):
            raise ValidationError(
                f"Question index {index} is out of range for this test session."
            )

    # -------------------------------------------------------------------------
    # Create / resume
    # -------------------------------------------------------------------------

    def create_or_resume_session(
        self,
        test_id: str,
        student_id: str,
        browser_info: Optional[Dict[str, Any]] = None,
        access_code: Optional[str] = None,
    ) -> SessionStart:
        """Start a new session, or resume the student's in-progress one.

        Raises:
            TestNotFound: The test does not exist.
            TestNotStartable: Not published, outside its schedule, or with an
                invalid question configuration.
            AccessCodeRequired: The test needs an access code and none was given.
            InvalidAccessCode: The access code does not match.
        """
        config = self.catalog.get_test_config(test_id)
        if config is None:
            raise TestNotFound(test_id)

        now = utc_now()
        if not config.can_be_started(now):
            raise TestNotStartable(test_id)

        if config.requires_access_code:
            if not access_code:
                raise AccessCodeRequired()
            if access_code != config.access_code:
                logger.warning(
                    f"Invalid access code for test {test_id} by student {student_id}"
                )
                raise InvalidAccessCode()

        for _ in range(self.store.max_retries):
            existing = self.store.find_active(test_id, student_id)
            if existing is not None:
                try:
                    return self._resume(existing, config, browser_info)
                except SessionNotActive:
                    # Finished between lookup and resume; start a fresh one
                    continue

            try:
                return self._create(config, student_id, browser_info, access_code)
            except ActiveSessionConflict:
                logger.warning(
                    f"Concurrent start for test {test_id}, student {student_id}; "
                    "resuming the existing session"
                )

        raise ConcurrentModification(f"{test_id}:{student_id}", self.store.max_retries)

    def _create(
        self,
        config: TestConfig,
        student_id: str,
        browser_info: Optional[Dict[str, Any]],
        access_code: Optional[str],
    ) -> SessionStart:
        question_ids = list(self.catalog.get_selected_questions(config.id))
        if not question_ids:
            logger.warning(f"Test {config.id} has no questions to assign")
            raise TestNotStartable(config.id)

        now = utc_now()
        session = TestSession(
            test_id=config.id,
            student_id=student_id,
            owner_id=config.owner_id,
            status=SessionStatus.IN_PROGRESS,
            start_time=now,
            expires_at=now + timedelta(seconds=config.duration_seconds),
            last_active_at=now,
            assigned_question_ids=question_ids,
            total_questions=len(question_ids),
            answers={},
            time_remaining_seconds=config.duration_seconds,
            current_question_index=0,
            access_code_used=access_code if config.requires_access_code else None,
            browser_info=_clean_browser_info(browser_info),
            version=1,
            created_at=now,
            updated_at=now,
        )
        session = self.store.insert(session)
        logger.info(
            f"Created test session {session.id} for test {config.id}, "
            f"student {student_id} ({len(question_ids)} questions)"
        )
        return SessionStart(session=session, resumed=False)

    def _resume(
        self,
        existing: TestSession,
        config: TestConfig,
        browser_info: Optional[Dict[str, Any]],
    ) -> SessionStart:
        now = utc_now()

        def changes(session: TestSession) -> Dict[str, Any]:
            elapsed = elapsed_seconds(session.start_time, now)
            return {
                "time_remaining_seconds": max(0, config.duration_seconds - elapsed),
                "browser_info": merge_browser_info(
                    session.browser_info, _clean_browser_info(browser_info)
                ),
                "last_active_at": now,
            }

        session = self.store.mutate(existing.id, changes, "resume test session")
        logger.info(
            f"Resumed test session {session.id} "
            f"({session.time_remaining_seconds}s remaining)"
        )
        return SessionStart(session=session, resumed=True)

    # -------------------------------------------------------------------------
    # Answers and progress
    # -------------------------------------------------------------------------

    def submit_answer(
        self,
        session_id: str,
        question_id: str,
        raw_answer: Any,
        time_spent_seconds: int = 0,
        current_question_index: Optional[int] = None,
        student_id: Optional[str] = None,
    ) -> SubmissionResult:
        """Record (or replace) the answer to one assigned question.

        A resubmission overwrites the value and correctness and adds the new
        time spent to the cumulative total for that question.

        Raises:
            SessionNotFound: Missing, or not the requester's session.
            SessionNotActive: The session is no longer in progress.
            QuestionNotInSession: The question is not assigned to the session.
            QuestionNotFound: The question bank has no such question.
            RequiresManualGrading: The question type cannot be auto-scored.
        """
        if time_spent_seconds < 0:
            raise ValidationError("Time spent cannot be negative.")

        session = self._load_active(session_id, student_id)
        if question_id not in (session.assigned_question_ids or []):
            raise QuestionNotInSession(question_id)
        self._check_question_index(session, current_question_index)

        question = self.question_bank.get_question_definition(question_id)
        if question is None:
            raise QuestionNotFound(question_id)
        evaluation: Evaluation = evaluate(question, raw_answer)

        now = utc_now()

        def changes(current: TestSession) -> Dict[str, Any]:
            answers = dict(current.answers or {})
            previous = answers.get(question_id) or {}
            answers[question_id] = {
                "submitted_value": raw_answer,
                "is_correct": evaluation.is_correct,
                "points_awarded": evaluation.points_awarded,
                "time_spent_seconds": int(previous.get("time_spent_seconds", 0))
                + time_spent_seconds,
                "answered_at": now.isoformat(),
            }
            values: Dict[str, Any] = {
                "answers": answers,
                "time_remaining_seconds": max(
                    0, current.time_remaining_seconds - time_spent_seconds
                ),
                "last_active_at": now,
            }
            if current_question_index is not None:
                values["current_question_index"] = current_question_index
            return values

        updated = self.store.mutate(
            session_id, changes, "submit answer", student_id=student_id
        )
        logger.info(
            f"Recorded answer for question {question_id} in session {session_id} "
            f"(correct={evaluation.is_correct})"
        )
        return SubmissionResult(
            session_id=updated.id,
            question_id=question_id,
            is_correct=evaluation.is_correct,
            points_awarded=evaluation.points_awarded,
            time_remaining_seconds=updated.time_remaining_seconds,
            current_question_index=updated.current_question_index,
            answered_count=len(updated.answers or {}),
            total_questions=updated.total_questions,
        )

    def auto_save_progress(
        self,
        session_id: str,
        current_question_index: Optional[int] = None,
        time_remaining_seconds: Optional[int] = None,
        student_id: Optional[str] = None,
    ) -> TestSession:
        """Checkpoint the client's position and timer.

        The client-reported remaining time overwrites the stored value
        (floored at 0).

        Raises:
            SessionNotFound: Missing, or not the requester's session.
            SessionNotActive: The session is no longer in progress.
        """
        now = utc_now()

        def changes(current: TestSession) -> Dict[str, Any]:
            self._check_question_index(current, current_question_index)
            values: Dict[str, Any] = {"last_active_at": now}
            if current_question_index is not None:
                values["current_question_index"] = current_question_index
            if time_remaining_seconds is not None:
                values["time_remaining_seconds"] = max(0, time_remaining_seconds)
            return values

        session = self.store.mutate(
            session_id, changes, "auto-save progress", student_id=student_id
        )
        logger.debug(f"Auto-saved progress for session {session_id}")
        return session

    # -------------------------------------------------------------------------
    # Terminal transitions
    # -------------------------------------------------------------------------

    def complete_session(
        self, session_id: str, student_id: Optional[str] = None
    ) -> TestSession:
        """Score the session and mark it completed.

        The passing score is read fresh from the catalog. The transition is a
        compare-and-swap on (status, version): it applies only if no other
        write happened since the answers were scored, and exactly one caller
        ever completes a session. The winner notifies the catalog once.

        Raises:
            SessionNotFound: Missing, or not the requester's session.
            SessionNotActive: The session already left in_progress.
            TestNotFound: The session's test no longer exists.
        """
        for attempt in range(1, self.store.max_retries + 1):
            session = self._load_active(session_id, student_id)
            config = self.catalog.get_test_config(session.test_id)
            if config is None:
                raise TestNotFound(session.test_id)

            breakdown = score_answers(
                list(session.assigned_question_ids or []),
                dict(session.answers or {}),
                config.passing_score,
            )
            now = utc_now()
            values = {
                "status": SessionStatus.COMPLETED,
                "end_time": now,
                "last_active_at": now,
                "duration_seconds": elapsed_seconds(session.start_time, now),
                "score": breakdown.score,
                "correct_count": breakdown.correct_count,
                "incorrect_count": breakdown.incorrect_count,
                "unanswered_count": breakdown.unanswered_count,
                "is_passed": breakdown.is_passed,
            }
            if self.store.transition(
                session_id,
                values,
                "complete test session",
                expected_version=session.version,
            ):
                logger.info(
                    f"Completed test session {session_id}: score {breakdown.score} "
                    f"(passed={breakdown.is_passed})"
                )
                with graceful_failure(
                    "record session outcome",
                    logger,
                    context={"session_id": session_id, "test_id": session.test_id},
                ):
                    self.catalog.record_session_outcome(session.test_id, session_id)
                return self._load(session_id)

            logger.info(
                f"Session {session_id} changed while completing, re-reading "
                f"(attempt {attempt}/{self.store.max_retries})"
            )

        raise ConcurrentModification(session_id, self.store.max_retries)

    def abandon_session(
        self, session_id: str, student_id: Optional[str] = None
    ) -> TestSession:
        """Mark the session abandoned. No score is computed.

        Raises:
            SessionNotFound: Missing, or not the requester's session.
            SessionNotActive: The session already left in_progress.
        """
        return self._terminate(
            session_id, SessionStatus.ABANDONED, "abandon test session", student_id
        )

    def expire_session(self, session_id: str) -> TestSession:
        """Force the session to expired. No score is computed.

        Raises:
            SessionNotFound: The session does not exist.
            SessionNotActive: The session already left in_progress.
        """
        return self._terminate(session_id, SessionStatus.EXPIRED, "expire test session")

    def _terminate(
        self,
        session_id: str,
        status: SessionStatus,
        operation: str,
        student_id: Optional[str] = None,
    ) -> TestSession:
        session = self._load_active(session_id, student_id)
        if not self._apply_terminal(session, status, operation):
            current = self._load(session_id)
            raise SessionNotActive(session_id, current.status.value)
        logger.info(f"Test session {session_id} is now {status.value}")
        return self._load(session_id)

    def _apply_terminal(
        self, session: TestSession, status: SessionStatus, operation: str
    ) -> bool:
        now = utc_now()
        return self.store.transition(
            session.id,
            {
                "status": status,
                "end_time": now,
                "last_active_at": now,
                "duration_seconds": elapsed_seconds(session.start_time, now),
            },
            operation,
        )

    def sweep_expired_sessions(self, limit: Optional[int] = None) -> int:
        """Expire every in-progress session past its scheduled end.

        Overdue sessions are loaded in batches of ``limit`` (default
        SWEEP_BATCH_LIMIT) until a batch comes back short, so a backlog is
        drained in one run. Safe to run concurrently with itself and with
        completions: a session that already left in_progress is skipped. A
        failure on one session is logged, the session is not retried in this
        run, and the sweep moves on.

        Returns:
            Number of sessions this run transitioned to expired.
        """
        now = utc_now()
        batch_size = limit or settings.SWEEP_BATCH_LIMIT

        expired = 0
        processed: Set[str] = set()
        while True:
            candidates = self.store.list_in_progress(
                overdue_at=now, limit=batch_size, exclude_ids=processed
            )
            for session in candidates:
                processed.add(session.id)
                # expires_at is start + duration; recheck against the clock read above
                if ensure_timezone_aware(session.expires_at) >= now:
                    continue
                with graceful_failure(
                    "expire test session",
                    logger,
                    log_level=logging.ERROR,
                    context={"session_id": session.id},
                ):
                    if self._apply_terminal(
                        session, SessionStatus.EXPIRED, "expire test session"
                    ):
                        expired += 1
                        logger.info(f"Expired overdue test session {session.id}")
                    else:
                        logger.debug(
                            f"Session {session.id} already finished, skipping"
                        )
            if len(candidates) < batch_size:
                break

        logger.info(
            f"Expiry sweep finished: {expired} of {len(processed)} overdue "
            "sessions expired"
        )
        return expired

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_session(
        self,
        session_id: str,
        student_id: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> TestSession:
        """Fetch a session, scoped to a student or a test center if given."""
        if owner_id is not None:
            session = self.store.get_for_owner(session_id, owner_id)
            if session is None:
                raise SessionNotFound(session_id)
            return session
        return self._load(session_id, student_id)

    def get_session_progress(
        self, session_id: str, student_id: Optional[str] = None
    ) -> SessionProgress:
        """Resume view of a session.

        While in progress, the remaining time is the stored value minus the
        wall-clock time since the last recorded activity.
        """
        session = self._load(session_id, student_id)
        remaining = session.time_remaining_seconds
        in_progress = session.status == SessionStatus.IN_PROGRESS
        if in_progress:
            last_active = session.last_active_at or session.start_time
            remaining = max(0, remaining - elapsed_seconds(last_active))

        answers = dict(session.answers or {})
        return SessionProgress(
            session=session,
            current_question_index=session.current_question_index or 0,
            time_remaining_seconds=remaining,
            total_questions=session.total_questions,
            answered_count=len(answers),
            saved_answers=answers,
            can_resume=in_progress,
        )

    def list_test_sessions(
        self,
        test_id: str,
        owner_id: str,
        status: Optional[SessionStatus] = None,
        is_passed: Optional[bool] = None,
        is_flagged: Optional[bool] = None,
        is_reviewed: Optional[bool] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[TestSession], int]:
        """Sessions of a test the owner owns.

        Raises:
            TestNotFound: Missing, or owned by another test center.
        """
        self._owned_test(test_id, owner_id)
        return self.store.list_by_test(
            test_id,
            status=status,
            is_passed=is_passed,
            is_flagged=is_flagged,
            is_reviewed=is_reviewed,
            skip=skip,
            limit=limit,
        )

    def list_student_sessions(
        self,
        student_id: str,
        status: Optional[SessionStatus] = None,
        owner_id: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[TestSession], int]:
        return self.store.list_by_student(
            student_id, status=status, owner_id=owner_id, skip=skip, limit=limit
        )

    # -------------------------------------------------------------------------
    # Review
    # -------------------------------------------------------------------------

    def flag_session(
        self, session_id: str, owner_id: str, reason: Optional[str] = None
    ) -> TestSession:
        """Flag a session of the owner's test for review."""
        if reason and len(reason) > settings.ADMIN_NOTE_MAX_LENGTH:
            raise ValidationError(
                f"Flag reason cannot exceed {settings.ADMIN_NOTE_MAX_LENGTH} characters."
            )
        session = self.store.update_review(
            session_id, owner_id, {"is_flagged": True, "flag_reason": reason}
        )
        if session is None:
            raise SessionNotFound(session_id)
        logger.info(f"Flagged test session {session_id} for review")
        return session

    def update_admin_notes(
        self, session_id: str, owner_id: str, notes: str
    ) -> TestSession:
        """Attach admin notes to a session and mark it reviewed."""
        if len(notes) > settings.ADMIN_NOTE_MAX_LENGTH:
            raise ValidationError(
                f"Admin notes cannot exceed {settings.ADMIN_NOTE_MAX_LENGTH} characters."
            )
        session = self.store.update_review(
            session_id, owner_id, {"admin_notes": notes, "is_reviewed": True}
        )
        if session is None:
            raise SessionNotFound(session_id)
        logger.info(f"Updated admin notes for test session {session_id}")
        return session

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def get_owner_stats(self, owner_id: str) -> OwnerStats:
        """Per-status counts, average completed score and total time."""
        summaries = self.store.status_summary_for_owner(owner_id)
        if not summaries:
            return OwnerStats()

        completed = next(
            (s for s in summaries if s.status == SessionStatus.COMPLETED), None
        )
        return OwnerStats(
            total_sessions=sum(s.count for s in summaries),
            by_status={s.status.value: s.count for s in summaries},
            average_score=(
                completed.average_score
                if completed and completed.average_score is not None
                else 0.0
            ),
            total_duration_seconds=sum(s.total_duration_seconds for s in summaries),
        )

    def get_test_analytics(self, test_id: str, owner_id: str) -> TestAnalytics:
        """Analytics for a test the owner owns.

        Raises:
            TestNotFound: Missing, or owned by another test center.
        """
        self._owned_test(test_id, owner_id)
        return compute_test_analytics(test_id, self.store.list_for_test(test_id))
