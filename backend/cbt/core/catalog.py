"""
Test Catalog and Question Bank collaborators.

The session engine depends only on the ``TestCatalog`` and ``QuestionBank``
protocols below. ``SqlTestCatalog`` and ``SqlQuestionBank`` are the
reference implementations backed by the ``tests``, ``questions`` and
``session_outcomes`` tables.

Test-level statistics are maintained by ``record_session_outcome`` with a
Welford running mean/M2 update guarded by an optimistic ``stats_version``
check. The ``session_outcomes`` ledger (unique on session_id) makes the
notification idempotent, and ``reconcile_test_stats`` recomputes everything
from the completed sessions to repair drift or missed notifications.
"""
import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Protocol, Sequence, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cbt.core.config import settings
from cbt.core.datetime_utils import ensure_timezone_aware, utc_now
from cbt.core.db_error_handling import storage_errors
from cbt.models import (
    Question,
    QuestionType,
    SelectionMethod,
    SessionOutcome,
    SessionStatus,
    Test,
    TestSession,
    TestStatus,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Value objects
# =============================================================================


@dataclass(frozen=True)
class SubjectQuota:
    """Number of questions to draw from one subject for auto selection."""

    subject_id: str
    question_count: int


@dataclass(frozen=True)
class TestConfig:
    """Immutable snapshot of a test's configuration.

    Read once when a session is created; ``passing_score`` is read again,
    fresh, when a session is completed.
    """

    id: str
    owner_id: str
    title: str
    duration_minutes: int
    total_questions: int
    passing_score: int
    status: TestStatus
    schedule_start: datetime
    schedule_end: datetime
    question_selection_method: SelectionMethod
    question_ids: Tuple[str, ...] = ()
    subject_ids: Tuple[str, ...] = ()
    auto_selection_config: Tuple[SubjectQuota, ...] = ()
    access_code: Optional[str] = None

    @property
    def duration_seconds(self) -> int:
        return self.duration_minutes * 60

    @property
    def requires_access_code(self) -> bool:
        return bool(self.access_code)

    def has_valid_question_count(self) -> bool:
        """Whether the selection configuration can produce total_questions."""
        if self.total_questions < 1:
            return False

        if self.question_selection_method == SelectionMethod.MANUAL:
            return len(self.question_ids) == self.total_questions
        if self.question_selection_method == SelectionMethod.AUTO:
            quota_total = sum(q.question_count for q in self.auto_selection_config)
            return quota_total == self.total_questions
        # Mixed: the manual part may not exceed the total, auto fills the rest
        return len(self.question_ids) <= self.total_questions

    def can_be_started(self, now: Optional[datetime] = None) -> bool:
        """Published, inside the schedule window, and correctly configured."""
        current = now or utc_now()
        return (
            self.status == TestStatus.PUBLISHED
            and ensure_timezone_aware(self.schedule_start) <= current
            and ensure_timezone_aware(self.schedule_end) >= current
            and self.has_valid_question_count()
        )


@dataclass(frozen=True)
class AnswerOption:
    id: str
    text: str = ""
    is_correct: bool = False


@dataclass(frozen=True)
class QuestionDefinition:
    """Read-only question definition consumed by the evaluator."""

    id: str
    question_type: QuestionType
    points: int = 1
    options: Tuple[AnswerOption, ...] = ()
    correct_answer: Optional[str] = None


# =============================================================================
# Protocols consumed by the session engine
# =============================================================================


class TestCatalog(Protocol):
    def get_test_config(self, test_id: str) -> Optional[TestConfig]:
        ...

    def get_selected_questions(self, test_id: str) -> List[str]:
        ...

    def record_session_outcome(self, test_id: str, session_id: str) -> bool:
        ...


class QuestionBank(Protocol):
    def get_question_definition(
        self, question_id: str
    ) -> Optional[QuestionDefinition]:
        ...


# =============================================================================
# SQL reference implementations
# =============================================================================


def _to_test_config(test: Test) -> TestConfig:
    quotas = tuple(
        SubjectQuota(
            subject_id=str(entry["subject_id"]),
            question_count=int(entry.get("question_count", 0)),
        )
        for entry in (test.auto_selection_config or [])
    )
    return TestConfig(
        id=test.id,
        owner_id=test.owner_id,
        title=test.title,
        duration_minutes=test.duration_minutes,
        total_questions=test.total_questions,
        passing_score=test.passing_score,
        status=TestStatus(test.status),
        schedule_start=ensure_timezone_aware(test.schedule_start),
        schedule_end=ensure_timezone_aware(test.schedule_end),
        question_selection_method=SelectionMethod(test.question_selection_method),
        question_ids=tuple(str(qid) for qid in (test.question_ids or [])),
        subject_ids=tuple(str(sid) for sid in (test.subject_ids or [])),
        auto_selection_config=quotas,
        access_code=test.access_code or None,
    )


def _to_question_definition(question: Question) -> QuestionDefinition:
    options = tuple(
        AnswerOption(
            id=str(option.get("id")),
            text=str(option.get("text", "")),
            is_correct=bool(option.get("is_correct", False)),
        )
        for option in (question.options or [])
    )
    return QuestionDefinition(
        id=question.id,
        question_type=QuestionType(question.question_type),
        points=question.points,
        options=options,
        correct_answer=question.correct_answer,
    )


class SqlQuestionBank:
    """Question Bank backed by the ``questions`` table."""

    def __init__(self, db: Session):
        self.db = db

    def get_question_definition(
        self, question_id: str
    ) -> Optional[QuestionDefinition]:
        with storage_errors(self.db, "load question"):
            question = self.db.get(Question, question_id)
        if question is None:
            return None
        return _to_question_definition(question)


class SqlTestCatalog:
    """Test Catalog backed by the ``tests`` table.

    Args:
        db: Database session.
        rng: Random source for auto/mixed question selection. Tests pass a
            seeded ``random.Random`` for deterministic samples.
        max_retries: Attempts for the optimistic stats update.
    """

    def __init__(
        self,
        db: Session,
        rng: Optional[random.Random] = None,
        max_retries: Optional[int] = None,
    ):
        self.db = db
        self.rng = rng or random.Random()
        self.max_retries = max_retries or settings.SESSION_STORE_MAX_RETRIES

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def get_test_config(self, test_id: str) -> Optional[TestConfig]:
        with storage_errors(self.db, "load test configuration"):
            test = self.db.execute(
                select(Test).where(Test.id == test_id).execution_options(
                    populate_existing=True
                )
            ).scalar_one_or_none()
        if test is None:
            return None
        return _to_test_config(test)

    def get_selected_questions(self, test_id: str) -> List[str]:
        """Pick the questions for a new session according to the test's policy.

        Manual returns the stored order. Auto samples each subject quota.
        Mixed keeps the manual list and fills up to total_questions with
        random questions from the test's subjects. Random picks are always
        scoped to the test owner's question bank.
        """
        config = self.get_test_config(test_id)
        if config is None:
            return []

        if config.question_selection_method == SelectionMethod.MANUAL:
            return list(config.question_ids)

        if config.question_selection_method == SelectionMethod.AUTO:
            selected: List[str] = []
            for quota in config.auto_selection_config:
                pool = self._question_pool(
                    config.owner_id, [quota.subject_id], exclude=selected
                )
                selected.extend(self._sample(pool, quota.question_count))
            self._warn_if_short(config, selected)
            return selected

        selected = list(config.question_ids)
        remaining = config.total_questions - len(selected)
        if remaining > 0 and config.subject_ids:
            pool = self._question_pool(
                config.owner_id, list(config.subject_ids), exclude=selected
            )
            selected.extend(self._sample(pool, remaining))
        self._warn_if_short(config, selected)
        return selected

    def _question_pool(
        self, owner_id: str, subject_ids: Sequence[str], exclude: Sequence[str]
    ) -> List[str]:
        stmt = (
            select(Question.id)
            .where(Question.owner_id == owner_id)
            .where(Question.subject_id.in_(list(subject_ids)))
            .order_by(Question.id)
        )
        if exclude:
            stmt = stmt.where(Question.id.notin_(list(exclude)))
        with storage_errors(self.db, "load question pool"):
            return list(self.db.execute(stmt).scalars().all())

    def _sample(self, pool: List[str], count: int) -> List[str]:
        if count <= 0:
            return []
        return self.rng.sample(pool, min(count, len(pool)))

    @staticmethod
    def _warn_if_short(config: TestConfig, selected: List[str]) -> None:
        if len(selected) < config.total_questions:
            logger.warning(
                f"Only {len(selected)} questions available for test {config.id}, "
                f"but {config.total_questions} were requested"
            )

    # -------------------------------------------------------------------------
    # Rolling statistics
    # -------------------------------------------------------------------------

    def record_session_outcome(self, test_id: str, session_id: str) -> bool:
        """Fold one completed session into the test's rolling statistics.

        Returns:
            True if the stats were updated, False if the outcome was already
            recorded or the session is not a completed session of this test.
        """
        with storage_errors(self.db, "record session outcome"):
            row = self.db.execute(
                select(TestSession.score, TestSession.status).where(
                    TestSession.id == session_id, TestSession.test_id == test_id
                )
            ).one_or_none()
            if row is None or row.status != SessionStatus.COMPLETED or row.score is None:
                logger.warning(
                    f"Skipping outcome for session {session_id}: "
                    "not a completed session of this test"
                )
                return False

            score = int(row.score)
            # The ledger insert is the first write of this transaction, so a
            # duplicate can be rolled back without losing anything else.
            try:
                self.db.add(
                    SessionOutcome(session_id=session_id, test_id=test_id, score=score)
                )
                self.db.flush()
            except IntegrityError:
                self.db.rollback()
                logger.info(f"Outcome for session {session_id} already recorded")
                return False

            for _ in range(self.max_retries):
                if self._apply_welford(test_id, score):
                    self.db.commit()
                    logger.info(
                        f"Recorded outcome for session {session_id} "
                        f"(test {test_id}, score {score})"
                    )
                    return True

            self.db.rollback()
            logger.warning(
                f"Gave up recording outcome for session {session_id} after "
                f"{self.max_retries} attempts; reconcile_test_stats will repair it"
            )
            return False

    def _apply_welford(self, test_id: str, score: int) -> bool:
        test = self.db.execute(
            select(
                Test.completed_attempts,
                Test.average_score,
                Test.score_m2,
                Test.highest_score,
                Test.lowest_score,
                Test.stats_version,
            ).where(Test.id == test_id)
        ).one_or_none()
        if test is None:
            return True

        count = test.completed_attempts + 1
        delta = score - test.average_score
        mean = test.average_score + delta / count
        m2 = test.score_m2 + delta * (score - mean)
        highest = score if test.highest_score is None else max(test.highest_score, score)
        lowest = score if test.lowest_score is None else min(test.lowest_score, score)

        result = self.db.execute(
            update(Test)
            .where(Test.id == test_id, Test.stats_version == test.stats_version)
            .values(
                total_attempts=Test.total_attempts + 1,
                completed_attempts=count,
                average_score=mean,
                score_m2=m2,
                highest_score=highest,
                lowest_score=lowest,
                stats_version=test.stats_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def reconcile_test_stats(self, test_id: str) -> bool:
        """Recompute a test's statistics from scratch.

        Only completed sessions are counted, matching record_session_outcome:
        abandoned and expired sessions never reach the catalog. Completed
        sessions missing from the outcome ledger are added so a late
        notification stays a no-op.

        Returns:
            False if the test does not exist.
        """
        with storage_errors(self.db, "reconcile test stats"):
            if self.db.get(Test, test_id) is None:
                return False

            completed = self.db.execute(
                select(TestSession.id, TestSession.score).where(
                    TestSession.test_id == test_id,
                    TestSession.status == SessionStatus.COMPLETED,
                    TestSession.score.is_not(None),
                )
            ).all()

            scores = [int(r.score) for r in completed]
            count = len(scores)
            mean = sum(scores) / count if count else 0.0
            m2 = sum((s - mean) ** 2 for s in scores)

            recorded = set(
                self.db.execute(
                    select(SessionOutcome.session_id).where(
                        SessionOutcome.test_id == test_id
                    )
                ).scalars()
            )
            for session_id, score in completed:
                if session_id not in recorded:
                    self.db.add(
                        SessionOutcome(
                            session_id=session_id, test_id=test_id, score=score
                        )
                    )

            self.db.execute(
                update(Test)
                .where(Test.id == test_id)
                .values(
                    total_attempts=count,
                    completed_attempts=count,
                    average_score=mean,
                    score_m2=m2,
                    highest_score=max(scores) if scores else None,
                    lowest_score=min(scores) if scores else None,
                    stats_version=Test.stats_version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            self.db.commit()

        logger.info(
            f"Reconciled stats for test {test_id}: {count} completed attempts"
        )
        return True

    def list_test_ids(self) -> List[str]:
        with storage_errors(self.db, "list tests"):
            return list(self.db.execute(select(Test.id).order_by(Test.id)).scalars())
