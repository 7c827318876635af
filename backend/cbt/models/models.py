"""
Database models for the CBT session engine.

``TestSession`` is the session document owned by the engine. ``Test``,
``Question`` and ``SessionOutcome`` back the reference Test Catalog and
Question Bank implementations.
"""
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)

from .base import Base


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class SessionStatus(str, enum.Enum):
    """Test session status enumeration.

    IN_PROGRESS is the only non-terminal status.
    """

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not SessionStatus.IN_PROGRESS


class TestStatus(str, enum.Enum):
    """Publication status of a test in the catalog."""

    DRAFT = "draft"
    PUBLISHED = "published"
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class SelectionMethod(str, enum.Enum):
    """How a test picks the questions assigned to a new session."""

    MANUAL = "manual"
    AUTO = "auto"
    MIXED = "mixed"


class QuestionType(str, enum.Enum):
    """Question type enumeration."""

    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"
    ESSAY = "essay"
    FILL_BLANK = "fill_blank"


class Test(Base):
    """Test configuration owned by a test center."""

    __tablename__ = "tests"

    id = Column(String(36), primary_key=True, default=_new_id)
    owner_id = Column(String(64), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    total_questions = Column(Integer, nullable=False)
    passing_score = Column(Integer, nullable=False)
    question_selection_method = Column(
        Enum(
            SelectionMethod,
            name="selection_method",
            native_enum=False,
            values_callable=_enum_values,
        ),
        default=SelectionMethod.MANUAL,
        nullable=False,
    )
    # Ordered question ids for manual (and the manual part of mixed) selection
    question_ids = Column(JSON, nullable=False, default=list)
    subject_ids = Column(JSON, nullable=False, default=list)
    # [{"subject_id": ..., "question_count": ...}] for auto selection
    auto_selection_config = Column(JSON, nullable=False, default=list)
    status = Column(
        Enum(
            TestStatus,
            name="test_status",
            native_enum=False,
            values_callable=_enum_values,
        ),
        default=TestStatus.DRAFT,
        nullable=False,
    )
    schedule_start = Column(DateTime(timezone=True), nullable=False)
    schedule_end = Column(DateTime(timezone=True), nullable=False)
    access_code = Column(String(20), nullable=True)

    # Rolling completion statistics (Welford running mean / M2)
    total_attempts = Column(Integer, default=0, nullable=False)
    completed_attempts = Column(Integer, default=0, nullable=False)
    average_score = Column(Float, default=0.0, nullable=False)
    score_m2 = Column(Float, default=0.0, nullable=False)
    highest_score = Column(Integer, nullable=True)
    lowest_score = Column(Integer, nullable=True)
    stats_version = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=_utc_now, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "duration_minutes >= 1 AND duration_minutes <= 480",
            name="ck_tests_duration_range",
        ),
        CheckConstraint(
            "passing_score >= 0 AND passing_score <= 100",
            name="ck_tests_passing_score_range",
        ),
        Index("ix_tests_owner_status", "owner_id", "status"),
    )


class Question(Base):
    """Question bank entry."""

    __tablename__ = "questions"

    id = Column(String(36), primary_key=True, default=_new_id)
    owner_id = Column(String(64), nullable=False, index=True)
    subject_id = Column(String(64), nullable=True, index=True)
    question_text = Column(Text, nullable=False, default="")
    question_type = Column(
        Enum(
            QuestionType,
            name="question_type",
            native_enum=False,
            values_callable=_enum_values,
        ),
        nullable=False,
    )
    # [{"id": "a", "text": "...", "is_correct": bool}] for multiple choice
    options = Column(JSON, nullable=False, default=list)
    correct_answer = Column(String(500), nullable=True)
    points = Column(Integer, default=1, nullable=False)

    __table_args__ = (
        CheckConstraint("points >= 1 AND points <= 100", name="ck_questions_points"),
        Index("ix_questions_owner_subject", "owner_id", "subject_id"),
    )


class TestSession(Base):
    """One student's timed attempt at one test."""

    __tablename__ = "test_sessions"

    id = Column(String(36), primary_key=True, default=_new_id)
    test_id = Column(String(36), nullable=False)
    student_id = Column(String(64), nullable=False)
    owner_id = Column(String(64), nullable=False)

    status = Column(
        Enum(
            SessionStatus,
            name="session_status",
            native_enum=False,
            values_callable=_enum_values,
        ),
        default=SessionStatus.IN_PROGRESS,
        nullable=False,
    )
    start_time = Column(DateTime(timezone=True), default=_utc_now, nullable=False)
    # Scheduled end (start + test duration); end_time is set on leaving in_progress
    expires_at = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=True)
    last_active_at = Column(DateTime(timezone=True), nullable=True)
    duration_seconds = Column(Integer, nullable=True)

    assigned_question_ids = Column(JSON, nullable=False, default=list)
    total_questions = Column(Integer, nullable=False)
    # {question_id: {submitted_value, is_correct, points_awarded, time_spent_seconds, answered_at}}
    answers = Column(JSON, nullable=False, default=dict)
    time_remaining_seconds = Column(Integer, nullable=False)
    current_question_index = Column(Integer, default=0, nullable=False)

    # Results, written once by the completing transition
    score = Column(Integer, nullable=True)
    correct_count = Column(Integer, default=0, nullable=False)
    incorrect_count = Column(Integer, default=0, nullable=False)
    unanswered_count = Column(Integer, default=0, nullable=False)
    is_passed = Column(Boolean, nullable=True)

    access_code_used = Column(String(20), nullable=True)
    browser_info = Column(JSON, nullable=False, default=dict)

    # Review workflow
    is_flagged = Column(Boolean, default=False, nullable=False)
    flag_reason = Column(String(1000), nullable=True)
    is_reviewed = Column(Boolean, default=False, nullable=False)
    admin_notes = Column(String(1000), nullable=True)

    # Optimistic concurrency counter, bumped on every write
    version = Column(Integer, default=1, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utc_now, nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "time_remaining_seconds >= 0", name="ck_test_sessions_time_remaining"
        ),
        Index("ix_test_sessions_test_student", "test_id", "student_id"),
        Index("ix_test_sessions_test_status", "test_id", "status"),
        Index("ix_test_sessions_student_created", "student_id", "created_at"),
        Index("ix_test_sessions_owner_created", "owner_id", "created_at"),
        Index("ix_test_sessions_status_created", "status", "created_at"),
        # At most one in-progress session per (test, student)
        Index(
            "ix_test_sessions_active",
            "test_id",
            "student_id",
            unique=True,
            postgresql_where=text("status = 'in_progress'"),
            sqlite_where=text("status = 'in_progress'"),
        ),
    )


class SessionOutcome(Base):
    """Ledger of completions already folded into a test's rolling stats."""

    __tablename__ = "session_outcomes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(36), nullable=False)
    test_id = Column(String(36), nullable=False, index=True)
    score = Column(Integer, nullable=False)
    recorded_at = Column(DateTime(timezone=True), default=_utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint("session_id", name="uq_session_outcomes_session"),
    )
