"""
Pytest configuration and shared fixtures for testing.
"""
import os
from pathlib import Path

# Settings are read at import time, so the test environment must be in place
# before anything from cbt is imported.
_TEST_DB = Path(__file__).parent / "test.db"
SQLALCHEMY_DATABASE_URL = f"sqlite:///{_TEST_DB}"

os.environ.setdefault(
    "JWT_SECRET_KEY", "test-jwt-secret-key-for-unit-tests"  # pragma: allowlist secret
)
os.environ["ADMIN_TOKEN"] = "test-admin-token"  # pragma: allowlist secret
os.environ["DATABASE_URL"] = SQLALCHEMY_DATABASE_URL
os.environ["ENV"] = "test"

import random  # noqa: E402
from contextlib import asynccontextmanager  # noqa: E402
from datetime import datetime, timedelta, timezone  # noqa: E402
from typing import Any, Dict, List, Optional  # noqa: E402
from unittest.mock import patch  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from cbt.core.catalog import SqlQuestionBank, SqlTestCatalog  # noqa: E402
from cbt.core.security import create_access_token  # noqa: E402
from cbt.core.session_engine import SessionEngine  # noqa: E402
from cbt.core.session_store import SessionStore  # noqa: E402
from cbt.main import app  # noqa: E402
from cbt.models import (  # noqa: E402
    Base,
    Question,
    QuestionType,
    SelectionMethod,
    SessionStatus,
    Test,
    TestSession,
    TestStatus,
    get_db,
)

OWNER_ID = "owner-1"
OTHER_OWNER_ID = "owner-2"
STUDENT_ID = "student-1"
OTHER_STUDENT_ID = "student-2"
ADMIN_TOKEN = "test-admin-token"  # pragma: allowlist secret

CLOCK_START = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


@asynccontextmanager
async def _test_lifespan(app):
    """No-op lifespan for tests. Leaves the shared connection pool alone."""
    yield


app.router.lifespan_context = _test_lifespan


engine = create_engine(
    SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False}
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# =============================================================================
# Clock
# =============================================================================


class FrozenClock:
    """Deterministic stand-in for utc_now(). Moves only when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds, **kwargs)
        return self.now


@pytest.fixture(autouse=True)
def clock():
    """
    Freeze the engine's wall clock.

    JWT issuing and validation keep using real time, so cbt.core.security is
    deliberately left unpatched.
    """
    frozen = FrozenClock(CLOCK_START)
    with patch("cbt.core.datetime_utils.utc_now", frozen), patch(
        "cbt.core.session_engine.utc_now", frozen
    ), patch("cbt.core.session_store.utc_now", frozen), patch(
        "cbt.core.catalog.utc_now", frozen
    ):
        yield frozen


# =============================================================================
# Database
# =============================================================================


@pytest.fixture(scope="function")
def db_session():
    """
    Create a fresh database session for each test.
    """
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db_session):
    """
    Create a test client with database dependency override.

    Each request gets its own session on the same test.db file where
    db_session creates data.
    """

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


# =============================================================================
# Catalog factories
# =============================================================================


@pytest.fixture
def make_questions(db_session):
    """
    Factory creating auto-gradable questions.

    Multiple choice questions have options a-d with ``a`` correct; true/false
    questions have ``true`` as the correct answer.
    """

    def _make(
        count: int,
        question_type: QuestionType = QuestionType.MULTIPLE_CHOICE,
        owner_id: str = OWNER_ID,
        subject_id: Optional[str] = "math",
        points: int = 1,
        prefix: str = "q",
    ) -> List[Question]:
        questions = []
        for i in range(count):
            question = Question(
                id=f"{prefix}{i + 1}",
                owner_id=owner_id,
                subject_id=subject_id,
                question_text=f"Question {i + 1}",
                question_type=question_type,
                options=(
                    [
                        {"id": "a", "text": "Right", "is_correct": True},
                        {"id": "b", "text": "Wrong", "is_correct": False},
                        {"id": "c", "text": "Also wrong", "is_correct": False},
                        {"id": "d", "text": "Still wrong", "is_correct": False},
                    ]
                    if question_type == QuestionType.MULTIPLE_CHOICE
                    else []
                ),
                correct_answer=(
                    "true" if question_type == QuestionType.TRUE_FALSE else None
                ),
                points=points,
            )
            db_session.add(question)
            questions.append(question)
        db_session.commit()
        return questions

    return _make


@pytest.fixture
def make_test(db_session, clock):
    """
    Factory creating a published, currently scheduled test.

    Defaults to a 60 minute manual-selection test with a passing score of 50.
    """

    def _make(
        question_ids: Optional[List[str]] = None,
        owner_id: str = OWNER_ID,
        duration_minutes: int = 60,
        passing_score: int = 50,
        status: TestStatus = TestStatus.PUBLISHED,
        selection: SelectionMethod = SelectionMethod.MANUAL,
        total_questions: Optional[int] = None,
        subject_ids: Optional[List[str]] = None,
        auto_selection_config: Optional[List[Dict[str, Any]]] = None,
        access_code: Optional[str] = None,
        schedule_start: Optional[datetime] = None,
        schedule_end: Optional[datetime] = None,
        test_id: Optional[str] = None,
    ) -> Test:
        ids = list(question_ids or [])
        test = Test(
            owner_id=owner_id,
            title="Algebra midterm",
            duration_minutes=duration_minutes,
            total_questions=total_questions if total_questions is not None else len(ids),
            passing_score=passing_score,
            question_selection_method=selection,
            question_ids=ids,
            subject_ids=list(subject_ids or []),
            auto_selection_config=list(auto_selection_config or []),
            status=status,
            schedule_start=schedule_start or clock.now - timedelta(days=1),
            schedule_end=schedule_end or clock.now + timedelta(days=30),
            access_code=access_code,
        )
        if test_id is not None:
            test.id = test_id
        db_session.add(test)
        db_session.commit()
        db_session.refresh(test)
        return test

    return _make


@pytest.fixture
def make_session(db_session, clock):
    """
    Factory inserting a session row directly, bypassing the engine.

    Used to seed listings, analytics and statistics.
    """

    def _make(
        test: Test,
        student_id: str = STUDENT_ID,
        status: SessionStatus = SessionStatus.COMPLETED,
        score: Optional[int] = None,
        is_passed: Optional[bool] = None,
        duration_seconds: Optional[int] = None,
        answers: Optional[Dict[str, Any]] = None,
        started_at: Optional[datetime] = None,
        **fields: Any,
    ) -> TestSession:
        start = started_at or clock.now
        terminal = status != SessionStatus.IN_PROGRESS
        session = TestSession(
            test_id=test.id,
            student_id=student_id,
            owner_id=test.owner_id,
            status=status,
            start_time=start,
            expires_at=start + timedelta(minutes=test.duration_minutes),
            end_time=start + timedelta(seconds=duration_seconds or 0) if terminal else None,
            last_active_at=start,
            duration_seconds=duration_seconds,
            assigned_question_ids=list(test.question_ids or []),
            total_questions=max(test.total_questions, 1),
            answers=answers or {},
            time_remaining_seconds=test.duration_minutes * 60,
            current_question_index=0,
            score=score,
            is_passed=is_passed,
            created_at=start,
            updated_at=start,
            **fields,
        )
        db_session.add(session)
        db_session.commit()
        db_session.refresh(session)
        return session

    return _make


@pytest.fixture
def two_question_test(make_questions, make_test):
    """A 10 minute test with two single-point multiple choice questions."""
    questions = make_questions(2)
    return make_test(
        question_ids=[q.id for q in questions], duration_minutes=10, passing_score=50
    )


# =============================================================================
# Engine
# =============================================================================


@pytest.fixture
def session_store(db_session):
    return SessionStore(db_session)


@pytest.fixture
def catalog(db_session):
    """Catalog with a seeded random source for reproducible samples."""
    return SqlTestCatalog(db_session, rng=random.Random(1234))


@pytest.fixture
def session_engine(session_store, catalog, db_session):
    return SessionEngine(
        store=session_store,
        catalog=catalog,
        question_bank=SqlQuestionBank(db_session),
    )


def build_engine(db) -> SessionEngine:
    """A second engine on its own database session, to simulate a concurrent caller."""
    return SessionEngine(
        store=SessionStore(db),
        catalog=SqlTestCatalog(db, rng=random.Random(1234)),
        question_bank=SqlQuestionBank(db),
    )


# =============================================================================
# Authentication
# =============================================================================


def bearer(user_id: str, role: str) -> Dict[str, str]:
    token = create_access_token({"sub": user_id, "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def student_headers():
    return bearer(STUDENT_ID, "student")


@pytest.fixture
def other_student_headers():
    return bearer(OTHER_STUDENT_ID, "student")


@pytest.fixture
def owner_headers():
    return bearer(OWNER_ID, "owner")


@pytest.fixture
def other_owner_headers():
    return bearer(OTHER_OWNER_ID, "owner")


@pytest.fixture
def admin_headers():
    return {"X-Admin-Token": ADMIN_TOKEN}
