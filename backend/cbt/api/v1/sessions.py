"""
Test session endpoints.

Student routes operate on the caller's own sessions; a session that belongs
to someone else is reported as not found. Owner routes are scoped to the
caller's test center. Engine errors are mapped to HTTP status codes by the
handler registered in ``cbt.main``.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status

from cbt.api.v1._dependencies import get_session_engine
from cbt.core.auth import Principal, require_owner, require_student
from cbt.core.datetime_utils import utc_now
from cbt.core.session_engine import SessionEngine
from cbt.models import SessionStatus
from cbt.schemas.analytics import OwnerStatsResponse, TestAnalyticsResponse
from cbt.schemas.test_sessions import (
    AdminNotesRequest,
    AutoSaveRequest,
    AutoSaveResponse,
    FlagSessionRequest,
    SessionProgressResponse,
    StartSessionRequest,
    StartSessionResponse,
    SubmitAnswerRequest,
    SubmitAnswerResponse,
    TestSessionListResponse,
    TestSessionResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Student routes
# =============================================================================


@router.post(
    "/tests/{test_id}/start",
    response_model=StartSessionResponse,
    status_code=status.HTTP_201_CREATED,
)
def start_session(
    test_id: str,
    response: Response,
    body: Optional[StartSessionRequest] = None,
    student: Principal = Depends(require_student),
    engine: SessionEngine = Depends(get_session_engine),
):
    """
    Start a test session, or resume the caller's in-progress one.

    Returns 201 when a new session was created and 200 when an existing
    in-progress session was resumed.
    """
    body = body or StartSessionRequest()
    started = engine.create_or_resume_session(
        test_id=test_id,
        student_id=student.user_id,
        browser_info=body.browser_info.model_dump() if body.browser_info else None,
        access_code=body.access_code,
    )
    if started.resumed:
        response.status_code = status.HTTP_200_OK
    return StartSessionResponse(
        session=TestSessionResponse.model_validate(started.session),
        resumed=started.resumed,
    )


@router.get("/sessions/{session_id}", response_model=TestSessionResponse)
def get_session(
    session_id: str,
    student: Principal = Depends(require_student),
    engine: SessionEngine = Depends(get_session_engine),
):
    """Fetch one of the caller's test sessions."""
    return engine.get_session(session_id, student_id=student.user_id)


@router.get("/sessions/{session_id}/progress", response_model=SessionProgressResponse)
def get_session_progress(
    session_id: str,
    student: Principal = Depends(require_student),
    engine: SessionEngine = Depends(get_session_engine),
):
    """Resume view: position, remaining time and saved answers."""
    progress = engine.get_session_progress(session_id, student_id=student.user_id)
    return SessionProgressResponse(
        session=TestSessionResponse.model_validate(progress.session),
        current_question_index=progress.current_question_index,
        time_remaining_seconds=progress.time_remaining_seconds,
        total_questions=progress.total_questions,
        answered_count=progress.answered_count,
        saved_answers=progress.saved_answers,
        can_resume=progress.can_resume,
    )


@router.post(
    "/sessions/{session_id}/questions/{question_id}/answer",
    response_model=SubmitAnswerResponse,
)
def submit_answer(
    session_id: str,
    question_id: str,
    body: SubmitAnswerRequest,
    student: Principal = Depends(require_student),
    engine: SessionEngine = Depends(get_session_engine),
):
    """
    Submit (or replace) the answer to one question.

    Time spent accumulates across resubmissions of the same question and is
    debited from the session's remaining time.
    """
    result = engine.submit_answer(
        session_id=session_id,
        question_id=question_id,
        raw_answer=body.answer,
        time_spent_seconds=body.time_spent_seconds,
        current_question_index=body.current_question_index,
        student_id=student.user_id,
    )
    return SubmitAnswerResponse(
        session_id=result.session_id,
        question_id=result.question_id,
        is_correct=result.is_correct,
        points_awarded=result.points_awarded,
        time_remaining_seconds=result.time_remaining_seconds,
        current_question_index=result.current_question_index,
        answered_count=result.answered_count,
        total_questions=result.total_questions,
    )


@router.put("/sessions/{session_id}/progress", response_model=AutoSaveResponse)
def auto_save_progress(
    session_id: str,
    body: AutoSaveRequest,
    student: Principal = Depends(require_student),
    engine: SessionEngine = Depends(get_session_engine),
):
    """Checkpoint the current question index and client timer."""
    session = engine.auto_save_progress(
        session_id,
        current_question_index=body.current_question_index,
        time_remaining_seconds=body.time_remaining_seconds,
        student_id=student.user_id,
    )
    return AutoSaveResponse(
        session_id=session.id,
        current_question_index=session.current_question_index,
        time_remaining_seconds=session.time_remaining_seconds,
        saved_at=utc_now(),
    )


@router.post("/sessions/{session_id}/complete", response_model=TestSessionResponse)
def complete_session(
    session_id: str,
    student: Principal = Depends(require_student),
    engine: SessionEngine = Depends(get_session_engine),
):
    """Complete the session and return it with its score."""
    return engine.complete_session(session_id, student_id=student.user_id)


@router.post("/sessions/{session_id}/abandon", response_model=TestSessionResponse)
def abandon_session(
    session_id: str,
    student: Principal = Depends(require_student),
    engine: SessionEngine = Depends(get_session_engine),
):
    """Abandon the session. Saved answers are kept; nothing is scored."""
    return engine.abandon_session(session_id, student_id=student.user_id)


@router.get("/my-sessions", response_model=TestSessionListResponse)
def list_my_sessions(
    status_filter: Optional[SessionStatus] = Query(None, alias="status"),
    owner_id: Optional[str] = Query(None, description="Only one test center's tests"),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    student: Principal = Depends(require_student),
    engine: SessionEngine = Depends(get_session_engine),
):
    """List the caller's sessions, newest first."""
    sessions, total = engine.list_student_sessions(
        student.user_id,
        status=status_filter,
        owner_id=owner_id,
        skip=skip,
        limit=limit,
    )
    return TestSessionListResponse(
        sessions=[TestSessionResponse.model_validate(s) for s in sessions],
        total=total,
        skip=skip,
        limit=limit,
    )


# =============================================================================
# Owner routes
# =============================================================================


@router.get("/tests/{test_id}/sessions", response_model=TestSessionListResponse)
def list_test_sessions(
    test_id: str,
    status_filter: Optional[SessionStatus] = Query(None, alias="status"),
    is_passed: Optional[bool] = Query(None),
    is_flagged: Optional[bool] = Query(None),
    is_reviewed: Optional[bool] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    owner: Principal = Depends(require_owner),
    engine: SessionEngine = Depends(get_session_engine),
):
    """List the sessions of one of the caller's tests, newest first."""
    sessions, total = engine.list_test_sessions(
        test_id,
        owner.user_id,
        status=status_filter,
        is_passed=is_passed,
        is_flagged=is_flagged,
        is_reviewed=is_reviewed,
        skip=skip,
        limit=limit,
    )
    return TestSessionListResponse(
        sessions=[TestSessionResponse.model_validate(s) for s in sessions],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/tests/{test_id}/analytics", response_model=TestAnalyticsResponse)
def get_test_analytics(
    test_id: str,
    owner: Principal = Depends(require_owner),
    engine: SessionEngine = Depends(get_session_engine),
):
    """Score, timing and per-question analytics for one of the caller's tests."""
    return TestAnalyticsResponse.model_validate(
        engine.get_test_analytics(test_id, owner.user_id)
    )


@router.post("/sessions/{session_id}/flag", response_model=TestSessionResponse)
def flag_session(
    session_id: str,
    body: FlagSessionRequest,
    owner: Principal = Depends(require_owner),
    engine: SessionEngine = Depends(get_session_engine),
):
    """Flag a session for review."""
    return engine.flag_session(session_id, owner.user_id, body.reason)


@router.put("/sessions/{session_id}/notes", response_model=TestSessionResponse)
def update_admin_notes(
    session_id: str,
    body: AdminNotesRequest,
    owner: Principal = Depends(require_owner),
    engine: SessionEngine = Depends(get_session_engine),
):
    """Attach admin notes to a session and mark it reviewed."""
    return engine.update_admin_notes(session_id, owner.user_id, body.notes)


@router.get("/stats", response_model=OwnerStatsResponse)
def get_owner_stats(
    owner: Principal = Depends(require_owner),
    engine: SessionEngine = Depends(get_session_engine),
):
    """Session statistics across the caller's tests."""
    return OwnerStatsResponse.model_validate(engine.get_owner_stats(owner.user_id))
