"""
Pydantic schemas for test session endpoints.
"""
from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, List, Optional
from datetime import datetime

from cbt.models import SessionStatus


class BrowserInfo(BaseModel):
    """Client environment reported when a session is started or resumed."""

    user_agent: Optional[str] = Field(None, max_length=500)
    ip_address: Optional[str] = Field(None, max_length=64)
    screen_resolution: Optional[str] = Field(None, max_length=32)


class AnswerRecord(BaseModel):
    """A stored answer. One per question; resubmissions replace it."""

    submitted_value: Any = Field(None, description="Raw submitted value")
    is_correct: bool = Field(..., description="Correctness at submission time")
    points_awarded: int = Field(..., description="Points awarded (no partial credit)")
    time_spent_seconds: int = Field(
        ..., description="Cumulative time spent across submissions"
    )
    answered_at: Optional[str] = Field(None, description="ISO timestamp of last submission")


class TestSessionResponse(BaseModel):
    """Schema for test session response."""

    id: str = Field(..., description="Test session ID")
    test_id: str = Field(..., description="Test ID")
    student_id: str = Field(..., description="Student ID")
    owner_id: str = Field(..., description="Test center (tenant) ID")
    status: SessionStatus = Field(
        ..., description="Session status (in_progress, completed, abandoned, expired)"
    )
    start_time: datetime = Field(..., description="Session start timestamp")
    expires_at: datetime = Field(..., description="Scheduled end (start + duration)")
    end_time: Optional[datetime] = Field(
        None, description="Set once, when the session leaves in_progress"
    )
    last_active_at: Optional[datetime] = None
    duration_seconds: Optional[int] = Field(
        None, description="Actual elapsed seconds, set on the terminal transition"
    )
    assigned_question_ids: List[str] = Field(
        ..., description="Ordered questions assigned at creation"
    )
    total_questions: int
    answers: Dict[str, AnswerRecord] = Field(default_factory=dict)
    time_remaining_seconds: int
    current_question_index: int
    score: Optional[int] = None
    correct_count: int = 0
    incorrect_count: int = 0
    unanswered_count: int = 0
    is_passed: Optional[bool] = None
    browser_info: Dict[str, Any] = Field(default_factory=dict)
    is_flagged: bool = False
    flag_reason: Optional[str] = None
    is_reviewed: bool = False
    admin_notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        """Pydantic configuration."""

        from_attributes = True


class StartSessionRequest(BaseModel):
    """Schema for starting or resuming a test session."""

    access_code: Optional[str] = Field(
        None, max_length=20, description="Required when the test defines one"
    )
    browser_info: Optional[BrowserInfo] = None


class StartSessionResponse(BaseModel):
    """Schema for a started or resumed test session."""

    session: TestSessionResponse = Field(..., description="The test session")
    resumed: bool = Field(
        ..., description="True if an existing in-progress session was resumed"
    )


class SubmitAnswerRequest(BaseModel):
    """Schema for submitting the answer to one question."""

    answer: Any = Field(
        None, description="Option id for multiple choice, 'true'/'false' for true/false"
    )
    time_spent_seconds: int = Field(
        0, ge=0, description="Seconds spent on this question since the last submission"
    )
    current_question_index: Optional[int] = Field(None, ge=0)


class SubmitAnswerResponse(BaseModel):
    """Schema for the result of an answer submission."""

    session_id: str
    question_id: str
    is_correct: bool
    points_awarded: int
    time_remaining_seconds: int
    current_question_index: int
    answered_count: int
    total_questions: int


class AutoSaveRequest(BaseModel):
    """Schema for an auto-save checkpoint."""

    current_question_index: Optional[int] = Field(None, ge=0)
    time_remaining_seconds: Optional[int] = Field(
        None, ge=0, description="Client timer value; overwrites the stored value"
    )


class AutoSaveResponse(BaseModel):
    """Schema for an auto-save acknowledgement."""

    session_id: str
    current_question_index: int
    time_remaining_seconds: int
    saved_at: datetime


class SessionProgressResponse(BaseModel):
    """Schema for the resume view of a session."""

    session: TestSessionResponse
    current_question_index: int
    time_remaining_seconds: int
    total_questions: int
    answered_count: int
    saved_answers: Dict[str, AnswerRecord]
    can_resume: bool


class TestSessionListResponse(BaseModel):
    """Schema for a page of test sessions."""

    sessions: List[TestSessionResponse]
    total: int = Field(..., description="Total matching sessions, ignoring pagination")
    skip: int
    limit: int


class FlagSessionRequest(BaseModel):
    """Schema for flagging a session for review."""

    reason: Optional[str] = Field(None, max_length=1000)


class AdminNotesRequest(BaseModel):
    """Schema for attaching admin notes to a session."""

    notes: str = Field(..., max_length=1000)

    @field_validator("notes")
    @classmethod
    def strip_notes(cls, v: str) -> str:
        return v.strip()
