"""
Pydantic schemas for request/response validation.
"""
from .test_sessions import (
    AdminNotesRequest,
    AnswerRecord,
    AutoSaveRequest,
    AutoSaveResponse,
    BrowserInfo,
    FlagSessionRequest,
    SessionProgressResponse,
    StartSessionRequest,
    StartSessionResponse,
    SubmitAnswerRequest,
    SubmitAnswerResponse,
    TestSessionListResponse,
    TestSessionResponse,
)
from .analytics import (
    OwnerStatsResponse,
    QuestionStatsResponse,
    ReconcileStatsResponse,
    SweepResponse,
    TestAnalyticsResponse,
)

__all__ = [
    "AdminNotesRequest",
    "AnswerRecord",
    "AutoSaveRequest",
    "AutoSaveResponse",
    "BrowserInfo",
    "FlagSessionRequest",
    "SessionProgressResponse",
    "StartSessionRequest",
    "StartSessionResponse",
    "SubmitAnswerRequest",
    "SubmitAnswerResponse",
    "TestSessionListResponse",
    "TestSessionResponse",
    "OwnerStatsResponse",
    "QuestionStatsResponse",
    "ReconcileStatsResponse",
    "SweepResponse",
    "TestAnalyticsResponse",
]
