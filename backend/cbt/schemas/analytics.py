"""
Pydantic schemas for analytics and maintenance endpoints.
"""
from pydantic import BaseModel, Field
from typing import Dict, List


class QuestionStatsResponse(BaseModel):
    """Per-question statistics over completed sessions."""

    question_id: str
    attempts: int
    correct: int
    success_rate: float = Field(..., ge=0.0, le=1.0)
    average_time_spent_seconds: float

    class Config:
        """Pydantic configuration."""

        from_attributes = True


class TestAnalyticsResponse(BaseModel):
    """Test-level analytics. All values are zero when nothing is completed."""

    test_id: str
    total_sessions: int
    completed_sessions: int
    in_progress_sessions: int
    abandoned_sessions: int
    expired_sessions: int
    average_score: float
    highest_score: int
    lowest_score: int
    pass_rate: float = Field(..., description="Passed / completed sessions")
    abandonment_rate: float = Field(..., description="Abandoned / all sessions")
    average_duration_seconds: float
    fastest_duration_seconds: int
    slowest_duration_seconds: int
    median_duration_seconds: float
    question_breakdown: List[QuestionStatsResponse] = Field(
        ..., description="Hardest questions first"
    )

    class Config:
        """Pydantic configuration."""

        from_attributes = True


class OwnerStatsResponse(BaseModel):
    """Session statistics across a test center's tests."""

    total_sessions: int
    by_status: Dict[str, int]
    average_score: float
    total_duration_seconds: int

    class Config:
        """Pydantic configuration."""

        from_attributes = True


class SweepResponse(BaseModel):
    """Result of one expiry sweep run."""

    expired_count: int
    ran_at: str


class ReconcileStatsResponse(BaseModel):
    """Result of recomputing a test's statistics."""

    test_id: str
    reconciled: bool
