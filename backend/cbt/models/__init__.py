"""
Models package for the CBT session engine.
"""
from .base import Base, engine, SessionLocal, get_db
from .models import (
    Test,
    Question,
    TestSession,
    SessionOutcome,
    SessionStatus,
    TestStatus,
    SelectionMethod,
    QuestionType,
)

__all__ = [
    "Base",
    "engine",
    "SessionLocal",
    "get_db",
    "Test",
    "Question",
    "TestSession",
    "SessionOutcome",
    "SessionStatus",
    "TestStatus",
    "SelectionMethod",
    "QuestionType",
]
