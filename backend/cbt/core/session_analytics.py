"""
Test-level and question-level analytics derived from test sessions.

Read-only: these functions take already loaded sessions and never touch the
store. A test with no sessions (or no completed sessions) produces a
zero-valued record, never NaN or an error.

Score, pass-rate, timing and per-question figures use completed sessions
only. Abandonment rate is abandoned sessions over all sessions.
"""
import statistics
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from cbt.models import SessionStatus, TestSession


@dataclass(frozen=True)
class QuestionStats:
    question_id: str
    attempts: int
    correct: int
    success_rate: float
    average_time_spent_seconds: float


@dataclass(frozen=True)
class TestAnalytics:
    test_id: str
    total_sessions: int = 0
    completed_sessions: int = 0
    in_progress_sessions: int = 0
    abandoned_sessions: int = 0
    expired_sessions: int = 0
    average_score: float = 0.0
    highest_score: int = 0
    lowest_score: int = 0
    pass_rate: float = 0.0
    abandonment_rate: float = 0.0
    average_duration_seconds: float = 0.0
    fastest_duration_seconds: int = 0
    slowest_duration_seconds: int = 0
    median_duration_seconds: float = 0.0
    question_breakdown: List[QuestionStats] = field(default_factory=list)


def _ratio(numerator: int, denominator: int) -> float:
    return numerator / denominator if denominator else 0.0


def question_breakdown(sessions: Iterable[TestSession]) -> List[QuestionStats]:
    """Per-question attempts, correct answers and time, hardest first.

    Covers every question answered in any of the given sessions. Ties on
    success rate are broken by question id so the order is stable.
    """
    attempts: Dict[str, int] = {}
    correct: Dict[str, int] = {}
    time_spent: Dict[str, int] = {}

    for session in sessions:
        for question_id, answer in (session.answers or {}).items():
            attempts[question_id] = attempts.get(question_id, 0) + 1
            if answer.get("is_correct"):
                correct[question_id] = correct.get(question_id, 0) + 1
            time_spent[question_id] = time_spent.get(question_id, 0) + int(
                answer.get("time_spent_seconds", 0)
            )

    stats = [
        QuestionStats(
            question_id=question_id,
            attempts=count,
            correct=correct.get(question_id, 0),
            success_rate=_ratio(correct.get(question_id, 0), count),
            average_time_spent_seconds=time_spent[question_id] / count,
        )
        for question_id, count in attempts.items()
    ]
    stats.sort(key=lambda s: (s.success_rate, s.question_id))
    return stats


def compute_test_analytics(
    test_id: str, sessions: Iterable[TestSession]
) -> TestAnalytics:
    """Aggregate every session of one test into a TestAnalytics record."""
    all_sessions = list(sessions)
    by_status: Dict[SessionStatus, List[TestSession]] = {
        status: [] for status in SessionStatus
    }
    for session in all_sessions:
        by_status[SessionStatus(session.status)].append(session)

    completed = by_status[SessionStatus.COMPLETED]
    total = len(all_sessions)
    abandoned = len(by_status[SessionStatus.ABANDONED])

    if not completed:
        return TestAnalytics(
            test_id=test_id,
            total_sessions=total,
            in_progress_sessions=len(by_status[SessionStatus.IN_PROGRESS]),
            abandoned_sessions=abandoned,
            expired_sessions=len(by_status[SessionStatus.EXPIRED]),
            abandonment_rate=_ratio(abandoned, total),
        )

    scores = [s.score or 0 for s in completed]
    durations = [s.duration_seconds or 0 for s in completed]
    passed = sum(1 for s in completed if s.is_passed)

    return TestAnalytics(
        test_id=test_id,
        total_sessions=total,
        completed_sessions=len(completed),
        in_progress_sessions=len(by_status[SessionStatus.IN_PROGRESS]),
        abandoned_sessions=abandoned,
        expired_sessions=len(by_status[SessionStatus.EXPIRED]),
        average_score=statistics.fmean(scores),
        highest_score=max(scores),
        lowest_score=min(scores),
        pass_rate=_ratio(passed, len(completed)),
        abandonment_rate=_ratio(abandoned, total),
        average_duration_seconds=statistics.fmean(durations),
        fastest_duration_seconds=min(durations),
        slowest_duration_seconds=max(durations),
        median_duration_seconds=float(statistics.median(durations)),
        question_breakdown=question_breakdown(completed),
    )

