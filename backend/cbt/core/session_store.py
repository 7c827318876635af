"""
Session Store: persistence for TestSession documents.

Concurrency model:

- **At most one in-progress session per (test, student)** is enforced by the
  partial unique index ``ix_test_sessions_active``. ``insert`` translates a
  violation into ``ActiveSessionConflict`` so the engine can fall back to
  resuming the winner's session.
- **Read-modify-write mutations** (answer submission, auto-save, resume)
  go through ``mutate``: read the row, build the new values, then write with
  ``WHERE version = <read version> AND status = 'in_progress'``. A lost race
  re-reads and retries, up to SESSION_STORE_MAX_RETRIES attempts.
- **Terminal transitions** go through ``transition``: one conditional
  ``UPDATE ... WHERE status = 'in_progress'``. Exactly one of several racing
  transitions sees rowcount 1.

All reads use ``populate_existing`` so a retried attempt never sees a stale
identity-map copy of the row.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Collection, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from cbt.core.config import settings
from cbt.core.datetime_utils import utc_now
from cbt.core.db_error_handling import storage_errors
from cbt.core.exceptions import (
    ActiveSessionConflict,
    ConcurrentModification,
    SessionNotActive,
    SessionNotFound,
)
from cbt.models import SessionStatus, TestSession

logger = logging.getLogger(__name__)

ACTIVE_SESSION_INDEX = "ix_test_sessions_active"

# Builds the column values to write from a freshly read session row
ChangeBuilder = Callable[[TestSession], Dict[str, Any]]


@dataclass(frozen=True)
class StatusSummary:
    status: SessionStatus
    count: int
    average_score: Optional[float]
    total_duration_seconds: int


def _is_active_session_violation(error: IntegrityError) -> bool:
    message = str(error.orig).lower()
    # PostgreSQL names the index; SQLite names the columns
    return ACTIVE_SESSION_INDEX in message or (
        "unique" in message
        and "test_sessions.test_id" in message
        and "test_sessions.student_id" in message
    )


class SessionStore:
    """TestSession persistence bound to one database session."""

    def __init__(self, db: Session, max_retries: Optional[int] = None):
        self.db = db
        self.max_retries = max_retries or settings.SESSION_STORE_MAX_RETRIES

    def _query(self) -> Query:
        return self.db.query(TestSession).populate_existing()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, session_id: str) -> Optional[TestSession]:
        with storage_errors(self.db, "load test session"):
            return self._query().filter(TestSession.id == session_id).first()

    def get_owned(self, session_id: str, student_id: str) -> Optional[TestSession]:
        """Fetch a session only if it belongs to the given student."""
        with storage_errors(self.db, "load test session"):
            return (
                self._query()
                .filter(
                    TestSession.id == session_id,
                    TestSession.student_id == student_id,
                )
                .first()
            )

    def get_for_owner(self, session_id: str, owner_id: str) -> Optional[TestSession]:
        """Fetch a session only if it belongs to the given test center."""
        with storage_errors(self.db, "load test session"):
            return (
                self._query()
                .filter(
                    TestSession.id == session_id,
                    TestSession.owner_id == owner_id,
                )
                .first()
            )

    def find_active(self, test_id: str, student_id: str) -> Optional[TestSession]:
        with storage_errors(self.db, "look up active test session"):
            return (
                self._query()
                .filter(
                    TestSession.test_id == test_id,
                    TestSession.student_id == student_id,
                    TestSession.status == SessionStatus.IN_PROGRESS,
                )
                .first()
            )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def insert(self, session: TestSession) -> TestSession:
        """Persist a new in-progress session.

        Raises:
            ActiveSessionConflict: Another in-progress session for the same
                (test, student) already exists.
        """
        with storage_errors(self.db, "create test session"):
            self.db.add(session)
            try:
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                if _is_active_session_violation(e):
                    raise ActiveSessionConflict(
                        session.test_id, session.student_id
                    ) from e
                raise
            self.db.refresh(session)
            return session

    def mutate(
        self,
        session_id: str,
        build_changes: ChangeBuilder,
        operation: str = "update test session",
        student_id: Optional[str] = None,
    ) -> TestSession:
        """Apply an optimistic read-modify-write to an in-progress session.

        ``build_changes`` receives the current row and returns the column
        values to write. It may raise an engine error to reject the change
        (nothing is written). It must not modify the row it is given.

        Args:
            session_id: Session to update.
            build_changes: Change builder, called once per attempt.
            operation: Operation name for logs and error messages.
            student_id: If given, the session must belong to this student.

        Returns:
            The session as written.

        Raises:
            SessionNotFound: Missing, or owned by another student.
            SessionNotActive: The session is no longer in progress.
            ConcurrentModification: Every attempt lost a race.
        """
        for attempt in range(1, self.max_retries + 1):
            with storage_errors(self.db, operation):
                session = self._query().filter(TestSession.id == session_id).first()
                if session is None or (
                    student_id is not None and session.student_id != student_id
                ):
                    raise SessionNotFound(session_id)
                if session.status.is_terminal:
                    raise SessionNotActive(session_id, session.status.value)

                values = build_changes(session)
                values["version"] = session.version + 1
                values["updated_at"] = utc_now()

                updated = (
                    self.db.query(TestSession)
                    .filter(
                        TestSession.id == session_id,
                        TestSession.version == session.version,
                        TestSession.status == SessionStatus.IN_PROGRESS,
                    )
                    .update(values, synchronize_session=False)
                )
                if updated == 1:
                    self.db.commit()
                    return self._query().filter(TestSession.id == session_id).one()

                self.db.rollback()

            logger.info(
                f"Concurrent write on session {session_id} during {operation}, "
                f"retrying (attempt {attempt}/{self.max_retries})"
            )

        logger.warning(
            f"Gave up on {operation} for session {session_id} after "
            f"{self.max_retries} attempts"
        )
        raise ConcurrentModification(session_id, self.max_retries)

    def transition(
        self,
        session_id: str,
        values: Dict[str, Any],
        operation: str,
        expected_version: Optional[int] = None,
    ) -> bool:
        """Move a session out of in_progress in one conditional update.

        Args:
            session_id: Session to transition.
            values: Column values to write, including the new status.
            operation: Operation name for logs and error messages.
            expected_version: If given, also require this version (the caller
                derived ``values`` from that exact state).

        Returns:
            True if this call performed the transition, False if the session
            had already left in_progress (or changed version) first.
        """
        with storage_errors(self.db, operation):
            query = self.db.query(TestSession).filter(
                TestSession.id == session_id,
                TestSession.status == SessionStatus.IN_PROGRESS,
            )
            if expected_version is not None:
                query = query.filter(TestSession.version == expected_version)

            to_write = dict(values)
            to_write["version"] = TestSession.version + 1
            to_write["updated_at"] = utc_now()
            updated = query.update(to_write, synchronize_session=False)
            self.db.commit()
            return updated == 1

    def update_review(
        self, session_id: str, owner_id: str, values: Dict[str, Any]
    ) -> Optional[TestSession]:
        """Write review fields (flag, notes) regardless of status.

        Returns:
            The updated session, or None if the owner has no such session.
        """
        with storage_errors(self.db, "update test session review"):
            to_write = dict(values)
            to_write["version"] = TestSession.version + 1
            to_write["updated_at"] = utc_now()
            updated = (
                self.db.query(TestSession)
                .filter(
                    TestSession.id == session_id,
                    TestSession.owner_id == owner_id,
                )
                .update(to_write, synchronize_session=False)
            )
            self.db.commit()
            if updated != 1:
                return None
            return self._query().filter(TestSession.id == session_id).one()

    # -------------------------------------------------------------------------
    # Listings
    # -------------------------------------------------------------------------

    def list_by_test(
        self,
        test_id: str,
        status: Optional[SessionStatus] = None,
        is_passed: Optional[bool] = None,
        is_flagged: Optional[bool] = None,
        is_reviewed: Optional[bool] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[TestSession], int]:
        """Sessions of one test, newest first, with the unpaginated total."""
        with storage_errors(self.db, "list test sessions"):
            query = self.db.query(TestSession).filter(TestSession.test_id == test_id)
            if status is not None:
                query = query.filter(TestSession.status == status)
            if is_passed is not None:
                query = query.filter(TestSession.is_passed == is_passed)
            if is_flagged is not None:
                query = query.filter(TestSession.is_flagged == is_flagged)
            if is_reviewed is not None:
                query = query.filter(TestSession.is_reviewed == is_reviewed)

            total = query.count()
            sessions = (
                query.order_by(TestSession.created_at.desc(), TestSession.id)
                .offset(skip)
                .limit(limit)
                .all()
            )
            return sessions, total

    def list_by_student(
        self,
        student_id: str,
        status: Optional[SessionStatus] = None,
        owner_id: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[TestSession], int]:
        """Sessions of one student, newest first, with the unpaginated total."""
        with storage_errors(self.db, "list student sessions"):
            query = self.db.query(TestSession).filter(
                TestSession.student_id == student_id
            )
            if status is not None:
                query = query.filter(TestSession.status == status)
            if owner_id is not None:
                query = query.filter(TestSession.owner_id == owner_id)

            total = query.count()
            sessions = (
                query.order_by(TestSession.created_at.desc(), TestSession.id)
                .offset(skip)
                .limit(limit)
                .all()
            )
            return sessions, total

    def list_in_progress(
        self,
        overdue_at: Optional[datetime] = None,
        limit: int = 1000,
        exclude_ids: Collection[str] = (),
    ) -> List[TestSession]:
        """In-progress sessions, oldest first.

        Args:
            overdue_at: If given, only sessions whose scheduled end is before
                this instant.
            limit: Maximum number of sessions returned.
            exclude_ids: Session ids to leave out (already handled by the caller).
        """
        with storage_errors(self.db, "list in-progress test sessions"):
            query = self._query().filter(
                TestSession.status == SessionStatus.IN_PROGRESS
            )
            if overdue_at is not None:
                query = query.filter(TestSession.expires_at < overdue_at)
            if exclude_ids:
                query = query.filter(TestSession.id.notin_(list(exclude_ids)))
            return query.order_by(TestSession.start_time).limit(limit).all()

    def list_for_test(self, test_id: str) -> List[TestSession]:
        """Every session of one test, for analytics."""
        with storage_errors(self.db, "load test sessions"):
            return (
                self.db.query(TestSession)
                .filter(TestSession.test_id == test_id)
                .order_by(TestSession.created_at)
                .all()
            )

    def status_summary_for_owner(self, owner_id: str) -> List[StatusSummary]:
        """Per-status count, average score and total duration for a tenant."""
        with storage_errors(self.db, "summarize test sessions"):
            rows = (
                self.db.query(
                    TestSession.status,
                    func.count(TestSession.id),
                    func.avg(TestSession.score),
                    func.coalesce(func.sum(TestSession.duration_seconds), 0),
                )
                .filter(TestSession.owner_id == owner_id)
                .group_by(TestSession.status)
                .all()
            )
        return [
            StatusSummary(
                status=SessionStatus(status),
                count=int(count),
                average_score=float(avg) if avg is not None else None,
                total_duration_seconds=int(total_duration),
            )
            for status, count, avg, total_duration in rows
        ]
