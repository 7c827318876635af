"""create session engine tables

Revision ID: 3a9c1e2b7d40
Revises:
Create Date: 2026-10-05 09:12:44.201337

Creates the test catalog (tests, questions), the test_sessions document
table and the session_outcomes ledger that makes test statistics updates
idempotent.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3a9c1e2b7d40"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SESSION_STATUSES = ("in_progress", "completed", "abandoned", "expired")
TEST_STATUSES = ("draft", "published", "active", "completed", "archived")
SELECTION_METHODS = ("manual", "auto", "mixed")
QUESTION_TYPES = (
    "multiple_choice",
    "true_false",
    "short_answer",
    "essay",
    "fill_blank",
)


def upgrade() -> None:
    """Create catalog, session and outcome ledger tables with their indexes."""
    op.create_table(
        "tests",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("total_questions", sa.Integer(), nullable=False),
        sa.Column("passing_score", sa.Integer(), nullable=False),
        sa.Column(
            "question_selection_method",
            sa.Enum(*SELECTION_METHODS, name="selection_method", native_enum=False),
            nullable=False,
        ),
        sa.Column("question_ids", sa.JSON(), nullable=False),
        sa.Column("subject_ids", sa.JSON(), nullable=False),
        sa.Column("auto_selection_config", sa.JSON(), nullable=False),
        sa.Column(
            "status",
            sa.Enum(*TEST_STATUSES, name="test_status", native_enum=False),
            nullable=False,
        ),
        sa.Column("schedule_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("schedule_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("access_code", sa.String(length=20), nullable=True),
        sa.Column("total_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "completed_attempts", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("average_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("score_m2", sa.Float(), nullable=False, server_default="0"),
        sa.Column("highest_score", sa.Integer(), nullable=True),
        sa.Column("lowest_score", sa.Integer(), nullable=True),
        sa.Column("stats_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "duration_minutes >= 1 AND duration_minutes <= 480",
            name="ck_tests_duration_range",
        ),
        sa.CheckConstraint(
            "passing_score >= 0 AND passing_score <= 100",
            name="ck_tests_passing_score_range",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tests_owner_id", "tests", ["owner_id"])
    op.create_index("ix_tests_owner_status", "tests", ["owner_id", "status"])

    op.create_table(
        "questions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column("subject_id", sa.String(length=64), nullable=True),
        sa.Column("question_text", sa.Text(), nullable=False),
        sa.Column(
            "question_type",
            sa.Enum(*QUESTION_TYPES, name="question_type", native_enum=False),
            nullable=False,
        ),
        sa.Column("options", sa.JSON(), nullable=False),
        sa.Column("correct_answer", sa.String(length=500), nullable=True),
        sa.Column("points", sa.Integer(), nullable=False, server_default="1"),
        sa.CheckConstraint("points >= 1 AND points <= 100", name="ck_questions_points"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_questions_owner_id", "questions", ["owner_id"])
    op.create_index("ix_questions_subject_id", "questions", ["subject_id"])
    op.create_index(
        "ix_questions_owner_subject", "questions", ["owner_id", "subject_id"]
    )

    op.create_table(
        "test_sessions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("test_id", sa.String(length=36), nullable=False),
        sa.Column("student_id", sa.String(length=64), nullable=False),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column(
            "status",
            sa.Enum(*SESSION_STATUSES, name="session_status", native_enum=False),
            nullable=False,
        ),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_active_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        sa.Column("assigned_question_ids", sa.JSON(), nullable=False),
        sa.Column("total_questions", sa.Integer(), nullable=False),
        sa.Column("answers", sa.JSON(), nullable=False),
        sa.Column("time_remaining_seconds", sa.Integer(), nullable=False),
        sa.Column(
            "current_question_index", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("score", sa.Integer(), nullable=True),
        sa.Column("correct_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("incorrect_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "unanswered_count", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("is_passed", sa.Boolean(), nullable=True),
        sa.Column("access_code_used", sa.String(length=20), nullable=True),
        sa.Column("browser_info", sa.JSON(), nullable=False),
        sa.Column(
            "is_flagged", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("flag_reason", sa.String(length=1000), nullable=True),
        sa.Column(
            "is_reviewed", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("admin_notes", sa.String(length=1000), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "time_remaining_seconds >= 0", name="ck_test_sessions_time_remaining"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_test_sessions_test_student", "test_sessions", ["test_id", "student_id"]
    )
    op.create_index(
        "ix_test_sessions_test_status", "test_sessions", ["test_id", "status"]
    )
    op.create_index(
        "ix_test_sessions_student_created",
        "test_sessions",
        ["student_id", "created_at"],
    )
    op.create_index(
        "ix_test_sessions_owner_created", "test_sessions", ["owner_id", "created_at"]
    )
    op.create_index(
        "ix_test_sessions_status_created", "test_sessions", ["status", "created_at"]
    )

    op.create_table(
        "session_outcomes",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("session_id", sa.String(length=36), nullable=False),
        sa.Column("test_id", sa.String(length=36), nullable=False),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("session_id", name="uq_session_outcomes_session"),
    )
    op.create_index("ix_session_outcomes_test_id", "session_outcomes", ["test_id"])


def downgrade() -> None:
    """Drop all session engine tables."""
    op.drop_index("ix_session_outcomes_test_id", table_name="session_outcomes")
    op.drop_table("session_outcomes")

    op.drop_index("ix_test_sessions_status_created", table_name="test_sessions")
    op.drop_index("ix_test_sessions_owner_created", table_name="test_sessions")
    op.drop_index("ix_test_sessions_student_created", table_name="test_sessions")
    op.drop_index("ix_test_sessions_test_status", table_name="test_sessions")
    op.drop_index("ix_test_sessions_test_student", table_name="test_sessions")
    op.drop_table("test_sessions")

    op.drop_index("ix_questions_owner_subject", table_name="questions")
    op.drop_index("ix_questions_subject_id", table_name="questions")
    op.drop_index("ix_questions_owner_id", table_name="questions")
    op.drop_table("questions")

    op.drop_index("ix_tests_owner_status", table_name="tests")
    op.drop_index("ix_tests_owner_id", table_name="tests")
    op.drop_table("tests")
