"""Add partial unique index for active sessions

Revision ID: 7e4f0b9d2c15
Revises: 3a9c1e2b7d40
Create Date: 2026-10-05

Adds a partial unique index on test_sessions so that at most one
'in_progress' session can exist per (test, student) pair at the database
level.

Problem:
    Looking up an existing in-progress session and inserting a new one are
    two separate statements. Two concurrent start requests for the same
    student and test (double-click, network retry) could both pass the
    lookup and create duplicate in-progress sessions.

Solution:
    A partial unique index on (test_id, student_id) WHERE status =
    'in_progress'. The losing insert fails with an IntegrityError and the
    engine resumes the winner's session instead.
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = "7e4f0b9d2c15"
down_revision: Union[str, None] = "3a9c1e2b7d40"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # status is stored as a plain string (native_enum=False) with lowercase values
    op.execute(
        """
        CREATE UNIQUE INDEX ix_test_sessions_active
        ON test_sessions (test_id, student_id)
        WHERE status = 'in_progress'
        """
    )


def downgrade() -> None:
    op.drop_index(
        "ix_test_sessions_active",
        table_name="test_sessions",
    )
