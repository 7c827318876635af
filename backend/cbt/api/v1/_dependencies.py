"""
Shared dependencies for v1 endpoints.

Builds the session engine and its collaborators on top of the request's
database session.
"""
from fastapi import Depends
from sqlalchemy.orm import Session

from cbt.core.catalog import SqlQuestionBank, SqlTestCatalog
from cbt.core.session_engine import SessionEngine
from cbt.core.session_store import SessionStore
from cbt.models import get_db


def get_catalog(db: Session = Depends(get_db)) -> SqlTestCatalog:
    return SqlTestCatalog(db)


def get_session_engine(
    db: Session = Depends(get_db),
    catalog: SqlTestCatalog = Depends(get_catalog),
) -> SessionEngine:
    """Session engine bound to the request's database session."""
    return SessionEngine(
        store=SessionStore(db),
        catalog=catalog,
        question_bank=SqlQuestionBank(db),
    )
