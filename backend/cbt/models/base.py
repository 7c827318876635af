"""
Database base configuration for SQLAlchemy models.

All session state lives in the database between requests; the engine and
session factory defined here are shared by the API (through get_db) and by
the batch scripts (through SessionLocal).
"""

from typing import Any, Dict, Generator

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from cbt.core.config import settings

# Load environment variables
load_dotenv()

DATABASE_URL = settings.DATABASE_URL


def _engine_options(url: str) -> Dict[str, Any]:
    """
    Build create_engine keyword arguments for the configured backend.

    Every store round-trip must be bounded: the pool timeout caps the wait for
    a connection and, on PostgreSQL, statement_timeout caps each query.
    """
    if url.startswith("sqlite"):
        return {
            "connect_args": {
                "check_same_thread": False,
                "timeout": settings.DB_POOL_TIMEOUT,
            },
        }

    options: Dict[str, Any] = {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_POOL_MAX_OVERFLOW,
        "pool_timeout": settings.DB_POOL_TIMEOUT,
        "pool_recycle": settings.DB_POOL_RECYCLE,
        "pool_pre_ping": True,  # Verify connections are alive before using them
    }
    if url.startswith("postgresql") and settings.DB_STATEMENT_TIMEOUT_MS > 0:
        options["connect_args"] = {
            "options": f"-c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS}"
        }
    return options


engine = create_engine(
    DATABASE_URL,
    echo=False,
    **_engine_options(DATABASE_URL),
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    """
    SQLAlchemy 2.0 declarative base class with type annotation support.
    """

    pass


def get_db() -> Generator[Session, None, None]:
    """
    Dependency function to get a database session.

    Yields a database session and ensures proper cleanup.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
