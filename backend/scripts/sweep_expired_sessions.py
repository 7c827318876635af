"""
Cron job: expire overdue test sessions.

Intended to run every minute. Moves every in-progress session past its
scheduled end (start + test duration) to expired. Safe to overlap with
itself and with student completions: a session is only ever transitioned
once.

Exit codes:
    0 - Success
    1 - Database error
    2 - Sweep error
    3 - Configuration/import error
"""
import json
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("session_expiry_cron")


def main() -> int:
    # Defer imports so config/import failures produce exit code 3
    try:
        from cbt.core.catalog import SqlQuestionBank, SqlTestCatalog
        from cbt.core.datetime_utils import utc_now
        from cbt.core.session_engine import SessionEngine
        from cbt.core.session_store import SessionStore
        from cbt.models.base import SessionLocal
    except Exception as exc:
        logger.error("Failed to import required modules: %s", exc)
        return 3

    try:
        db = SessionLocal()
    except Exception as exc:
        logger.error("Failed to create database session: %s", exc)
        return 1

    try:
        engine = SessionEngine(
            store=SessionStore(db),
            catalog=SqlTestCatalog(db),
            question_bank=SqlQuestionBank(db),
        )
        started_at = utc_now()
        try:
            expired = engine.sweep_expired_sessions()
        except Exception as exc:
            logger.error("Expiry sweep failed: %s", exc)
            return 2

        logger.info("Expiry sweep: %d sessions expired", expired)

        # Emit heartbeat JSON for log monitoring
        heartbeat = {
            "type": "HEARTBEAT",
            "service": "session_expiry_cron",
            "expired_count": expired,
            "ran_at": started_at.isoformat(),
        }
        print(json.dumps(heartbeat), flush=True)

        return 0

    except Exception as exc:
        logger.error("Unexpected error during session expiry cron: %s", exc)
        return 2
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
