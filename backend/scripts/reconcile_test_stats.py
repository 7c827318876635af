"""
Cron job: recompute every test's rolling statistics from scratch.

Intended to run nightly. Repairs drift from missed or failed completion
notifications by recomputing attempts, average/high/low score and the
Welford M2 from the test's sessions.

Exit codes:
    0 - Success (including when some tests failed and were skipped)
    1 - Database error
    2 - Reconciliation error
    3 - Configuration/import error
"""
import json
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("stats_reconcile_cron")


def main() -> int:
    # Defer imports so config/import failures produce exit code 3
    try:
        from cbt.core.catalog import SqlTestCatalog
        from cbt.core.datetime_utils import utc_now
        from cbt.core.graceful_failure import graceful_failure
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
        catalog = SqlTestCatalog(db)
        started_at = utc_now()
        try:
            test_ids = catalog.list_test_ids()
        except Exception as exc:
            logger.error("Failed to list tests: %s", exc)
            return 1

        reconciled = 0
        failed = 0
        for test_id in test_ids:
            with graceful_failure(
                "reconcile test stats",
                logger,
                log_level=logging.ERROR,
                context={"test_id": test_id},
            ) as outcome:
                catalog.reconcile_test_stats(test_id)
            if outcome.failed:
                failed += 1
            else:
                reconciled += 1

        logger.info(
            "Stats reconciliation: %d tests reconciled, %d failed", reconciled, failed
        )

        heartbeat = {
            "type": "HEARTBEAT",
            "service": "stats_reconcile_cron",
            "reconciled_count": reconciled,
            "failed_count": failed,
            "ran_at": started_at.isoformat(),
        }
        print(json.dumps(heartbeat), flush=True)

        return 0

    except Exception as exc:
        logger.error("Unexpected error during stats reconciliation cron: %s", exc)
        return 2
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
