"""
Maintenance endpoints, authenticated with the X-Admin-Token header.

Intended for schedulers (cron, Railway jobs) that cannot hold a user token.
"""
import logging

from fastapi import APIRouter, Depends

from cbt.api.v1._dependencies import get_catalog, get_session_engine
from cbt.core.auth import verify_admin_token
from cbt.core.catalog import SqlTestCatalog
from cbt.core.datetime_utils import utc_now
from cbt.core.exceptions import TestNotFound
from cbt.core.session_engine import SessionEngine
from cbt.schemas.analytics import ReconcileStatsResponse, SweepResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/expire-overdue", response_model=SweepResponse)
def expire_overdue_sessions(
    _: bool = Depends(verify_admin_token),
    engine: SessionEngine = Depends(get_session_engine),
):
    """
    Run the expiry sweep once.

    Every in-progress session past its scheduled end is moved to expired.
    Safe to call concurrently; a session is never expired twice.
    """
    expired = engine.sweep_expired_sessions()
    logger.info(f"Admin-triggered expiry sweep expired {expired} sessions")
    return SweepResponse(expired_count=expired, ran_at=utc_now().isoformat())


@router.post(
    "/tests/{test_id}/reconcile-stats", response_model=ReconcileStatsResponse
)
def reconcile_test_stats(
    test_id: str,
    _: bool = Depends(verify_admin_token),
    catalog: SqlTestCatalog = Depends(get_catalog),
):
    """Recompute a test's rolling statistics from its sessions."""
    if not catalog.reconcile_test_stats(test_id):
        raise TestNotFound(test_id)
    return ReconcileStatsResponse(test_id=test_id, reconciled=True)
