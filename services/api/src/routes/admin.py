"""Operator endpoints."""

from fastapi import APIRouter, Depends

from jobs.expiry import ExpirySweeper
from marketplace.access import Principal
from utils import log

from .dependencies import get_expiry_sweeper, require_admin

logger = log.get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/expiry-sweep")
async def admin_run_expiry_sweep(
    admin: Principal = Depends(require_admin),
    sweeper: ExpirySweeper = Depends(get_expiry_sweeper),
):
    """Run the listing expiry sweep now instead of waiting for the nightly job."""
    logger.info(f"Expiry sweep triggered manually by {admin.user_id}")
    expired = await sweeper.run_once()
    return {"status": "ok", "expired": expired}
