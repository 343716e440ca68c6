"""
Scheduler-triggered endpoints, guarded by CRON_SECRET.

Endpoints:
- POST /cron/trial-management - Trial reminders, expired-trial suspensions, stale repair
- POST /cron/subscription-maintenance - Razorpay sync and subscription housekeeping
"""
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from tribelab.core.cron_auth import verify_cron_secret
from tribelab.core.rate_limit import limiter, CRON_LIMIT
from tribelab.db.base import get_db
from tribelab.schemas import MaintenanceResult, SweepResult
from tribelab.services.billing_sweep import billing_sweep
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/trial-management", response_model=SweepResult, dependencies=[Depends(verify_cron_secret)])
@limiter.limit(CRON_LIMIT)
async def run_trial_management(
    request: Request,
    db: Session = Depends(get_db),
):
    """Run the community billing sweep."""
    try:
        return billing_sweep.run_scheduled_sweep(db)
    except Exception as e:
        logger.error(f"Trial management cron failed: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to run trial management")


@router.post(
    "/subscription-maintenance",
    response_model=MaintenanceResult,
    dependencies=[Depends(verify_cron_secret)],
)
@limiter.limit(CRON_LIMIT)
async def run_subscription_maintenance(
    request: Request,
    db: Session = Depends(get_db),
):
    """Run Razorpay subscription maintenance."""
    try:
        return billing_sweep.run_subscription_maintenance(db)
    except Exception as e:
        logger.error(f"Subscription maintenance cron failed: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to run subscription maintenance")
