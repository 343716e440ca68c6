"""
API endpoints for community access status, trials and cancellation.

Endpoints:
- GET /communities/{slug}/status - Access status (richer for the admin)
- GET /communities/{slug}/check-trial-status - Trial/payment gate for the admin
- POST /communities/{slug}/activate-trial - Start the single 14-day admin trial
- POST /communities/{slug}/cancel-trial - Cancel the trial and suspend the community
- POST /communities/{slug}/cancel-subscription - Cancel the Razorpay subscription
"""
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from tribelab.core.exceptions import BillingError
from tribelab.core.nextauth import get_current_user, get_optional_user
from tribelab.core.rate_limit import limiter, BILLING_READ_LIMIT, BILLING_WRITE_LIMIT
from tribelab.db.base import get_db
from tribelab.models import User
from tribelab.schemas import (
    CancelSubscriptionRequest,
    CancellationResult,
    StatusSnapshot,
    TrialActivationResult,
    TrialStatusResult,
)
from tribelab.services.subscription import community_subscription_service
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/{slug}/status", response_model=StatusSnapshot)
@limiter.limit(BILLING_READ_LIMIT)
async def get_community_status(
    request: Request,
    slug: str,
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    """
    Get community access status.

    Unexpected errors return a permissive default (not suspended, access
    granted) instead of an error.
    """
    try:
        return community_subscription_service.get_community_status(db, slug, current_user)

    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error getting status for community {slug}, failing open: {str(e)}", exc_info=True)
        return StatusSnapshot(
            slug=slug,
            suspended=False,
            has_active_trial_or_payment=True,
            fail_open=True,
        )


@router.get("/{slug}/check-trial-status", response_model=TrialStatusResult)
@limiter.limit(BILLING_READ_LIMIT)
async def check_trial_status(
    request: Request,
    slug: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Check whether the community admin still has an active trial or payment."""
    try:
        return community_subscription_service.check_trial_status(db, slug, current_user)

    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error checking trial status for {slug}, failing open: {str(e)}", exc_info=True)
        return TrialStatusResult(is_admin=False, has_active_trial_or_payment=True, fail_open=True)


@router.post("/{slug}/activate-trial", response_model=TrialActivationResult)
@limiter.limit(BILLING_WRITE_LIMIT)
async def activate_trial(
    request: Request,
    slug: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Activate the community's one-time admin trial."""
    try:
        return community_subscription_service.activate_trial(db, slug, current_user)

    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error activating trial for {slug}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to activate trial")


@router.post("/{slug}/cancel-trial", response_model=TrialActivationResult)
@limiter.limit(BILLING_WRITE_LIMIT)
async def cancel_trial(
    request: Request,
    slug: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Cancel the active trial. The community is suspended until it subscribes."""
    try:
        return community_subscription_service.cancel_trial(db, slug, current_user)

    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error cancelling trial for {slug}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to cancel trial")


@router.post("/{slug}/cancel-subscription", response_model=CancellationResult)
@limiter.limit(BILLING_WRITE_LIMIT)
async def cancel_subscription(
    request: Request,
    slug: str,
    body: Optional[CancelSubscriptionRequest] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Cancel the community subscription.

    Cancels at the end of the billing period unless cancel_at_cycle_end is false.
    """
    cancel_at_cycle_end = body.cancel_at_cycle_end if body is not None else True
    try:
        return community_subscription_service.cancel_subscription(
            db, slug, current_user, cancel_at_cycle_end=cancel_at_cycle_end
        )

    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error cancelling subscription for {slug}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to cancel subscription")
