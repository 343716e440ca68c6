"""
API endpoints for community subscription checkout.

Endpoints:
- POST /community-subscriptions/create - Create a Razorpay subscription for checkout
- POST /community-subscriptions/verify - Verify the checkout payment and activate
"""
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from tribelab.core.exceptions import BillingError
from tribelab.core.nextauth import get_current_user
from tribelab.core.rate_limit import limiter, BILLING_WRITE_LIMIT
from tribelab.db.base import get_db
from tribelab.models import User
from tribelab.schemas import (
    ActivationResult,
    CreateSubscriptionRequest,
    CreateSubscriptionResponse,
    VerifySubscriptionRequest,
)
from tribelab.services.subscription import community_subscription_service
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/create", response_model=CreateSubscriptionResponse)
@limiter.limit(BILLING_WRITE_LIMIT)
async def create_subscription(
    request: Request,
    body: CreateSubscriptionRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create a Razorpay subscription for the community plan."""
    try:
        return community_subscription_service.create_subscription(
            db,
            current_user,
            body.community_id,
            customer_name=body.customer_name,
            customer_email=body.customer_email,
            customer_phone=body.customer_phone,
        )

    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Unexpected error creating subscription: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create subscription")


@router.post("/verify", response_model=ActivationResult)
@limiter.limit(BILLING_WRITE_LIMIT)
async def verify_subscription(
    request: Request,
    body: VerifySubscriptionRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Verify a Razorpay checkout payment and activate the subscription.

    The subscription must belong to the caller and the signature must verify.
    """
    try:
        return community_subscription_service.verify_and_activate(
            db,
            current_user,
            subscription_id=body.subscription_id,
            payment_id=body.payment_id,
            signature=body.signature,
            community_id=body.community_id,
        )

    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Unexpected error verifying subscription: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to verify subscription")
