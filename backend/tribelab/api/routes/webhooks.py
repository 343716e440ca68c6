"""
Webhook endpoints.

Currently supports Razorpay subscription and invoice webhooks.
"""
import json

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from tribelab.core.rate_limit import limiter, WEBHOOK_LIMIT
from tribelab.db.base import get_db
from tribelab.schemas import WebhookAck
from tribelab.services.gateway import razorpay_client
from tribelab.services.webhooks import razorpay_webhook_service
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/razorpay", response_model=WebhookAck)
@limiter.limit(WEBHOOK_LIMIT)
async def razorpay_webhook(request: Request, db: Session = Depends(get_db)):
    """
    Handle Razorpay webhooks for the subscription lifecycle.

    Processes events:
    - subscription.authenticated / activated / charged
    - subscription.pending / halted / failed
    - subscription.cancelled / completed
    - invoice.issued
    """
    if not razorpay_client.webhook_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Razorpay webhook secret not configured",
        )

    payload = await request.body()
    signature = request.headers.get("x-razorpay-signature")

    if not signature:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing x-razorpay-signature header",
        )

    if not razorpay_client.verify_webhook_signature(payload, signature):
        logger.error("Invalid Razorpay webhook signature")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        )

    try:
        event = json.loads(payload)
    except ValueError as e:
        logger.error(f"Invalid Razorpay webhook payload: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid payload",
        ) from e

    if not isinstance(event, dict):
        logger.error(f"Razorpay webhook payload is not an object: {type(event).__name__}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid payload",
        )

    event_type = event.get("event")
    logger.info(f"Received Razorpay webhook: {event_type}")

    try:
        outcome = razorpay_webhook_service.handle_event(db, event)
    except Exception as e:
        db.rollback()
        logger.error(f"Error processing Razorpay webhook {event_type}: {str(e)}", exc_info=True)
        # Acknowledge anyway so Razorpay does not retry
        outcome = {"event": event_type, "handled": False}

    return WebhookAck(event=event_type, handled=outcome.get("handled", False))
