"""
Community subscription service.

Handles:
- Razorpay subscription checkout creation
- Payment verification and activation
- Cancellation (gateway first, local state after confirmation)
- Community access status and admin trial activation/cancellation
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from tribelab.core.clock import as_naive_utc, utcnow
from tribelab.core.config import settings
from tribelab.core.exceptions import (
    CommunityPermissionError,
    GatewayError,
    InvalidStateError,
    NotFoundError,
    SignatureError,
    SubscriptionExistsError,
)
from tribelab.models import (
    Community,
    CommunitySubscription,
    LIVE_STATUSES,
    Transaction,
    TrialHistory,
    User,
)
from tribelab.schemas import (
    ActivationResult,
    CancellationResult,
    CreateSubscriptionResponse,
    StatusSnapshot,
    TrialActivationResult,
    TrialStatusInfo,
    TrialStatusResult,
)
from tribelab.services.billing_dates import from_gateway_timestamp, resolve_billing_period
from tribelab.services.gateway import RazorpayClient, razorpay_client
from tribelab.services.reconciliation import load_admin_community
from tribelab.services.trial_policy import AccessDecision, evaluate_community

logger = logging.getLogger(__name__)

# Existing records in these statuses block a new checkout
BLOCKING_STATUSES = ("active", "trial", "past_due")


def _get_community(db: Session, slug: str) -> Community:
    community = db.query(Community).filter(Community.slug == slug).first()
    if not community:
        raise NotFoundError("Community not found")
    return community


def decide_access(community: Community, now: datetime) -> AccessDecision:
    """
    Evaluate community access, granting it when evaluation itself fails.

    This is the explicit fail-open branch for read-only status checks.
    """
    try:
        return evaluate_community(community, now)
    except Exception as e:
        logger.error(f"Access evaluation failed for community {community.id}, failing open: {str(e)}", exc_info=True)
        return AccessDecision.fail_open(f"access evaluation failed: {str(e)}")


class CommunitySubscriptionService:
    """Service for the community subscription and trial lifecycle."""

    def __init__(self, gateway: RazorpayClient = None):
        self.gateway = gateway or razorpay_client

    # Checkout
    def create_subscription(
        self,
        db: Session,
        caller: User,
        community_id: uuid.UUID,
        customer_name: Optional[str] = None,
        customer_email: Optional[str] = None,
        customer_phone: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CreateSubscriptionResponse:
        """
        Create a Razorpay subscription for a community and record it locally.

        Args:
            db: Database session
            caller: Authenticated user (must be the community admin)
            community_id: Community to subscribe
            customer_name: Name for the Razorpay customer
            customer_email: Email for the Razorpay customer
            customer_phone: Phone for the Razorpay customer
            now: Current time, defaults to current UTC time

        Returns:
            CreateSubscriptionResponse for the checkout modal
        """
        now = as_naive_utc(now) if now else utcnow()

        community = db.query(Community).filter(Community.id == community_id).first()
        if not community:
            raise NotFoundError("Community not found")
        if community.admin_id != caller.id:
            raise CommunityPermissionError("Only community admin can create a subscription")

        existing = (
            db.query(CommunitySubscription)
            .filter(
                CommunitySubscription.community_id == community.id,
                CommunitySubscription.admin_id == caller.id,
                CommunitySubscription.status.in_(BLOCKING_STATUSES),
            )
            .first()
        )
        if existing:
            raise SubscriptionExistsError(
                "Community already has an active subscription",
                code=existing.razorpay_subscription_id,
            )

        plan_id = settings.razorpay_community_plan_id
        if not plan_id:
            raise GatewayError("Community subscription plan not configured", code="plan_not_configured")

        customer_id = caller.razorpay_customer_id
        if not customer_id:
            customer = self.gateway.create_customer(
                name=customer_name or caller.full_name or caller.email,
                email=customer_email or caller.email,
                contact=customer_phone or caller.phone,
                notes={"user_id": str(caller.id)},
            )
            customer_id = customer["id"]
            caller.razorpay_customer_id = customer_id
            logger.info(f"Created Razorpay customer {customer_id} for user {caller.id}")

        gateway_subscription = self.gateway.create_subscription(
            plan_id=plan_id,
            customer_id=customer_id,
            total_count=settings.community_plan_total_count,
            notes={"community_id": str(community.id), "admin_id": str(caller.id)},
        )

        gateway_status = gateway_subscription.get("status") or "created"
        current_start, current_end = resolve_billing_period(
            from_gateway_timestamp(gateway_subscription.get("current_start"), None),
            from_gateway_timestamp(gateway_subscription.get("current_end"), None),
            now,
            settings.community_plan_period_days,
        )
        trial_end = now + timedelta(days=settings.trial_period_days)

        record = CommunitySubscription(
            razorpay_subscription_id=gateway_subscription["id"],
            razorpay_plan_id=plan_id,
            razorpay_customer_id=customer_id,
            admin_id=caller.id,
            community_id=community.id,
            status=gateway_status,
            quantity=gateway_subscription.get("quantity") or 1,
            total_count=gateway_subscription.get("total_count") or settings.community_plan_total_count,
            paid_count=gateway_subscription.get("paid_count") or 0,
            remaining_count=gateway_subscription.get("remaining_count"),
            amount=settings.community_plan_amount,
            currency=settings.community_plan_currency,
            current_start=current_start,
            current_end=current_end,
            charge_at=from_gateway_timestamp(gateway_subscription.get("charge_at"), None),
            start_at=from_gateway_timestamp(gateway_subscription.get("start_at"), None),
            end_at=from_gateway_timestamp(gateway_subscription.get("end_at"), None),
            trial_end_date=trial_end,
            max_retry_attempts=settings.max_payment_retry_attempts,
            notes=gateway_subscription.get("notes") or {},
            webhook_events=[],
            notifications_sent=[],
            trial_reminders=[],
        )
        record.record_webhook_event(
            "subscription.created",
            data={"subscription_id": gateway_subscription["id"], "status": gateway_status},
            received_at=now,
        )
        db.add(record)

        community.subscription_id = gateway_subscription["id"]
        community.subscription_status = "trial" if gateway_status == "created" else gateway_status
        community.subscription_start_date = current_start
        community.subscription_end_date = current_end
        community.trial_end_date = trial_end
        community.payment_status = "paid" if gateway_status == "active" else "trial"

        db.commit()
        logger.info(
            f"Created subscription {gateway_subscription['id']} for community {community.id} "
            f"(status={gateway_status})"
        )

        return CreateSubscriptionResponse(
            subscription_id=gateway_subscription["id"],
            status=gateway_status,
            short_url=gateway_subscription.get("short_url"),
            razorpay_key_id=self.gateway.key_id,
            amount=settings.community_plan_amount,
            currency=settings.community_plan_currency,
            trial_end_date=trial_end,
        )

    # Verification
    def verify_and_activate(
        self,
        db: Session,
        caller: User,
        subscription_id: str,
        payment_id: str,
        signature: str,
        community_id: Optional[uuid.UUID] = None,
        now: Optional[datetime] = None,
    ) -> ActivationResult:
        """
        Verify a checkout payment and activate the subscription.

        Nothing is written unless the record belongs to the caller and the
        signature verifies.

        Args:
            db: Database session
            caller: Authenticated user who paid
            subscription_id: Razorpay subscription id
            payment_id: Razorpay payment id
            signature: Razorpay checkout signature
            community_id: Community to activate, defaults to the record's community
            now: Current time, defaults to current UTC time

        Returns:
            ActivationResult

        Raises:
            NotFoundError: No record for this subscription id and caller
            SignatureError: Signature did not verify
        """
        now = as_naive_utc(now) if now else utcnow()

        record = (
            db.query(CommunitySubscription)
            .filter(
                CommunitySubscription.razorpay_subscription_id == subscription_id,
                CommunitySubscription.admin_id == caller.id,
            )
            .first()
        )
        if not record:
            logger.warning(f"Verification for unknown subscription {subscription_id} by user {caller.id}")
            raise NotFoundError("Subscription not found")

        signature_verified = self.gateway.verify_subscription_signature(subscription_id, payment_id, signature)
        if not signature_verified:
            if not settings.allow_unverified_signatures:
                logger.warning(f"Invalid payment signature for subscription {subscription_id}")
                raise SignatureError("Invalid payment signature")
            logger.warning(
                f"Accepting unverified signature for subscription {subscription_id} "
                f"(allow_unverified_signatures is on, environment={settings.environment})"
            )

        target_community_id = community_id or record.community_id
        community = None
        if target_community_id:
            if record.community_id and record.community_id != target_community_id:
                raise NotFoundError("Subscription not found for this community")
            community = db.query(Community).filter(Community.id == target_community_id).first()
            if not community:
                raise NotFoundError("Community not found")
            if community.admin_id != caller.id:
                raise CommunityPermissionError("Only community admin can activate a subscription")

        existing_payment = db.query(Transaction).filter(Transaction.payment_id == payment_id).first()
        if existing_payment:
            logger.info(f"Payment {payment_id} already recorded, skipping activation")
            return ActivationResult(
                message="Subscription already verified",
                subscription_id=subscription_id,
                status=record.status,
                paid_count=record.paid_count,
                current_start=record.current_start or now,
                current_end=record.current_end or now,
                community_id=target_community_id,
                transaction_id=existing_payment.id,
                signature_verified=signature_verified,
            )

        try:
            current_start, current_end = resolve_billing_period(
                record.current_start,
                record.current_end,
                now,
                settings.community_plan_period_days,
            )

            record.status = "active"
            record.paid_count = (record.paid_count or 0) + 1
            record.auth_attempts = 0
            record.retry_attempts = 0
            record.consecutive_failures = 0
            record.next_retry_at = None
            record.current_start = current_start
            record.current_end = current_end
            if target_community_id and not record.community_id:
                record.community_id = target_community_id
            record.record_webhook_event(
                "subscription.authenticated",
                data={"subscription_id": subscription_id, "payment_id": payment_id},
                received_at=now,
            )

            if community is not None:
                community.subscription_id = subscription_id
                community.subscription_status = "active"
                community.payment_status = "paid"
                community.subscription_start_date = current_start
                community.subscription_end_date = current_end
                self.clear_trial_state(db, community, caller.id, now)

            transaction = Transaction(
                order_id=f"sub_auth_{subscription_id}_{payment_id}",
                payment_id=payment_id,
                signature=signature,
                amount=(record.amount or settings.community_plan_amount) / 100,
                currency=record.currency or settings.community_plan_currency,
                status="captured",
                payment_type="community_subscription",
                payer_id=caller.id,
                community_id=target_community_id,
                details={
                    "subscription_id": subscription_id,
                    "community_id": str(target_community_id) if target_community_id else None,
                    "is_authentication": True,
                    "authenticated_at": now.isoformat(),
                    "signature_verified": signature_verified,
                },
            )
            db.add(transaction)
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info(f"Activated subscription {subscription_id} for user {caller.id}")

        return ActivationResult(
            message="Subscription activated successfully",
            subscription_id=subscription_id,
            status=record.status,
            paid_count=record.paid_count,
            current_start=current_start,
            current_end=current_end,
            community_id=target_community_id,
            transaction_id=transaction.id,
            signature_verified=signature_verified,
        )

    # Cancellation
    def cancel_subscription(
        self,
        db: Session,
        slug: str,
        caller: User,
        cancel_at_cycle_end: bool = True,
        now: Optional[datetime] = None,
    ) -> CancellationResult:
        """
        Cancel the community's live subscription.

        Razorpay is called first; local state only changes after it confirms.

        Raises:
            CommunityPermissionError: Caller is not the community admin
            NotFoundError: Unknown community or no live subscription
            GatewayError: Razorpay rejected the cancellation (nothing written)
        """
        now = as_naive_utc(now) if now else utcnow()
        community = load_admin_community(db, slug, caller, action="cancel subscription")

        record = (
            db.query(CommunitySubscription)
            .filter(
                CommunitySubscription.community_id == community.id,
                CommunitySubscription.admin_id == caller.id,
                CommunitySubscription.status.in_(LIVE_STATUSES),
            )
            .order_by(CommunitySubscription.created_at.desc())
            .first()
        )
        if not record:
            raise NotFoundError("No active subscription found for this community")

        self.gateway.cancel_subscription(record.razorpay_subscription_id, cancel_at_cycle_end)

        record.status = "cancelled"
        record.ended_at = now
        record.record_webhook_event(
            "subscription.cancelled",
            data={
                "subscription_id": record.razorpay_subscription_id,
                "cancel_at_cycle_end": cancel_at_cycle_end,
                "cancelled_by": str(caller.id),
                "cancelled_at": now.isoformat(),
                "cancelled_via": "admin_dashboard",
            },
            received_at=now,
        )
        record.record_notification("subscription_cancelled", sent_at=now)

        community.subscription_status = "cancelled"
        if not cancel_at_cycle_end:
            community.payment_status = "expired"

        db.commit()
        logger.info(
            f"Cancelled subscription {record.razorpay_subscription_id} for community {community.id} "
            f"(at_cycle_end={cancel_at_cycle_end})"
        )

        if cancel_at_cycle_end:
            message = (
                "Subscription cancelled successfully. You will continue to have access until the end "
                "of your current billing period. No refunds will be provided."
            )
            access_until = record.current_end
        else:
            message = "Subscription cancelled immediately. Access has been revoked. No refunds will be provided."
            access_until = now

        return CancellationResult(
            message=message,
            subscription_id=record.razorpay_subscription_id,
            status=record.status,
            cancel_at_cycle_end=cancel_at_cycle_end,
            cancelled_at=now,
            access_until=access_until,
        )

    # Status
    def get_community_status(
        self,
        db: Session,
        slug: str,
        caller: Optional[User] = None,
        now: Optional[datetime] = None,
    ) -> StatusSnapshot:
        """
        Read-only access status for a community.

        Admin callers also receive subscription details and trial eligibility.
        """
        now = as_naive_utc(now) if now else utcnow()
        community = _get_community(db, slug)
        decision = decide_access(community, now)
        is_admin = caller is not None and community.admin_id == caller.id

        snapshot = StatusSnapshot(
            community_id=community.id,
            slug=community.slug,
            name=community.name,
            suspended=bool(community.suspended),
            suspension_reason=community.suspension_reason,
            suspended_at=community.suspended_at,
            has_active_trial_or_payment=decision.has_access,
            payment_status=community.payment_status,
            days_remaining=decision.days_remaining,
            trial_info=TrialStatusInfo(
                activated=bool(community.admin_trial_activated),
                has_used_trial=bool(community.admin_trial_has_used_trial),
                start_date=community.admin_trial_start_date,
                end_date=community.admin_trial_end_date,
            ),
            is_admin=is_admin,
            data_faults=list(decision.faults),
            fail_open=decision.fail_open_applied,
        )
        if is_admin:
            snapshot.trial_eligible = decision.trial_eligible
            snapshot.subscription_id = community.subscription_id
            snapshot.subscription_status = community.subscription_status
            snapshot.subscription_end_date = community.subscription_end_date
        return snapshot

    def check_trial_status(
        self,
        db: Session,
        slug: str,
        caller: User,
        now: Optional[datetime] = None,
    ) -> TrialStatusResult:
        """Trial/payment check. Only admins are gated; members always pass."""
        now = as_naive_utc(now) if now else utcnow()
        community = _get_community(db, slug)

        if community.admin_id != caller.id:
            return TrialStatusResult(is_admin=False, has_active_trial_or_payment=True)

        decision = decide_access(community, now)
        return TrialStatusResult(
            is_admin=True,
            has_active_trial_or_payment=decision.has_access,
            payment_status=community.payment_status,
            days_remaining=decision.days_remaining,
            trial_eligible=decision.trial_eligible,
            fail_open=decision.fail_open_applied,
        )

    # Trials
    def activate_trial(
        self,
        db: Session,
        slug: str,
        caller: User,
        now: Optional[datetime] = None,
    ) -> TrialActivationResult:
        """
        Start the community's single admin trial.

        Raises:
            InvalidStateError: Community already has access or used its trial
        """
        now = as_naive_utc(now) if now else utcnow()
        community = load_admin_community(db, slug, caller, action="activate trial")

        decision = evaluate_community(community, now)
        if community.admin_trial_has_used_trial:
            raise InvalidStateError("Trial has already been used for this community")
        if decision.has_access:
            raise InvalidStateError("Community already has an active subscription or trial")

        trial_end = now + timedelta(days=settings.trial_period_days)
        community.admin_trial_activated = True
        community.admin_trial_has_used_trial = True
        community.admin_trial_start_date = now
        community.admin_trial_end_date = trial_end
        community.admin_trial_used_at = now
        community.admin_trial_cancelled = False
        community.admin_trial_cancelled_date = None
        community.free_trial_activated = True
        community.payment_status = "trial"
        community.subscription_end_date = trial_end
        community.trial_end_date = trial_end
        community.lift_suspension()

        db.add(
            TrialHistory(
                user_id=caller.id,
                community_id=community.id,
                trial_type="community",
                status="active",
                started_at=now,
                ends_at=trial_end,
            )
        )
        db.commit()
        logger.info(f"Activated {settings.trial_period_days}-day trial for community {community.id}")

        return TrialActivationResult(
            message=f"{settings.trial_period_days}-day free trial activated",
            community_id=community.id,
            payment_status=community.payment_status,
            trial_start_date=now,
            trial_end_date=trial_end,
            suspended=False,
        )

    def cancel_trial(
        self,
        db: Session,
        slug: str,
        caller: User,
        now: Optional[datetime] = None,
    ) -> TrialActivationResult:
        """Cancel an active admin trial and suspend the community."""
        now = as_naive_utc(now) if now else utcnow()
        community = load_admin_community(db, slug, caller, action="cancel trial")

        if not (community.admin_trial_activated or community.free_trial_activated):
            raise InvalidStateError("No active trial to cancel")

        community.admin_trial_activated = False
        community.admin_trial_cancelled = True
        community.admin_trial_cancelled_date = now
        community.free_trial_activated = False
        community.payment_status = "suspended"
        community.suspended = True
        community.suspended_at = now
        community.suspension_reason = "Trial cancelled by admin"

        for trial in self._active_trials(db, community.id, caller.id):
            trial.status = "cancelled"
            trial.cancelled_at = now

        db.commit()
        logger.info(f"Cancelled trial for community {community.id}")

        return TrialActivationResult(
            message="Trial cancelled. Your community has been suspended.",
            community_id=community.id,
            payment_status=community.payment_status,
            trial_start_date=community.admin_trial_start_date,
            trial_end_date=community.admin_trial_end_date,
            suspended=True,
        )

    def clear_trial_state(self, db: Session, community: Community, user_id: uuid.UUID, now: datetime) -> None:
        """Convert any running trial after a successful payment. Does not commit."""
        community.admin_trial_activated = False
        community.admin_trial_converted = True
        community.free_trial_activated = False
        community.lift_suspension()

        for trial in self._active_trials(db, community.id, user_id):
            trial.status = "converted"
            trial.converted_at = now

    def _active_trials(self, db: Session, community_id: uuid.UUID, user_id: uuid.UUID):
        return (
            db.query(TrialHistory)
            .filter(
                TrialHistory.community_id == community_id,
                TrialHistory.user_id == user_id,
                TrialHistory.status == "active",
            )
            .all()
        )


# Global service instance
community_subscription_service = CommunitySubscriptionService()
