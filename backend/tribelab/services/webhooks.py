"""
Razorpay webhook processing.

Each handled event updates the matching subscription record, appends an entry
to its webhook history and mirrors the outcome onto the community.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from tribelab.core.clock import as_naive_utc, utcnow
from tribelab.core.config import settings
from tribelab.models import Community, CommunitySubscription, Transaction
from tribelab.services.billing_dates import from_gateway_timestamp, resolve_billing_period

logger = logging.getLogger(__name__)


def _entity(payload: Dict[str, Any], name: str) -> Dict[str, Any]:
    return ((payload.get("payload") or {}).get(name) or {}).get("entity") or {}


class RazorpayWebhookService:
    """Applies Razorpay subscription and invoice events to local state."""

    def handle_event(self, db: Session, event: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Apply one verified webhook event.

        Args:
            db: Database session
            event: Parsed webhook body
            now: Receive time, defaults to current UTC time

        Returns:
            Dict with the event name and whether it was applied
        """
        now = as_naive_utc(now) if now else utcnow()
        event_type = event.get("event") or ""

        if event_type == "invoice.issued":
            invoice = _entity(event, "invoice")
            record = self._find_record(db, invoice.get("subscription_id"))
        else:
            entity = _entity(event, "subscription")
            record = self._find_record(db, entity.get("id"))

        if record is None:
            logger.warning(f"Webhook {event_type} for unknown subscription, ignoring")
            return {"event": event_type, "handled": False}

        if event_type == "subscription.charged":
            self.handle_charged(db, record, entity, _entity(event, "payment"), now)
        elif event_type == "subscription.failed":
            self.handle_failed(db, record, entity, _entity(event, "payment"), now)
        elif event_type == "subscription.cancelled":
            self.handle_cancelled(db, record, entity, now)
        elif event_type == "subscription.activated":
            self.handle_activated(db, record, entity, now)
        elif event_type == "subscription.authenticated":
            self._set_status(record, entity, "authenticated", now)
        elif event_type == "subscription.pending":
            self._set_status(record, entity, "pending", now)
            self._update_community(db, record, subscription_status="past_due")
        elif event_type == "subscription.halted":
            self._set_status(record, entity, "halted", now)
            self._update_community(db, record, subscription_status="halted")
        elif event_type == "subscription.completed":
            self._set_status(record, entity, "completed", now)
            record.ended_at = from_gateway_timestamp(entity.get("ended_at"), now)
            self._update_community(db, record, subscription_status="completed")
        elif event_type == "invoice.issued":
            invoice = _entity(event, "invoice")
            record.record_webhook_event(
                event_type,
                data={
                    "invoice_id": invoice.get("id"),
                    "amount": invoice.get("amount"),
                    "due_date": invoice.get("expire_by"),
                },
                received_at=now,
            )
            record.last_webhook_at = now
            db.commit()
            return {"event": event_type, "handled": True}
        else:
            logger.debug(f"Unhandled Razorpay event type: {event_type}")
            return {"event": event_type, "handled": False}

        record.last_webhook_at = now
        record.record_webhook_event(
            event_type,
            data={"subscription_id": record.razorpay_subscription_id, "status": record.status},
            received_at=now,
        )
        db.commit()
        logger.info(f"Processed {event_type} for subscription {record.razorpay_subscription_id}")
        return {"event": event_type, "handled": True}

    def handle_charged(
        self,
        db: Session,
        record: CommunitySubscription,
        entity: Dict[str, Any],
        payment: Dict[str, Any],
        now: datetime,
    ) -> None:
        """Successful renewal charge: extend the period and clear failures."""
        record.status = entity.get("status") or "active"
        record.current_start, record.current_end = resolve_billing_period(
            from_gateway_timestamp(entity.get("current_start"), record.current_start),
            from_gateway_timestamp(entity.get("current_end"), record.current_end),
            now,
            settings.community_plan_period_days,
        )
        record.charge_at = from_gateway_timestamp(entity.get("charge_at"), record.charge_at)
        record.paid_count = entity.get("paid_count") or (record.paid_count or 0) + 1
        record.remaining_count = entity.get("remaining_count", record.remaining_count)
        record.consecutive_failures = 0
        record.retry_attempts = 0
        record.next_retry_at = None
        record.failure_reason = None

        community = self._update_community(
            db,
            record,
            subscription_status="active",
            payment_status="paid",
            subscription_id=record.razorpay_subscription_id,
            subscription_start_date=record.current_start,
            subscription_end_date=record.current_end,
        )
        if community is not None and community.suspended:
            community.lift_suspension()

        payment_id = payment.get("id")
        if payment_id and not db.query(Transaction).filter(Transaction.payment_id == payment_id).first():
            db.add(
                Transaction(
                    order_id=f"sub_charge_{record.razorpay_subscription_id}_{payment_id}",
                    payment_id=payment_id,
                    amount=(payment.get("amount") or record.amount or 0) / 100,
                    currency=payment.get("currency") or record.currency,
                    status="captured",
                    payment_type="community_subscription",
                    payer_id=record.admin_id,
                    community_id=record.community_id,
                    details={
                        "subscription_id": record.razorpay_subscription_id,
                        "invoice_id": payment.get("invoice_id"),
                        "is_renewal": True,
                        "charged_at": now.isoformat(),
                    },
                )
            )

    def handle_failed(
        self,
        db: Session,
        record: CommunitySubscription,
        entity: Dict[str, Any],
        payment: Dict[str, Any],
        now: datetime,
    ) -> None:
        """Failed charge: count the failure and schedule a retry while attempts remain."""
        record.consecutive_failures = (record.consecutive_failures or 0) + 1
        record.last_failure_at = now
        record.failure_reason = payment.get("error_description") or payment.get("error_code")
        if entity.get("status"):
            record.status = entity["status"]

        if (record.retry_attempts or 0) < (record.max_retry_attempts or settings.max_payment_retry_attempts):
            record.retry_attempts = (record.retry_attempts or 0) + 1
            record.next_retry_at = now + timedelta(hours=settings.payment_retry_delay_hours)
        else:
            record.next_retry_at = None

        self._update_community(db, record, subscription_status="past_due")

    def handle_cancelled(self, db: Session, record: CommunitySubscription, entity: Dict[str, Any], now: datetime) -> None:
        record.status = "cancelled"
        record.ended_at = from_gateway_timestamp(entity.get("ended_at"), now)
        self._update_community(db, record, subscription_status="cancelled")

    def handle_activated(self, db: Session, record: CommunitySubscription, entity: Dict[str, Any], now: datetime) -> None:
        """Subscription became active: lift any trial suspension on the community."""
        self._set_status(record, entity, "active", now)
        community = self._update_community(
            db,
            record,
            subscription_status="active",
            subscription_id=record.razorpay_subscription_id,
        )
        if community is not None:
            community.lift_suspension()
        record.suspended = False
        record.suspended_at = None
        record.suspension_reason = None

    def _set_status(self, record: CommunitySubscription, entity: Dict[str, Any], status: str, now: datetime) -> None:
        record.status = status
        if entity.get("current_start") or entity.get("current_end"):
            record.current_start, record.current_end = resolve_billing_period(
                from_gateway_timestamp(entity.get("current_start"), record.current_start),
                from_gateway_timestamp(entity.get("current_end"), record.current_end),
                now,
                settings.community_plan_period_days,
            )

    def _find_record(self, db: Session, subscription_id: Optional[str]) -> Optional[CommunitySubscription]:
        if not subscription_id:
            return None
        return (
            db.query(CommunitySubscription)
            .filter(CommunitySubscription.razorpay_subscription_id == subscription_id)
            .first()
        )

    def _update_community(self, db: Session, record: CommunitySubscription, **fields) -> Optional[Community]:
        if not record.community_id:
            return None
        community = db.query(Community).filter(Community.id == record.community_id).first()
        if community is None:
            logger.warning(f"Community {record.community_id} for subscription {record.razorpay_subscription_id} not found")
            return None
        for name, value in fields.items():
            setattr(community, name, value)
        return community


# Global service instance
razorpay_webhook_service = RazorpayWebhookService()
