"""
Community subscription model mirroring a Razorpay subscription.

History lists (webhook events, notifications, trial reminders) are stored as
JSONB arrays and are replaced wholesale on append so SQLAlchemy sees the change.
"""
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import Column, String, DateTime, Integer, Boolean, ForeignKey, Text
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import relationship

from tribelab.core.clock import parse_iso, to_iso, utcnow
from tribelab.db.base import Base

# Statuses that count as a live claim on the community
IN_FORCE_STATUSES = ("active", "trial", "past_due", "authenticated", "created")

# Statuses that may back a paid community
LIVE_STATUSES = ("active", "authenticated")


class CommunitySubscription(Base):
    """Subscription record - one per Razorpay subscription created for a community."""

    __tablename__ = "community_subscriptions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Razorpay identity
    razorpay_subscription_id = Column(String(255), unique=True, nullable=False, index=True)
    razorpay_plan_id = Column(String(255), nullable=False)
    razorpay_customer_id = Column(String(255), nullable=True, index=True)

    # Ownership
    admin_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    community_id = Column(UUID(as_uuid=True), ForeignKey("communities.id"), nullable=True, index=True)

    # created, authenticated, active, pending, halted, cancelled, completed, expired
    status = Column(String(30), default="created", nullable=False, index=True)

    # Plan terms
    quantity = Column(Integer, default=1, nullable=False)
    total_count = Column(Integer, default=120, nullable=False)
    paid_count = Column(Integer, default=0, nullable=False)
    remaining_count = Column(Integer, nullable=True)
    auth_attempts = Column(Integer, default=0, nullable=False)
    amount = Column(Integer, default=240000, nullable=False)  # paise
    currency = Column(String(3), default="INR", nullable=False)
    interval = Column(String(20), default="monthly", nullable=False)
    interval_count = Column(Integer, default=1, nullable=False)
    customer_notify = Column(Boolean, default=True, nullable=False)
    notes = Column(JSONB, default=dict, nullable=True)

    # Billing period
    current_start = Column(DateTime, nullable=True)
    current_end = Column(DateTime, nullable=True)
    charge_at = Column(DateTime, nullable=True)
    start_at = Column(DateTime, nullable=True)
    end_at = Column(DateTime, nullable=True)
    ended_at = Column(DateTime, nullable=True)
    trial_end_date = Column(DateTime, nullable=True)

    # Payment retries
    retry_attempts = Column(Integer, default=0, nullable=False)
    max_retry_attempts = Column(Integer, default=3, nullable=False)
    next_retry_at = Column(DateTime, nullable=True)
    consecutive_failures = Column(Integer, default=0, nullable=False)
    last_failure_at = Column(DateTime, nullable=True)
    failure_reason = Column(Text, nullable=True)

    # Sync bookkeeping
    last_webhook_at = Column(DateTime, nullable=True)
    last_synced_at = Column(DateTime, nullable=True)

    # Suspension
    suspended = Column(Boolean, default=False, nullable=False)
    suspended_at = Column(DateTime, nullable=True)
    suspension_reason = Column(String(100), nullable=True)

    # History
    webhook_events = Column(JSONB, default=list, nullable=True)
    notifications_sent = Column(JSONB, default=list, nullable=True)
    trial_reminders = Column(JSONB, default=list, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    admin = relationship("User", backref="community_subscriptions")
    community = relationship("Community", backref="subscription_records")

    @property
    def is_in_force(self) -> bool:
        return self.status in IN_FORCE_STATUSES

    def record_webhook_event(
        self,
        event: str,
        data: Optional[Dict[str, Any]] = None,
        received_at: Optional[datetime] = None,
        processed: bool = True,
    ) -> None:
        entry = {
            "event": event,
            "received_at": to_iso(received_at or utcnow()),
            "processed": processed,
            "data": data or {},
        }
        self.webhook_events = list(self.webhook_events or []) + [entry]

    def record_notification(self, notification_type: str, channel: str = "email", sent_at: Optional[datetime] = None) -> None:
        entry = {
            "type": notification_type,
            "sent_at": to_iso(sent_at or utcnow()),
            "channel": channel,
        }
        self.notifications_sent = list(self.notifications_sent or []) + [entry]

    def last_notification_at(self, notification_type: str) -> Optional[datetime]:
        sent = [
            parse_iso(entry.get("sent_at"))
            for entry in (self.notifications_sent or [])
            if entry.get("type") == notification_type
        ]
        sent = [value for value in sent if value is not None]
        return max(sent) if sent else None

    def has_trial_reminder(self, days_remaining: int) -> bool:
        return any(
            entry.get("days_remaining") == days_remaining
            for entry in (self.trial_reminders or [])
        )

    def record_trial_reminder(
        self,
        days_remaining: int,
        email_sent: bool,
        in_app_sent: bool,
        sent_at: Optional[datetime] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        entry = {
            "days_remaining": days_remaining,
            "sent_at": to_iso(sent_at or utcnow()),
            "email_sent": email_sent,
            "in_app_sent": in_app_sent,
            "metadata": metadata or {},
        }
        self.trial_reminders = list(self.trial_reminders or []) + [entry]

    def trim_webhook_events(self, limit: int) -> int:
        """Keep only the newest ``limit`` webhook events. Returns how many were dropped."""
        events: List[Dict[str, Any]] = list(self.webhook_events or [])
        if len(events) <= limit:
            return 0
        self.webhook_events = events[-limit:]
        return len(events) - limit

    def __repr__(self):
        return (
            f"<CommunitySubscription(id={self.id}, razorpay_subscription_id={self.razorpay_subscription_id}, "
            f"status={self.status})>"
        )
