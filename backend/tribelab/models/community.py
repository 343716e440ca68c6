"""
Community model carrying the community's billing state.

The admin trial is stored as flat ``admin_trial_*`` columns; ``admin_trial_info``
exposes them as one mapping for API responses.
"""
import uuid
from typing import Any, Dict
from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from tribelab.core.clock import utcnow
from tribelab.db.base import Base


class Community(Base):
    """Community with its subscription/trial billing fields."""

    __tablename__ = "communities"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    slug = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    admin_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)

    # Billing state
    payment_status = Column(String(20), default="unpaid", nullable=False)  # unpaid, trial, paid, expired, suspended
    subscription_id = Column(String(255), nullable=True, index=True)  # Razorpay subscription id
    subscription_status = Column(String(50), nullable=True)
    subscription_start_date = Column(DateTime, nullable=True)
    subscription_end_date = Column(DateTime, nullable=True)
    trial_end_date = Column(DateTime, nullable=True)
    free_trial_activated = Column(Boolean, default=False, nullable=False)  # legacy trial flag

    # Admin trial (single, non-repeatable)
    admin_trial_activated = Column(Boolean, default=False, nullable=False)
    admin_trial_has_used_trial = Column(Boolean, default=False, nullable=False)
    admin_trial_start_date = Column(DateTime, nullable=True)
    admin_trial_end_date = Column(DateTime, nullable=True)
    admin_trial_cancelled = Column(Boolean, default=False, nullable=False)
    admin_trial_converted = Column(Boolean, default=False, nullable=False)
    admin_trial_used_at = Column(DateTime, nullable=True)
    admin_trial_cancelled_date = Column(DateTime, nullable=True)

    # Suspension
    suspended = Column(Boolean, default=False, nullable=False)
    suspended_at = Column(DateTime, nullable=True)
    suspension_reason = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    admin = relationship("User", backref="administered_communities")

    @property
    def admin_trial_info(self) -> Dict[str, Any]:
        return {
            "activated": bool(self.admin_trial_activated),
            "has_used_trial": bool(self.admin_trial_has_used_trial),
            "start_date": self.admin_trial_start_date,
            "end_date": self.admin_trial_end_date,
            "cancelled": bool(self.admin_trial_cancelled),
            "converted": bool(self.admin_trial_converted),
            "trial_used_at": self.admin_trial_used_at,
            "cancelled_date": self.admin_trial_cancelled_date,
        }

    def reset_admin_trial(self) -> None:
        """Return every admin trial field to its never-activated state."""
        self.admin_trial_activated = False
        self.admin_trial_has_used_trial = False
        self.admin_trial_start_date = None
        self.admin_trial_end_date = None
        self.admin_trial_cancelled = False
        self.admin_trial_converted = False
        self.admin_trial_used_at = None
        self.admin_trial_cancelled_date = None

    def lift_suspension(self) -> None:
        self.suspended = False
        self.suspended_at = None
        self.suspension_reason = None

    def __repr__(self):
        return f"<Community(id={self.id}, slug={self.slug}, payment_status={self.payment_status})>"
