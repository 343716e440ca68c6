"""
Pydantic schemas for community billing operations.
"""
import uuid
from datetime import datetime
from typing import List, Optional, Literal
from pydantic import BaseModel, Field


ResolutionActionName = Literal["cleanup", "force-reset"]


class AdminTrialInfo(BaseModel):
    """Admin trial fields of a community."""
    activated: bool = False
    has_used_trial: bool = False
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    cancelled: bool = False
    converted: bool = False
    trial_used_at: Optional[datetime] = None
    cancelled_date: Optional[datetime] = None


# Conflict analysis / resolution
class SubscriptionSummary(BaseModel):
    """Subscription record as listed in a conflict analysis."""
    id: uuid.UUID
    razorpay_subscription_id: str
    status: str
    current_start: Optional[datetime] = None
    current_end: Optional[datetime] = None
    admin_id: uuid.UUID
    community_id: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CommunityBillingData(BaseModel):
    """Snapshot of a community's billing fields."""
    payment_status: str
    subscription_id: Optional[str] = None
    subscription_status: Optional[str] = None
    subscription_start_date: Optional[datetime] = None
    subscription_end_date: Optional[datetime] = None
    admin_trial_info: AdminTrialInfo


class ConflictAnalysis(BaseModel):
    """Raw fault counts found by a conflict analysis."""
    in_force_count: int = 0
    multiple_in_force: bool = False
    expired_active_count: int = 0
    invalid_date_count: int = 0
    has_orphaned_subscription_id: bool = False
    linked_to_inactive_subscription: bool = False
    status_mismatch: bool = False


class AnalysisResult(BaseModel):
    """Read-only conflict report for one community."""
    community_id: uuid.UUID
    community_slug: str
    has_conflicts: bool
    total_subscriptions: int
    conflicting_subscriptions: List[SubscriptionSummary] = Field(default_factory=list)
    community_data: CommunityBillingData
    recommendations: List[str] = Field(default_factory=list)
    analysis: ConflictAnalysis


class ResolveConflictsRequest(BaseModel):
    """Request to repair subscription conflicts. There is no default action."""
    action: str = Field(..., description="'cleanup' or 'force-reset'")


class ResolutionResult(BaseModel):
    """Outcome of a cleanup or force-reset."""
    success: bool
    action: ResolutionActionName
    message: str
    removed_subscriptions: int = 0
    modified_subscriptions: int = 0
    updated_community_fields: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    details: List[str] = Field(default_factory=list)


# Subscription creation / verification / cancellation
class CreateSubscriptionRequest(BaseModel):
    """Request to start a community subscription checkout."""
    community_id: uuid.UUID
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None


class CreateSubscriptionResponse(BaseModel):
    """Checkout details for the Razorpay subscription modal."""
    subscription_id: str
    status: str
    short_url: Optional[str] = None
    razorpay_key_id: str
    amount: int
    currency: str
    trial_end_date: Optional[datetime] = None


class VerifySubscriptionRequest(BaseModel):
    """Payment confirmation returned by the Razorpay checkout."""
    subscription_id: str = Field(..., min_length=1, alias="razorpay_subscription_id")
    payment_id: str = Field(..., min_length=1, alias="razorpay_payment_id")
    signature: str = Field(..., min_length=1, alias="razorpay_signature")
    community_id: Optional[uuid.UUID] = None

    class Config:
        populate_by_name = True


class ActivationResult(BaseModel):
    """Outcome of a verified subscription activation."""
    success: bool = True
    message: str
    subscription_id: str
    status: str
    paid_count: int
    current_start: datetime
    current_end: datetime
    community_id: Optional[uuid.UUID] = None
    transaction_id: Optional[uuid.UUID] = None
    signature_verified: bool = True


class CancelSubscriptionRequest(BaseModel):
    """Request to cancel the community subscription."""
    cancel_at_cycle_end: bool = True


class CancellationResult(BaseModel):
    """Outcome of a subscription cancellation."""
    success: bool = True
    message: str
    subscription_id: str
    status: str
    cancel_at_cycle_end: bool
    cancelled_at: datetime
    access_until: Optional[datetime] = None


# Status / trial
class TrialStatusInfo(BaseModel):
    """Trial fields exposed on the community status endpoint."""
    activated: bool = False
    has_used_trial: bool = False
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class StatusSnapshot(BaseModel):
    """Community access status. Admin callers receive the subscription block."""
    community_id: Optional[uuid.UUID] = None
    slug: str
    name: Optional[str] = None
    suspended: bool = False
    suspension_reason: Optional[str] = None
    suspended_at: Optional[datetime] = None
    has_active_trial_or_payment: bool
    payment_status: Optional[str] = None
    days_remaining: Optional[int] = None
    trial_info: Optional[TrialStatusInfo] = None
    is_admin: bool = False
    trial_eligible: Optional[bool] = None
    subscription_id: Optional[str] = None
    subscription_status: Optional[str] = None
    subscription_end_date: Optional[datetime] = None
    data_faults: List[str] = Field(default_factory=list)
    fail_open: bool = False


class TrialStatusResult(BaseModel):
    """Trial check for the current caller."""
    is_admin: bool
    has_active_trial_or_payment: bool
    payment_status: Optional[str] = None
    days_remaining: Optional[int] = None
    trial_eligible: bool = False
    fail_open: bool = False


class TrialActivationResult(BaseModel):
    """Outcome of activating or cancelling an admin trial."""
    success: bool = True
    message: str
    community_id: uuid.UUID
    payment_status: str
    trial_start_date: Optional[datetime] = None
    trial_end_date: Optional[datetime] = None
    suspended: bool = False


# Scheduled jobs
class SweepResult(BaseModel):
    """Summary of a scheduled trial/suspension sweep."""
    success: bool
    ran_at: datetime
    reminders_sent: int = 0
    communities_suspended: int = 0
    expired_subscriptions: int = 0
    communities_repaired: int = 0
    errors: List[str] = Field(default_factory=list)


class MaintenanceResult(BaseModel):
    """Summary of a subscription maintenance run."""
    success: bool
    ran_at: datetime
    synced: int = 0
    renewal_reminders_sent: int = 0
    retry_notifications_sent: int = 0
    expired_subscriptions: int = 0
    webhook_events_pruned: int = 0
    errors: List[str] = Field(default_factory=list)


class WebhookAck(BaseModel):
    """Acknowledgement returned to Razorpay."""
    status: str = "ok"
    event: Optional[str] = None
    handled: bool = False
