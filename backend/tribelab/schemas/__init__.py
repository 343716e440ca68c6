"""
Pydantic schemas for API request/response validation.
"""
from tribelab.schemas.billing import (
    ResolutionActionName,
    AdminTrialInfo,
    SubscriptionSummary,
    CommunityBillingData,
    ConflictAnalysis,
    AnalysisResult,
    ResolveConflictsRequest,
    ResolutionResult,
    CreateSubscriptionRequest,
    CreateSubscriptionResponse,
    VerifySubscriptionRequest,
    ActivationResult,
    CancelSubscriptionRequest,
    CancellationResult,
    TrialStatusInfo,
    StatusSnapshot,
    TrialStatusResult,
    TrialActivationResult,
    SweepResult,
    MaintenanceResult,
    WebhookAck,
)

__all__ = [
    "ResolutionActionName",
    "AdminTrialInfo",
    "SubscriptionSummary",
    "CommunityBillingData",
    "ConflictAnalysis",
    "AnalysisResult",
    "ResolveConflictsRequest",
    "ResolutionResult",
    "CreateSubscriptionRequest",
    "CreateSubscriptionResponse",
    "VerifySubscriptionRequest",
    "ActivationResult",
    "CancelSubscriptionRequest",
    "CancellationResult",
    "TrialStatusInfo",
    "StatusSnapshot",
    "TrialStatusResult",
    "TrialActivationResult",
    "SweepResult",
    "MaintenanceResult",
    "WebhookAck",
]
