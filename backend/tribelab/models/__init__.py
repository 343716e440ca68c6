"""
Database models package.

All SQLAlchemy models are exported from this module for easy imports.
"""
from tribelab.models.user import User
from tribelab.models.community import Community
from tribelab.models.subscription import (
    CommunitySubscription,
    IN_FORCE_STATUSES,
    LIVE_STATUSES,
)
from tribelab.models.transaction import Transaction
from tribelab.models.trial_history import TrialHistory
from tribelab.models.notification import Notification

__all__ = [
    "User",
    "Community",
    "CommunitySubscription",
    "IN_FORCE_STATUSES",
    "LIVE_STATUSES",
    "Transaction",
    "TrialHistory",
    "Notification",
]
