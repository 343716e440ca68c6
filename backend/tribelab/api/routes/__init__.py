"""
API route modules.
"""
from tribelab.api.routes import (
    communities,
    community_subscriptions,
    cron,
    subscription_conflicts,
    webhooks,
)

__all__ = ["communities", "community_subscriptions", "cron", "subscription_conflicts", "webhooks"]
