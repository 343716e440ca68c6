"""
Celery tasks for scheduled community billing jobs.

Tasks:
- run_billing_sweep: Trial reminders, expired-trial suspensions, stale subscription repair
- run_subscription_maintenance: Razorpay sync, renewal/retry reminders, history trimming
"""
from tribelab.core.celery_app import celery_app
from tribelab.db.base import SessionLocal
from tribelab.services.billing_sweep import billing_sweep


@celery_app.task
def run_billing_sweep():
    """
    Daily sweep across all communities.

    Returns the sweep summary as a JSON-serializable dict.
    """
    db = SessionLocal()

    try:
        result = billing_sweep.run_scheduled_sweep(db)
        print(
            f"[billing] Sweep complete: reminders={result.reminders_sent}, "
            f"suspended={result.communities_suspended}, expired={result.expired_subscriptions}, "
            f"errors={len(result.errors)}"
        )
        return result.model_dump(mode="json")

    except Exception as e:
        print(f"[billing] Sweep task failed: {e}")
        raise

    finally:
        db.close()


@celery_app.task
def run_subscription_maintenance():
    """Daily Razorpay sync and subscription housekeeping."""
    db = SessionLocal()

    try:
        result = billing_sweep.run_subscription_maintenance(db)
        print(
            f"[billing] Maintenance complete: synced={result.synced}, "
            f"expired={result.expired_subscriptions}, pruned={result.webhook_events_pruned}, "
            f"errors={len(result.errors)}"
        )
        return result.model_dump(mode="json")

    except Exception as e:
        print(f"[billing] Maintenance task failed: {e}")
        raise

    finally:
        db.close()
