"""
Celery application configuration.

Handles background tasks for:
- Daily trial reminders, expired-trial suspensions and stale subscription repair
- Daily Razorpay subscription maintenance
"""
from celery import Celery
from celery.schedules import crontab
from celery.signals import task_prerun, task_postrun, task_failure

from tribelab.core.config import settings

# Create Celery app
celery_app = Celery(
    "tribelab",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "tribelab.tasks.billing_tasks",
    ]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=1800,  # 30 minutes hard limit
    task_soft_time_limit=1500,  # 25 minutes soft limit
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

# Task routes (assign tasks to specific queues)
celery_app.conf.task_routes = {
    "tribelab.tasks.billing_tasks.*": {"queue": "billing"},
}

# Periodic billing jobs
celery_app.conf.beat_schedule = {
    "community-billing-sweep": {
        "task": "tribelab.tasks.billing_tasks.run_billing_sweep",
        "schedule": crontab(hour=settings.billing_sweep_hour_utc, minute=0),
    },
    "subscription-maintenance": {
        "task": "tribelab.tasks.billing_tasks.run_subscription_maintenance",
        "schedule": crontab(hour=settings.subscription_maintenance_hour_utc, minute=0),
    },
}


@task_prerun.connect
def task_prerun_handler(task_id, task, *args, **kwargs):
    """Handler called before task execution."""
    print(f"Task starting: {task.name} (ID: {task_id})")


@task_postrun.connect
def task_postrun_handler(task_id, task, *args, retval=None, **kwargs):
    """Handler called after task execution."""
    print(f"Task completed: {task.name} (ID: {task_id})")


@task_failure.connect
def task_failure_handler(task_id, exception, *args, **kwargs):
    """Handler called on task failure."""
    print(f"Task failed: {task_id}, Exception: {str(exception)}")
