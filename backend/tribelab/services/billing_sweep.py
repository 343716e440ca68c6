"""
Scheduled billing sweep and subscription maintenance.

The sweep runs trial reminders, expired-trial suspensions, community data
repair and stale record repair across all communities. Communities and stale
records are repaired with the same functions the admin cleanup uses, so both
paths converge on the same state.

Maintenance syncs records with Razorpay, sends renewal and retry reminders,
expires records whose retries are exhausted and trims webhook history.
"""
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from tribelab.core.clock import as_naive_utc, utcnow
from tribelab.core.config import settings
from tribelab.core.exceptions import GatewayError
from tribelab.models import Community, CommunitySubscription, IN_FORCE_STATUSES, User
from tribelab.schemas import MaintenanceResult, SweepResult
from tribelab.services.billing_dates import MIN_VALID_DATE, days_until, from_gateway_timestamp, resolve_billing_period
from tribelab.services.gateway import RazorpayClient, razorpay_client
from tribelab.services.notifications import NotificationService, notification_service
from tribelab.services.reconciliation import (
    expire_record,
    is_stale,
    related_subscriptions,
    repair_community_dates,
    repair_community_links,
)
from tribelab.services.trial_policy import evaluate_community

logger = logging.getLogger(__name__)

# Records still waiting on their first charge
TRIALING_STATUSES = ("created", "authenticated")

SUSPENSION_REASON_TRIAL_EXPIRED = "trial_expired"


class BillingSweep:
    """Cross-community billing jobs run by Celery beat or the cron endpoint."""

    def __init__(self, notifier: NotificationService = None, gateway: RazorpayClient = None):
        self.notifier = notifier or notification_service
        self.gateway = gateway or razorpay_client

    def run_scheduled_sweep(self, db: Session, now: Optional[datetime] = None) -> SweepResult:
        """
        Run reminders, suspensions and stale record repair.

        Each step accumulates its own errors; a failing step does not stop the
        ones after it.
        """
        now = as_naive_utc(now) if now else utcnow()
        result = SweepResult(success=True, ran_at=now)

        steps = [
            ("trial reminders", self.send_trial_reminders),
            ("expired trials", self.process_expired_trials),
            ("community data", self.repair_community_data),
            ("lapsed admin trials", self.suspend_lapsed_admin_trials),
            ("stale subscriptions", self.repair_stale_subscriptions),
        ]
        for label, step in steps:
            try:
                step(db, now, result)
            except Exception as e:
                db.rollback()
                logger.error(f"Billing sweep step '{label}' failed: {str(e)}", exc_info=True)
                result.errors.append(f"{label}: {str(e)}")

        result.success = not result.errors
        logger.info(
            f"Billing sweep complete: reminders={result.reminders_sent}, "
            f"suspended={result.communities_suspended}, expired={result.expired_subscriptions}, "
            f"errors={len(result.errors)}"
        )
        return result

    def send_trial_reminders(self, db: Session, now: datetime, result: SweepResult) -> None:
        """Remind admins 7, 3, 2 and 1 days before the trial ends, once per threshold."""
        records = (
            db.query(CommunitySubscription)
            .filter(
                CommunitySubscription.status.in_(TRIALING_STATUSES),
                CommunitySubscription.trial_end_date.isnot(None),
                CommunitySubscription.trial_end_date > now,
                CommunitySubscription.suspended.is_(False),
            )
            .all()
        )

        for record in records:
            trial_day = record.trial_end_date.date()
            matching = [
                days for days in settings.trial_reminder_days
                if trial_day == (now + timedelta(days=days)).date()
            ]
            if not matching:
                continue
            days_remaining = matching[0]
            if record.has_trial_reminder(days_remaining):
                continue

            try:
                admin, community = self._owners(db, record)
                if admin is None or community is None:
                    continue
                sent = self.notifier.send_trial_reminder(db, admin, community, days_remaining)
                record.record_trial_reminder(
                    days_remaining,
                    email_sent=sent["email_sent"],
                    in_app_sent=sent["in_app_sent"],
                    sent_at=now,
                    metadata={"trial_end_date": record.trial_end_date.isoformat()},
                )
                db.commit()
                result.reminders_sent += 1
            except Exception as e:
                db.rollback()
                logger.error(f"Trial reminder failed for subscription {record.razorpay_subscription_id}: {str(e)}")
                result.errors.append(f"reminder {record.razorpay_subscription_id}: {str(e)}")

    def process_expired_trials(self, db: Session, now: datetime, result: SweepResult) -> None:
        """Expire unpaid records whose trial has ended and suspend their communities."""
        records = (
            db.query(CommunitySubscription)
            .filter(
                CommunitySubscription.status.in_(TRIALING_STATUSES),
                CommunitySubscription.trial_end_date.isnot(None),
                CommunitySubscription.trial_end_date < now,
                CommunitySubscription.suspended.is_(False),
            )
            .all()
        )

        for record in records:
            try:
                record.status = "expired"
                record.ended_at = record.ended_at or now
                record.suspended = True
                record.suspended_at = now
                record.suspension_reason = SUSPENSION_REASON_TRIAL_EXPIRED
                record.record_webhook_event(
                    "trial.expired",
                    data={"trial_end_date": record.trial_end_date.isoformat()},
                    received_at=now,
                )
                result.expired_subscriptions += 1

                admin, community = self._owners(db, record)
                if community is not None and not community.suspended:
                    self._suspend(community, now)
                    community.subscription_status = "expired"
                    result.communities_suspended += 1
                    if admin is not None:
                        self.notifier.send_suspension_notice(db, admin, community)
                db.commit()
            except Exception as e:
                db.rollback()
                logger.error(f"Trial expiry failed for subscription {record.razorpay_subscription_id}: {str(e)}")
                result.errors.append(f"expire {record.razorpay_subscription_id}: {str(e)}")

    def repair_community_data(self, db: Session, now: datetime, result: SweepResult) -> None:
        """Fix implausible community dates, contradictory trial flags and unlinked paid communities."""
        communities = (
            db.query(Community)
            .filter(
                or_(
                    Community.subscription_end_date <= MIN_VALID_DATE,
                    Community.admin_trial_end_date <= MIN_VALID_DATE,
                    and_(
                        Community.admin_trial_activated.is_(True),
                        Community.admin_trial_cancelled.is_(True),
                    ),
                    and_(
                        Community.payment_status == "paid",
                        or_(Community.subscription_id.is_(None), Community.subscription_id == ""),
                    ),
                )
            )
            .all()
        )

        for community in communities:
            try:
                records = related_subscriptions(db, community, community.admin_id)
                changed = repair_community_dates(community, records, now)
                changed.extend(repair_community_links(community, records, now))
                if changed:
                    db.commit()
                    result.communities_repaired += 1
                    logger.info(f"Repaired billing data for community {community.id}: {changed}")
            except Exception as e:
                db.rollback()
                logger.error(f"Repairing billing data for community {community.id} failed: {str(e)}")
                result.errors.append(f"community data {community.slug}: {str(e)}")

    def suspend_lapsed_admin_trials(self, db: Session, now: datetime, result: SweepResult) -> None:
        """Suspend communities whose admin trial ended without a payment."""
        communities = (
            db.query(Community)
            .filter(
                Community.admin_trial_activated.is_(True),
                Community.suspended.is_(False),
                Community.payment_status != "paid",
            )
            .all()
        )

        for community in communities:
            decision = evaluate_community(community, now)
            if decision.faults:
                logger.warning(f"Community {community.id} has billing data faults: {list(decision.faults)}")
            if not decision.trial_expired:
                continue
            try:
                community.admin_trial_activated = False
                community.free_trial_activated = False
                community.payment_status = "expired"
                self._suspend(community, now)
                admin = db.query(User).filter(User.id == community.admin_id).first()
                if admin is not None:
                    self.notifier.send_suspension_notice(db, admin, community)
                db.commit()
                result.communities_suspended += 1
            except Exception as e:
                db.rollback()
                logger.error(f"Suspending community {community.id} failed: {str(e)}")
                result.errors.append(f"suspend {community.slug}: {str(e)}")

    def repair_stale_subscriptions(self, db: Session, now: datetime, result: SweepResult) -> None:
        """Expire in-force records past their period end, then repair their communities."""
        candidates = (
            db.query(CommunitySubscription)
            .filter(
                CommunitySubscription.status.in_(IN_FORCE_STATUSES),
                CommunitySubscription.current_end.isnot(None),
                CommunitySubscription.current_end < now,
            )
            .all()
        )

        by_community: Dict[object, List[CommunitySubscription]] = defaultdict(list)
        for record in candidates:
            if not is_stale(record, now):
                continue
            try:
                expire_record(record, now)
                db.commit()
                result.expired_subscriptions += 1
                if record.community_id:
                    by_community[record.community_id].append(record)
            except Exception as e:
                db.rollback()
                logger.error(f"Expiring stale subscription {record.razorpay_subscription_id} failed: {str(e)}")
                result.errors.append(f"stale {record.razorpay_subscription_id}: {str(e)}")

        for community_id in by_community:
            community = db.query(Community).filter(Community.id == community_id).first()
            if community is None:
                continue
            try:
                records = related_subscriptions(db, community, community.admin_id)
                changed = repair_community_links(community, records, now)
                if changed:
                    db.commit()
                    result.communities_repaired += 1
                    logger.info(f"Repaired community {community.id}: {changed}")
            except Exception as e:
                db.rollback()
                logger.error(f"Repairing community {community_id} failed: {str(e)}")
                result.errors.append(f"repair {community_id}: {str(e)}")

    # Maintenance
    def run_subscription_maintenance(self, db: Session, now: Optional[datetime] = None) -> MaintenanceResult:
        """Sync with Razorpay, send renewal/retry reminders, expire exhausted records, trim history."""
        now = as_naive_utc(now) if now else utcnow()
        result = MaintenanceResult(success=True, ran_at=now)

        steps = [
            ("gateway sync", self.sync_with_gateway),
            ("renewal reminders", self.send_renewal_reminders),
            ("retry notifications", self.send_retry_notifications),
            ("exhausted retries", self.expire_exhausted_retries),
            ("webhook history", self.prune_webhook_history),
        ]
        for label, step in steps:
            try:
                step(db, now, result)
            except Exception as e:
                db.rollback()
                logger.error(f"Subscription maintenance step '{label}' failed: {str(e)}", exc_info=True)
                result.errors.append(f"{label}: {str(e)}")

        result.success = not result.errors
        logger.info(
            f"Subscription maintenance complete: synced={result.synced}, "
            f"renewals={result.renewal_reminders_sent}, retries={result.retry_notifications_sent}, "
            f"expired={result.expired_subscriptions}, pruned={result.webhook_events_pruned}"
        )
        return result

    def sync_with_gateway(self, db: Session, now: datetime, result: MaintenanceResult) -> None:
        """Refresh records not heard from within the sync interval."""
        if not self.gateway.is_configured:
            logger.info("Razorpay not configured, skipping gateway sync")
            return

        cutoff = now - timedelta(hours=settings.gateway_sync_interval_hours)
        records = (
            db.query(CommunitySubscription)
            .filter(
                CommunitySubscription.status.in_(("active", "pending", "past_due")),
                or_(
                    CommunitySubscription.last_synced_at.is_(None),
                    CommunitySubscription.last_synced_at < cutoff,
                ),
            )
            .limit(settings.gateway_sync_batch_size)
            .all()
        )

        for record in records:
            try:
                remote = self.gateway.fetch_subscription(record.razorpay_subscription_id)
            except GatewayError as e:
                result.errors.append(f"sync {record.razorpay_subscription_id}: {e.message}")
                continue

            record.status = remote.get("status") or record.status
            record.current_start, record.current_end = resolve_billing_period(
                from_gateway_timestamp(remote.get("current_start"), record.current_start),
                from_gateway_timestamp(remote.get("current_end"), record.current_end),
                now,
                settings.community_plan_period_days,
            )
            record.charge_at = from_gateway_timestamp(remote.get("charge_at"), record.charge_at)
            if remote.get("paid_count") is not None:
                record.paid_count = remote["paid_count"]
            if remote.get("remaining_count") is not None:
                record.remaining_count = remote["remaining_count"]
            record.last_synced_at = now
            db.commit()
            result.synced += 1

    def send_renewal_reminders(self, db: Session, now: datetime, result: MaintenanceResult) -> None:
        window_start = now + timedelta(days=1)
        window_end = now + timedelta(days=settings.renewal_reminder_days)
        cooldown = timedelta(days=settings.renewal_reminder_cooldown_days)

        records = (
            db.query(CommunitySubscription)
            .filter(
                CommunitySubscription.status == "active",
                CommunitySubscription.current_end >= window_start,
                CommunitySubscription.current_end <= window_end,
            )
            .all()
        )
        for record in records:
            last_sent = record.last_notification_at("renewal_reminder")
            if last_sent and now - last_sent < cooldown:
                continue
            subscription_id = record.razorpay_subscription_id
            try:
                admin, community = self._owners(db, record)
                if admin is None or community is None:
                    continue
                self.notifier.send_renewal_reminder(db, admin, community, days_until(record.current_end, now))
                record.record_notification("renewal_reminder", sent_at=now)
                db.commit()
                result.renewal_reminders_sent += 1
            except Exception as e:
                db.rollback()
                logger.error(f"Renewal reminder failed for subscription {subscription_id}: {str(e)}")
                result.errors.append(f"renewal {subscription_id}: {str(e)}")

    def send_retry_notifications(self, db: Session, now: datetime, result: MaintenanceResult) -> None:
        cooldown = timedelta(hours=settings.retry_reminder_cooldown_hours)
        records = (
            db.query(CommunitySubscription)
            .filter(
                CommunitySubscription.status.in_(("pending", "past_due")),
                CommunitySubscription.next_retry_at.isnot(None),
                CommunitySubscription.next_retry_at <= now + timedelta(hours=1),
                CommunitySubscription.retry_attempts < CommunitySubscription.max_retry_attempts,
            )
            .all()
        )
        for record in records:
            last_sent = record.last_notification_at("payment_retry")
            if last_sent and now - last_sent < cooldown:
                continue
            subscription_id = record.razorpay_subscription_id
            try:
                admin, community = self._owners(db, record)
                if admin is None or community is None:
                    continue
                self.notifier.send_payment_retry(
                    db, admin, community, record.retry_attempts + 1, record.max_retry_attempts
                )
                record.record_notification("payment_retry", sent_at=now)
                db.commit()
                result.retry_notifications_sent += 1
            except Exception as e:
                db.rollback()
                logger.error(f"Payment retry notice failed for subscription {subscription_id}: {str(e)}")
                result.errors.append(f"retry {subscription_id}: {str(e)}")

    def expire_exhausted_retries(self, db: Session, now: datetime, result: MaintenanceResult) -> None:
        records = (
            db.query(CommunitySubscription)
            .filter(
                CommunitySubscription.status.in_(("active", "past_due", "pending")),
                CommunitySubscription.current_end.isnot(None),
                CommunitySubscription.current_end < now,
                CommunitySubscription.retry_attempts >= CommunitySubscription.max_retry_attempts,
            )
            .all()
        )
        for record in records:
            subscription_id = record.razorpay_subscription_id
            try:
                expire_record(record, now)
                admin, community = self._owners(db, record)
                if community is not None:
                    community.subscription_status = "expired"
                    repair_community_links(community, related_subscriptions(db, community, community.admin_id), now)
                db.commit()
                result.expired_subscriptions += 1
            except Exception as e:
                db.rollback()
                logger.error(f"Expiring exhausted subscription {subscription_id} failed: {str(e)}")
                result.errors.append(f"exhausted {subscription_id}: {str(e)}")

    def prune_webhook_history(self, db: Session, now: datetime, result: MaintenanceResult) -> None:
        limit = settings.webhook_history_limit
        for record in db.query(CommunitySubscription).filter(CommunitySubscription.webhook_events.isnot(None)).all():
            dropped = record.trim_webhook_events(limit)
            if dropped:
                result.webhook_events_pruned += dropped
        db.commit()

    def _owners(self, db: Session, record: CommunitySubscription):
        admin = db.query(User).filter(User.id == record.admin_id).first()
        community = None
        if record.community_id:
            community = db.query(Community).filter(Community.id == record.community_id).first()
        return admin, community

    def _suspend(self, community: Community, now: datetime) -> None:
        community.suspended = True
        community.suspended_at = now
        community.suspension_reason = SUSPENSION_REASON_TRIAL_EXPIRED


# Global instance
billing_sweep = BillingSweep()
