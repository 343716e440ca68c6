"""
Subscription conflict analysis and repair for a community.

Handles:
- Read-only conflict analysis (stale active records, invalid dates,
  orphaned subscription references, paid-without-subscription)
- Smart cleanup: expire stale records, drop records with unusable dates,
  repair community dates and trial flags, then unlink and unpay communities
  that no longer have a live subscription
- Force reset: delete every in-force record and wipe the community's
  subscription and trial fields

Repairs are idempotent. The record-level and community-level repair helpers
are shared with the scheduled sweep.
"""
import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from tribelab.core.clock import as_naive_utc, utcnow
from tribelab.core.exceptions import BillingError, CommunityPermissionError, NotFoundError
from tribelab.models import Community, CommunitySubscription, IN_FORCE_STATUSES, LIVE_STATUSES, User
from tribelab.schemas import (
    AdminTrialInfo,
    AnalysisResult,
    CommunityBillingData,
    ConflictAnalysis,
    ResolutionResult,
    SubscriptionSummary,
)
from tribelab.services.billing_dates import is_valid_billing_date

logger = logging.getLogger(__name__)


class ResolutionAction(str, Enum):
    """Repair policies for subscription conflicts."""

    CLEANUP = "cleanup"  # Minimal repair, keeps history
    FORCE_RESET = "force-reset"  # Deletes in-force records and wipes billing state


# Repair helpers shared with the scheduled sweep
def load_admin_community(db: Session, slug: str, caller: User, action: str = "manage subscriptions") -> Community:
    """
    Load a community and check the caller administers it.

    Raises:
        NotFoundError: Unknown slug
        CommunityPermissionError: Caller is not the community admin
    """
    community = db.query(Community).filter(Community.slug == slug).first()
    if not community:
        raise NotFoundError("Community not found")
    if community.admin_id != caller.id:
        raise CommunityPermissionError(f"Only community admin can {action}")
    return community


def related_subscriptions(db: Session, community: Community, admin_id: uuid.UUID) -> List[CommunitySubscription]:
    """Records for the community, plus the admin's records that carry no community."""
    return (
        db.query(CommunitySubscription)
        .filter(
            or_(
                CommunitySubscription.community_id == community.id,
                and_(
                    CommunitySubscription.admin_id == admin_id,
                    CommunitySubscription.community_id.is_(None),
                ),
            )
        )
        .order_by(CommunitySubscription.created_at.desc())
        .all()
    )


def is_stale(record: CommunitySubscription, now: datetime) -> bool:
    """In-force record whose billing period has ended."""
    return (
        record.status in IN_FORCE_STATUSES
        and is_valid_billing_date(record.current_end)
        and as_naive_utc(record.current_end) < now
    )


def has_invalid_period(record: CommunitySubscription) -> bool:
    return not is_valid_billing_date(record.current_end)


def is_valid_live(record: CommunitySubscription, now: datetime) -> bool:
    """Live status with a billing period that has not ended."""
    return (
        record.status in LIVE_STATUSES
        and is_valid_billing_date(record.current_end)
        and as_naive_utc(record.current_end) > now
    )


def expire_record(record: CommunitySubscription, now: datetime) -> None:
    previous = record.status
    record.status = "expired"
    if record.ended_at is None:
        record.ended_at = record.current_end or now
    record.record_webhook_event(
        "reconciliation.expired",
        data={"previous_status": previous, "current_end": record.current_end.isoformat() if record.current_end else None},
        received_at=now,
    )


def repair_community_dates(
    community: Community,
    records: List[CommunitySubscription],
    now: datetime,
) -> List[str]:
    """
    Repair implausible dates and contradictory trial flags on a community.

    An unusable ``subscription_end_date`` is restored from the linked record
    when that record has a valid period, and cleared otherwise. A paid
    community without a subscription id is relinked to its newest
    active/authenticated record; when none exists the unpaid fallback in
    ``repair_community_links`` applies.

    Args:
        community: Community to repair (modified in place)
        records: Surviving records related to the community
        now: Current time

    Returns:
        Labels of the community fields that changed
    """
    changed: List[str] = []

    if community.subscription_end_date is not None and not is_valid_billing_date(community.subscription_end_date):
        linked = None
        if community.subscription_id:
            linked = next(
                (r for r in records if r.razorpay_subscription_id == community.subscription_id),
                None,
            )
        if linked is not None and is_valid_billing_date(linked.current_end):
            community.subscription_end_date = linked.current_end
            changed.append("subscription_end_date (restored from subscription record)")
        else:
            community.subscription_end_date = None
            changed.append("subscription_end_date (cleared invalid date)")

    if community.admin_trial_activated and community.admin_trial_cancelled:
        community.admin_trial_activated = False
        changed.append("admin_trial_info.activated (deactivated cancelled trial)")

    if community.admin_trial_end_date is not None and not is_valid_billing_date(community.admin_trial_end_date):
        community.admin_trial_end_date = None
        changed.append("admin_trial_info.end_date (cleared invalid date)")

    if community.payment_status == "paid" and not community.subscription_id:
        live = next(
            (r for r in records if r.community_id == community.id and r.status in LIVE_STATUSES),
            None,
        )
        if live is not None:
            community.subscription_id = live.razorpay_subscription_id
            if is_valid_billing_date(live.current_end):
                community.subscription_end_date = live.current_end
            changed.append(f"subscription_id (linked active subscription {live.razorpay_subscription_id})")

    return changed


def repair_community_links(
    community: Community,
    records: List[CommunitySubscription],
    now: datetime,
) -> List[str]:
    """
    Unlink and unpay a community that no live record backs.

    Args:
        community: Community to repair (modified in place)
        records: Surviving records related to the community
        now: Current time

    Returns:
        Labels of the community fields that changed
    """
    changed: List[str] = []

    if community.subscription_id:
        linked = next(
            (r for r in records if r.razorpay_subscription_id == community.subscription_id),
            None,
        )
        if linked is None or linked.status not in LIVE_STATUSES:
            community.subscription_id = None
            changed.append("subscription_id (cleared orphaned reference)")

    if community.payment_status == "paid" and not any(is_valid_live(r, now) for r in records):
        community.payment_status = "unpaid"
        changed.append("payment_status (reset to unpaid)")

    return changed


class ReconciliationService:
    """Analyze and repair subscription conflicts for one community."""

    def analyze_conflicts(
        self,
        db: Session,
        slug: str,
        caller: User,
        now: Optional[datetime] = None,
    ) -> AnalysisResult:
        """
        Report subscription conflicts for a community. Never writes.

        Args:
            db: Database session
            slug: Community slug
            caller: Authenticated user (must be the community admin)
            now: Evaluation time, defaults to current UTC time

        Returns:
            AnalysisResult with findings and raw fault counts
        """
        now = as_naive_utc(now) if now else utcnow()
        community = load_admin_community(db, slug, caller, action="analyze subscription conflicts")
        records = related_subscriptions(db, community, caller.id)
        in_force = [r for r in records if r.status in IN_FORCE_STATUSES]

        expired_active = [
            r for r in in_force
            if r.status in LIVE_STATUSES and is_stale(r, now)
        ]
        invalid_dates = [r for r in in_force if has_invalid_period(r)]

        orphaned = False
        linked_inactive = False
        if community.subscription_id:
            linked = next(
                (r for r in records if r.razorpay_subscription_id == community.subscription_id),
                None,
            )
            orphaned = linked is None
            linked_inactive = linked is not None and linked.status not in LIVE_STATUSES

        status_mismatch = community.payment_status == "paid" and not in_force

        recommendations: List[str] = []
        if len(in_force) > 1:
            recommendations.append(
                "Multiple active subscriptions detected - this can prevent new subscription creation"
            )
        if expired_active:
            recommendations.append(
                f"{len(expired_active)} subscription(s) are marked as active but have expired"
            )
        if invalid_dates:
            recommendations.append(f"{len(invalid_dates)} subscription(s) have invalid end dates")
        if orphaned:
            recommendations.append(
                "Community has a subscription ID that doesn't match any subscription record"
            )
        if linked_inactive:
            recommendations.append("Community is linked to a non-active subscription")
        if status_mismatch:
            recommendations.append(
                "Community payment status is 'paid' but no active subscriptions found"
            )

        has_conflicts = bool(in_force) or bool(recommendations)
        if not has_conflicts:
            recommendations.append("No conflicts detected - subscription system appears clean")
        else:
            recommendations.append("Run 'Smart Cleanup' to automatically resolve detected issues")
            recommendations.append("Use 'Force Reset' only if Smart Cleanup doesn't resolve the issue")

        logger.info(
            f"Analyzed subscription conflicts for community {community.id}: "
            f"in_force={len(in_force)}, expired_active={len(expired_active)}, "
            f"invalid_dates={len(invalid_dates)}, orphaned={orphaned}"
        )

        return AnalysisResult(
            community_id=community.id,
            community_slug=community.slug,
            has_conflicts=has_conflicts,
            total_subscriptions=len(records),
            conflicting_subscriptions=[SubscriptionSummary.model_validate(r) for r in in_force],
            community_data=CommunityBillingData(
                payment_status=community.payment_status,
                subscription_id=community.subscription_id,
                subscription_status=community.subscription_status,
                subscription_start_date=community.subscription_start_date,
                subscription_end_date=community.subscription_end_date,
                admin_trial_info=AdminTrialInfo(**community.admin_trial_info),
            ),
            recommendations=recommendations,
            analysis=ConflictAnalysis(
                in_force_count=len(in_force),
                multiple_in_force=len(in_force) > 1,
                expired_active_count=len(expired_active),
                invalid_date_count=len(invalid_dates),
                has_orphaned_subscription_id=orphaned,
                linked_to_inactive_subscription=linked_inactive,
                status_mismatch=status_mismatch,
            ),
        )

    def resolve_conflicts(
        self,
        db: Session,
        slug: str,
        caller: User,
        action: str,
        now: Optional[datetime] = None,
    ) -> ResolutionResult:
        """
        Repair subscription conflicts with an explicitly chosen policy.

        Args:
            db: Database session
            slug: Community slug
            caller: Authenticated user (must be the community admin)
            action: "cleanup" or "force-reset"
            now: Evaluation time, defaults to current UTC time

        Returns:
            ResolutionResult. Per-record failures are listed in ``errors``
            and do not stop the remaining records.

        Raises:
            BillingError: Unknown action
        """
        try:
            resolution = ResolutionAction(action)
        except ValueError:
            raise BillingError("Invalid action. Use 'cleanup' or 'force-reset'", code="invalid_action")

        now = as_naive_utc(now) if now else utcnow()
        community = load_admin_community(db, slug, caller, action="resolve subscription conflicts")
        records = related_subscriptions(db, community, caller.id)

        result = ResolutionResult(success=True, action=resolution.value, message="")
        persisted = 0

        if resolution == ResolutionAction.CLEANUP:
            surviving = []
            for record in records:
                # Unusable periods are dropped whatever the status
                if has_invalid_period(record):
                    if self._delete_record(db, record, result):
                        persisted += 1
                        continue
                elif is_stale(record, now):
                    if self._expire(db, record, now, result):
                        persisted += 1
                surviving.append(record)

            changed = repair_community_dates(community, surviving, now)
            changed.extend(repair_community_links(community, surviving, now))
            if changed and self._save_community(db, community, result):
                result.updated_community_fields.extend(changed)
                persisted += 1

            result.message = (
                f"Smart cleanup completed: {result.removed_subscriptions} subscriptions removed, "
                f"{len(result.updated_community_fields)} community fields updated"
            )
        else:
            for record in records:
                if record.status in IN_FORCE_STATUSES and self._delete_record(db, record, result):
                    persisted += 1

            community.subscription_id = None
            community.subscription_status = None
            community.payment_status = "unpaid"
            community.subscription_start_date = None
            community.subscription_end_date = None
            community.reset_admin_trial()
            if self._save_community(db, community, result):
                result.updated_community_fields.extend([
                    "subscription_id (cleared)",
                    "subscription_status (cleared)",
                    "payment_status (reset to unpaid)",
                    "subscription_end_date (cleared)",
                    "subscription_start_date (cleared)",
                    "admin_trial_info (reset)",
                ])
                persisted += 1

            result.message = (
                f"Force reset completed: {result.removed_subscriptions} subscriptions removed, "
                "community subscription data reset"
            )

        result.success = persisted > 0 or not result.errors
        logger.info(
            f"Resolved subscription conflicts for community {community.id} ({resolution.value}): "
            f"removed={result.removed_subscriptions}, modified={result.modified_subscriptions}, "
            f"fields={len(result.updated_community_fields)}, errors={len(result.errors)}"
        )
        return result

    def _expire(self, db: Session, record: CommunitySubscription, now: datetime, result: ResolutionResult) -> bool:
        subscription_id = record.razorpay_subscription_id
        try:
            expire_record(record, now)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to expire subscription {subscription_id}: {str(e)}", exc_info=True)
            result.errors.append(f"Failed to expire subscription {subscription_id}: {str(e)}")
            return False
        result.modified_subscriptions += 1
        result.details.append(f"Marked subscription {subscription_id} as expired")
        return True

    def _delete_record(self, db: Session, record: CommunitySubscription, result: ResolutionResult) -> bool:
        subscription_id = record.razorpay_subscription_id
        try:
            db.delete(record)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to delete subscription {subscription_id}: {str(e)}", exc_info=True)
            result.errors.append(f"Failed to delete subscription {subscription_id}: {str(e)}")
            return False
        result.removed_subscriptions += 1
        result.details.append(f"Deleted subscription {subscription_id}")
        return True

    def _save_community(self, db: Session, community: Community, result: ResolutionResult) -> bool:
        try:
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to update community {community.id}: {str(e)}", exc_info=True)
            result.errors.append(f"Failed to update community: {str(e)}")
            return False
        result.details.append(f"Updated community {community.slug}")
        return True


# Global service instance
reconciliation_service = ReconciliationService()
