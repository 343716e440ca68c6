"""
Trial and access policy for communities.

Pure functions over a billing snapshot and the current time: no database
access and no clock reads, so decisions can be tested against literal
timestamps. Writes that follow from a decision (suspending a community,
expiring a record) are made by the callers.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional, Tuple

from tribelab.core.clock import as_naive_utc
from tribelab.services.billing_dates import days_until, is_valid_billing_date


class AccessReason(str, Enum):
    """Why a community does or does not have access."""

    PAID = "paid"
    ADMIN_TRIAL = "admin_trial"
    LEGACY_TRIAL = "legacy_trial"
    NONE = "none"
    FAIL_OPEN = "fail_open"


@dataclass(frozen=True)
class TrialInfo:
    """Admin trial state. Dates are left untyped so malformed values reach the checks."""

    activated: bool = False
    has_used_trial: bool = False
    start_date: Any = None
    end_date: Any = None
    cancelled: bool = False


@dataclass(frozen=True)
class BillingSnapshot:
    """The community billing fields the policy reads."""

    payment_status: str = "unpaid"
    subscription_end_date: Any = None
    free_trial_activated: bool = False
    admin_trial: TrialInfo = field(default_factory=TrialInfo)

    @classmethod
    def from_community(cls, community) -> "BillingSnapshot":
        return cls(
            payment_status=community.payment_status or "unpaid",
            subscription_end_date=community.subscription_end_date,
            free_trial_activated=bool(community.free_trial_activated),
            admin_trial=TrialInfo(
                activated=bool(community.admin_trial_activated),
                has_used_trial=bool(community.admin_trial_has_used_trial),
                start_date=community.admin_trial_start_date,
                end_date=community.admin_trial_end_date,
                cancelled=bool(community.admin_trial_cancelled),
            ),
        )


@dataclass(frozen=True)
class AccessDecision:
    """Result of evaluating a billing snapshot."""

    has_access: bool
    reason: AccessReason
    days_remaining: Optional[int] = None
    trial_eligible: bool = False
    trial_expired: bool = False
    faults: Tuple[str, ...] = ()

    @property
    def fail_open_applied(self) -> bool:
        return self.reason == AccessReason.FAIL_OPEN

    @classmethod
    def fail_open(cls, fault: str) -> "AccessDecision":
        """
        Grant access because the billing state could not be evaluated.

        Used by the status endpoints when evaluation raises unexpectedly.
        """
        return cls(
            has_access=True,
            reason=AccessReason.FAIL_OPEN,
            days_remaining=None,
            trial_eligible=False,
            trial_expired=False,
            faults=(fault,),
        )


def _confirmed_future(value: Any, now: datetime, label: str, faults: List[str]) -> bool:
    """True only for a valid date strictly after ``now``; malformed values are recorded."""
    if value is None:
        return False
    if not is_valid_billing_date(value):
        faults.append(f"{label} is malformed: {value!r}")
        return False
    return as_naive_utc(value) > now


def evaluate_access(snapshot: BillingSnapshot, now: datetime) -> AccessDecision:
    """
    Decide access, days remaining and trial eligibility for a community.

    Args:
        snapshot: Community billing fields
        now: Current time (naive UTC or aware)

    Returns:
        AccessDecision. Malformed dates never raise; the grant they would
        back is treated as unconfirmed and the problem is listed in ``faults``.
    """
    now = as_naive_utc(now)
    faults: List[str] = []
    trial = snapshot.admin_trial

    paid = snapshot.payment_status == "paid"

    admin_trial_live = False
    if trial.activated:
        if trial.end_date is None:
            faults.append("admin trial is activated without an end date")
        admin_trial_live = _confirmed_future(trial.end_date, now, "admin trial end date", faults)

    legacy_trial_live = False
    if snapshot.free_trial_activated:
        legacy_trial_live = _confirmed_future(
            snapshot.subscription_end_date, now, "subscription end date", faults
        )

    if paid:
        reason = AccessReason.PAID
    elif admin_trial_live:
        reason = AccessReason.ADMIN_TRIAL
    elif legacy_trial_live:
        reason = AccessReason.LEGACY_TRIAL
    else:
        reason = AccessReason.NONE
    has_access = reason != AccessReason.NONE

    days_remaining = None
    if has_access and not paid:
        end_date = trial.end_date if is_valid_billing_date(trial.end_date) else snapshot.subscription_end_date
        if is_valid_billing_date(end_date):
            days_remaining = days_until(end_date, now)

    trial_expired = (
        trial.activated
        and not has_access
        and is_valid_billing_date(trial.end_date)
        and as_naive_utc(trial.end_date) <= now
    )

    return AccessDecision(
        has_access=has_access,
        reason=reason,
        days_remaining=days_remaining,
        trial_eligible=not has_access and not trial.has_used_trial,
        trial_expired=trial_expired,
        faults=tuple(faults),
    )


def evaluate_community(community, now: datetime) -> AccessDecision:
    """Convenience wrapper building the snapshot from a Community row."""
    return evaluate_access(BillingSnapshot.from_community(community), now)
