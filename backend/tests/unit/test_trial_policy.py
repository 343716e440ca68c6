"""
Unit tests for the community access policy.

Covers paid and trial access, the days-remaining ceiling, malformed dates
and the fail-open decision.
"""
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from tribelab.services.trial_policy import (
    AccessDecision,
    AccessReason,
    BillingSnapshot,
    TrialInfo,
    evaluate_access,
    evaluate_community,
)

NOW = datetime(2025, 1, 1, 12, 0, 0)


class TestAccessGrants:
    """Which billing states grant access."""

    def test_paid_community_has_access(self):
        decision = evaluate_access(BillingSnapshot(payment_status="paid"), NOW)

        assert decision.has_access is True
        assert decision.reason == AccessReason.PAID
        assert decision.days_remaining is None
        assert decision.trial_eligible is False

    def test_active_admin_trial_reports_ceiling_days(self):
        """Five days out is reported as 5, not 4 or 6."""
        snapshot = BillingSnapshot(
            admin_trial=TrialInfo(activated=True, has_used_trial=True, end_date=NOW + timedelta(days=5)),
        )

        decision = evaluate_access(snapshot, NOW)

        assert decision.has_access is True
        assert decision.reason == AccessReason.ADMIN_TRIAL
        assert decision.days_remaining == 5

    def test_partial_day_rounds_up(self):
        snapshot = BillingSnapshot(
            admin_trial=TrialInfo(activated=True, end_date=NOW + timedelta(days=4, hours=2)),
        )

        assert evaluate_access(snapshot, NOW).days_remaining == 5

    def test_legacy_trial_uses_subscription_end_date(self):
        snapshot = BillingSnapshot(
            free_trial_activated=True,
            subscription_end_date=NOW + timedelta(days=3),
        )

        decision = evaluate_access(snapshot, NOW)

        assert decision.reason == AccessReason.LEGACY_TRIAL
        assert decision.days_remaining == 3

    def test_aware_now_is_normalised(self):
        snapshot = BillingSnapshot(
            admin_trial=TrialInfo(activated=True, end_date=NOW + timedelta(days=2)),
        )

        decision = evaluate_access(snapshot, NOW.replace(tzinfo=timezone.utc))

        assert decision.days_remaining == 2


class TestAccessDenials:
    """States that do not grant access."""

    def test_unpaid_community_without_trial_is_eligible(self):
        decision = evaluate_access(BillingSnapshot(), NOW)

        assert decision.has_access is False
        assert decision.reason == AccessReason.NONE
        assert decision.trial_eligible is True
        assert decision.trial_expired is False

    def test_used_trial_is_not_eligible_again(self):
        snapshot = BillingSnapshot(admin_trial=TrialInfo(has_used_trial=True))

        assert evaluate_access(snapshot, NOW).trial_eligible is False

    def test_ended_admin_trial_is_expired(self):
        snapshot = BillingSnapshot(
            admin_trial=TrialInfo(activated=True, has_used_trial=True, end_date=NOW - timedelta(hours=1)),
        )

        decision = evaluate_access(snapshot, NOW)

        assert decision.has_access is False
        assert decision.trial_expired is True
        assert decision.days_remaining is None


class TestMalformedDates:
    """Malformed dates never grant access and never raise."""

    def test_epoch_trial_end_is_a_fault(self):
        snapshot = BillingSnapshot(
            admin_trial=TrialInfo(activated=True, end_date=datetime(1970, 1, 1)),
        )

        decision = evaluate_access(snapshot, NOW)

        assert decision.has_access is False
        assert decision.trial_expired is False
        assert any("admin trial end date" in fault for fault in decision.faults)

    def test_non_datetime_end_date_is_a_fault(self):
        snapshot = BillingSnapshot(
            free_trial_activated=True,
            subscription_end_date="not-a-date",
        )

        decision = evaluate_access(snapshot, NOW)

        assert decision.has_access is False
        assert len(decision.faults) == 1

    def test_activated_trial_without_end_date_is_a_fault(self):
        snapshot = BillingSnapshot(admin_trial=TrialInfo(activated=True))

        decision = evaluate_access(snapshot, NOW)

        assert decision.has_access is False
        assert "admin trial is activated without an end date" in decision.faults


class TestFailOpen:
    """Explicit fail-open decision."""

    def test_fail_open_grants_access_and_records_fault(self):
        decision = AccessDecision.fail_open("boom")

        assert decision.has_access is True
        assert decision.reason == AccessReason.FAIL_OPEN
        assert decision.fail_open_applied is True
        assert decision.faults == ("boom",)

    def test_regular_decision_is_not_fail_open(self):
        assert evaluate_access(BillingSnapshot(payment_status="paid"), NOW).fail_open_applied is False


class TestEvaluateCommunity:
    """Snapshot built from a community row."""

    def test_reads_admin_trial_columns(self):
        community = SimpleNamespace(
            payment_status="trial",
            subscription_end_date=None,
            free_trial_activated=False,
            admin_trial_activated=True,
            admin_trial_has_used_trial=True,
            admin_trial_start_date=NOW - timedelta(days=9),
            admin_trial_end_date=NOW + timedelta(days=5),
            admin_trial_cancelled=False,
        )

        decision = evaluate_community(community, NOW)

        assert decision.reason == AccessReason.ADMIN_TRIAL
        assert decision.days_remaining == 5
