"""
Unit tests for the community subscription service.

Tests checkout creation, payment verification, cancellation, status checks
and admin trial activation/cancellation.
"""
import hashlib
import hmac
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from tribelab.core.config import settings
from tribelab.core.exceptions import (
    CommunityPermissionError,
    GatewayError,
    InvalidStateError,
    NotFoundError,
    SignatureError,
    SubscriptionExistsError,
)
from tribelab.models import Community, CommunitySubscription, Transaction, TrialHistory
from tribelab.services.gateway import RazorpayClient
from tribelab.services.subscription import CommunitySubscriptionService

KEY_SECRET = "rzp_secret_test"


def _sign(subscription_id, payment_id, secret=KEY_SECRET):
    return hmac.new(secret.encode(), f"{payment_id}|{subscription_id}".encode(), hashlib.sha256).hexdigest()


@pytest.fixture
def service():
    """Service with a real signature checker and no network access."""
    return CommunitySubscriptionService(
        gateway=RazorpayClient(key_id="rzp_test_key", key_secret=KEY_SECRET),
    )


@pytest.fixture
def mock_gateway():
    gateway = MagicMock()
    gateway.key_id = "rzp_test_key"
    return gateway


class TestCreateSubscription:
    """Razorpay checkout creation."""

    def test_creates_customer_record_and_links_community(self, db, admin_user, community, mock_gateway, now):
        mock_gateway.create_customer.return_value = {"id": "cust_123"}
        mock_gateway.create_subscription.return_value = {
            "id": "sub_new",
            "status": "created",
            "short_url": "https://rzp.io/i/abc",
            "current_start": None,
            "current_end": None,
        }
        service = CommunitySubscriptionService(gateway=mock_gateway)

        with patch.object(settings, "razorpay_community_plan_id", "plan_community"):
            result = service.create_subscription(db, admin_user, community.id, now=now)

        assert result.subscription_id == "sub_new"
        assert result.razorpay_key_id == "rzp_test_key"
        assert result.trial_end_date == now + timedelta(days=settings.trial_period_days)

        record = db.query(CommunitySubscription).filter_by(razorpay_subscription_id="sub_new").one()
        assert record.community_id == community.id
        assert record.current_start == now
        assert record.current_end == now + timedelta(days=settings.community_plan_period_days)

        db.refresh(community)
        assert community.subscription_id == "sub_new"
        assert community.payment_status == "trial"
        assert admin_user.razorpay_customer_id == "cust_123"

    def test_existing_active_subscription_blocks_checkout(self, db, admin_user, community, make_subscription, mock_gateway):
        make_subscription(razorpay_subscription_id="sub_live", status="active")
        service = CommunitySubscriptionService(gateway=mock_gateway)

        with patch.object(settings, "razorpay_community_plan_id", "plan_community"):
            with pytest.raises(SubscriptionExistsError):
                service.create_subscription(db, admin_user, community.id)

        mock_gateway.create_subscription.assert_not_called()

    def test_missing_plan_is_a_gateway_error(self, db, admin_user, community, mock_gateway):
        service = CommunitySubscriptionService(gateway=mock_gateway)

        with patch.object(settings, "razorpay_community_plan_id", ""):
            with pytest.raises(GatewayError):
                service.create_subscription(db, admin_user, community.id)

    def test_non_admin_cannot_subscribe(self, db, other_user, community, mock_gateway):
        service = CommunitySubscriptionService(gateway=mock_gateway)

        with pytest.raises(CommunityPermissionError):
            service.create_subscription(db, other_user, community.id)


class TestVerifyAndActivate:
    """Checkout verification."""

    def test_valid_signature_activates_and_records_transaction(
        self, db, admin_user, community, make_subscription, service, now
    ):
        make_subscription(razorpay_subscription_id="sub_pay", status="created", current_start=None, current_end=None)

        result = service.verify_and_activate(
            db, admin_user, "sub_pay", "pay_1", _sign("sub_pay", "pay_1"), now=now
        )

        assert result.status == "active"
        assert result.paid_count == 1
        assert result.signature_verified is True
        # Missing gateway dates fall back to now and now + one period
        assert result.current_start == now
        assert result.current_end == now + timedelta(days=settings.community_plan_period_days)

        db.expire_all()
        refreshed = db.query(Community).filter_by(slug="makers").one()
        assert refreshed.payment_status == "paid"
        assert refreshed.subscription_id == "sub_pay"
        assert refreshed.subscription_status == "active"

        transaction = db.query(Transaction).one()
        assert transaction.order_id == "sub_auth_sub_pay_pay_1"
        assert transaction.amount == settings.community_plan_amount / 100
        assert transaction.status == "captured"

    def test_repeat_verification_is_a_no_op(self, db, admin_user, community, make_subscription, service, now):
        make_subscription(razorpay_subscription_id="sub_pay", status="created")
        signature = _sign("sub_pay", "pay_1")
        service.verify_and_activate(db, admin_user, "sub_pay", "pay_1", signature, now=now)

        result = service.verify_and_activate(db, admin_user, "sub_pay", "pay_1", signature, now=now)

        assert result.message == "Subscription already verified"
        assert result.paid_count == 1
        assert db.query(Transaction).count() == 1

    def test_unknown_subscription_writes_nothing(self, db, other_user, community, make_subscription, service, now):
        make_subscription(razorpay_subscription_id="sub_pay", status="created")

        with pytest.raises(NotFoundError):
            service.verify_and_activate(
                db, other_user, "sub_pay", "pay_1", _sign("sub_pay", "pay_1"), now=now
            )

        assert db.query(Transaction).count() == 0
        assert db.query(CommunitySubscription).one().status == "created"

    def test_bad_signature_leaves_state_unchanged(self, db, admin_user, community, make_subscription, service, now):
        make_subscription(razorpay_subscription_id="sub_pay", status="created")

        with pytest.raises(SignatureError) as exc_info:
            service.verify_and_activate(db, admin_user, "sub_pay", "pay_1", "forged", now=now)

        assert exc_info.value.message == "Invalid payment signature"
        db.expire_all()
        assert db.query(CommunitySubscription).one().status == "created"
        assert db.query(Community).filter_by(slug="makers").one().payment_status == "unpaid"
        assert db.query(Transaction).count() == 0

    def test_unverified_signature_allowed_when_flag_is_on(
        self, db, admin_user, community, make_subscription, service, now
    ):
        make_subscription(razorpay_subscription_id="sub_pay", status="created")

        with patch.object(settings, "allow_unverified_signatures", True):
            result = service.verify_and_activate(db, admin_user, "sub_pay", "pay_1", "forged", now=now)

        assert result.status == "active"
        assert result.signature_verified is False

    def test_payment_converts_running_trial(self, db, admin_user, community, make_subscription, service, now):
        community.admin_trial_activated = True
        community.admin_trial_has_used_trial = True
        community.suspended = True
        db.add(TrialHistory(user_id=admin_user.id, community_id=community.id, status="active", started_at=now))
        db.commit()
        make_subscription(razorpay_subscription_id="sub_pay", status="created")

        service.verify_and_activate(db, admin_user, "sub_pay", "pay_1", _sign("sub_pay", "pay_1"), now=now)

        db.expire_all()
        refreshed = db.query(Community).filter_by(slug="makers").one()
        assert refreshed.admin_trial_activated is False
        assert refreshed.admin_trial_converted is True
        assert refreshed.suspended is False
        assert db.query(TrialHistory).one().status == "converted"


class TestCancelSubscription:
    """Gateway-first cancellation."""

    def test_gateway_failure_changes_nothing(self, db, admin_user, community, make_subscription, mock_gateway, now):
        make_subscription(razorpay_subscription_id="sub_live")
        community.payment_status = "paid"
        community.subscription_status = "active"
        db.commit()
        mock_gateway.cancel_subscription.side_effect = GatewayError("Razorpay error: bad request")
        service = CommunitySubscriptionService(gateway=mock_gateway)

        with pytest.raises(GatewayError):
            service.cancel_subscription(db, "makers", admin_user, now=now)

        db.expire_all()
        assert db.query(CommunitySubscription).one().status == "active"
        refreshed = db.query(Community).filter_by(slug="makers").one()
        assert refreshed.subscription_status == "active"
        assert refreshed.payment_status == "paid"

    def test_cancel_at_cycle_end_keeps_access(self, db, admin_user, community, make_subscription, mock_gateway, now):
        record = make_subscription(razorpay_subscription_id="sub_live")
        community.payment_status = "paid"
        db.commit()
        service = CommunitySubscriptionService(gateway=mock_gateway)

        result = service.cancel_subscription(db, "makers", admin_user, cancel_at_cycle_end=True, now=now)

        mock_gateway.cancel_subscription.assert_called_once_with("sub_live", True)
        assert result.status == "cancelled"
        assert result.access_until == record.current_end
        db.expire_all()
        refreshed = db.query(Community).filter_by(slug="makers").one()
        assert refreshed.subscription_status == "cancelled"
        assert refreshed.payment_status == "paid"

    def test_immediate_cancel_expires_access(self, db, admin_user, community, make_subscription, mock_gateway, now):
        make_subscription(razorpay_subscription_id="sub_live")
        community.payment_status = "paid"
        db.commit()
        service = CommunitySubscriptionService(gateway=mock_gateway)

        result = service.cancel_subscription(db, "makers", admin_user, cancel_at_cycle_end=False, now=now)

        assert result.access_until == now
        db.expire_all()
        assert db.query(Community).filter_by(slug="makers").one().payment_status == "expired"

    def test_no_live_subscription(self, db, admin_user, community, mock_gateway, now):
        service = CommunitySubscriptionService(gateway=mock_gateway)

        with pytest.raises(NotFoundError):
            service.cancel_subscription(db, "makers", admin_user, now=now)

        mock_gateway.cancel_subscription.assert_not_called()


class TestCommunityStatus:
    """Read-only status checks."""

    def test_admin_trial_reports_five_days(self, db, admin_user, community, service, now):
        community.admin_trial_activated = True
        community.admin_trial_has_used_trial = True
        community.admin_trial_end_date = now + timedelta(days=5)
        db.commit()

        snapshot = service.get_community_status(db, "makers", admin_user, now=now)

        assert snapshot.has_active_trial_or_payment is True
        assert snapshot.days_remaining == 5
        assert snapshot.is_admin is True
        assert snapshot.trial_eligible is False

    def test_non_admin_does_not_see_subscription_fields(self, db, other_user, community, service, now):
        community.subscription_id = "sub_private"
        db.commit()

        snapshot = service.get_community_status(db, "makers", other_user, now=now)

        assert snapshot.is_admin is False
        assert snapshot.subscription_id is None
        assert snapshot.trial_eligible is None

    def test_evaluation_failure_fails_open(self, db, admin_user, community, service, now):
        with patch("tribelab.services.subscription.evaluate_community", side_effect=RuntimeError("corrupt row")):
            snapshot = service.get_community_status(db, "makers", admin_user, now=now)

        assert snapshot.has_active_trial_or_payment is True
        assert snapshot.fail_open is True
        assert snapshot.data_faults == ["access evaluation failed: corrupt row"]

    def test_unknown_community(self, db, service, now):
        with pytest.raises(NotFoundError):
            service.get_community_status(db, "nope", now=now)

    def test_members_always_pass_trial_check(self, db, other_user, community, service, now):
        result = service.check_trial_status(db, "makers", other_user, now=now)

        assert result.is_admin is False
        assert result.has_active_trial_or_payment is True

    def test_admin_without_access_is_trial_eligible(self, db, admin_user, community, service, now):
        result = service.check_trial_status(db, "makers", admin_user, now=now)

        assert result.is_admin is True
        assert result.has_active_trial_or_payment is False
        assert result.trial_eligible is True


class TestTrials:
    """Admin trial activation and cancellation."""

    def test_activate_trial(self, db, admin_user, community, service, now):
        result = service.activate_trial(db, "makers", admin_user, now=now)

        trial_end = now + timedelta(days=settings.trial_period_days)
        assert result.payment_status == "trial"
        assert result.trial_end_date == trial_end

        db.expire_all()
        refreshed = db.query(Community).filter_by(slug="makers").one()
        assert refreshed.admin_trial_activated is True
        assert refreshed.admin_trial_has_used_trial is True
        assert refreshed.admin_trial_end_date == trial_end
        assert db.query(TrialHistory).one().status == "active"

    def test_trial_cannot_be_reused(self, db, admin_user, community, service, now):
        service.activate_trial(db, "makers", admin_user, now=now)
        service.cancel_trial(db, "makers", admin_user, now=now)

        with pytest.raises(InvalidStateError) as exc_info:
            service.activate_trial(db, "makers", admin_user, now=now)

        assert exc_info.value.message == "Trial has already been used for this community"

    def test_paid_community_cannot_start_trial(self, db, admin_user, community, service, now):
        community.payment_status = "paid"
        db.commit()

        with pytest.raises(InvalidStateError) as exc_info:
            service.activate_trial(db, "makers", admin_user, now=now)

        assert exc_info.value.message == "Community already has an active subscription or trial"

    def test_cancel_trial_suspends_community(self, db, admin_user, community, service, now):
        service.activate_trial(db, "makers", admin_user, now=now)

        result = service.cancel_trial(db, "makers", admin_user, now=now)

        assert result.suspended is True
        db.expire_all()
        refreshed = db.query(Community).filter_by(slug="makers").one()
        assert refreshed.suspended is True
        assert refreshed.payment_status == "suspended"
        assert refreshed.suspension_reason == "Trial cancelled by admin"
        assert db.query(TrialHistory).one().status == "cancelled"

    def test_cancel_without_trial(self, db, admin_user, community, service, now):
        with pytest.raises(InvalidStateError):
            service.cancel_trial(db, "makers", admin_user, now=now)

    def test_non_admin_cannot_activate_trial(self, db, other_user, community, service, now):
        with pytest.raises(CommunityPermissionError):
            service.activate_trial(db, "makers", other_user, now=now)
