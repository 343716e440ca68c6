"""
Unit tests for Razorpay webhook event handling.
"""
from datetime import datetime, timedelta

from tribelab.core.config import settings
from tribelab.models import Community, CommunitySubscription, Transaction
from tribelab.services.webhooks import razorpay_webhook_service


def _event(name, subscription=None, payment=None, invoice=None):
    payload = {}
    if subscription is not None:
        payload["subscription"] = {"entity": subscription}
    if payment is not None:
        payload["payment"] = {"entity": payment}
    if invoice is not None:
        payload["invoice"] = {"entity": invoice}
    return {"event": name, "payload": payload}


class TestChargedEvent:
    """subscription.charged"""

    def test_extends_period_and_marks_community_paid(self, db, community, make_subscription, now):
        make_subscription(razorpay_subscription_id="sub_1", failure_reason="card declined", retry_attempts=2)
        community.suspended = True
        db.commit()
        new_end = datetime(2025, 2, 1)

        outcome = razorpay_webhook_service.handle_event(
            db,
            _event(
                "subscription.charged",
                subscription={
                    "id": "sub_1",
                    "status": "active",
                    "current_start": int((now - datetime(1970, 1, 1)).total_seconds()),
                    "current_end": int((new_end - datetime(1970, 1, 1)).total_seconds()),
                    "paid_count": 2,
                },
                payment={"id": "pay_2", "amount": 240000, "currency": "INR"},
            ),
            now=now,
        )

        assert outcome == {"event": "subscription.charged", "handled": True}
        db.expire_all()
        record = db.query(CommunitySubscription).one()
        assert record.current_end == new_end
        assert record.paid_count == 2
        assert record.retry_attempts == 0
        assert record.failure_reason is None
        assert record.webhook_events[-1]["event"] == "subscription.charged"

        refreshed = db.query(Community).filter_by(slug="makers").one()
        assert refreshed.payment_status == "paid"
        assert refreshed.subscription_end_date == new_end
        assert refreshed.suspended is False

        transaction = db.query(Transaction).one()
        assert transaction.order_id == "sub_charge_sub_1_pay_2"
        assert transaction.amount == 2400.0

    def test_same_payment_is_recorded_once(self, db, community, make_subscription, now):
        make_subscription(razorpay_subscription_id="sub_1")
        event = _event("subscription.charged", subscription={"id": "sub_1"}, payment={"id": "pay_2"})

        razorpay_webhook_service.handle_event(db, event, now=now)
        razorpay_webhook_service.handle_event(db, event, now=now)

        assert db.query(Transaction).count() == 1

    def test_epoch_timestamps_keep_existing_period(self, db, community, make_subscription, now):
        record = make_subscription(razorpay_subscription_id="sub_1")
        original_end = record.current_end

        razorpay_webhook_service.handle_event(
            db,
            _event("subscription.charged", subscription={"id": "sub_1", "current_start": 0, "current_end": 0}),
            now=now,
        )

        db.expire_all()
        assert db.query(CommunitySubscription).one().current_end == original_end


class TestFailureEvents:
    def test_failed_schedules_retry(self, db, community, make_subscription, now):
        make_subscription(razorpay_subscription_id="sub_1")

        razorpay_webhook_service.handle_event(
            db,
            _event(
                "subscription.failed",
                subscription={"id": "sub_1"},
                payment={"id": "pay_x", "error_description": "Insufficient funds"},
            ),
            now=now,
        )

        db.expire_all()
        record = db.query(CommunitySubscription).one()
        assert record.retry_attempts == 1
        assert record.consecutive_failures == 1
        assert record.failure_reason == "Insufficient funds"
        assert record.next_retry_at == now + timedelta(hours=settings.payment_retry_delay_hours)
        assert db.query(Community).filter_by(slug="makers").one().subscription_status == "past_due"

    def test_failed_after_last_retry_stops_scheduling(self, db, community, make_subscription, now):
        make_subscription(razorpay_subscription_id="sub_1", retry_attempts=3, max_retry_attempts=3)

        razorpay_webhook_service.handle_event(
            db, _event("subscription.failed", subscription={"id": "sub_1"}), now=now
        )

        db.expire_all()
        record = db.query(CommunitySubscription).one()
        assert record.retry_attempts == 3
        assert record.next_retry_at is None

    def test_halted_marks_community(self, db, community, make_subscription, now):
        make_subscription(razorpay_subscription_id="sub_1")

        razorpay_webhook_service.handle_event(
            db, _event("subscription.halted", subscription={"id": "sub_1"}), now=now
        )

        db.expire_all()
        assert db.query(CommunitySubscription).one().status == "halted"
        assert db.query(Community).filter_by(slug="makers").one().subscription_status == "halted"


class TestLifecycleEvents:
    def test_cancelled_sets_ended_at(self, db, community, make_subscription, now):
        make_subscription(razorpay_subscription_id="sub_1")

        razorpay_webhook_service.handle_event(
            db, _event("subscription.cancelled", subscription={"id": "sub_1"}), now=now
        )

        db.expire_all()
        record = db.query(CommunitySubscription).one()
        assert record.status == "cancelled"
        assert record.ended_at == now

    def test_activated_lifts_suspension(self, db, community, make_subscription, now):
        make_subscription(razorpay_subscription_id="sub_1", status="authenticated", suspended=True)
        community.suspended = True
        community.suspension_reason = "trial_expired"
        db.commit()

        razorpay_webhook_service.handle_event(
            db, _event("subscription.activated", subscription={"id": "sub_1"}), now=now
        )

        db.expire_all()
        record = db.query(CommunitySubscription).one()
        refreshed = db.query(Community).filter_by(slug="makers").one()
        assert record.status == "active"
        assert record.suspended is False
        assert refreshed.suspended is False
        assert refreshed.suspension_reason is None

    def test_invoice_issued_is_recorded(self, db, community, make_subscription, now):
        make_subscription(razorpay_subscription_id="sub_1")

        outcome = razorpay_webhook_service.handle_event(
            db,
            _event("invoice.issued", invoice={"id": "inv_1", "subscription_id": "sub_1", "amount": 240000}),
            now=now,
        )

        assert outcome["handled"] is True
        db.expire_all()
        entry = db.query(CommunitySubscription).one().webhook_events[-1]
        assert entry["event"] == "invoice.issued"
        assert entry["data"]["invoice_id"] == "inv_1"


class TestUnmatchedEvents:
    def test_unknown_subscription_is_ignored(self, db, now):
        outcome = razorpay_webhook_service.handle_event(
            db, _event("subscription.charged", subscription={"id": "sub_missing"}), now=now
        )

        assert outcome == {"event": "subscription.charged", "handled": False}

    def test_unhandled_event_type(self, db, community, make_subscription, now):
        make_subscription(razorpay_subscription_id="sub_1")

        outcome = razorpay_webhook_service.handle_event(
            db, _event("subscription.updated", subscription={"id": "sub_1"}), now=now
        )

        assert outcome["handled"] is False
