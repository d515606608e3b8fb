"""WebhookDispatcher のテスト (署名は本物の検証を通す)"""
from datetime import datetime
from decimal import Decimal

import pytest

from app.core.exceptions import InvalidSignature
from app.models.payment import Payment
from app.models.processed_stripe_event import ProcessedStripeEvent
from app.models.subscription import Subscription
from app.services.webhook_dispatcher import StripeEventType, WebhookDispatcher
from conftest import PERIOD_END, make_event, sign_payload, unix


@pytest.fixture
def dispatcher(db, gateway):
    return WebhookDispatcher(db, gateway)


def deliver(dispatcher, payload: bytes):
    return dispatcher.handle_event(payload, sign_payload(payload))


class TestSignature:
    def test_tampered_body_is_rejected(self, dispatcher, db, make_subscription):
        """Test one flipped byte with an otherwise valid header invokes no handler"""
        sub = make_subscription("sub_abc")
        payload = make_event(StripeEventType.SUBSCRIPTION_DELETED.value, {"id": "sub_abc"})
        header = sign_payload(payload)
        tampered = payload.replace(b"sub_abc", b"sub_abd")

        with pytest.raises(InvalidSignature):
            dispatcher.handle_event(tampered, header)

        db.expire_all()
        assert db.get(Subscription, sub.id).status == "active"
        assert db.query(ProcessedStripeEvent).count() == 0

    def test_wrong_secret_is_rejected(self, dispatcher):
        payload = make_event(StripeEventType.SUBSCRIPTION_DELETED.value, {"id": "sub_abc"})

        with pytest.raises(InvalidSignature):
            dispatcher.handle_event(payload, sign_payload(payload, secret="whsec_other"))

    def test_missing_header_is_rejected(self, dispatcher):
        payload = make_event(StripeEventType.SUBSCRIPTION_DELETED.value, {"id": "sub_abc"})

        with pytest.raises(InvalidSignature):
            dispatcher.handle_event(payload, "")

    def test_stale_timestamp_is_rejected(self, dispatcher):
        payload = make_event(StripeEventType.SUBSCRIPTION_DELETED.value, {"id": "sub_abc"})
        header = sign_payload(payload, timestamp=unix(datetime(2020, 1, 1)))

        with pytest.raises(InvalidSignature):
            dispatcher.handle_event(payload, header)


class TestDispatch:
    def test_payment_succeeded_scenario(self, dispatcher, db, make_subscription):
        sub = make_subscription("sub_abc")
        new_end = datetime(2026, 12, 1)
        payload = make_event(StripeEventType.PAYMENT_SUCCEEDED.value, {
            "id": "in_1",
            "subscription": "sub_abc",
            "amount_paid": 4999,
            "currency": "usd",
            "period_end": unix(new_end),
        })

        assert deliver(dispatcher, payload) == {"received": True}

        db.expire_all()
        assert db.get(Subscription, sub.id).current_period_end == new_end
        payments = db.query(Payment).all()
        assert len(payments) == 1
        assert payments[0].amount == Decimal("49.99")
        assert payments[0].status == "succeeded"

    def test_duplicate_delivery_is_processed_once(self, dispatcher, db, make_subscription):
        make_subscription("sub_abc")
        payload = make_event(StripeEventType.PAYMENT_SUCCEEDED.value, {
            "id": "in_1",
            "subscription": "sub_abc",
            "amount_paid": 4999,
            "currency": "usd",
        }, event_id="evt_dup")

        deliver(dispatcher, payload)
        deliver(dispatcher, payload)

        assert db.query(Payment).count() == 1
        assert db.query(ProcessedStripeEvent).filter(ProcessedStripeEvent.event_id == "evt_dup").count() == 1

    def test_updated_replay_gives_identical_state(self, dispatcher, db, make_subscription):
        sub = make_subscription("sub_abc")
        obj = {
            "id": "sub_abc",
            "status": "past_due",
            "cancel_at_period_end": False,
            "current_period_start": unix(datetime(2026, 10, 1)),
            "current_period_end": unix(PERIOD_END),
        }

        deliver(dispatcher, make_event(StripeEventType.SUBSCRIPTION_UPDATED.value, obj))
        db.expire_all()
        once = db.get(Subscription, sub.id)
        state = (once.status, once.cancel_at_period_end, once.current_period_start, once.current_period_end)

        # 別IDで同じ内容が再送されても結果は同じ
        deliver(dispatcher, make_event(StripeEventType.SUBSCRIPTION_UPDATED.value, obj))
        db.expire_all()
        twice = db.get(Subscription, sub.id)

        assert (twice.status, twice.cancel_at_period_end, twice.current_period_start, twice.current_period_end) == state

    def test_deleted_after_cancel_is_noop(self, dispatcher, db, make_subscription):
        sub = make_subscription("sub_abc", status="canceled")

        result = deliver(dispatcher, make_event(StripeEventType.SUBSCRIPTION_DELETED.value, {"id": "sub_abc"}))

        assert result == {"received": True}
        db.expire_all()
        assert db.get(Subscription, sub.id).status == "canceled"

    def test_late_update_for_canceled_row_is_ignored(self, dispatcher, db, make_subscription):
        sub = make_subscription("sub_old", status="canceled")

        result = deliver(dispatcher, make_event(StripeEventType.SUBSCRIPTION_UPDATED.value, {
            "id": "sub_old",
            "status": "active",
            "cancel_at_period_end": False,
            "current_period_start": unix(PERIOD_END),
            "current_period_end": unix(datetime(2026, 12, 1)),
        }))

        assert result == {"received": True}
        db.expire_all()
        assert db.get(Subscription, sub.id).status == "canceled"
        assert db.query(ProcessedStripeEvent).count() == 1

    def test_late_update_for_canceled_row_keeps_new_live_subscription(self, dispatcher, db, make_subscription):
        """Test a stale active update for the old row neither collides with nor displaces the new live row"""
        old = make_subscription("sub_old", status="canceled")
        new = make_subscription("sub_new")

        result = deliver(dispatcher, make_event(StripeEventType.SUBSCRIPTION_UPDATED.value, {
            "id": "sub_old",
            "status": "active",
            "cancel_at_period_end": False,
            "current_period_start": unix(PERIOD_END),
            "current_period_end": unix(datetime(2026, 12, 1)),
        }))

        assert result == {"received": True}
        db.expire_all()
        assert db.get(Subscription, old.id).status == "canceled"
        assert db.get(Subscription, old.id).live_user_id is None
        assert db.get(Subscription, new.id).status == "active"
        assert db.get(Subscription, new.id).live_user_id == new.user_id

    def test_unmatched_subscription_is_acknowledged(self, dispatcher, db):
        payload = make_event(StripeEventType.PAYMENT_FAILED.value, {
            "id": "in_9",
            "subscription": "sub_missing",
            "amount_due": 4999,
        })

        assert deliver(dispatcher, payload) == {"received": True}
        assert db.query(Payment).count() == 0
        assert db.query(Subscription).count() == 0

    def test_unknown_event_type_is_acknowledged(self, dispatcher, db):
        payload = make_event("customer.created", {"id": "cus_1"}, event_id="evt_unknown")

        assert deliver(dispatcher, payload) == {"received": True}
        assert db.query(ProcessedStripeEvent).count() == 0

    def test_handlers_cover_every_event_type(self, dispatcher):
        assert set(dispatcher._handlers) == set(StripeEventType)

    def test_trial_will_end_changes_nothing(self, dispatcher, db, make_subscription):
        sub = make_subscription("sub_abc", status="trialing")

        deliver(dispatcher, make_event(StripeEventType.TRIAL_WILL_END.value, {
            "id": "sub_abc",
            "trial_end": unix(PERIOD_END),
        }))

        db.expire_all()
        assert db.get(Subscription, sub.id).status == "trialing"

    def test_handler_error_rolls_back_and_propagates(self, dispatcher, db, make_subscription, monkeypatch):
        make_subscription("sub_abc")

        def boom(invoice):
            db.add(Payment(user_id=1, amount=Decimal("1.00"), currency="usd", status="succeeded"))
            db.flush()
            raise RuntimeError("boom")

        monkeypatch.setitem(dispatcher._handlers, StripeEventType.PAYMENT_SUCCEEDED, boom)
        payload = make_event(StripeEventType.PAYMENT_SUCCEEDED.value, {"id": "in_1", "subscription": "sub_abc"})

        with pytest.raises(RuntimeError):
            deliver(dispatcher, payload)

        assert db.query(Payment).count() == 0
        assert db.query(ProcessedStripeEvent).count() == 0
