"""テスト共通フィクスチャ: インメモリSQLite + 記録用ゲートウェイ"""
import hashlib
import hmac
import json
import os
import time
import itertools
from datetime import datetime
from decimal import Decimal

# app.core.config の読み込み前に設定する
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_TEST_MODE"] = "false"
os.environ["ENV"] = "test"

import pytest

from app.core.database import Base, SessionLocal, engine
from app.core.exceptions import ProcessorUnavailable
from app.models.plan import Plan
from app.models.subscription import Subscription
from app.models.user import User
from app.services.stripe_service import ExternalSubscription, StripeGateway

WEBHOOK_SECRET = "whsec_test_secret"
PERIOD_START = datetime(2026, 10, 1)
PERIOD_END = datetime(2026, 11, 1)

_event_ids = itertools.count(1)


class FakeGateway(StripeGateway):
    """Stripeを呼ばずに呼び出しを記録する。署名検証は本物を使う"""

    def __init__(self):
        super().__init__(api_key="sk_test", webhook_secret=WEBHOOK_SECRET, timeout=1)
        self.calls = []
        self.fail_with = {}
        self.on_create = None
        self.remote = {}
        self._seq = 0

    def _check(self, name):
        error = self.fail_with.get(name)
        if error is not None:
            raise error

    def create_customer(self, email, display_name):
        self.calls.append(("create_customer", email))
        self._check("create_customer")
        self._seq += 1
        return f"cus_fake_{self._seq}"

    def create_subscription(self, customer_id, price_id, payment_method_id):
        self.calls.append(("create_subscription", customer_id, price_id, payment_method_id))
        self._check("create_subscription")
        self._seq += 1
        external = ExternalSubscription(
            external_id=f"sub_fake_{self._seq}",
            status="active",
            current_period_start=PERIOD_START,
            current_period_end=PERIOD_END,
            customer_id=customer_id,
            price_id=price_id,
        )
        self.remote[external.external_id] = external
        if self.on_create:
            self.on_create(external)
        return external

    def cancel_subscription(self, subscription_id, cancel_at_period_end=True):
        self.calls.append(("cancel_subscription", subscription_id, cancel_at_period_end))
        self._check("cancel_subscription")
        external = ExternalSubscription(
            external_id=subscription_id,
            status="active" if cancel_at_period_end else "canceled",
            current_period_start=PERIOD_START,
            current_period_end=PERIOD_END,
            cancel_at_period_end=cancel_at_period_end,
        )
        self.remote[subscription_id] = external
        return external

    def retrieve_subscription(self, subscription_id):
        self.calls.append(("retrieve_subscription", subscription_id))
        self._check("retrieve_subscription")
        if subscription_id not in self.remote:
            raise ProcessorUnavailable()
        return self.remote[subscription_id]

    def list_customer_subscriptions(self, customer_id):
        self.calls.append(("list_customer_subscriptions", customer_id))
        self._check("list_customer_subscriptions")
        return [s for s in self.remote.values() if s.customer_id == customer_id]

    def call_names(self):
        return [c[0] for c in self.calls]


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Stripe-Signature ヘッダー (t=...,v1=...) を生成"""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.".encode("utf-8") + payload
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_event(event_type: str, obj: dict, event_id: str = None) -> bytes:
    event = {
        "id": event_id or f"evt_test_{next(_event_ids)}",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }
    return json.dumps(event).encode("utf-8")


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def plan(db):
    p = Plan(
        name="Premium Box",
        description="For enthusiasts - 5-6 premium items",
        price_monthly=Decimal("49.99"),
        stripe_price_id="price_premium",
        features=["5-6 premium items", "Monthly delivery"],
        is_active=True,
        sort_order=1,
    )
    db.add(p)
    db.commit()
    db.refresh(p)
    return p


@pytest.fixture
def user(db):
    u = User(
        email="alice@example.com",
        password_hash="x",
        first_name="Alice",
        last_name="Smith",
        stripe_customer_id="cus_alice",
    )
    db.add(u)
    db.commit()
    db.refresh(u)
    return u


@pytest.fixture
def make_subscription(db, user, plan):
    def _make(stripe_subscription_id="sub_existing", status="active", user_id=None, **kwargs):
        sub = Subscription(
            user_id=user_id or user.id,
            plan_id=plan.id,
            stripe_subscription_id=stripe_subscription_id,
            status=status,
            cancel_at_period_end=kwargs.pop("cancel_at_period_end", False),
            current_period_start=kwargs.pop("current_period_start", PERIOD_START),
            current_period_end=kwargs.pop("current_period_end", PERIOD_END),
        )
        db.add(sub)
        db.commit()
        db.refresh(sub)
        return sub

    return _make


def unix(dt: datetime) -> int:
    return int((dt - datetime(1970, 1, 1)).total_seconds())


