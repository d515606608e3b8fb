"""Stripe API操作サービス

Stripeへの外部呼び出しはすべて StripeGateway を経由する。
Stripeのレスポンスは ExternalSubscription に正規化し、SDKの例外は
ProcessorUnavailable / ProcessorRejected / ProcessorInvalidInput に分類する。
リトライはしない (必要なら呼び出し側の責務)。
"""
import json
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import stripe

from app.core.config import settings
from app.core.exceptions import (
    InvalidSignature,
    ProcessorInvalidInput,
    ProcessorRejected,
    ProcessorUnavailable,
)
from app.core.logging import get_logger

logger = get_logger(__name__)

CUSTOMER_METADATA = {"source": "subscription_box_platform"}


@dataclass(frozen=True)
class ExternalSubscription:
    """Stripe Subscription の正規化表現"""

    external_id: str
    status: str
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    customer_id: Optional[str] = None
    price_id: Optional[str] = None


def to_datetime(ts) -> Optional[datetime]:
    """Unixタイムスタンプ → naive UTC datetime (DBはUTCで保持)"""
    if not ts:
        return None
    return datetime.fromtimestamp(int(ts), timezone.utc).replace(tzinfo=None)


def to_external_subscription(obj) -> ExternalSubscription:
    """Stripe Subscription (StripeObject / webhook の dict) を正規化

    API 2025-03-31 以降は期間情報が items 側にのみ載るため、
    トップレベルに無ければ先頭 item から取得する。
    """
    items = (obj.get("items") or {}).get("data") or []
    first_item = items[0] if items else {}

    period_start = obj.get("current_period_start") or first_item.get("current_period_start")
    period_end = obj.get("current_period_end") or first_item.get("current_period_end")
    price = first_item.get("price") or {}
    price_id = price.get("id") if isinstance(price, dict) else price

    return ExternalSubscription(
        external_id=obj["id"],
        status=obj.get("status", "active"),
        current_period_start=to_datetime(period_start),
        current_period_end=to_datetime(period_end),
        cancel_at_period_end=bool(obj.get("cancel_at_period_end", False)),
        customer_id=obj.get("customer"),
        price_id=price_id,
    )


def _classify(e: Exception, action: str, outcome_unknown: bool = False):
    """Stripe SDK例外 → ドメイン例外"""
    if isinstance(e, stripe.CardError):
        logger.warning(f"Stripe {action}: カード拒否 code={e.code}")
        return ProcessorRejected(action=action)
    if isinstance(e, stripe.InvalidRequestError):
        logger.error(f"Stripe {action}: 不正リクエスト param={e.param} - {e.user_message or e}")
        return ProcessorInvalidInput(action=action)
    if isinstance(e, (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError)):
        logger.error(f"Stripe {action}: 接続失敗 - {e}")
        return ProcessorUnavailable(action=action, outcome_unknown=outcome_unknown)
    logger.error(f"Stripe {action}: 想定外のエラー - {e}")
    return ProcessorUnavailable(action=action)


class StripeGateway:
    """Stripe への唯一の出口"""

    def __init__(self, api_key: str, webhook_secret: str, timeout: int = 10):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.timeout = timeout
        self._http_client = None

    def _init_stripe(self):
        if self._http_client is None:
            self._http_client = stripe.RequestsClient(timeout=self.timeout)
        stripe.api_key = self.api_key
        stripe.max_network_retries = 0
        stripe.default_http_client = self._http_client

    def create_customer(self, email: str, display_name: str) -> str:
        """Stripe Customer 作成"""
        self._init_stripe()
        try:
            customer = stripe.Customer.create(
                email=email,
                name=display_name,
                metadata=CUSTOMER_METADATA,
            )
        except stripe.StripeError as e:
            raise _classify(e, "customer.create")
        logger.info(f"Stripe Customer作成: customer={customer.id}")
        return customer.id

    def create_subscription(
        self,
        customer_id: str,
        price_id: str,
        payment_method_id: str,
    ) -> ExternalSubscription:
        """支払い方法を紐付け → デフォルト設定 → Subscription 作成

        前2ステップのどちらかが失敗した場合は Subscription を作成しない。
        """
        self._init_stripe()
        try:
            stripe.PaymentMethod.attach(payment_method_id, customer=customer_id)
            stripe.Customer.modify(
                customer_id,
                invoice_settings={"default_payment_method": payment_method_id},
            )
        except stripe.StripeError as e:
            raise _classify(e, "payment_method.attach")

        try:
            subscription = stripe.Subscription.create(
                customer=customer_id,
                items=[{"price": price_id}],
                default_payment_method=payment_method_id,
                expand=["latest_invoice.payment_intent"],
            )
        except stripe.StripeError as e:
            # 通信系エラーの場合、Stripe側で作成済みかどうか判別できない
            raise _classify(e, "subscription.create", outcome_unknown=True)

        logger.info(f"Stripe Subscription作成: subscription={subscription.id}, status={subscription.status}")
        return to_external_subscription(subscription)

    def cancel_subscription(self, subscription_id: str, cancel_at_period_end: bool = True) -> ExternalSubscription:
        """購読をキャンセル (cancel_at_period_end=False なら即時)"""
        self._init_stripe()
        try:
            if cancel_at_period_end:
                subscription = stripe.Subscription.modify(subscription_id, cancel_at_period_end=True)
            else:
                subscription = stripe.Subscription.cancel(subscription_id)
        except stripe.StripeError as e:
            raise _classify(e, "subscription.cancel")
        return to_external_subscription(subscription)

    def retrieve_subscription(self, subscription_id: str) -> ExternalSubscription:
        """Stripe Subscription を取得"""
        self._init_stripe()
        try:
            subscription = stripe.Subscription.retrieve(subscription_id)
        except stripe.StripeError as e:
            raise _classify(e, "subscription.retrieve")
        return to_external_subscription(subscription)

    def list_customer_subscriptions(self, customer_id: str) -> list[ExternalSubscription]:
        """Customer の全 Subscription (照合スイープ用)"""
        self._init_stripe()
        try:
            result = stripe.Subscription.list(customer=customer_id, status="all", limit=100)
        except stripe.StripeError as e:
            raise _classify(e, "subscription.list")
        return [to_external_subscription(s) for s in result.auto_paging_iter()]

    def verify_event(self, payload: bytes, sig_header: str) -> dict:
        """Webhook イベントを検証・構築

        署名は受信した生のバイト列に対して検証する。パース後の再シリアライズは不可。
        """
        if not sig_header:
            raise InvalidSignature("Missing Stripe-Signature header")
        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                body, sig_header, self.webhook_secret, tolerance=stripe.Webhook.DEFAULT_TOLERANCE,
            )
            event = json.loads(body)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Stripe webhook署名検証失敗: {e}")
            raise InvalidSignature()
        except ValueError as e:
            # UnicodeDecodeError / JSONDecodeError
            logger.warning(f"Stripe webhookペイロード不正: {e}")
            raise InvalidSignature("Invalid payload")
        if not isinstance(event, dict) or "type" not in event:
            raise InvalidSignature("Invalid payload")
        return event


class MockStripeGateway(StripeGateway):
    """STRIPE_TEST_MODE=true の場合のみ使うオフラインゲートウェイ

    Stripeへの外部呼び出しを行わずテスト用IDを払い出す。署名検証は本物。
    """

    PERIOD_SECONDS = 30 * 24 * 60 * 60

    def create_customer(self, email: str, display_name: str) -> str:
        customer_id = f"cus_test_{int(time.time() * 1000)}"
        logger.info(f"[TEST MODE] モックCustomer作成: customer={customer_id}")
        return customer_id

    def create_subscription(self, customer_id: str, price_id: str, payment_method_id: str) -> ExternalSubscription:
        now = int(time.time())
        sub = ExternalSubscription(
            external_id=f"sub_test_{int(time.time() * 1000)}",
            status="active",
            current_period_start=to_datetime(now),
            current_period_end=to_datetime(now + self.PERIOD_SECONDS),
            cancel_at_period_end=False,
            customer_id=customer_id,
            price_id=price_id,
        )
        logger.info(f"[TEST MODE] モックSubscription作成: subscription={sub.external_id}")
        return sub

    def cancel_subscription(self, subscription_id: str, cancel_at_period_end: bool = True) -> ExternalSubscription:
        now = int(time.time())
        return ExternalSubscription(
            external_id=subscription_id,
            status="active" if cancel_at_period_end else "canceled",
            current_period_end=to_datetime(now + self.PERIOD_SECONDS),
            cancel_at_period_end=cancel_at_period_end,
        )

    def retrieve_subscription(self, subscription_id: str) -> ExternalSubscription:
        raise ProcessorUnavailable("retrieve is not available in test mode")

    def list_customer_subscriptions(self, customer_id: str) -> list[ExternalSubscription]:
        return []


_gateway: Optional[StripeGateway] = None


def get_gateway() -> StripeGateway:
    """FastAPI依存関数: 起動時設定に基づくゲートウェイ (プロセス内で共有)"""
    global _gateway
    if _gateway is None:
        gateway_cls = MockStripeGateway if settings.STRIPE_TEST_MODE else StripeGateway
        if settings.STRIPE_TEST_MODE:
            logger.warning("STRIPE_TEST_MODE有効: モックゲートウェイを使用します")
        _gateway = gateway_cls(
            api_key=settings.STRIPE_SECRET_KEY,
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
            timeout=settings.STRIPE_TIMEOUT_SECONDS,
        )
    return _gateway
