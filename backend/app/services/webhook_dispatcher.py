"""Stripe Webhook ディスパッチャ

署名検証 → 冪等性チェック → イベント種別ごとのハンドラ → 処理済み記録。
ハンドラの変更と処理済み記録は同一トランザクションでコミットする。
"""
from enum import Enum
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.logging import get_logger
from app.models.processed_stripe_event import ProcessedStripeEvent
from app.services.stripe_service import StripeGateway
from app.services.subscription_service import SubscriptionService

logger = get_logger(__name__)


class StripeEventType(str, Enum):
    PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    PAYMENT_FAILED = "invoice.payment_failed"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    TRIAL_WILL_END = "customer.subscription.trial_will_end"


class WebhookDispatcher:
    def __init__(self, db: Session, gateway: StripeGateway):
        self.db = db
        self.gateway = gateway
        self.service = SubscriptionService(db, gateway)
        self._handlers: dict[StripeEventType, Callable[[dict], object]] = {
            StripeEventType.PAYMENT_SUCCEEDED: self.service.handle_payment_succeeded,
            StripeEventType.PAYMENT_FAILED: self.service.handle_payment_failed,
            StripeEventType.SUBSCRIPTION_UPDATED: self.service.handle_subscription_updated,
            StripeEventType.SUBSCRIPTION_DELETED: self.service.handle_subscription_deleted,
            StripeEventType.TRIAL_WILL_END: self.service.handle_trial_will_end,
        }

    def handle_event(self, payload: bytes, sig_header: str) -> dict:
        """Webhook 1件を処理

        InvalidSignature は検証失敗時にそのまま送出する (状態変更なし)。
        ハンドラ内の例外はロールバックして再送出し、Stripeの再送に任せる。
        """
        event = self.gateway.verify_event(payload, sig_header)
        event_id = event.get("id")
        event_type = event["type"]
        data = (event.get("data") or {}).get("object") or {}

        if event_id and self._is_processed(event_id):
            logger.info(f"Stripe webhook重複スキップ: {event_id} ({event_type})")
            return {"received": True}

        try:
            kind = StripeEventType(event_type)
        except ValueError:
            logger.info(f"未処理のStripeイベント: {event_type}")
            return {"received": True}

        try:
            self._handlers[kind](data)
            if event_id:
                self.db.add(ProcessedStripeEvent(event_id=event_id, event_type=event_type))
            self.db.commit()
        except IntegrityError:
            # 同一イベントを並行処理した側が先にコミット済み
            self.db.rollback()
            if event_id and self._is_processed(event_id):
                logger.info(f"Stripe webhook並行重複: {event_id} ({event_type})")
                return {"received": True}
            logger.exception(f"Stripe webhook処理エラー: {event_type}")
            raise
        except Exception:
            self.db.rollback()
            logger.exception(f"Stripe webhook処理エラー: {event_type}")
            raise

        logger.info(f"Stripe webhook処理完了: {event_id} ({event_type})")
        return {"received": True}

    def _is_processed(self, event_id: str) -> bool:
        return self.db.query(ProcessedStripeEvent).filter(
            ProcessedStripeEvent.event_id == event_id
        ).first() is not None
