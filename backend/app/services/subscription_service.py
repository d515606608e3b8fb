"""購読ビジネスロジック

Subscription テーブルに書き込むのはこのモジュールの SubscriptionService のみ。
ステータス・期間はStripeが正であり、ローカルはそのキャッシュとして上書きする。
"""
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import SessionLocal
from app.core.exceptions import (
    DuplicateActiveSubscription,
    NotFound,
    ProcessorError,
    ProcessorUnavailable,
    ReconciliationRequired,
    StorageError,
    SubscriptionNotFound,
    ValidationError,
)
from app.core.logging import get_logger, with_data
from app.models.box_delivery import BoxDelivery
from app.models.payment import Payment
from app.models.plan import Plan
from app.models.subscription import Subscription, LIVE_STATUSES
from app.models.system_log import SystemLog
from app.models.user import User
from app.services.stripe_service import (
    ExternalSubscription,
    StripeGateway,
    to_datetime,
    to_external_subscription,
)

logger = get_logger(__name__)

RECONCILIATION_EVENT = "reconciliation_required"


def cents_to_amount(cents) -> Decimal:
    """Stripeの最小通貨単位 → 主単位 (4999 → 49.99)"""
    return (Decimal(int(cents or 0)) / Decimal(100)).quantize(Decimal("0.01"))


def invoice_subscription_id(invoice: dict) -> Optional[str]:
    """Invoice から Subscription ID を取得 (API 2025-03-31 以降は parent 配下)"""
    sub_id = invoice.get("subscription")
    if not sub_id:
        details = (invoice.get("parent") or {}).get("subscription_details") or {}
        sub_id = details.get("subscription")
    if isinstance(sub_id, dict):
        sub_id = sub_id.get("id")
    return sub_id


def record_reconciliation_required(
    message: str,
    user_id: Optional[int] = None,
    plan_id: Optional[int] = None,
    stripe_subscription_id: Optional[str] = None,
    details: Optional[dict] = None,
    session_factory=SessionLocal,
):
    """不整合をログ出力し system_logs に記録 (照合スイープが拾う)

    呼び出し元のセッションは失敗している可能性があるため別セッションで書く。
    """
    logger.error(
        f"要照合: {message}",
        extra=with_data(
            user_id=user_id,
            plan_id=plan_id,
            stripe_subscription_id=stripe_subscription_id,
            **(details or {}),
        ),
    )
    db = session_factory()
    try:
        db.add(SystemLog(
            level="ERROR",
            event_type=RECONCILIATION_EVENT,
            user_id=user_id,
            plan_id=plan_id,
            stripe_subscription_id=stripe_subscription_id,
            message=message,
            details=details,
        ))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(f"要照合レコードの保存失敗: stripe_subscription_id={stripe_subscription_id}")
    finally:
        db.close()


class SubscriptionService:
    """購読ライフサイクル管理 (作成・解約・Webhook照合)"""

    def __init__(self, db: Session, gateway: StripeGateway, session_factory=SessionLocal):
        self.db = db
        self.gateway = gateway
        # 要照合レコードは呼び出し元とは別セッションで書く
        self.session_factory = session_factory

    # =========================================================
    # 参照系
    # =========================================================

    def get_plans(self) -> list[Plan]:
        """公開プラン一覧 (アクティブのみ)"""
        return self.db.query(Plan).filter(
            Plan.is_active == True,
        ).order_by(Plan.sort_order.asc(), Plan.price_monthly.asc()).all()

    def get_current_subscription(self, user_id: int) -> Optional[Subscription]:
        """有効な購読 (1ユーザー1件)"""
        return self.db.query(Subscription).filter(
            Subscription.user_id == user_id,
            Subscription.status.in_(LIVE_STATUSES),
        ).order_by(Subscription.created_at.desc(), Subscription.id.desc()).first()

    def get_subscription_history(self, user_id: int) -> list[Subscription]:
        """購読履歴 (解約済み含む)"""
        return self.db.query(Subscription).filter(
            Subscription.user_id == user_id,
        ).order_by(Subscription.created_at.desc(), Subscription.id.desc()).all()

    def get_payment_history(self, user_id: int, limit: int = 50, offset: int = 0) -> list[Payment]:
        """決済履歴"""
        return self.db.query(Payment).filter(
            Payment.user_id == user_id,
        ).order_by(Payment.created_at.desc(), Payment.id.desc()).offset(offset).limit(limit).all()

    def get_box_history(self, user_id: int) -> list[BoxDelivery]:
        """ボックス配送履歴"""
        return self.db.query(BoxDelivery).filter(
            BoxDelivery.user_id == user_id,
        ).order_by(BoxDelivery.box_date.desc(), BoxDelivery.id.desc()).all()

    def _find_by_external_id(self, stripe_subscription_id: Optional[str]) -> Optional[Subscription]:
        if not stripe_subscription_id:
            return None
        return self.db.query(Subscription).filter(
            Subscription.stripe_subscription_id == stripe_subscription_id
        ).first()

    def _has_live_subscription(self, user_id: int) -> bool:
        return self.db.query(Subscription).filter(
            Subscription.user_id == user_id,
            Subscription.status.in_(LIVE_STATUSES),
        ).count() > 0

    # =========================================================
    # 購読作成
    # =========================================================

    def subscribe(self, user: User, plan_id: int, payment_method_id: str) -> Subscription:
        """購読開始: Stripe Subscription 作成 → ローカル保存"""
        if not payment_method_id:
            raise ValidationError("お支払い方法を指定してください")

        plan = self.db.query(Plan).filter(Plan.id == plan_id).first()
        if not plan:
            raise NotFound("プランが見つかりません")
        if not plan.is_active:
            raise ValidationError("このプランは現在ご利用いただけません")

        # 同一ユーザーの同時リクエストを直列化 (SQLiteでは無視される。最終的な保証はUNIQUE制約)
        self.db.query(User).filter(User.id == user.id).with_for_update().first()

        if self._has_live_subscription(user.id):
            self.db.rollback()
            raise DuplicateActiveSubscription()

        if not user.stripe_customer_id:
            self.db.rollback()
            raise ValidationError("決済情報が登録されていません")

        try:
            external = self.gateway.create_subscription(
                user.stripe_customer_id,
                plan.stripe_price_id,
                payment_method_id,
            )
        except ProcessorUnavailable as e:
            self.db.rollback()
            if e.outcome_unknown:
                # タイムアウト等: Stripe側で作成済みの可能性あり。二重課金を避けるため再作成しない
                record_reconciliation_required(
                    "Stripe Subscription作成の結果不明",
                    user_id=user.id,
                    plan_id=plan.id,
                    details={"stripe_customer_id": user.stripe_customer_id},
                    session_factory=self.session_factory,
                )
                raise ReconciliationRequired()
            raise
        except ProcessorError:
            self.db.rollback()
            raise

        return self._persist_new_subscription(user, plan, external)

    def _persist_new_subscription(self, user: User, plan: Plan, external: ExternalSubscription) -> Subscription:
        sub = Subscription(
            user_id=user.id,
            plan_id=plan.id,
            stripe_subscription_id=external.external_id,
            status=external.status,
            cancel_at_period_end=external.cancel_at_period_end,
            current_period_start=external.current_period_start,
            current_period_end=external.current_period_end,
        )
        try:
            self.db.add(sub)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            if self._has_live_subscription(user.id):
                # 並行リクエストが先に購読を作成した: 今作ったStripe側を即時解約して取り消す
                self._compensate_duplicate(user, plan, external)
                raise DuplicateActiveSubscription()
            record_reconciliation_required(
                "購読レコード保存失敗 (制約違反)",
                user_id=user.id,
                plan_id=plan.id,
                stripe_subscription_id=external.external_id,
                session_factory=self.session_factory,
            )
            raise ReconciliationRequired(external_id=external.external_id)
        except SQLAlchemyError:
            self.db.rollback()
            record_reconciliation_required(
                "購読レコード保存失敗",
                user_id=user.id,
                plan_id=plan.id,
                stripe_subscription_id=external.external_id,
                session_factory=self.session_factory,
            )
            raise ReconciliationRequired(external_id=external.external_id)

        self.db.refresh(sub)
        logger.info(
            f"購読作成: subscription_id={sub.id}, user_id={user.id}, plan_id={plan.id}, "
            f"stripe_subscription_id={sub.stripe_subscription_id}, status={sub.status}"
        )
        return sub

    def _compensate_duplicate(self, user: User, plan: Plan, external: ExternalSubscription):
        try:
            self.gateway.cancel_subscription(external.external_id, cancel_at_period_end=False)
            logger.warning(
                f"重複購読を取消: user_id={user.id}, stripe_subscription_id={external.external_id}"
            )
        except ProcessorError:
            record_reconciliation_required(
                "重複購読の取消失敗",
                user_id=user.id,
                plan_id=plan.id,
                stripe_subscription_id=external.external_id,
                session_factory=self.session_factory,
            )
            raise ReconciliationRequired(external_id=external.external_id)

    # =========================================================
    # 解約
    # =========================================================

    def cancel(self, user_id: int, subscription_id: int, cancel_at_period_end: bool = True) -> Subscription:
        """購読解約 (cancel_at_period_end=True なら期間終了まで継続)

        同じフラグで繰り返し呼んでも結果は同じ (冪等)。
        """
        sub = self.db.query(Subscription).filter(
            Subscription.id == subscription_id,
            Subscription.user_id == user_id,
            Subscription.status.in_(LIVE_STATUSES),
        ).first()
        if not sub:
            raise SubscriptionNotFound()
        return self._cancel(sub, cancel_at_period_end)

    def cancel_current(self, user_id: int, cancel_at_period_end: bool = True) -> Subscription:
        """有効な購読を解約"""
        sub = self.get_current_subscription(user_id)
        if not sub:
            raise SubscriptionNotFound()
        return self._cancel(sub, cancel_at_period_end)

    def _cancel(self, sub: Subscription, cancel_at_period_end: bool) -> Subscription:
        external = self.gateway.cancel_subscription(sub.stripe_subscription_id, cancel_at_period_end)

        sub.cancel_at_period_end = external.cancel_at_period_end
        if external.status:
            sub.status = external.status
        if external.current_period_end:
            sub.current_period_end = external.current_period_end
        self._commit()

        logger.info(
            f"購読解約: subscription_id={sub.id}, cancel_at_period_end={sub.cancel_at_period_end}, "
            f"status={sub.status}"
        )
        return sub

    # =========================================================
    # Webhook照合 (コミットは呼び出し側 = WebhookDispatcher)
    # =========================================================

    def handle_payment_succeeded(self, invoice: dict) -> Optional[Payment]:
        """invoice.payment_succeeded: 期間終了日更新 + 決済履歴追加"""
        stripe_sub_id = invoice_subscription_id(invoice)
        sub = self._find_by_external_id(stripe_sub_id)
        if not sub:
            logger.warning(f"payment_succeeded: 購読が見つかりません stripe_subscription_id={stripe_sub_id}")
            return None

        period_end = to_datetime(invoice.get("period_end"))
        if period_end:
            sub.current_period_end = period_end

        payment = self._append_payment(sub, invoice, "succeeded", invoice.get("amount_paid"))
        logger.info(
            f"決済成功: subscription_id={sub.id}, user_id={sub.user_id}, amount={payment.amount}"
        )
        return payment

    def handle_payment_failed(self, invoice: dict) -> Optional[Payment]:
        """invoice.payment_failed: 決済履歴追加のみ (past_due化は subscription.updated で届く)"""
        stripe_sub_id = invoice_subscription_id(invoice)
        sub = self._find_by_external_id(stripe_sub_id)
        if not sub:
            logger.warning(f"payment_failed: 購読が見つかりません stripe_subscription_id={stripe_sub_id}")
            return None

        payment = self._append_payment(sub, invoice, "failed", invoice.get("amount_due"))
        logger.warning(
            f"決済失敗: subscription_id={sub.id}, user_id={sub.user_id}, amount={payment.amount}"
        )
        return payment

    def handle_subscription_updated(self, data: dict) -> Optional[Subscription]:
        """customer.subscription.updated: ステータス・期間・解約予約を全置換"""
        external = self._parse_external(data)
        sub = self._find_by_external_id(external.external_id)
        if not sub:
            logger.warning(f"subscription.updated: 購読が見つかりません stripe_subscription_id={external.external_id}")
            return None

        if sub.status == "canceled":
            # canceled は終端: 遅れて届いた updated で復活させない
            logger.info(
                f"subscription.updated: 解約済みのため無視 subscription_id={sub.id}, "
                f"event_status={external.status}"
            )
            return sub

        self._overwrite(sub, external)
        logger.info(
            f"購読更新: subscription_id={sub.id}, status={sub.status}, "
            f"cancel_at_period_end={sub.cancel_at_period_end}"
        )
        return sub

    def handle_subscription_deleted(self, data: dict) -> Optional[Subscription]:
        """customer.subscription.deleted: canceled (終端)"""
        stripe_sub_id = data.get("id")
        sub = self._find_by_external_id(stripe_sub_id)
        if not sub:
            logger.warning(f"subscription.deleted: 購読が見つかりません stripe_subscription_id={stripe_sub_id}")
            return None

        if sub.status != "canceled":
            sub.status = "canceled"
            self.db.flush()
        logger.info(f"購読終了: subscription_id={sub.id}")
        return sub

    def handle_trial_will_end(self, data: dict) -> Optional[Subscription]:
        """customer.subscription.trial_will_end: 通知のみ (状態変更なし)"""
        sub = self._find_by_external_id(data.get("id"))
        if not sub:
            logger.warning(f"trial_will_end: 購読が見つかりません stripe_subscription_id={data.get('id')}")
            return None
        logger.info(
            f"トライアル終了間近: subscription_id={sub.id}, user_id={sub.user_id}, "
            f"trial_end={to_datetime(data.get('trial_end'))}"
        )
        return sub

    def _parse_external(self, data: dict) -> ExternalSubscription:
        if not data.get("id"):
            raise ValidationError("subscription id がありません")
        return to_external_subscription(data)

    def _overwrite(self, sub: Subscription, external: ExternalSubscription):
        # Stripeが正: マージせず全フィールドを置き換える
        sub.status = external.status
        sub.current_period_start = external.current_period_start
        sub.current_period_end = external.current_period_end
        sub.cancel_at_period_end = external.cancel_at_period_end
        self.db.flush()

    def _append_payment(self, sub: Subscription, invoice: dict, status: str, cents) -> Payment:
        payment_intent = invoice.get("payment_intent")
        if isinstance(payment_intent, dict):
            payment_intent = payment_intent.get("id")
        payment = Payment(
            user_id=sub.user_id,
            subscription_id=sub.id,
            stripe_invoice_id=invoice.get("id"),
            stripe_payment_intent_id=payment_intent,
            amount=cents_to_amount(cents),
            currency=(invoice.get("currency") or settings.PAYMENT_CURRENCY).lower(),
            status=status,
            payment_method="card",
        )
        self.db.add(payment)
        self.db.flush()
        return payment

    # =========================================================
    # 照合 (スケジューラ・手動)
    # =========================================================

    def reconcile_subscription(self, stripe_subscription_id: str) -> Optional[Subscription]:
        """Stripeから再取得してローカルを上書き"""
        sub = self._find_by_external_id(stripe_subscription_id)
        if not sub:
            return None
        external = self.gateway.retrieve_subscription(stripe_subscription_id)
        self._overwrite(sub, external)
        self._commit()
        return sub

    def resolve_external_subscription(self, user: User, external: ExternalSubscription) -> Optional[Subscription]:
        """ローカルに無いStripe側の有効な購読を解消

        既に別の有効な購読があれば取り込まずStripe側を即時解約する (取消失敗の復旧)。
        """
        if self._find_by_external_id(external.external_id):
            return None
        current = self.get_current_subscription(user.id)
        if current and current.stripe_subscription_id != external.external_id:
            self.gateway.cancel_subscription(external.external_id, cancel_at_period_end=False)
            logger.warning(
                f"重複購読を取消 (照合): user_id={user.id}, stripe_subscription_id={external.external_id}, "
                f"live_subscription_id={current.id}"
            )
            return None
        return self.adopt_external_subscription(user, external)

    def adopt_external_subscription(self, user: User, external: ExternalSubscription) -> Optional[Subscription]:
        """ローカルに存在しないStripe Subscriptionを取り込む (部分失敗の復旧用)"""
        if self._find_by_external_id(external.external_id):
            return None
        plan = self.db.query(Plan).filter(Plan.stripe_price_id == external.price_id).first()
        if not plan:
            logger.warning(f"購読取り込み: プラン不明 price_id={external.price_id}")
            return None
        sub = Subscription(
            user_id=user.id,
            plan_id=plan.id,
            stripe_subscription_id=external.external_id,
            status=external.status,
            cancel_at_period_end=external.cancel_at_period_end,
            current_period_start=external.current_period_start,
            current_period_end=external.current_period_end,
        )
        self.db.add(sub)
        self._commit()
        logger.info(
            f"購読取り込み: subscription_id={sub.id}, user_id={user.id}, "
            f"stripe_subscription_id={external.external_id}, status={sub.status}"
        )
        return sub

    def _commit(self):
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"DBコミット失敗: {e}")
            raise StorageError()
