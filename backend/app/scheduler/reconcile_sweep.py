"""照合スイープ: Stripe を正としてローカルの購読を上書き・補完する"""
from sqlalchemy.orm import Session

from app.core.database import SessionLocal
from app.core.exceptions import AppError
from app.core.logging import get_logger
from app.models.subscription import Subscription, LIVE_STATUSES
from app.models.system_log import SystemLog
from app.models.user import User
from app.services.stripe_service import StripeGateway, get_gateway
from app.services.subscription_service import SubscriptionService, RECONCILIATION_EVENT

logger = get_logger(__name__)


def refresh_live_subscriptions(db: Session, service: SubscriptionService) -> int:
    """有効な購読をStripeから再取得して上書き (Webhook取りこぼし対策)"""
    refs = [
        ref for (ref,) in db.query(Subscription.stripe_subscription_id).filter(
            Subscription.status.in_(LIVE_STATUSES),
        ).all()
    ]
    refreshed = 0
    for ref in refs:
        try:
            service.reconcile_subscription(ref)
            refreshed += 1
        except AppError as e:
            db.rollback()
            logger.error(f"購読照合失敗: stripe_subscription_id={ref} - {type(e).__name__}")
    return refreshed


def resolve_pending_records(db: Session, service: SubscriptionService, gateway: StripeGateway) -> int:
    """要照合レコードを処理: ローカルに無いStripe側の有効な購読を取り込む (重複なら解約)"""
    pending = db.query(SystemLog).filter(
        SystemLog.event_type == RECONCILIATION_EVENT,
        SystemLog.resolved == False,
    ).order_by(SystemLog.id.asc()).all()

    resolved = 0
    for record in pending:
        user = db.get(User, record.user_id) if record.user_id else None
        try:
            if user and user.stripe_customer_id:
                for external in gateway.list_customer_subscriptions(user.stripe_customer_id):
                    if external.status in LIVE_STATUSES:
                        service.resolve_external_subscription(user, external)
            else:
                logger.warning(f"要照合レコード: 対象ユーザー不明 system_log_id={record.id}")
            record.resolved = True
            db.commit()
            resolved += 1
        except AppError as e:
            db.rollback()
            logger.error(f"要照合レコード処理失敗: system_log_id={record.id} - {type(e).__name__}")
    return resolved


def run_reconcile_sweep(gateway: StripeGateway = None, session_factory=SessionLocal) -> dict:
    """スケジューラから呼ばれる: 照合スイープ1回分"""
    gateway = gateway or get_gateway()
    db = session_factory()
    try:
        service = SubscriptionService(db, gateway, session_factory=session_factory)
        refreshed = refresh_live_subscriptions(db, service)
        resolved = resolve_pending_records(db, service, gateway)
        logger.info(f"照合スイープ完了: 更新={refreshed}件, 要照合解消={resolved}件")
        return {"refreshed": refreshed, "resolved": resolved}
    finally:
        db.close()
