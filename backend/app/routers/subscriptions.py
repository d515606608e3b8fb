"""購読ルーター: 購読開始・現在の購読・履歴・解約・ボックス履歴"""
from typing import Optional
from fastapi import APIRouter, Depends

from app.models.plan import Plan
from app.models.subscription import Subscription
from app.models.user import User
from app.schemas.subscription import (
    SubscribeRequest, CancelRequest, SubscriptionInfo, BoxInfo,
)
from app.services.subscription_service import SubscriptionService
from app.routers.deps import require_login, get_subscription_service

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])


def _to_info(service: SubscriptionService, sub: Subscription) -> SubscriptionInfo:
    info = SubscriptionInfo.model_validate(sub)
    plan = service.db.get(Plan, sub.plan_id)
    if plan:
        info.plan_name = plan.name
        info.plan_price = plan.price_monthly
    return info


@router.post("", response_model=SubscriptionInfo, status_code=201)
def subscribe(
    req: SubscribeRequest,
    user: User = Depends(require_login),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """購読開始 (Stripe Subscription作成)"""
    sub = service.subscribe(user, req.plan_id, req.payment_method_id)
    return _to_info(service, sub)


@router.get("/current", response_model=Optional[SubscriptionInfo])
def current_subscription(
    user: User = Depends(require_login),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """有効な購読 (なければ null)"""
    sub = service.get_current_subscription(user.id)
    return _to_info(service, sub) if sub else None


@router.get("/history", response_model=list[SubscriptionInfo])
def subscription_history(
    user: User = Depends(require_login),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """購読履歴"""
    return [_to_info(service, s) for s in service.get_subscription_history(user.id)]


@router.post("/cancel", response_model=SubscriptionInfo)
def cancel_current(
    req: CancelRequest = CancelRequest(),
    user: User = Depends(require_login),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """有効な購読を解約"""
    sub = service.cancel_current(user.id, req.cancel_at_period_end)
    return _to_info(service, sub)


@router.post("/{subscription_id}/cancel", response_model=SubscriptionInfo)
def cancel_subscription(
    subscription_id: int,
    req: CancelRequest = CancelRequest(),
    user: User = Depends(require_login),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """指定した購読を解約"""
    sub = service.cancel(user.id, subscription_id, req.cancel_at_period_end)
    return _to_info(service, sub)


@router.get("/boxes", response_model=list[BoxInfo])
def box_history(
    user: User = Depends(require_login),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """ボックス配送履歴"""
    return service.get_box_history(user.id)
