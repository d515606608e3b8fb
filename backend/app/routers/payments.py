"""決済履歴API"""
from fastapi import APIRouter, Depends, Query

from app.models.user import User
from app.schemas.subscription import PaymentInfo
from app.services.subscription_service import SubscriptionService
from app.routers.deps import require_login, get_subscription_service

router = APIRouter(prefix="/api/payments", tags=["payments"])


@router.get("", response_model=list[PaymentInfo])
def payment_history(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=50),
    user: User = Depends(require_login),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """決済履歴 (新しい順)"""
    return service.get_payment_history(user.id, limit=per_page, offset=(page - 1) * per_page)
