"""公開プランAPI"""
from fastapi import APIRouter, Depends

from app.schemas.subscription import PlanInfo
from app.services.subscription_service import SubscriptionService
from app.routers.deps import get_subscription_service

router = APIRouter(prefix="/api/plans", tags=["plans"])


@router.get("", response_model=list[PlanInfo])
def list_public_plans(service: SubscriptionService = Depends(get_subscription_service)):
    """公開プラン一覧 (アクティブのみ)"""
    return service.get_plans()
