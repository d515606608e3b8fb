"""共通依存関数: 認証・サービス組み立て"""
from typing import Optional
from fastapi import Request, HTTPException, Depends
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.redis import get_redis
from app.core.session import get_session, SESSION_COOKIE
from app.models.user import User
from app.services.stripe_service import StripeGateway, get_gateway
from app.services.subscription_service import SubscriptionService
from app.services.webhook_dispatcher import WebhookDispatcher


async def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
    r=Depends(get_redis),
) -> Optional[User]:
    """Cookie → Redis → DB でユーザー取得。未ログインならNone"""
    session_id = request.cookies.get(SESSION_COOKIE)
    if not session_id:
        return None

    session_data = await get_session(r, session_id)
    if not session_data:
        return None

    user_id = int(session_data.get("user_id", 0))
    if not user_id:
        return None

    return db.query(User).filter(User.id == user_id).first()


async def require_login(
    user: Optional[User] = Depends(get_current_user),
) -> User:
    """ログイン必須。未ログインなら401"""
    if user is None:
        raise HTTPException(status_code=401, detail="ログインが必要です")
    return user


def get_subscription_service(
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
) -> SubscriptionService:
    return SubscriptionService(db, gateway)


def get_webhook_dispatcher(
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
) -> WebhookDispatcher:
    return WebhookDispatcher(db, gateway)
