"""認証ルーター: 登録、ログイン、ログアウト、プロフィール"""
from fastapi import APIRouter, Depends, HTTPException, Response, Request
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.redis import get_redis
from app.core.session import create_session, destroy_session, SESSION_COOKIE
from app.core.csrf import generate_csrf_token, revoke_csrf_token, CSRF_HEADER
from app.core.config import settings
from app.models.user import User
from app.schemas.auth import (
    RegisterRequest,
    LoginRequest,
    ProfileUpdate,
    AuthResponse,
    UserInfo,
)
from app.services import auth_service
from app.services.stripe_service import StripeGateway, get_gateway
from app.routers.deps import require_login

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register", response_model=AuthResponse, status_code=201)
def register(
    req: RegisterRequest,
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
):
    """会員登録 (Stripe Customer を同時に作成)"""
    user = auth_service.register_user(
        db,
        gateway,
        email=req.email,
        password=req.password,
        first_name=req.first_name,
        last_name=req.last_name,
    )
    return AuthResponse(message="登録が完了しました", user_id=user.id)


@router.post("/login", response_model=AuthResponse)
async def login(
    req: LoginRequest,
    response: Response,
    db: Session = Depends(get_db),
    r=Depends(get_redis),
):
    """ログイン"""
    user = auth_service.authenticate(db, req.email, req.password)
    if not user:
        raise HTTPException(status_code=401, detail="メールアドレスまたはパスワードが正しくありません")

    # セッション作成 (固定化攻撃対策: 毎回新規)
    session_id = await create_session(r, user.id, user.email)
    csrf_token = await generate_csrf_token(session_id)

    response.set_cookie(
        key=SESSION_COOKIE,
        value=session_id,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        max_age=settings.SESSION_TIMEOUT_MINUTES * 60,
    )
    response.headers[CSRF_HEADER] = csrf_token

    return AuthResponse(message="ログイン成功", user_id=user.id, csrf_token=csrf_token)


@router.post("/logout")
async def logout(request: Request, response: Response, r=Depends(get_redis)):
    """ログアウト"""
    session_id = request.cookies.get(SESSION_COOKIE)
    if session_id:
        await destroy_session(r, session_id)
        await revoke_csrf_token(session_id)
    response.delete_cookie(SESSION_COOKIE)
    return {"message": "ログアウトしました"}


@router.get("/me", response_model=UserInfo)
async def me(user: User = Depends(require_login)):
    """ログイン中のユーザー情報"""
    return user


@router.put("/profile", response_model=UserInfo)
async def update_profile(
    data: ProfileUpdate,
    user: User = Depends(require_login),
    db: Session = Depends(get_db),
):
    """プロフィール更新"""
    return auth_service.update_profile(db, user, data.first_name, data.last_name)
