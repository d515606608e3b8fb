import secrets
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from app.core.redis import get_redis
from app.core.session import SESSION_COOKIE

CSRF_PREFIX = "csrf:"
CSRF_TTL = 3600 * 2  # 2時間
CSRF_HEADER = "X-CSRF-Token"

# 署名検証で保護されるWebhookと、セッション確立前の認証API
CSRF_EXEMPT_PATHS = {
    "/api/webhooks/stripe",
    "/api/auth/login",
    "/api/auth/register",
}

CSRF_METHODS = {"POST", "PUT", "DELETE", "PATCH"}


async def generate_csrf_token(session_id: str) -> str:
    """CSRFトークンを生成してRedisに保存"""
    token = secrets.token_hex(32)
    r = await get_redis()
    await r.set(f"{CSRF_PREFIX}{session_id}", token, ex=CSRF_TTL)
    return token


async def validate_csrf_token(session_id: str, token: str) -> bool:
    """CSRFトークンを検証"""
    if not session_id or not token:
        return False
    r = await get_redis()
    stored = await r.get(f"{CSRF_PREFIX}{session_id}")
    return stored is not None and secrets.compare_digest(stored, token)


async def revoke_csrf_token(session_id: str) -> None:
    if session_id:
        r = await get_redis()
        await r.delete(f"{CSRF_PREFIX}{session_id}")


def _forbidden() -> JSONResponse:
    return JSONResponse(status_code=403, content={"detail": "CSRFトークンが無効です"})


class CSRFMiddleware(BaseHTTPMiddleware):
    """CSRF保護ミドルウェア"""

    async def dispatch(self, request: Request, call_next):
        if request.method not in CSRF_METHODS or request.url.path in CSRF_EXEMPT_PATHS:
            return await call_next(request)

        # ミドルウェア内の例外は例外ハンドラを通らないため直接レスポンスを返す
        session_id = request.cookies.get(SESSION_COOKIE)
        if not session_id:
            return _forbidden()

        csrf_token = request.headers.get(CSRF_HEADER, "")
        if not await validate_csrf_token(session_id, csrf_token):
            return _forbidden()

        return await call_next(request)
