from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.core.config import settings
from app.core.exceptions import AppError
from app.core.logging import setup_logging, get_logger, with_data
from app.core.csrf import CSRFMiddleware, CSRF_HEADER
from app.routers import health, auth, plans, subscriptions, payments, webhooks_stripe

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """アプリケーションライフサイクル管理"""
    setup_logging(debug=settings.DEBUG)
    logger.info("アプリケーション起動")
    yield
    logger.info("アプリケーション終了")


app = FastAPI(
    title=settings.SITE_NAME,
    lifespan=lifespan,
    docs_url="/api/docs" if settings.DEBUG else None,
    redoc_url="/api/redoc" if settings.DEBUG else None,
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    """ドメイン例外 → HTTPレスポンス (message のみ返す)"""
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        f"{type(exc).__name__}: {request.method} {request.url.path}",
        extra=with_data(status=exc.status_code, **exc.context),
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# --- バリデーションエラー日本語化 ---
_FIELD_JA = {
    "email": "メールアドレス",
    "password": "パスワード",
    "first_name": "名",
    "last_name": "姓",
    "plan_id": "プランID",
    "payment_method_id": "お支払い方法",
    "cancel_at_period_end": "期間終了時解約",
    "page": "ページ",
    "per_page": "表示件数",
}


def _translate_error(err: dict) -> str:
    t = err.get("type", "")
    ctx = err.get("ctx", {})
    loc = err.get("loc", [])
    field = str(loc[-1]) if loc else ""
    fj = _FIELD_JA.get(field, field)

    if "email" in t or ("value" in t and "email" in err.get("msg", "").lower()):
        return f"{fj}は有効なメールアドレス形式で入力してください"
    if t == "string_too_short":
        return f"{fj}は{ctx.get('min_length', '')}文字以上で入力してください"
    if t == "string_too_long":
        return f"{fj}は{ctx.get('max_length', '')}文字以下で入力してください"
    if t == "missing":
        return f"{fj}は必須です"
    if t in ("int_parsing", "int_type"):
        return f"{fj}は数値で入力してください"
    if t == "greater_than_equal":
        return f"{fj}は{ctx.get('ge', '')}以上の値を入力してください"
    if t == "less_than_equal":
        return f"{fj}は{ctx.get('le', '')}以下の値を入力してください"
    if t == "bool_parsing":
        return f"{fj}は真偽値で入力してください"
    if t == "value_error":
        return str(ctx.get("error", "")) or f"{fj}: 入力値が不正です"
    return f"{fj}: 入力値が不正です"


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = [_translate_error(e) for e in exc.errors()]
    return JSONResponse(status_code=422, content={"detail": "、".join(messages)})


# ミドルウェア (登録順序: 後に登録したものが先に実行される)
app.add_middleware(CSRFMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[CSRF_HEADER],
)

# ルーター登録
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(plans.router)
app.include_router(subscriptions.router)
app.include_router(payments.router)
app.include_router(webhooks_stripe.router)
