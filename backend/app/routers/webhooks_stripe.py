"""Stripe Webhook ルーター"""
from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from app.services.webhook_dispatcher import WebhookDispatcher
from app.routers.deps import get_webhook_dispatcher

router = APIRouter(tags=["webhooks"])


@router.post("/api/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
):
    """Stripe Webhook エンドポイント (CSRF免除、署名検証)

    署名は生のリクエストボディで検証するため、JSONとしてパースしない。
    検証失敗は InvalidSignature (400)、処理失敗は 500 を返しStripeに再送させる。
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")
    return await run_in_threadpool(dispatcher.handle_event, payload, sig_header)
