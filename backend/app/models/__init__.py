# 全モデルをインポート (Alembic autogenerate用)
from app.models.user import User
from app.models.plan import Plan
from app.models.subscription import Subscription
from app.models.payment import Payment
from app.models.box_delivery import BoxDelivery
from app.models.processed_stripe_event import ProcessedStripeEvent
from app.models.system_log import SystemLog

__all__ = [
    "User",
    "Plan",
    "Subscription",
    "Payment",
    "BoxDelivery",
    "ProcessedStripeEvent",
    "SystemLog",
]
