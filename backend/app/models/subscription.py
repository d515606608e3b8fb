from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum as SAEnum, ForeignKey, event, func
from app.core.database import Base

# 「有効な購読」とみなすステータス (1ユーザーにつき同時に1件まで)
LIVE_STATUSES = ("trialing", "active", "past_due")

SUBSCRIPTION_STATUSES = (
    "incomplete", "incomplete_expired", "trialing", "active",
    "past_due", "canceled", "unpaid", "paused",
)


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("subscription_plans.id"), nullable=False, index=True)
    stripe_subscription_id = Column(String(255), nullable=False, unique=True)
    status = Column(
        SAEnum(*SUBSCRIPTION_STATUSES, name="subscription_status"),
        nullable=False,
        default="active",
    )
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    current_period_start = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True)
    # 有効ステータスの間のみ user_id、それ以外は NULL (UNIQUE制約で1ユーザー1有効購読を保証)
    live_user_id = Column(Integer, nullable=True, unique=True, comment="有効購読の一意性制約用")
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())



@event.listens_for(Subscription, "before_insert")
@event.listens_for(Subscription, "before_update")
def _sync_live_user_id(mapper, connection, target: Subscription):
    target.live_user_id = target.user_id if target.status in LIVE_STATUSES else None
