from sqlalchemy import Column, Integer, String, DateTime, Numeric, Enum as SAEnum, ForeignKey, func
from app.core.database import Base


class Payment(Base):
    """決済履歴 (Webhookからのみ追記。更新・削除しない)"""

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id"), nullable=True, index=True)
    stripe_invoice_id = Column(String(255), nullable=True, index=True)
    stripe_payment_intent_id = Column(String(255), nullable=True)
    amount = Column(Numeric(10, 2), nullable=False, comment="金額 (通貨の主単位)")
    currency = Column(String(3), nullable=False, default="usd")
    status = Column(SAEnum("succeeded", "failed", name="payment_status"), nullable=False)
    payment_method = Column(String(50), nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
