from sqlalchemy import Column, Integer, String, Date, DateTime, JSON, ForeignKey, func
from app.core.database import Base


class BoxDelivery(Base):
    """ボックス配送履歴 (閲覧専用。配送システム側で書き込まれる)"""

    __tablename__ = "box_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id"), nullable=True, index=True)
    box_date = Column(Date, nullable=False, comment="配送予定日")
    items = Column(JSON, nullable=True, comment="同梱アイテム")
    tracking_number = Column(String(100), nullable=True)
    status = Column(String(50), nullable=False, default="shipped", comment="shipped / delivered / returned")
    created_at = Column(DateTime, nullable=False, server_default=func.now())
