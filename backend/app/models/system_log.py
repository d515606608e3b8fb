from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, JSON, ForeignKey, func
from app.core.database import Base


class SystemLog(Base):
    __tablename__ = "system_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    level = Column(String(20), nullable=False, index=True, comment="INFO/WARNING/ERROR/CRITICAL")
    event_type = Column(String(100), nullable=False, index=True, comment="イベント種別")
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    plan_id = Column(Integer, ForeignKey("subscription_plans.id", ondelete="SET NULL"), nullable=True)
    stripe_subscription_id = Column(String(255), nullable=True, index=True)
    message = Column(Text, nullable=False)
    details = Column(JSON, nullable=True, comment="詳細データ")
    resolved = Column(Boolean, nullable=False, default=False, comment="照合スイープで解消済み")
    created_at = Column(DateTime, nullable=False, server_default=func.now(), index=True)
