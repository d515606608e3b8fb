from sqlalchemy import Column, Integer, String, Boolean, Text, DateTime, Numeric, JSON, func
from app.core.database import Base


class Plan(Base):
    __tablename__ = "subscription_plans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, comment="プラン名")
    description = Column(Text, nullable=True, comment="プラン説明")
    is_active = Column(Boolean, nullable=False, default=True)

    # Stripe連携
    stripe_price_id = Column(String(255), nullable=False, unique=True)
    price_monthly = Column(Numeric(10, 2), nullable=False, comment="月額料金")

    features = Column(JSON, nullable=True, comment="特典一覧")

    # 並び順
    sort_order = Column(Integer, nullable=False, default=0, comment="表示順（小さいほど上）")

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())
