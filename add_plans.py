#!/usr/bin/env python3
"""定番3プランを追加するスクリプト (既存の stripe_price_id はスキップ)

Stripe側の Price は事前に作成しておくこと。
"""
from decimal import Decimal

from app.core.database import SessionLocal
from app.core.logging import setup_logging, get_logger
from app.models.plan import Plan

logger = get_logger("add_plans")

PLANS = [
    {
        "name": "Basic Box",
        "description": "Perfect for beginners - 3-4 curated items",
        "price_monthly": Decimal("29.99"),
        "stripe_price_id": "price_basic_monthly",
        "features": ["3-4 curated items", "Monthly delivery", "Basic support"],
    },
    {
        "name": "Premium Box",
        "description": "For enthusiasts - 5-6 premium items",
        "price_monthly": Decimal("49.99"),
        "stripe_price_id": "price_premium_monthly",
        "features": ["5-6 premium items", "Monthly delivery", "Priority support", "Exclusive items"],
    },
    {
        "name": "Deluxe Box",
        "description": "Ultimate experience - 7-8 luxury items",
        "price_monthly": Decimal("79.99"),
        "stripe_price_id": "price_deluxe_monthly",
        "features": [
            "7-8 luxury items",
            "Monthly delivery",
            "VIP support",
            "Exclusive items",
            "Early access to new products",
        ],
    },
]


def seed_plans(db) -> int:
    """未登録のプランのみ追加し、追加件数を返す"""
    added = 0
    for order, plan_data in enumerate(PLANS):
        exists = db.query(Plan).filter(Plan.stripe_price_id == plan_data["stripe_price_id"]).first()
        if exists:
            logger.info(f"スキップ (登録済み): {plan_data['name']}")
            continue
        db.add(Plan(is_active=True, sort_order=order, **plan_data))
        added += 1
    db.commit()
    return added


def main():
    setup_logging()
    db = SessionLocal()
    try:
        added = seed_plans(db)
        logger.info(f"プラン追加完了: {added}件")
    except Exception:
        db.rollback()
        logger.exception("プラン追加エラー")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
