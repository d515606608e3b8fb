from pydantic import BaseModel, Field
from typing import Optional
from datetime import date, datetime
from decimal import Decimal


class SubscribeRequest(BaseModel):
    plan_id: int
    payment_method_id: str = Field(min_length=1, max_length=255)


class CancelRequest(BaseModel):
    cancel_at_period_end: bool = True


class PlanInfo(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    price_monthly: Decimal
    features: Optional[list[str]] = None
    stripe_price_id: str

    model_config = {"from_attributes": True}


class SubscriptionInfo(BaseModel):
    id: int
    plan_id: int
    plan_name: Optional[str] = None
    plan_price: Optional[Decimal] = None
    stripe_subscription_id: str
    status: str
    cancel_at_period_end: bool
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PaymentInfo(BaseModel):
    id: int
    subscription_id: Optional[int] = None
    stripe_invoice_id: Optional[str] = None
    amount: Decimal
    currency: str
    status: str
    payment_method: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BoxInfo(BaseModel):
    id: int
    subscription_id: Optional[int] = None
    box_date: date
    items: Optional[list] = None
    tracking_number: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
