from pydantic import BaseModel, Field
from datetime import datetime

from coaching.models import PlanDuration, PlanType, SubscriptionStatus


class Subscription(BaseModel):
    id: str
    stripe_subscription_id: str
    plan_type: PlanType
    duration: PlanDuration
    status: SubscriptionStatus
    cancel_at_period_end: bool
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class SubscriptionInfo(BaseModel):
    subscription: Subscription | None = None
    has_subscription: bool


class SubscriptionCancel(BaseModel):
    cancel_immediately: bool = Field(False, alias="cancelImmediately")

    class Config:
        populate_by_name = True


class SubscriptionActionResponse(BaseModel):
    success: bool = True
    message: str
    subscription: Subscription
