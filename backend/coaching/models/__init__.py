from coaching.models.user import User, UserRole, ActivationToken
from coaching.models.order import Order, OrderStatus, SignUpStatus, Consent
from coaching.models.subscription import (
    Subscription,
    SubscriptionStatus,
    PlanType,
    PlanDuration,
    LIVE_STATUSES,
)
from coaching.models.email_log import EmailLog, EmailType, EmailStatus

__all__ = [
    "User",
    "UserRole",
    "ActivationToken",
    "Order",
    "OrderStatus",
    "SignUpStatus",
    "Consent",
    "Subscription",
    "SubscriptionStatus",
    "PlanType",
    "PlanDuration",
    "LIVE_STATUSES",
    "EmailLog",
    "EmailType",
    "EmailStatus",
]
