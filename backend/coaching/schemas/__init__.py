from coaching.schemas.user import User
from coaching.schemas.auth import (
    TokenValidation,
    TokenValidationResponse,
    AccountActivation,
    ActivationResponse,
    ResendActivation,
    ResendActivationResponse,
    UserLogin,
    Token,
)
from coaching.schemas.checkout import CheckoutSessionCreate, CheckoutSessionResponse
from coaching.schemas.subscription import (
    Subscription,
    SubscriptionInfo,
    SubscriptionCancel,
    SubscriptionActionResponse,
)

__all__ = [
    "User",
    "TokenValidation", "TokenValidationResponse",
    "AccountActivation", "ActivationResponse",
    "ResendActivation", "ResendActivationResponse",
    "UserLogin", "Token",
    "CheckoutSessionCreate", "CheckoutSessionResponse",
    "Subscription", "SubscriptionInfo", "SubscriptionCancel", "SubscriptionActionResponse",
]
