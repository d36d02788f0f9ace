import enum

from sqlalchemy import Column, String, ForeignKey, Boolean, DateTime, Enum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from coaching.database import Base
from coaching.models.user import new_id
from coaching.timeutils import utcnow


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    PAST_DUE = "PAST_DUE"
    TRIALING = "TRIALING"
    INCOMPLETE = "INCOMPLETE"


class PlanType(str, enum.Enum):
    WOMAN_STARTER = "WOMAN_STARTER"
    WOMAN_PREMIUM = "WOMAN_PREMIUM"
    MAN_STARTER = "MAN_STARTER"
    MAN_PREMIUM = "MAN_PREMIUM"


class PlanDuration(str, enum.Enum):
    WEEKS_6 = "6W"
    WEEKS_18 = "18W"
    WEEKS_36 = "36W"


# Statuses that still grant access
LIVE_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING, SubscriptionStatus.PAST_DUE)


class Subscription(Base):
    """Local mirror of a Stripe subscription."""
    __tablename__ = "subscriptions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    stripe_subscription_id = Column(String(255), unique=True, nullable=False)

    plan_type = Column(Enum(PlanType, native_enum=False, length=20), nullable=False)
    duration = Column(Enum(PlanDuration, native_enum=False, length=10), nullable=False)

    status = Column(Enum(SubscriptionStatus, native_enum=False, length=20), nullable=False)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)  # orthogonal to status

    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="subscriptions")
