"""
Models for completed checkouts and the consent captured with them.
"""
import enum

from sqlalchemy import Column, Integer, String, ForeignKey, Boolean, DateTime, Enum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from coaching.database import Base
from coaching.models.user import new_id
from coaching.timeutils import utcnow


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class SignUpStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACTIVATED = "ACTIVATED"


class Order(Base):
    """A checkout completed through Stripe."""
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)

    # Purchase
    plan_id = Column(String(100), nullable=False)
    amount = Column(Integer, nullable=True)  # minor units (cents)
    currency = Column(String(10), nullable=True)
    status = Column(Enum(OrderStatus, native_enum=False, length=20), nullable=False, default=OrderStatus.PENDING)
    sign_up_status = Column(
        Enum(SignUpStatus, native_enum=False, length=20), nullable=False, default=SignUpStatus.PENDING
    )

    # Stripe references - the session id is the webhook idempotency key
    stripe_session_id = Column(String(255), unique=True, nullable=False)
    stripe_payment_intent_id = Column(String(255), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    user = relationship("User", back_populates="orders")
    consent = relationship("Consent", back_populates="order", uselist=False)
    email_logs = relationship("EmailLog", back_populates="order")


class Consent(Base):
    """Legal consent given at checkout. Write-once."""
    __tablename__ = "consents"

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), ForeignKey("orders.id"), unique=True, nullable=False)

    tos_accepted = Column(Boolean, nullable=False, default=False)
    privacy_accepted = Column(Boolean, nullable=False, default=False)
    marketing_opt_in = Column(Boolean, nullable=False, default=False)

    # Accepted document versions, for audit
    tos_version = Column(String(50), nullable=False, default="v1.0")
    privacy_version = Column(String(50), nullable=False, default="v1.0")

    # Request provenance
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    order = relationship("Order", back_populates="consent")
