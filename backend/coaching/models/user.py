import enum
import uuid

from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Enum, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from coaching.database import Base


def new_id() -> str:
    return str(uuid.uuid4())


class UserRole(str, enum.Enum):
    CLIENT = "CLIENT"
    COACH = "COACH"
    ADMIN = "ADMIN"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)
    role = Column(Enum(UserRole, native_enum=False, length=20), nullable=False, default=UserRole.CLIENT)
    hashed_password = Column(String(255), nullable=True)  # Set on activation

    # Activation state - activated_at and email_verified are always set together
    email_verified = Column(Boolean, nullable=False, default=False)
    activated_at = Column(DateTime(timezone=True), nullable=True)

    stripe_customer_id = Column(String(100), unique=True, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    activation_tokens = relationship("ActivationToken", back_populates="user")
    orders = relationship("Order", back_populates="user")
    subscriptions = relationship("Subscription", back_populates="user")

    @property
    def is_activated(self) -> bool:
        return self.activated_at is not None and bool(self.email_verified)


class ActivationToken(Base):
    """Hashed single-use secret exchanged for setting the account password."""
    __tablename__ = "activation_tokens"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token_hash = Column(String(255), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="activation_tokens")

    __table_args__ = (
        Index("ix_activation_tokens_user_unused", "user_id", "used_at"),
    )
