import enum

from sqlalchemy import Column, String, ForeignKey, DateTime, Text, Enum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from coaching.database import Base
from coaching.models.user import new_id


class EmailType(str, enum.Enum):
    SIGNUP = "SIGNUP"
    TRANSACTIONAL = "TRANSACTIONAL"


class EmailStatus(str, enum.Enum):
    SENT = "SENT"
    FAILED = "FAILED"


class EmailLog(Base):
    """Audit record of one send attempt to one recipient.

    Written as SENT before the provider call and corrected afterwards, so a
    crash mid-send still leaves a row behind.
    """
    __tablename__ = "email_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    email_type = Column(Enum(EmailType, native_enum=False, length=20), nullable=False)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=True, index=True)
    recipient = Column(String(255), nullable=False)
    subject = Column(String(255), nullable=True)

    status = Column(Enum(EmailStatus, native_enum=False, length=10), nullable=False, default=EmailStatus.SENT)
    provider_message_id = Column(String(255), nullable=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    order = relationship("Order", back_populates="email_logs")
