"""Delivery log model: one row per (notification, channel, recipient)"""

from sqlalchemy import Column, String, Text, ForeignKey, Index, DateTime, Integer, JSON, Enum, UniqueConstraint
from sqlalchemy.orm import relationship
import enum

from .base import Base, TimestampedModel, UUIDModel, ReprMixin
from .notification import DeliveryChannel

class DeliveryStatus(str, enum.Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    BOUNCED = "BOUNCED"
    FAILED = "FAILED"
    REJECTED = "REJECTED"

FAILURE_STATUSES = (DeliveryStatus.FAILED, DeliveryStatus.BOUNCED, DeliveryStatus.REJECTED)

class DeliveryLog(Base, UUIDModel, TimestampedModel, ReprMixin):
    """Outcome of delivering a notification over one channel to one recipient"""

    __tablename__ = "delivery_logs"

    notification_id = Column(
        String(36), ForeignKey("notifications.id", ondelete="CASCADE"), nullable=False
    )
    channel = Column(Enum(DeliveryChannel), nullable=False)
    recipient = Column(String(500), nullable=False)

    provider = Column(String(50), nullable=True)
    message_id = Column(String(255), nullable=True, index=True)
    status = Column(Enum(DeliveryStatus), nullable=False, default=DeliveryStatus.PENDING)
    response = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=1)

    sent_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)

    notification = relationship("Notification", back_populates="delivery_logs")

    __table_args__ = (
        UniqueConstraint("notification_id", "channel", "recipient", name="uq_delivery_log_target"),
        Index("idx_delivery_logs_status", "status"),
    )
